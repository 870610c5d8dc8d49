"""Manual bank transfer: static account details out, operator confirmation in. No provider API."""
from app.gateways.base import (
    Charge,
    Customer,
    GatewayAdapter,
    PaymentHandle,
    PaymentMethod,
    PaymentOutcome,
    Verification,
)
from app.services.errors import GatewayNotConfigured


class ManualBankTransferGateway(GatewayAdapter):
    method = PaymentMethod.BANK_TRANSFER
    provider = "bank_transfer"
    live_verification = False

    def __init__(self, accounts: list[dict], instructions_hours: int = 24, **kwargs):
        super().__init__(**kwargs)
        self.accounts = accounts
        self.instructions_hours = instructions_hours

    def initiate(self, charge: Charge, customer: Customer) -> PaymentHandle:
        if not self.accounts:
            raise GatewayNotConfigured("Bank transfer is not available right now.")
        return PaymentHandle(
            reference=charge.reference,
            instructions={
                "bank_details": self.accounts,
                "amount": charge.amount,
                "currency": charge.currency,
                "payment_reference": charge.reference,
                "steps": [
                    "Transfer the exact amount to one of the accounts above.",
                    f'Use "{charge.reference}" as your payment reference/description.',
                    f"Your order is confirmed once the transfer is checked (within {self.instructions_hours} hours).",
                ],
            },
        )

    def verify(self, reference: str) -> Verification:
        """There is nothing to ask: a transfer stays PENDING until an operator settles it."""
        return Verification(outcome=PaymentOutcome.PENDING, reference=reference, raw_status="awaiting_confirmation")
