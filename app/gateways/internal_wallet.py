"""Pays an order from the customer's own wallet balance. Settles synchronously."""
from typing import Callable

from sqlmodel import Session

from app.gateways.base import (
    Charge,
    Customer,
    GatewayAdapter,
    PaymentHandle,
    PaymentMethod,
    PaymentOutcome,
    Verification,
)
from app.models import WalletTransactionStatus, WalletTransactionType
from app.services.errors import InsufficientFunds
from app.services.wallet import WalletLedger

_STATUS_MAP = {
    WalletTransactionStatus.SUCCESS: PaymentOutcome.SUCCESS,
    WalletTransactionStatus.FAILED: PaymentOutcome.FAILED,
    WalletTransactionStatus.PENDING: PaymentOutcome.PENDING,
}


class InternalWalletGateway(GatewayAdapter):
    method = PaymentMethod.WALLET
    provider = "wallet"

    def __init__(self, session_factory: Callable[[], Session], **kwargs):
        super().__init__(**kwargs)
        self.session_factory = session_factory

    def initiate(self, charge: Charge, customer: Customer) -> PaymentHandle:
        """Debits in its own short transaction; the reference doubles as the debit's idempotency key."""
        with self.session_factory() as db:
            ledger = WalletLedger(db)
            wallet = ledger.get_wallet(customer.owner_id)
            if wallet is None:
                raise InsufficientFunds(f"Insufficient wallet balance: 0 available, {charge.amount} required.")
            try:
                txn = ledger.debit(
                    wallet.id,
                    charge.amount,
                    charge.reference,
                    owner_id=customer.owner_id,
                    description=charge.description,
                    meta={"order_id": charge.order_id, "order_number": charge.order_number},
                )
                db.commit()
            except Exception:
                db.rollback()
                raise
            return PaymentHandle(
                reference=charge.reference,
                provider_order_id=f"wallet-{txn.id}",
                instructions={"wallet_balance": txn.balance_after, "amount_debited": txn.amount},
            )

    def verify(self, reference: str) -> Verification:
        """State of the debit row; no row yet means the debit has not happened."""
        with self.session_factory() as db:
            txn = WalletLedger(db).find_transaction(reference)
            if txn is None or txn.type != WalletTransactionType.DEBIT:
                return Verification(outcome=PaymentOutcome.PENDING, reference=reference, raw_status="missing")
            return Verification(
                outcome=_STATUS_MAP[txn.status],
                reference=reference,
                provider_order_id=f"wallet-{txn.id}",
                raw_status=txn.status.value,
                amount=txn.amount,
            )
