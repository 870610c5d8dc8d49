"""Gateway adapter contract and the value types that cross it."""
from __future__ import annotations

import json
from enum import Enum
from typing import Callable, NamedTuple

from app.gateways.http import request_json
from app.services.errors import ValidationError


class PaymentMethod(str, Enum):
    PAYSTACK = "paystack"  # card
    OPAY = "opay"  # mobile wallet
    WALLET = "wallet"  # internal wallet balance
    BANK_TRANSFER = "bank_transfer"


class PaymentOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"


class Customer(NamedTuple):
    owner_id: int
    email: str
    full_name: str = ""
    phone: str | None = None


class Charge(NamedTuple):
    """What is being paid for: an order or a wallet top-up."""

    reference: str
    amount: int  # minor units
    currency: str
    description: str
    order_id: int | None = None
    order_number: str | None = None
    metadata: dict | None = None


class PaymentHandle(NamedTuple):
    reference: str
    redirect_url: str | None = None
    provider_order_id: str | None = None
    instructions: dict | None = None


class Verification(NamedTuple):
    outcome: PaymentOutcome
    reference: str
    provider_order_id: str | None = None
    raw_status: str | None = None
    amount: int | None = None
    needs_audit: bool = False


class WebhookEvent(NamedTuple):
    reference: str
    claimed_outcome: PaymentOutcome
    provider_order_id: str | None = None
    event_type: str | None = None
    raw_status: str | None = None


Transport = Callable[..., dict]


class GatewayAdapter:
    """
    One external payment provider.

    initiate() is called at most once per successful attempt; the reference it returns is the
    only correlation key reconciliation uses. verify() asks the provider for the current state and
    never changes anything on the provider side.
    """

    method: PaymentMethod
    provider: str = ""
    signature_header: str | None = None
    # False for methods that are only ever settled by an operator
    live_verification: bool = True

    def __init__(self, transport: Transport | None = None, timeout: float = 30.0):
        self.transport = transport or request_json
        self.timeout = timeout

    def initiate(self, charge: Charge, customer: Customer) -> PaymentHandle:
        raise NotImplementedError

    def verify(self, reference: str) -> Verification:
        raise NotImplementedError

    def validate_signature(self, raw_body: bytes, signature_header: str | None) -> bool:
        return False

    def parse_webhook(self, raw_body: bytes) -> WebhookEvent:
        raise ValidationError(f"{self.method.value} does not accept webhooks")

    @staticmethod
    def _load_json(raw_body: bytes) -> dict:
        try:
            data = json.loads(raw_body.decode() or "{}")
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError("Webhook body is not valid JSON") from e
        if not isinstance(data, dict):
            raise ValidationError("Webhook body must be a JSON object")
        return data
