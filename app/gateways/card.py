"""Paystack card payments: transaction initialize / verify, x-paystack-signature webhooks."""
import logging
from urllib.parse import quote

from app.gateways.base import (
    Charge,
    Customer,
    GatewayAdapter,
    PaymentHandle,
    PaymentMethod,
    PaymentOutcome,
    Verification,
    WebhookEvent,
)
from app.gateways.signing import canonical_json, hmac_sha512_hex, signatures_match
from app.services.errors import GatewayRejected, GatewayUnavailable, ValidationError

log = logging.getLogger("storefront.gateways.paystack")

# Paystack transaction status -> outcome. "abandoned" means the customer has not finished yet.
_STATUS_MAP = {
    "success": PaymentOutcome.SUCCESS,
    "failed": PaymentOutcome.FAILED,
    "reversed": PaymentOutcome.FAILED,
    "abandoned": PaymentOutcome.PENDING,
    "pending": PaymentOutcome.PENDING,
    "ongoing": PaymentOutcome.PENDING,
    "processing": PaymentOutcome.PENDING,
    "queued": PaymentOutcome.PENDING,
}

_EVENT_MAP = {
    "charge.success": PaymentOutcome.SUCCESS,
    "charge.failed": PaymentOutcome.FAILED,
}


class CardGateway(GatewayAdapter):
    """
    secret_key authenticates API calls; webhook_secret only validates inbound callbacks.
    The two are never substituted for each other.
    """

    method = PaymentMethod.PAYSTACK
    provider = "paystack"
    signature_header = "x-paystack-signature"

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        base_url: str = "https://api.paystack.co",
        callback_url: str = "",
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.secret_key}"}

    def initiate(self, charge: Charge, customer: Customer) -> PaymentHandle:
        if not customer.email:
            raise ValidationError("An email address is required for card payments.")
        first, _, last = (customer.full_name or "").partition(" ")
        payload = {
            "reference": charge.reference,
            "amount": charge.amount,
            "currency": charge.currency,
            "email": customer.email,
            "first_name": first or customer.email.split("@")[0],
            "last_name": last,
            "metadata": {
                "owner_id": customer.owner_id,
                "order_id": charge.order_id,
                "order_number": charge.order_number,
                **(charge.metadata or {}),
            },
        }
        if customer.phone:
            payload["phone"] = customer.phone
        if self.callback_url:
            payload["callback_url"] = self.callback_url
        result = self.transport(
            "POST",
            f"{self.base_url}/transaction/initialize",
            body=canonical_json(payload),
            headers=self._headers(),
            timeout=self.timeout,
        )
        if not result.get("status"):
            raise GatewayRejected(result.get("message") or "Paystack could not initialize the payment.")
        data = result.get("data") or {}
        url = data.get("authorization_url")
        if not url:
            raise GatewayUnavailable("Paystack response had no authorization_url")
        return PaymentHandle(
            reference=data.get("reference") or charge.reference,
            redirect_url=url,
            provider_order_id=data.get("access_code"),
        )

    def verify(self, reference: str) -> Verification:
        result = self.transport(
            "GET",
            f"{self.base_url}/transaction/verify/{quote(reference, safe='')}",
            headers=self._headers(),
            timeout=self.timeout,
        )
        if not result.get("status"):
            raise GatewayRejected(result.get("message") or "Paystack verification failed.")
        data = result.get("data") or {}
        raw = str(data.get("status") or "").lower()
        outcome = _STATUS_MAP.get(raw, PaymentOutcome.PENDING)
        if raw not in _STATUS_MAP:
            log.warning("paystack: unknown transaction status %r for %s, treating as PENDING", raw, reference)
        provider_id = data.get("id")
        return Verification(
            outcome=outcome,
            reference=data.get("reference") or reference,
            provider_order_id=str(provider_id) if provider_id is not None else None,
            raw_status=raw,
            amount=data.get("amount"),
        )

    def validate_signature(self, raw_body: bytes, signature_header: str | None) -> bool:
        return signatures_match(hmac_sha512_hex(self.webhook_secret, raw_body), signature_header)

    def parse_webhook(self, raw_body: bytes) -> WebhookEvent:
        body = self._load_json(raw_body)
        event = str(body.get("event") or "")
        data = body.get("data") or {}
        reference = data.get("reference")
        if not reference:
            raise ValidationError("Paystack webhook without a reference")
        provider_id = data.get("id")
        return WebhookEvent(
            reference=str(reference),
            claimed_outcome=_EVENT_MAP.get(event, PaymentOutcome.PENDING),
            provider_order_id=str(provider_id) if provider_id is not None else None,
            event_type=event,
            raw_status=data.get("status"),
        )
