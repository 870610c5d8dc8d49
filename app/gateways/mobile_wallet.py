"""OPay cashier: public key creates orders, private key signs status queries and webhooks."""
import logging

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

log = logging.getLogger("storefront.gateways.opay")

OPAY_OK = "00000"

# CLOSE is counted as paid but flagged for audit until its meaning is confirmed with OPay
_STATUS_MAP = {
    "SUCCESS": PaymentOutcome.SUCCESS,
    "CLOSE": PaymentOutcome.SUCCESS,
    "FAIL": PaymentOutcome.FAILED,
    "FAILED": PaymentOutcome.FAILED,
    "INITIAL": PaymentOutcome.PENDING,
    "PENDING": PaymentOutcome.PENDING,
}


class MobileWalletGateway(GatewayAdapter):
    method = PaymentMethod.OPAY
    provider = "opay"
    signature_header = "x-opay-signature"

    def __init__(
        self,
        public_key: str,
        private_key: str,
        merchant_id: str,
        base_url: str = "https://testapi.opaycheckout.com",
        country: str = "NG",
        return_url: str = "",
        callback_url: str = "",
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.public_key = public_key
        self.private_key = private_key
        self.merchant_id = merchant_id
        self.base_url = base_url.rstrip("/")
        self.country = country
        self.return_url = return_url
        self.callback_url = callback_url

    def initiate(self, charge: Charge, customer: Customer) -> PaymentHandle:
        payload = {
            "country": self.country,
            "reference": charge.reference,
            "amount": {"total": charge.amount, "currency": charge.currency},
            "returnUrl": self.return_url,
            "callbackUrl": self.callback_url,
            "expireAt": 30,
            "userInfo": {
                "userId": str(customer.owner_id),
                "userName": customer.full_name or customer.email,
                "userMobile": customer.phone or "",
                "userEmail": customer.email,
            },
            "product": {"name": charge.description[:60], "description": charge.description},
        }
        result = self.transport(
            "POST",
            f"{self.base_url}/api/v1/international/cashier/create",
            body=canonical_json(payload),
            headers={"Authorization": f"Bearer {self.public_key}", "MerchantId": self.merchant_id},
            timeout=self.timeout,
        )
        if result.get("code") != OPAY_OK:
            raise GatewayRejected(
                f"OPay rejected the payment: {result.get('message') or 'unknown error'} (code {result.get('code')})"
            )
        data = result.get("data") or {}
        if not data.get("cashierUrl"):
            raise GatewayUnavailable("OPay response had no cashierUrl")
        return PaymentHandle(
            reference=data.get("reference") or charge.reference,
            redirect_url=data["cashierUrl"],
            provider_order_id=data.get("orderNo"),
        )

    def verify(self, reference: str) -> Verification:
        body = canonical_json({"country": self.country, "reference": reference})
        result = self.transport(
            "POST",
            f"{self.base_url}/api/v1/international/cashier/status",
            body=body,
            headers={
                "Authorization": f"Bearer {hmac_sha512_hex(self.private_key, body)}",
                "MerchantId": self.merchant_id,
            },
            timeout=self.timeout,
        )
        if result.get("code") != OPAY_OK:
            raise GatewayRejected(f"OPay status query failed: {result.get('message') or result.get('code')}")
        data = result.get("data") or {}
        raw = str(data.get("status") or "").upper()
        if raw not in _STATUS_MAP:
            log.warning("opay: unknown status %r for %s, treating as PENDING", raw, reference)
        amount = (data.get("amount") or {}).get("total") if isinstance(data.get("amount"), dict) else None
        return Verification(
            outcome=_STATUS_MAP.get(raw, PaymentOutcome.PENDING),
            reference=data.get("reference") or reference,
            provider_order_id=data.get("orderNo"),
            raw_status=raw,
            amount=amount,
            needs_audit=raw == "CLOSE",
        )

    def validate_signature(self, raw_body: bytes, signature_header: str | None) -> bool:
        return signatures_match(hmac_sha512_hex(self.private_key, raw_body), signature_header)

    def parse_webhook(self, raw_body: bytes) -> WebhookEvent:
        body = self._load_json(raw_body)
        # Documented shape nests the fields under "payload"; some deliveries are flat
        data = body.get("payload") if isinstance(body.get("payload"), dict) else body
        reference = data.get("reference")
        if not reference:
            raise ValidationError("OPay webhook without a reference")
        raw = str(data.get("status") or "").upper()
        return WebhookEvent(
            reference=str(reference),
            claimed_outcome=_STATUS_MAP.get(raw, PaymentOutcome.PENDING),
            provider_order_id=data.get("transactionId") or data.get("orderNo"),
            event_type=body.get("type"),
            raw_status=raw,
        )
