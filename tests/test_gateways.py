"""Gateway adapters: signing, status mapping, key separation, startup key validation, registry."""
import json

import pytest

from app.core.config import GatewayConfigError, Settings, validate_gateway_settings
from app.gateways import GatewayRegistry, ManualBankTransferGateway, build_registry
from app.gateways.base import Charge, Customer, PaymentMethod, PaymentOutcome
from app.gateways.card import CardGateway
from app.gateways.mobile_wallet import MobileWalletGateway
from app.gateways.signing import canonical_json, hmac_sha512_hex, signatures_match
from app.services.errors import GatewayNotConfigured, GatewayRejected, NotFound, ValidationError

CUSTOMER = Customer(owner_id=1, email="buyer@example.com", full_name="Ada Buyer", phone="+2348030000000")
CHARGE = Charge(reference="PAY-1", amount=6500, currency="NGN", description="Order ORD-1", order_id=1, order_number="ORD-1")


class Replay:
    """Transport returning a canned response and recording the request."""

    def __init__(self, response):
        self.response = response
        self.requests = []

    def __call__(self, method, url, *, body=None, headers=None, timeout=30.0):
        self.requests.append({"method": method, "url": url, "body": body, "headers": headers or {}, "timeout": timeout})
        return self.response


def _card(response):
    transport = Replay(response)
    return CardGateway("sk_request", "wh_signing", transport=transport, timeout=12.5), transport


def _opay(response):
    transport = Replay(response)
    gw = MobileWalletGateway("PUB_request", "PRV_signing", "MERCHANT1", transport=transport)
    return gw, transport


def test_signatures_match_is_strict():
    sig = hmac_sha512_hex("secret", b"{}")
    assert signatures_match(sig, sig.upper())
    assert not signatures_match(sig, None)
    assert not signatures_match(sig, "")
    assert not signatures_match(sig, sig[:-1] + ("0" if sig[-1] != "0" else "1"))


def test_canonical_json_is_compact():
    assert canonical_json({"a": 1, "b": "x"}) == b'{"a":1,"b":"x"}'


def test_card_initiate_uses_request_key_and_timeout():
    gw, transport = _card({"status": True, "data": {"authorization_url": "https://pay/x", "access_code": "AC1"}})
    handle = gw.initiate(CHARGE, CUSTOMER)
    assert handle.redirect_url == "https://pay/x"
    assert handle.reference == "PAY-1"
    req = transport.requests[0]
    assert req["headers"]["Authorization"] == "Bearer sk_request"
    assert req["timeout"] == 12.5
    assert json.loads(req["body"])["amount"] == 6500


def test_card_initiate_rejected():
    gw, _ = _card({"status": False, "message": "Invalid email"})
    with pytest.raises(GatewayRejected):
        gw.initiate(CHARGE, CUSTOMER)


@pytest.mark.parametrize(
    "raw,outcome",
    [
        ("success", PaymentOutcome.SUCCESS),
        ("failed", PaymentOutcome.FAILED),
        ("reversed", PaymentOutcome.FAILED),
        ("abandoned", PaymentOutcome.PENDING),
        ("ongoing", PaymentOutcome.PENDING),
        ("something-new", PaymentOutcome.PENDING),
    ],
)
def test_card_verify_status_mapping(raw, outcome):
    gw, _ = _card({"status": True, "data": {"id": 42, "reference": "PAY-1", "status": raw, "amount": 6500}})
    v = gw.verify("PAY-1")
    assert v.outcome == outcome
    assert v.provider_order_id == "42"


def test_card_webhook_signed_with_webhook_secret_only():
    gw, _ = _card({})
    body = b'{"event":"charge.success","data":{"reference":"PAY-1","id":42}}'
    assert gw.validate_signature(body, hmac_sha512_hex("wh_signing", body))
    assert not gw.validate_signature(body, hmac_sha512_hex("sk_request", body))
    event = gw.parse_webhook(body)
    assert event.reference == "PAY-1"
    assert event.claimed_outcome == PaymentOutcome.SUCCESS


def test_card_webhook_without_reference_is_parse_error():
    gw, _ = _card({})
    with pytest.raises(ValidationError):
        gw.parse_webhook(b'{"event":"charge.success","data":{}}')
    with pytest.raises(ValidationError):
        gw.parse_webhook(b"not json")


def test_opay_initiate_uses_public_key():
    gw, transport = _opay({"code": "00000", "data": {"cashierUrl": "https://cashier/x", "orderNo": "OP1"}})
    handle = gw.initiate(CHARGE, CUSTOMER)
    assert handle.redirect_url == "https://cashier/x"
    assert handle.provider_order_id == "OP1"
    assert transport.requests[0]["headers"]["Authorization"] == "Bearer PUB_request"
    assert transport.requests[0]["headers"]["MerchantId"] == "MERCHANT1"


def test_opay_verify_signs_body_with_private_key():
    gw, transport = _opay({"code": "00000", "data": {"reference": "PAY-1", "status": "SUCCESS"}})
    gw.verify("PAY-1")
    req = transport.requests[0]
    assert req["headers"]["Authorization"] == f"Bearer {hmac_sha512_hex('PRV_signing', req['body'])}"
    assert req["headers"]["Authorization"] != "Bearer PUB_request"


def test_opay_close_counts_as_success_but_needs_audit():
    gw, _ = _opay({"code": "00000", "data": {"reference": "PAY-1", "status": "CLOSE", "orderNo": "OP1"}})
    v = gw.verify("PAY-1")
    assert v.outcome == PaymentOutcome.SUCCESS
    assert v.needs_audit is True
    gw, _ = _opay({"code": "00000", "data": {"reference": "PAY-1", "status": "SUCCESS"}})
    assert gw.verify("PAY-1").needs_audit is False


def test_opay_error_code_is_rejection():
    gw, _ = _opay({"code": "02000", "message": "authentication failed"})
    with pytest.raises(GatewayRejected):
        gw.initiate(CHARGE, CUSTOMER)


def test_opay_webhook_nested_and_flat_shapes():
    gw, _ = _opay({})
    nested = gw.parse_webhook(b'{"type":"transaction-status","payload":{"reference":"PAY-1","status":"SUCCESS"}}')
    flat = gw.parse_webhook(b'{"reference":"PAY-1","status":"FAIL"}')
    assert nested.claimed_outcome == PaymentOutcome.SUCCESS
    assert flat.claimed_outcome == PaymentOutcome.FAILED


def test_bank_transfer_returns_static_details_and_never_settles():
    gw = ManualBankTransferGateway([{"bank_name": "B", "account_name": "S", "account_number": "1", "sort_code": None}])
    handle = gw.initiate(CHARGE, CUSTOMER)
    assert handle.redirect_url is None
    assert handle.instructions["payment_reference"] == "PAY-1"
    assert handle.instructions["bank_details"][0]["account_number"] == "1"
    assert gw.verify("PAY-1").outcome == PaymentOutcome.PENDING
    with pytest.raises(GatewayNotConfigured):
        ManualBankTransferGateway([]).initiate(CHARGE, CUSTOMER)


def test_half_configured_pair_is_startup_error():
    with pytest.raises(GatewayConfigError):
        validate_gateway_settings(Settings(paystack_secret_key="sk_x", paystack_webhook_secret=""))
    with pytest.raises(GatewayConfigError):
        validate_gateway_settings(Settings(opay_public_key="", opay_private_key="PRV"))


def test_same_key_twice_is_startup_error():
    with pytest.raises(GatewayConfigError):
        validate_gateway_settings(Settings(paystack_secret_key="same", paystack_webhook_secret=" same "))


def test_unset_pair_disables_gateway():
    cfg = Settings(
        paystack_secret_key="",
        paystack_webhook_secret="",
        opay_public_key="",
        opay_private_key="",
        bank_one_account_number="",
    )
    assert validate_gateway_settings(cfg) == {"paystack": False, "opay": False}
    registry = build_registry(cfg, lambda: None)
    assert registry.enabled() == ["wallet"]
    with pytest.raises(GatewayNotConfigured):
        registry.get("paystack")
    # No account configured means no bank transfer at all
    with pytest.raises(GatewayNotConfigured):
        registry.get("bank_transfer")


def test_registry_rejects_unknown_method_and_provider():
    registry = GatewayRegistry([ManualBankTransferGateway([])])
    with pytest.raises(ValidationError):
        registry.get("cash")
    with pytest.raises(NotFound):
        registry.for_provider("bank_transfer")
    assert registry.get(PaymentMethod.BANK_TRANSFER).provider == "bank_transfer"
