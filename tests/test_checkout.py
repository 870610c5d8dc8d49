"""Checkout orchestration over HTTP: pricing from the catalog, linked records, gateway dispatch."""
from sqlmodel import select

from app.api.deps import get_registry
from app.core.config import settings
from app.core.database import session_factory
from app.gateways import build_registry
from app.main import app
from app.models import (
    CartItem,
    Checkout,
    Coupon,
    Invoice,
    Order,
    OrderStatus,
    PaymentStatus,
    Wallet,
)
from app.services.errors import GatewayUnavailable
from app.services.wallet import WalletLedger
from tests.conftest import ADMIN_HEADERS, SHIPPING, headers_for


def _fund_wallet(db, owner_id, amount):
    ledger = WalletLedger(db)
    wallet = ledger.get_or_create_wallet(owner_id)
    ledger.credit(wallet.id, amount, f"SEED-{owner_id}")
    db.commit()
    return wallet.id


def test_checkout_requires_auth(client, cart_body):
    r = client.post("/checkout", json=cart_body("paystack"))
    assert r.status_code == 401
    assert r.json()["code"] == "unauthorized"


def test_card_checkout_creates_pending_records(client, auth_headers, cart_body, fake_api, db):
    r = client.post("/checkout", json=cart_body("paystack"), headers=auth_headers)
    assert r.status_code == 201, r.text
    j = r.json()
    order = j["order"]
    assert order["subtotal"] == 5500
    assert order["shipping_fee"] == 1000
    assert order["total"] == 6500
    assert order["total"] == order["subtotal"] + order["tax"] + order["shipping_fee"] - order["discount"]
    assert (order["status"], order["payment_status"]) == ("PENDING", "PENDING")
    assert order["order_number"].startswith("ORD-")
    assert len(order["items"]) == 2

    invoice = j["invoice"]
    assert (invoice["status"], invoice["payment_status"]) == ("SENT", "PENDING")
    assert invoice["paid_amount"] + invoice["balance_amount"] == invoice["total_amount"] == 6500

    assert j["checkout"]["order_id"] == order["id"]
    assert j["checkout"]["status"] == "PENDING"
    assert j["payment_instructions"]["redirect_url"].startswith("https://checkout.paystack.test/")
    assert j["payment_instructions"]["reference"] == order["payment_reference"]
    assert fake_api.count("/transaction/initialize") == 1


def test_client_prices_are_ignored(client, auth_headers, products):
    body = {
        "items": [{"product_id": products["A"], "quantity": 1, "unit_price": 1}],
        "shipping_address": SHIPPING,
        "payment_method": "bank_transfer",
    }
    r = client.post("/checkout", json=body, headers=auth_headers)
    assert r.status_code == 201, r.text
    assert r.json()["order"]["items"][0]["unit_price"] == 1500


def test_unit_priced_item(client, auth_headers, products):
    body = {
        "items": [{"product_id": products["C"], "quantity": 2, "selected_unit": "KG"}],
        "shipping_address": SHIPPING,
        "payment_method": "bank_transfer",
    }
    r = client.post("/checkout", json=body, headers=auth_headers)
    assert r.status_code == 201, r.text
    assert r.json()["order"]["subtotal"] == 4000


def test_inactive_product_is_unavailable(client, auth_headers, products, db):
    body = {
        "items": [{"product_id": products["D"], "quantity": 1}],
        "shipping_address": SHIPPING,
        "payment_method": "paystack",
    }
    r = client.post("/checkout", json=body, headers=auth_headers)
    assert r.status_code == 400
    assert r.json()["code"] == "item_unavailable"
    assert db.exec(select(Order)).first() is None


def test_unknown_payment_method(client, auth_headers, cart_body, db):
    r = client.post("/checkout", json=cart_body("cash"), headers=auth_headers)
    assert r.status_code == 400
    assert "Supported methods" in r.json()["error"]
    assert db.exec(select(Checkout)).first() is None


def test_invalid_coupon_is_a_warning(client, auth_headers, cart_body):
    r = client.post("/checkout", json=cart_body("bank_transfer", coupon_code="NOPE"), headers=auth_headers)
    assert r.status_code == 201
    assert r.json()["coupon_warning"] == "Invalid coupon code."
    assert r.json()["order"]["discount"] == 0


def test_valid_coupon_discount(client, auth_headers, cart_body, db):
    db.add(Coupon(code="SAVE10", discount_type="percent", discount_value=10))
    db.commit()
    r = client.post("/checkout", json=cart_body("bank_transfer", coupon_code="save10"), headers=auth_headers)
    order = r.json()["order"]
    assert order["discount"] == 550
    assert order["total"] == 5950


def test_bank_transfer_returns_static_details(client, auth_headers, cart_body, fake_api):
    r = client.post("/checkout", json=cart_body("bank_transfer"), headers=auth_headers)
    assert r.status_code == 201
    j = r.json()
    instructions = j["payment_instructions"]["instructions"]
    assert instructions["bank_details"][0]["account_number"] == "0123456789"
    assert instructions["payment_reference"] == j["order"]["payment_reference"]
    assert j["invoice"]["due_at"] is not None
    assert (j["order"]["status"], j["order"]["payment_status"]) == ("PENDING", "PENDING")
    assert fake_api.calls == []


def test_bank_transfer_without_accounts_is_refused_before_persisting(client, auth_headers, cart_body, db):
    cfg = settings.model_copy(update={"bank_one_account_number": "", "bank_two_account_number": ""})
    app.dependency_overrides[get_registry] = lambda: build_registry(cfg, session_factory)
    r = client.post("/checkout", json=cart_body("bank_transfer"), headers=auth_headers)
    assert r.status_code == 503
    assert r.json()["code"] == "gateway_not_configured"
    assert db.exec(select(Checkout)).all() == []
    assert db.exec(select(Order)).all() == []
    assert db.exec(select(Invoice)).all() == []
    assert client.get("/admin/payments/bank-transfers", headers=ADMIN_HEADERS).json() == []


def test_wallet_checkout_settles_immediately(client, user, auth_headers, cart_body, db, notifier):
    wallet_id = _fund_wallet(db, user.id, 10000)
    r = client.post("/checkout", json=cart_body("wallet"), headers=auth_headers)
    assert r.status_code == 201, r.text
    j = r.json()
    assert (j["order"]["status"], j["order"]["payment_status"]) == ("CONFIRMED", "PAID")
    assert j["checkout"]["status"] == "COMPLETED"
    assert j["invoice"]["status"] == "PAID"
    assert j["invoice"]["balance_amount"] == 0
    assert j["payment_instructions"]["instructions"]["wallet_balance"] == 3500
    db.expire_all()
    assert db.get(Wallet, wallet_id).balance == 3500
    assert notifier.sent[0][0] == "order_confirmed"


def test_wallet_insufficient_funds_leaves_order_pending(client, user, auth_headers, cart_body, db):
    wallet_id = _fund_wallet(db, user.id, 5000)
    r = client.post("/checkout", json=cart_body("wallet"), headers=auth_headers)
    assert r.status_code == 400
    j = r.json()
    assert j["code"] == "insufficient_funds"
    order = db.get(Order, j["details"]["order_id"])
    assert (order.status, order.payment_status) == (OrderStatus.PENDING, PaymentStatus.PENDING)
    db.expire_all()
    assert db.get(Wallet, wallet_id).balance == 5000


def test_wallet_checkout_from_cart_clears_cart(client, user, auth_headers, products, db):
    _fund_wallet(db, user.id, 10000)
    db.add(CartItem(owner_id=user.id, product_id=products["A"], quantity=2))
    db.add(CartItem(owner_id=user.id, product_id=products["B"], quantity=1))
    db.commit()
    body = {"shipping_address": SHIPPING, "payment_method": "wallet", "from_cart": True}
    r = client.post("/checkout", json=body, headers=auth_headers)
    assert r.status_code == 201, r.text
    assert r.json()["order"]["total"] == 6500
    assert db.exec(select(CartItem).where(CartItem.owner_id == user.id)).all() == []


def test_card_checkout_from_cart_keeps_cart_until_paid(client, user, auth_headers, products, db):
    db.add(CartItem(owner_id=user.id, product_id=products["A"], quantity=1))
    db.commit()
    body = {"shipping_address": SHIPPING, "payment_method": "paystack", "from_cart": True}
    r = client.post("/checkout", json=body, headers=auth_headers)
    assert r.status_code == 201
    assert len(db.exec(select(CartItem).where(CartItem.owner_id == user.id)).all()) == 1


def test_gateway_down_then_retry_same_order(client, auth_headers, cart_body, fake_api, db):
    fake_api.fail_with = GatewayUnavailable("Payment provider unreachable")
    r = client.post("/checkout", json=cart_body("paystack"), headers=auth_headers)
    assert r.status_code == 503
    details = r.json()["details"]
    order = db.get(Order, details["order_id"])
    assert (order.status, order.payment_status) == (OrderStatus.PENDING, PaymentStatus.PENDING)

    fake_api.fail_with = None
    r = client.post(f"/checkout/{details['checkout_id']}/pay", headers=auth_headers)
    assert r.status_code == 200, r.text
    assert r.json()["order"]["id"] == details["order_id"]
    assert r.json()["payment_instructions"]["redirect_url"]
    # A stored redirect is replayed without a second provider call
    r = client.post(f"/checkout/{details['checkout_id']}/pay", headers=auth_headers)
    assert r.status_code == 200
    assert fake_api.count("/transaction/initialize") == 2  # the failed attempt + one success
    assert len(db.exec(select(Order)).all()) == 1


def test_initiate_answering_another_reference_is_rejected(client, auth_headers, cart_body, fake_api, db):
    fake_api.echo_reference = "PAY-SOMETHING-ELSE"
    r = client.post("/checkout", json=cart_body("paystack"), headers=auth_headers)
    assert r.status_code == 402
    j = r.json()
    assert j["code"] == "gateway_rejected"
    order = db.get(Order, j["details"]["order_id"])
    assert (order.status, order.payment_status) == (OrderStatus.PENDING, PaymentStatus.PENDING)
    assert order.redirect_url is None
    assert order.payment_reference != "PAY-SOMETHING-ELSE"


def test_retry_on_paid_order_is_conflict(client, user, auth_headers, cart_body, db):
    _fund_wallet(db, user.id, 10000)
    checkout_id = client.post("/checkout", json=cart_body("wallet"), headers=auth_headers).json()["checkout"]["id"]
    r = client.post(f"/checkout/{checkout_id}/pay", headers=auth_headers)
    assert r.status_code == 409
    assert r.json()["code"] == "state_conflict"


def test_get_and_list_checkouts_are_owner_scoped(client, auth_headers, other_user, cart_body):
    created = client.post("/checkout", json=cart_body("bank_transfer"), headers=auth_headers).json()
    client.post("/checkout", json=cart_body("paystack"), headers=auth_headers)
    cid = created["checkout"]["id"]

    r = client.get(f"/checkout/{cid}", headers=auth_headers)
    assert r.status_code == 200
    assert len(r.json()["items"]) == 2
    assert client.get(f"/checkout/{cid}", headers=headers_for(other_user)).status_code == 404

    page = client.get("/checkout?limit=1", headers=auth_headers).json()
    assert (page["total"], page["limit"], page["has_more"]) == (2, 1, True)
    assert len(page["items"]) == 1
    assert client.get("/checkout", headers=headers_for(other_user)).json()["total"] == 0


def test_abandon_cancels_order_and_voids_invoice(client, auth_headers, cart_body, db):
    created = client.post("/checkout", json=cart_body("paystack"), headers=auth_headers).json()
    cid = created["checkout"]["id"]
    r = client.patch(f"/checkout/{cid}", json={"status": "ABANDONED"}, headers=auth_headers)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "ABANDONED"
    assert r.json()["abandoned_at"] is not None
    db.expire_all()
    order = db.get(Order, created["order"]["id"])
    assert order.status == OrderStatus.CANCELLED
    invoice = db.exec(select(Invoice).where(Invoice.order_id == order.id)).one()
    assert invoice.status.value == "VOID"

    again = client.patch(f"/checkout/{cid}", json={"status": "ABANDONED"}, headers=auth_headers)
    assert again.status_code == 409


def test_patch_only_allows_abandon(client, auth_headers, cart_body):
    cid = client.post("/checkout", json=cart_body("paystack"), headers=auth_headers).json()["checkout"]["id"]
    r = client.patch(f"/checkout/{cid}", json={"status": "COMPLETED"}, headers=auth_headers)
    assert r.status_code == 422


def test_orders_and_invoice_reads(client, auth_headers, other_user, cart_body):
    created = client.post("/checkout", json=cart_body("bank_transfer"), headers=auth_headers).json()
    oid = created["order"]["id"]
    assert [o["id"] for o in client.get("/orders", headers=auth_headers).json()] == [oid]
    assert client.get(f"/orders/{oid}", headers=auth_headers).json()["order_number"] == created["order"]["order_number"]
    assert client.get(f"/orders/{oid}", headers=headers_for(other_user)).status_code == 404
    inv = client.get(f"/invoices/{oid}", headers=auth_headers).json()
    assert inv["invoice_number"].startswith("INV-")
    assert client.get(f"/invoices/{oid}", headers=headers_for(other_user)).status_code == 404
