"""Pytest fixtures: test client, in-memory SQLite, users, catalog and a stubbed gateway API."""
import json
import os
from urllib.parse import unquote

import pytest
from fastapi.testclient import TestClient

# In-memory SQLite and fixed gateway keys (must be set before the app is imported)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_request_key")
os.environ.setdefault("PAYSTACK_WEBHOOK_SECRET", "whsec_test_signing_key")
os.environ.setdefault("OPAY_PUBLIC_KEY", "OPAYPUB_test_request_key")
os.environ.setdefault("OPAY_PRIVATE_KEY", "OPAYPRV_test_signing_key")
os.environ.setdefault("OPAY_MERCHANT_ID", "256600000000001")
os.environ.setdefault("BANK_ONE_NAME", "First Test Bank")
os.environ.setdefault("BANK_ONE_ACCOUNT_NAME", "Storefront Ltd")
os.environ.setdefault("BANK_ONE_ACCOUNT_NUMBER", "0123456789")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("DELIVERY_FLAT_FEE", "1000")
os.environ.setdefault("TAX_RATE_BPS", "0")
os.environ.setdefault("SMTP_HOST", "")
# High enough that the whole suite never trips it; the rate limit test lowers it
os.environ.setdefault("RATE_LIMIT_CHECKOUT_PER_MINUTE", "1000")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")

from sqlmodel import Session, SQLModel  # noqa: E402

from app.api.deps import get_notifier, get_registry  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.core.database import engine, init_db, session_factory  # noqa: E402
from app.core.rate_limit import limiter  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.gateways import build_registry  # noqa: E402
from app.gateways.signing import hmac_sha512_hex  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Product, User  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Secret": "test-admin-secret"}

SHIPPING = {"full_name": "Ada Buyer", "line1": "12 Marina Road", "city": "Lagos", "state": "Lagos", "country": "NG"}


class FakeGatewayAPI:
    """
    Stands in for the HTTP transport of the Paystack and OPay adapters.
    Provider-side status per reference is set by the test; unknown references are still pending.
    """

    def __init__(self):
        self.calls = []
        self.paystack_status = {}
        self.opay_status = {}
        self.amounts = {}
        self.fail_with = None
        # Reference the provider echoes back from initialize, when it is not the one sent
        self.echo_reference = None

    def __call__(self, method, url, *, body=None, headers=None, timeout=30.0):
        self.calls.append({"method": method, "url": url, "body": body, "headers": headers or {}})
        if self.fail_with is not None:
            raise self.fail_with
        payload = json.loads(body.decode()) if body else {}
        if url.endswith("/transaction/initialize"):
            ref = payload["reference"]
            return {
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": f"https://checkout.paystack.test/{ref}",
                    "access_code": f"AC_{ref}",
                    "reference": self.echo_reference or ref,
                },
            }
        if "/transaction/verify/" in url:
            ref = unquote(url.rsplit("/", 1)[1])
            return {
                "status": True,
                "data": {
                    "id": 7001,
                    "reference": ref,
                    "status": self.paystack_status.get(ref, "abandoned"),
                    "amount": self.amounts.get(ref),
                },
            }
        if url.endswith("/cashier/create"):
            ref = payload["reference"]
            return {
                "code": "00000",
                "message": "SUCCESSFUL",
                "data": {"reference": ref, "orderNo": f"OP{ref}", "cashierUrl": f"https://cashier.opay.test/{ref}"},
            }
        if url.endswith("/cashier/status"):
            ref = payload["reference"]
            return {
                "code": "00000",
                "data": {"reference": ref, "orderNo": f"OP{ref}", "status": self.opay_status.get(ref, "INITIAL")},
            }
        raise AssertionError(f"unexpected gateway call {method} {url}")

    def count(self, suffix: str) -> int:
        return sum(1 for c in self.calls if suffix in c["url"])


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def order_confirmed(self, order, invoice, email):
        self.sent.append(("order_confirmed", order.order_number, email))
        return True

    def payment_failed(self, order, email):
        self.sent.append(("payment_failed", order.order_number, email))
        return True

    def wallet_credited(self, txn, email):
        self.sent.append(("wallet_credited", txn.reference, email))
        return True


def paystack_signature(body: bytes) -> str:
    return hmac_sha512_hex(settings.paystack_webhook_secret, body)


def opay_signature(body: bytes) -> str:
    return hmac_sha512_hex(settings.opay_private_key, body)


@pytest.fixture(scope="session", autouse=True)
def _schema():
    init_db()
    yield


@pytest.fixture(autouse=True)
def _clean_tables():
    """Every test starts from empty tables and fresh rate limit counters."""
    yield
    with Session(engine) as s:
        for table in reversed(SQLModel.metadata.sorted_tables):
            s.connection().execute(table.delete())
        s.commit()
    limiter.reset()
    app.dependency_overrides.clear()


@pytest.fixture
def fake_api():
    return FakeGatewayAPI()


@pytest.fixture
def registry(fake_api):
    reg = build_registry(settings, session_factory)
    for adapter in reg._by_method.values():
        adapter.transport = fake_api
    return reg


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(registry, notifier):
    """TestClient with the stubbed registry and notifier injected."""
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    with Session(engine) as s:
        yield s


def _make_user(email: str, full_name: str) -> User:
    with Session(engine) as s:
        user = User(email=email, full_name=full_name, phone="+2348030000000")
        s.add(user)
        s.commit()
        s.refresh(user)
        return user


@pytest.fixture
def user():
    return _make_user("buyer@example.com", "Ada Buyer")


@pytest.fixture
def other_user():
    return _make_user("someone@example.com", "Other Person")


def headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def auth_headers(user):
    return headers_for(user)


@pytest.fixture
def products():
    """A: 1500 x 500g, B: 2500 x 1kg, C: unit-priced, D: inactive."""
    with Session(engine) as s:
        rows = {
            "A": Product(name="Palm Oil 1L", sku="PO-1L", price=1500, weight_grams=500),
            "B": Product(name="Garri 2kg", sku="GR-2KG", price=2500, weight_grams=1000),
            "C": Product(
                name="Rice",
                sku="RICE",
                price=None,
                unit_prices=[{"unit": "kg", "price": 2000}, {"unit": "Bag", "price": 9000}],
                weight_grams=1000,
            ),
            "D": Product(name="Old Stock", sku="OLD", price=900, weight_grams=300, is_active=False),
        }
        for p in rows.values():
            s.add(p)
        s.commit()
        for p in rows.values():
            s.refresh(p)
        return {k: p.id for k, p in rows.items()}


@pytest.fixture
def cart_body(products):
    """Two of A and one of B: subtotal 5500, flat delivery 1000, total 6500."""

    def build(method: str, **extra) -> dict:
        body = {
            "items": [
                {"product_id": products["A"], "quantity": 2},
                {"product_id": products["B"], "quantity": 1},
            ],
            "shipping_address": SHIPPING,
            "payment_method": method,
        }
        body.update(extra)
        return body

    return build
