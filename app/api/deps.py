from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from app.core.database import get_db
from app.core.security import decode_access_token
from app.gateways import GatewayRegistry
from app.services.checkout import CheckoutOrchestrator
from app.services.errors import GatewayNotConfigured, Unauthorized
from app.services.notifier import EmailNotifier
from app.services.reconciliation import ReconciliationHandler

security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int:
    """Identity comes from the token only; it is passed on explicitly to every service call."""
    if not credentials:
        raise Unauthorized("Authentication required.")
    owner_id = decode_access_token(credentials.credentials)
    if owner_id is None:
        raise Unauthorized("Invalid or expired token.")
    return owner_id


def get_registry(request: Request) -> GatewayRegistry:
    registry = getattr(request.app.state, "gateways", None)
    if registry is None:
        raise GatewayNotConfigured("Payment gateways are not initialised.")
    return registry


def get_notifier() -> EmailNotifier:
    return EmailNotifier()


def get_client_ip(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip() or ""
    return request.client.host if request.client else ""


def get_orchestrator(
    db: Session = Depends(get_db),
    registry: GatewayRegistry = Depends(get_registry),
    notifier: EmailNotifier = Depends(get_notifier),
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(db, registry, notifier)


def get_reconciler(
    db: Session = Depends(get_db),
    registry: GatewayRegistry = Depends(get_registry),
    notifier: EmailNotifier = Depends(get_notifier),
) -> ReconciliationHandler:
    return ReconciliationHandler(db, registry, notifier)
