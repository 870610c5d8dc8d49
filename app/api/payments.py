import logging

from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_current_user_id, get_reconciler
from app.api.views import verify_out
from app.core.rate_limit import limiter, verify_limit
from app.schemas import VerifyResponse
from app.services.reconciliation import ReconciliationHandler

log = logging.getLogger("storefront.payments")

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/verify/{reference}", response_model=VerifyResponse)
@limiter.limit(verify_limit)
def verify_payment(
    request: Request,
    reference: str,
    owner_id: int = Depends(get_current_user_id),
    reconciler: ReconciliationHandler = Depends(get_reconciler),
):
    """Asks the gateway again and applies the answer. Gateway errors surface as 503, nothing changes."""
    return verify_out(reconciler.verify_reference(owner_id, reference))


@router.get("/callback/{provider}", response_model=VerifyResponse)
@limiter.limit(verify_limit)
def payment_callback(
    request: Request,
    provider: str,
    reference: str = Query(..., min_length=1),
    owner_id: int = Depends(get_current_user_id),
    reconciler: ReconciliationHandler = Depends(get_reconciler),
):
    """Return leg of a provider redirect; same checks as /verify. The provider in the path is informational."""
    log.info("payment callback: provider=%s ref=%s owner=%s", provider, reference, owner_id)
    return verify_out(reconciler.verify_reference(owner_id, reference))
