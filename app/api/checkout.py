from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_current_user_id, get_orchestrator
from app.api.views import checkout_out, invoice_out, order_out
from app.core.rate_limit import checkout_limit, limiter
from app.models import CheckoutStatus
from app.schemas import CheckoutCreate, CheckoutCreated, CheckoutOut, CheckoutPage, CheckoutPatch
from app.services.checkout import CartLine, CheckoutOrchestrator, CheckoutResult

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _created(orch: CheckoutOrchestrator, result: CheckoutResult) -> CheckoutCreated:
    return CheckoutCreated(
        checkout=checkout_out(orch.db, result.checkout),
        order=order_out(orch.db, result.order),
        invoice=invoice_out(result.invoice),
        payment_instructions=result.payment,
        coupon_warning=result.coupon_warning,
    )


@router.post("", status_code=201, response_model=CheckoutCreated)
@limiter.limit(checkout_limit)
def create_checkout(
    request: Request,
    body: CheckoutCreate,
    owner_id: int = Depends(get_current_user_id),
    orch: CheckoutOrchestrator = Depends(get_orchestrator),
):
    result = orch.checkout(
        owner_id,
        [CartLine(i.product_id, i.quantity, i.selected_unit) for i in body.items],
        body.payment_method,
        body.shipping_address.model_dump() if body.shipping_address else None,
        body.billing_address.model_dump() if body.billing_address else None,
        coupon_code=body.coupon_code,
        shipping_method=body.shipping_method,
        from_cart=body.from_cart,
    )
    return _created(orch, result)


@router.get("", response_model=CheckoutPage)
def list_checkouts(
    status: CheckoutStatus | None = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    owner_id: int = Depends(get_current_user_id),
    orch: CheckoutOrchestrator = Depends(get_orchestrator),
):
    rows, total = orch.list_checkouts(owner_id, status, limit, offset)
    return CheckoutPage(
        items=[checkout_out(orch.db, c) for c in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + len(rows) < total,
    )


@router.get("/{checkout_id}", response_model=CheckoutOut)
def get_checkout(
    checkout_id: int,
    owner_id: int = Depends(get_current_user_id),
    orch: CheckoutOrchestrator = Depends(get_orchestrator),
):
    return checkout_out(orch.db, orch.get_checkout(owner_id, checkout_id))


@router.patch("/{checkout_id}", response_model=CheckoutOut)
def update_checkout(
    checkout_id: int,
    body: CheckoutPatch,
    owner_id: int = Depends(get_current_user_id),
    orch: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Only PENDING -> ABANDONED is open to the owner; payment states belong to reconciliation."""
    return checkout_out(orch.db, orch.abandon(owner_id, checkout_id))


@router.post("/{checkout_id}/pay", response_model=CheckoutCreated)
def retry_payment(
    checkout_id: int,
    owner_id: int = Depends(get_current_user_id),
    orch: CheckoutOrchestrator = Depends(get_orchestrator),
):
    return _created(orch, orch.retry_initiation(owner_id, checkout_id))
