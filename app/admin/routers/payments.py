"""Operator payment actions: pending bank transfers, confirm/reject, re-verification sweep."""
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from app.admin.deps import require_admin
from app.api.deps import get_reconciler
from app.api.views import order_out, verify_out
from app.core.config import settings
from app.core.database import get_db
from app.gateways import PaymentMethod
from app.models import Order, OrderStatus, PaymentStatus, User
from app.schemas import ManualDecision, SweepRequest, VerifyResponse
from app.services.reconciliation import ReconciliationHandler

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/bank-transfers")
def pending_bank_transfers(
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    stmt = (
        select(Order)
        .where(
            Order.payment_method == PaymentMethod.BANK_TRANSFER.value,
            Order.status == OrderStatus.PENDING,
            Order.payment_status == PaymentStatus.PENDING,
        )
        .order_by(Order.id)
        .limit(limit)
    )
    orders = list(db.exec(stmt).all())
    owner_ids = {o.owner_id for o in orders}
    emails = {}
    if owner_ids:
        for u in db.exec(select(User).where(User.id.in_(owner_ids))).all():
            emails[u.id] = u.email or ""
    return [
        {**order_out(db, o).model_dump(mode="json"), "owner_email": emails.get(o.owner_id, "")}
        for o in orders
    ]


@router.post("/bank-transfers/{order_id}/confirm", response_model=VerifyResponse)
def confirm_bank_transfer(
    order_id: int,
    body: ManualDecision | None = None,
    reconciler: ReconciliationHandler = Depends(get_reconciler),
):
    return verify_out(reconciler.confirm_manual_payment(order_id, body.note if body else None))


@router.post("/bank-transfers/{order_id}/reject", response_model=VerifyResponse)
def reject_bank_transfer(
    order_id: int,
    body: ManualDecision | None = None,
    reconciler: ReconciliationHandler = Depends(get_reconciler),
):
    return verify_out(reconciler.reject_manual_payment(order_id, body.note if body else None))


@router.post("/reverify")
def reverify_pending(
    body: SweepRequest | None = None,
    reconciler: ReconciliationHandler = Depends(get_reconciler),
):
    body = body or SweepRequest()
    min_age = body.min_age_minutes if body.min_age_minutes is not None else settings.reverify_min_age_minutes
    return reconciler.sweep_pending(min_age_minutes=min_age, limit=body.limit)
