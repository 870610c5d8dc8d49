from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from app.api.deps import get_current_user_id
from app.api.views import invoice_out, order_out
from app.core.database import get_db
from app.models import Invoice, Order
from app.schemas import InvoiceOut, OrderOut
from app.services.errors import NotFound

router = APIRouter(tags=["orders"])


@router.get("/orders", response_model=list[OrderOut])
def list_orders(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    owner_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    stmt = select(Order).where(Order.owner_id == owner_id).order_by(Order.id.desc()).offset(offset).limit(limit)
    return [order_out(db, o) for o in db.exec(stmt).all()]


@router.get("/orders/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    owner_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    order = db.get(Order, order_id)
    if order is None or order.owner_id != owner_id:
        raise NotFound("Order not found.")
    return order_out(db, order)


@router.get("/invoices/{order_id}", response_model=InvoiceOut)
def get_invoice(
    order_id: int,
    owner_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    invoice = db.exec(select(Invoice).where(Invoice.order_id == order_id)).first()
    if invoice is None or invoice.owner_id != owner_id:
        raise NotFound("Invoice not found.")
    return invoice_out(invoice)
