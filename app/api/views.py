"""Response builders shared by the routers. Statuses are always read from the stored records."""
from sqlmodel import Session, select

from app.models import Checkout, CheckoutItem, Invoice, Order, OrderItem
from app.schemas import CheckoutItemOut, CheckoutOut, InvoiceOut, OrderItemOut, OrderOut, VerifyResponse
from app.services.reconciliation import ReconcileResult


def checkout_out(db: Session, checkout: Checkout) -> CheckoutOut:
    out = CheckoutOut.model_validate(checkout)
    items = db.exec(select(CheckoutItem).where(CheckoutItem.checkout_id == checkout.id).order_by(CheckoutItem.id)).all()
    out.items = [CheckoutItemOut.model_validate(i) for i in items]
    return out


def order_out(db: Session, order: Order) -> OrderOut:
    out = OrderOut.model_validate(order)
    items = db.exec(select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.id)).all()
    out.items = [OrderItemOut.model_validate(i) for i in items]
    return out


def invoice_out(invoice: Invoice | None) -> InvoiceOut | None:
    return InvoiceOut.model_validate(invoice) if invoice is not None else None


def verify_out(result: ReconcileResult) -> VerifyResponse:
    return VerifyResponse(
        reference=result.reference,
        kind=result.kind,
        outcome=result.outcome.value,
        status=result.status,
        payment_status=result.payment_status,
        applied=result.applied,
        order_id=result.record_id if result.kind == "order" else None,
    )
