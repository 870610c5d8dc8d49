from datetime import datetime
from enum import Enum

from sqlmodel import Field, SQLModel

from app.core.clock import UtcDateTime, utcnow
from app.models.checkout import PaymentStatus


class InvoiceStatus(str, Enum):
    SENT = "SENT"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    VOID = "VOID"
    CANCELLED = "CANCELLED"


class Invoice(SQLModel, table=True):
    """Billing record, 1:1 with Order. paid_amount + balance_amount == total_amount."""

    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(unique=True, index=True)
    owner_id: int = Field(index=True)
    invoice_number: str = Field(unique=True, index=True, max_length=40)
    total_amount: int
    paid_amount: int = 0
    balance_amount: int
    currency: str = "NGN"
    status: InvoiceStatus = Field(default=InvoiceStatus.SENT)
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING)
    due_at: datetime | None = Field(default=None, sa_type=UtcDateTime)
    paid_at: datetime | None = Field(default=None, sa_type=UtcDateTime)
    created_at: datetime | None = Field(default_factory=utcnow, sa_type=UtcDateTime)


class InvoicePayment(SQLModel, table=True):
    """Append-only settlement row. The unique reference blocks double processing."""

    id: int | None = Field(default=None, primary_key=True)
    invoice_id: int = Field(index=True)
    owner_id: int = Field(index=True)
    amount: int
    gateway: str
    reference: str = Field(unique=True, index=True, max_length=80)
    transaction_id: str | None = None
    needs_audit: bool = False  # e.g. OPay CLOSE outcomes
    verified_at: datetime = Field(default_factory=utcnow, sa_type=UtcDateTime)
