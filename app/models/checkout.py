from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from app.core.clock import UtcDateTime, utcnow


class CheckoutStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class Checkout(SQLModel, table=True):
    """One purchase attempt. Only reconciliation moves it once the order exists."""

    id: int | None = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    coupon_id: int | None = None
    coupon_warning: str | None = None
    status: CheckoutStatus = Field(default=CheckoutStatus.PENDING, index=True)
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING)
    payment_method: str
    order_id: int | None = Field(default=None, unique=True, index=True)
    from_cart: bool = False
    subtotal: int = 0
    discount: int = 0
    delivery_fee: int = 0
    total: int = 0
    total_weight: int = 0
    shipping_address: dict | None = Field(default=None, sa_column=Column(JSON))
    billing_address: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime | None = Field(default_factory=utcnow, sa_type=UtcDateTime)
    completed_at: datetime | None = Field(default=None, sa_type=UtcDateTime)
    abandoned_at: datetime | None = Field(default=None, sa_type=UtcDateTime)


class CheckoutItem(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    checkout_id: int = Field(index=True)
    product_id: int
    quantity: int
    unit_price: int  # Price snapshot at submission
    selected_unit: str | None = None
