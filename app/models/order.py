from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from app.core.clock import UtcDateTime, utcnow
from app.models.checkout import PaymentStatus


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class Order(SQLModel, table=True):
    """
    Durable commercial record. total = subtotal + tax + shipping_fee - discount.
    payment_reference is the correlation key shared with the gateway.
    """

    id: int | None = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    order_number: str = Field(unique=True, index=True, max_length=40)
    subtotal: int
    tax: int = 0
    shipping_fee: int = 0
    discount: int = 0
    total: int
    total_weight: int = 0
    currency: str = "NGN"
    coupon_id: int | None = None
    status: OrderStatus = Field(default=OrderStatus.PENDING, index=True)
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING, index=True)
    payment_method: str = Field(index=True)
    payment_reference: str = Field(unique=True, index=True, max_length=80)
    transaction_id: str | None = Field(default=None, index=True)
    # Last successful initiate; replayed on retry instead of calling the gateway again
    redirect_url: str | None = None
    initiated_at: datetime | None = Field(default=None, sa_type=UtcDateTime)
    processed_at: datetime | None = Field(default=None, sa_type=UtcDateTime)
    shipping_address: dict | None = Field(default=None, sa_column=Column(JSON))
    billing_address: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime | None = Field(default_factory=utcnow, sa_type=UtcDateTime)


class OrderItem(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(index=True)
    product_id: int
    title: str
    sku: str | None = None
    quantity: int
    unit_price: int
    line_total: int
    selected_unit: str | None = None
