from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models import CheckoutStatus, InvoiceStatus, OrderStatus, PaymentStatus


class CartLineIn(BaseModel):
    """Client sends what it wants, never what it costs: prices come from the catalog."""
    product_id: int
    quantity: int = Field(ge=1)
    selected_unit: str | None = None


class Address(BaseModel):
    full_name: str | None = None
    phone: str | None = None
    line1: str
    line2: str | None = None
    city: str
    state: str | None = None
    country: str = "NG"
    postal_code: str | None = None


class CheckoutCreate(BaseModel):
    items: list[CartLineIn] = Field(default_factory=list)
    shipping_address: Address | None = None
    billing_address: Address | None = None
    payment_method: str
    coupon_code: str | None = None
    shipping_method: Literal["standard", "pickup"] = "standard"
    from_cart: bool = False

    @field_validator("payment_method")
    @classmethod
    def normalize_method(cls, v: str) -> str:
        return (v or "").strip().lower()


class CheckoutPatch(BaseModel):
    status: Literal["ABANDONED"]


class CheckoutItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    quantity: int
    unit_price: int
    selected_unit: str | None = None


class CheckoutOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: CheckoutStatus
    payment_status: PaymentStatus
    payment_method: str
    order_id: int | None = None
    from_cart: bool
    subtotal: int
    discount: int
    delivery_fee: int
    total: int
    total_weight: int
    coupon_warning: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None
    abandoned_at: datetime | None = None
    items: list[CheckoutItemOut] = Field(default_factory=list)


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    title: str
    sku: str | None = None
    quantity: int
    unit_price: int
    line_total: int
    selected_unit: str | None = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    subtotal: int
    tax: int
    shipping_fee: int
    discount: int
    total: int
    total_weight: int
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: str
    payment_reference: str
    transaction_id: str | None = None
    created_at: datetime | None = None
    processed_at: datetime | None = None
    items: list[OrderItemOut] = Field(default_factory=list)


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    invoice_number: str
    total_amount: int
    paid_amount: int
    balance_amount: int
    currency: str
    status: InvoiceStatus
    payment_status: PaymentStatus
    due_at: datetime | None = None
    paid_at: datetime | None = None


class CheckoutCreated(BaseModel):
    checkout: CheckoutOut
    order: OrderOut
    invoice: InvoiceOut | None = None
    payment_instructions: dict
    coupon_warning: str | None = None


class CheckoutPage(BaseModel):
    items: list[CheckoutOut]
    total: int
    limit: int
    offset: int
    has_more: bool
