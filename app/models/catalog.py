"""Catalog side of checkout: products, coupons and the server-side cart."""
from datetime import date, datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from app.core.clock import UtcDateTime, utcnow


class Product(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    sku: str = Field(unique=True, index=True, max_length=64)
    price: int | None = None  # Fixed price in minor units; None = unit-priced only
    # [{"unit": "kg", "price": 2500}, ...]
    unit_prices: list | None = Field(default=None, sa_column=Column(JSON))
    weight_grams: int = 0
    is_active: bool = True
    is_deleted: bool = False
    created_at: datetime | None = Field(default_factory=utcnow, sa_type=UtcDateTime)


class Coupon(SQLModel, table=True):
    """Discount code: created by staff, applied at checkout."""

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True, max_length=64)
    discount_type: str = Field(max_length=16)  # "percent" | "fixed"
    discount_value: int  # percent: 1-100, fixed: minor units
    valid_from: date | None = None
    valid_until: date | None = None
    is_active: bool = True
    min_subtotal: int = 0
    max_uses: int | None = None  # null = unlimited
    use_count: int = 0
    created_at: datetime | None = Field(default_factory=utcnow, sa_type=UtcDateTime)


class CartItem(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    owner_id: int = Field(index=True)
    product_id: int = Field(index=True)
    quantity: int = 1
    selected_unit: str | None = None
    created_at: datetime | None = Field(default_factory=utcnow, sa_type=UtcDateTime)
