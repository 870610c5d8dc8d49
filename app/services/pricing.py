"""
Order pricing: weight, delivery fee, subtotal, discount, tax and total.
Pure functions over integer minor units; no database access here.
"""
from __future__ import annotations

from datetime import date
from typing import NamedTuple

from app.models import Coupon
from app.services.coupon import evaluate_coupon
from app.services.errors import ItemUnavailable, ValidationError

SHIPPING_STANDARD = "standard"
SHIPPING_PICKUP = "pickup"


class LineInput(NamedTuple):
    product_id: int
    quantity: int
    weight_grams: int
    unit_price: int | None  # Product fixed price
    price_table: list | None = None  # [{"unit": ..., "price": ...}]
    selected_unit: str | None = None
    title: str = ""
    sku: str | None = None


class PricedLine(NamedTuple):
    product_id: int
    title: str
    sku: str | None
    quantity: int
    unit_price: int
    line_total: int
    weight_grams: int
    selected_unit: str | None


class PricingResult(NamedTuple):
    lines: list[PricedLine]
    subtotal: int
    total_weight: int
    delivery_fee: int
    discount: int
    tax: int
    total: int
    coupon_warning: str | None


def _parse_pairs(s: str | None) -> list[tuple[str, int]]:
    """'1000:1200,5000:1500' -> [('1000', 1200), ('5000', 1500)]. Malformed parts are skipped."""
    out: list[tuple[str, int]] = []
    if not s or not (s := s.strip()):
        return out
    for part in s.split(","):
        if ":" not in part:
            continue
        key, value = part.split(":", 1)
        try:
            out.append((key.strip(), int(value.strip())))
        except ValueError:
            continue
    return out


class DeliveryRates:
    """
    Weight tiers plus a per-zone surcharge. The fee never decreases as weight grows;
    weights above the heaviest tier pay the heaviest tier's fee.
    """

    def __init__(
        self,
        tiers: list[tuple[int, int]],
        zone_surcharges: dict[str, int] | None = None,
        flat_fee: int | None = None,
    ):
        if not tiers and flat_fee is None:
            raise ValueError("delivery rates need at least one weight tier or a flat fee")
        ordered = sorted(tiers)
        self.tiers: list[tuple[int, int]] = []
        floor = 0
        for max_grams, fee in ordered:
            floor = max(floor, fee)
            self.tiers.append((max_grams, floor))
        self.zone_surcharges = {k.lower(): v for k, v in (zone_surcharges or {}).items()}
        self.flat_fee = flat_fee

    @classmethod
    def from_settings(cls, cfg) -> "DeliveryRates":
        tiers = []
        for key, fee in _parse_pairs(cfg.delivery_weight_tiers):
            try:
                tiers.append((int(key), fee))
            except ValueError:
                continue
        zones = {key: fee for key, fee in _parse_pairs(cfg.delivery_zone_surcharges)}
        return cls(tiers, zones, cfg.delivery_flat_fee)

    def fee(self, weight_grams: int, zone: str | None = None) -> int:
        if self.flat_fee is not None:
            return self.flat_fee
        if weight_grams <= 0:
            raise ValidationError("Weight must be positive.")
        base = self.tiers[-1][1]
        for max_grams, tier_fee in self.tiers:
            if weight_grams <= max_grams:
                base = tier_fee
                break
        surcharge = self.zone_surcharges.get((zone or "").strip().lower(), 0)
        return base + max(0, surcharge)


def resolve_unit_price(line: LineInput) -> int:
    """Selected unit from the product's price table, else the fixed price."""
    if line.selected_unit:
        wanted = line.selected_unit.strip().lower()
        for entry in line.price_table or []:
            unit = str(entry.get("unit") or "")
            if unit.lower() == wanted and entry.get("price") is not None:
                return int(entry["price"])
        available = ", ".join(str(e.get("unit")) for e in (line.price_table or []))
        raise ValidationError(
            f'Selected unit "{line.selected_unit}" is not valid for {line.title or line.product_id}. '
            f"Available units: {available or 'none'}"
        )
    if line.unit_price is None:
        raise ItemUnavailable(f"Product {line.title or line.product_id} has no valid price.")
    return line.unit_price


def compute_tax(taxable: int, tax_rate_bps: int) -> int:
    # Round half up on basis points
    if tax_rate_bps <= 0 or taxable <= 0:
        return 0
    return (taxable * tax_rate_bps + 5000) // 10000


def calculate(
    lines: list[LineInput],
    *,
    rates: DeliveryRates,
    coupon: Coupon | None = None,
    coupon_code: str | None = None,
    shipping_method: str = SHIPPING_STANDARD,
    zone: str | None = None,
    tax_rate_bps: int = 0,
    today: date | None = None,
) -> PricingResult:
    if not lines:
        raise ValidationError("Cart items are required.")
    if shipping_method not in (SHIPPING_STANDARD, SHIPPING_PICKUP):
        raise ValidationError(f"Unknown shipping method: {shipping_method}")

    priced: list[PricedLine] = []
    subtotal = 0
    total_weight = 0
    for line in lines:
        if line.quantity < 1:
            raise ValidationError(f"Quantity for {line.title or line.product_id} must be at least 1.")
        if line.weight_grams <= 0:
            raise ItemUnavailable(f"Product {line.title or line.product_id} must have a valid weight.")
        unit_price = resolve_unit_price(line)
        line_total = unit_price * line.quantity
        weight = line.weight_grams * line.quantity
        subtotal += line_total
        total_weight += weight
        priced.append(
            PricedLine(
                product_id=line.product_id,
                title=line.title,
                sku=line.sku,
                quantity=line.quantity,
                unit_price=unit_price,
                line_total=line_total,
                weight_grams=weight,
                selected_unit=line.selected_unit,
            )
        )

    delivery_fee = 0 if shipping_method == SHIPPING_PICKUP else rates.fee(total_weight, zone)
    discount, warning = evaluate_coupon(coupon, subtotal, today=today, code=coupon_code)
    discount = max(0, min(discount, subtotal))
    tax = compute_tax(subtotal - discount, tax_rate_bps)
    total = subtotal + tax + delivery_fee - discount
    return PricingResult(
        lines=priced,
        subtotal=subtotal,
        total_weight=total_weight,
        delivery_fee=delivery_fee,
        discount=discount,
        tax=tax,
        total=total,
        coupon_warning=warning,
    )
