"""Coupon validation and discount calculation."""
from datetime import date

from sqlmodel import Session, select

from app.models import Coupon


def find_coupon(db: Session, code: str | None) -> Coupon | None:
    if not code or not (code := code.strip()):
        return None
    stmt = select(Coupon).where(Coupon.code == code.upper())
    return db.exec(stmt).first()


def evaluate_coupon(
    coupon: Coupon | None,
    subtotal: int,
    today: date | None = None,
    code: str | None = None,
) -> tuple[int, str | None]:
    """
    Discount (minor units) the coupon grants on this subtotal.
    (discount, warning). A bad coupon never raises: it is worth 0 and the reason comes back as a warning.
    """
    if coupon is None:
        if code and code.strip():
            return 0, "Invalid coupon code."
        return 0, None
    today = today or date.today()
    if not coupon.is_active:
        return 0, "This coupon is no longer active."
    if coupon.valid_from and today < coupon.valid_from:
        return 0, "This coupon is not valid yet."
    if coupon.valid_until and today > coupon.valid_until:
        return 0, "This coupon has expired."
    if coupon.max_uses is not None and coupon.use_count >= coupon.max_uses:
        return 0, "This coupon has reached its usage limit."
    if subtotal < (coupon.min_subtotal or 0):
        return 0, f"This coupon requires a minimum subtotal of {coupon.min_subtotal}."

    if coupon.discount_type == "percent":
        if not (1 <= coupon.discount_value <= 100):
            return 0, "Invalid coupon percentage."
        discount = subtotal * coupon.discount_value // 100
    elif coupon.discount_type == "fixed":
        discount = coupon.discount_value
    else:
        return 0, "Invalid coupon type."

    return max(0, min(discount, subtotal)), None


def apply_coupon_use(db: Session, coupon_id: int | None) -> None:
    """Bumps the usage counter; called inside the payment-confirmed transaction (no commit here)."""
    if coupon_id is None:
        return
    coupon = db.get(Coupon, coupon_id)
    if coupon:
        coupon.use_count = (coupon.use_count or 0) + 1
        db.add(coupon)
