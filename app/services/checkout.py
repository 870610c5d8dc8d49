"""
Checkout orchestration: re-price the cart from the catalog, persist Checkout + Order + Invoice in
one transaction, then start the payment outside it.

A failed initiate leaves the order PENDING/PENDING; retry_initiation() resumes the same order with
the same payment reference instead of creating a new one.
"""
from __future__ import annotations

import logging
import secrets
import time
from datetime import timedelta
from typing import NamedTuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.clock import utcnow
from app.core.config import Settings, settings
from app.gateways import GatewayRegistry
from app.gateways.base import Charge, Customer, PaymentHandle, PaymentMethod, PaymentOutcome, Verification
from app.models import (
    CartItem,
    Checkout,
    CheckoutItem,
    CheckoutStatus,
    Invoice,
    InvoiceStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
    User,
    WalletTransaction,
)
from app.services import pricing
from app.services.coupon import find_coupon
from app.services.errors import (
    GatewayError,
    GatewayRejected,
    InsufficientFunds,
    ItemUnavailable,
    NotFound,
    StateConflict,
    Unauthorized,
    ValidationError,
)
from app.services.reconciliation import ReconciliationHandler
from app.services.wallet import WalletLedger

log = logging.getLogger("storefront.checkout")

ORDER_NUMBER_ATTEMPTS = 5
DEPOSIT_PROVIDERS = (PaymentMethod.PAYSTACK.value, PaymentMethod.OPAY.value)


class CartLine(NamedTuple):
    product_id: int
    quantity: int
    selected_unit: str | None = None


class CheckoutResult(NamedTuple):
    checkout: Checkout
    order: Order
    invoice: Invoice | None
    payment: dict
    coupon_warning: str | None = None


def new_order_number() -> str:
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


def _check_reference(charge: Charge, handle: PaymentHandle) -> None:
    """The reference we sent is the only key webhooks and verify can correlate on."""
    if handle.reference != charge.reference:
        log.error("gateway answered %s with reference %s", charge.reference, handle.reference)
        raise GatewayRejected(f"Gateway returned reference {handle.reference} for {charge.reference}.")


def _payment_payload(method: str, handle: PaymentHandle) -> dict:
    out = {
        "method": method,
        "reference": handle.reference,
        "redirect_url": handle.redirect_url,
        "provider_order_id": handle.provider_order_id,
    }
    if handle.instructions:
        out["instructions"] = handle.instructions
    return out


class CheckoutOrchestrator:
    def __init__(self, db: Session, registry: GatewayRegistry, notifier=None, cfg: Settings | None = None):
        self.db = db
        self.registry = registry
        self.notifier = notifier
        self.cfg = cfg or settings

    # --- checkout ------------------------------------------------------------

    def _customer(self, owner_id: int) -> Customer:
        user = self.db.get(User, owner_id)
        if user is None:
            raise Unauthorized("Unknown user.")
        return Customer(owner_id=user.id, email=user.email, full_name=user.full_name or "", phone=user.phone)

    def _cart_lines(self, owner_id: int) -> list[CartLine]:
        rows = self.db.exec(select(CartItem).where(CartItem.owner_id == owner_id).order_by(CartItem.id)).all()
        return [CartLine(r.product_id, r.quantity, r.selected_unit) for r in rows]

    def _price_lines(self, items: list[CartLine]) -> list[pricing.LineInput]:
        """Catalog prices only; whatever price the client saw is ignored."""
        ids = {i.product_id for i in items}
        products = {p.id: p for p in self.db.exec(select(Product).where(Product.id.in_(ids))).all()} if ids else {}
        lines = []
        for item in items:
            product = products.get(item.product_id)
            if product is None or product.is_deleted:
                raise ItemUnavailable(f"Product {item.product_id} is no longer available.")
            if not product.is_active:
                raise ItemUnavailable(f"{product.name} is currently unavailable.")
            lines.append(
                pricing.LineInput(
                    product_id=product.id,
                    quantity=item.quantity,
                    weight_grams=product.weight_grams,
                    unit_price=product.price,
                    price_table=product.unit_prices,
                    selected_unit=item.selected_unit,
                    title=product.name,
                    sku=product.sku,
                )
            )
        return lines

    def quote(
        self,
        items: list[CartLine],
        coupon_code: str | None = None,
        shipping_method: str = pricing.SHIPPING_STANDARD,
        zone: str | None = None,
    ) -> pricing.PricingResult:
        coupon = find_coupon(self.db, coupon_code)
        return pricing.calculate(
            self._price_lines(items),
            rates=pricing.DeliveryRates.from_settings(self.cfg),
            coupon=coupon,
            coupon_code=coupon_code,
            shipping_method=shipping_method,
            zone=zone,
            tax_rate_bps=self.cfg.tax_rate_bps,
        )

    def checkout(
        self,
        owner_id: int,
        items: list[CartLine] | None,
        payment_method: str,
        shipping_address: dict | None,
        billing_address: dict | None = None,
        coupon_code: str | None = None,
        shipping_method: str = pricing.SHIPPING_STANDARD,
        from_cart: bool = False,
    ) -> CheckoutResult:
        adapter = self.registry.get(payment_method)
        customer = self._customer(owner_id)
        if not items and from_cart:
            items = self._cart_lines(owner_id)
        if not items:
            raise ValidationError("Cart items are required.")
        if shipping_method == pricing.SHIPPING_STANDARD and not shipping_address:
            raise ValidationError("A shipping address is required for delivery.")

        zone = (shipping_address or {}).get("state")
        priced = self.quote(items, coupon_code, shipping_method, zone)
        if priced.total <= 0:
            raise ValidationError("Order total must be greater than zero.")

        coupon = find_coupon(self.db, coupon_code) if priced.discount else None
        checkout, order, invoice = self._persist(
            owner_id,
            priced,
            adapter.method.value,
            shipping_address,
            billing_address or shipping_address,
            coupon.id if coupon else None,
            from_cart,
        )
        log.info(
            "checkout %s: order=%s owner=%s method=%s total=%s",
            checkout.id,
            order.order_number,
            owner_id,
            order.payment_method,
            order.total,
        )
        payment = self._initiate(checkout, order, customer)
        return CheckoutResult(
            checkout=self.db.get(Checkout, checkout.id),
            order=self.db.get(Order, order.id),
            invoice=self.db.get(Invoice, invoice.id),
            payment=payment,
            coupon_warning=priced.coupon_warning,
        )

    def _persist(
        self,
        owner_id: int,
        priced: pricing.PricingResult,
        method: str,
        shipping_address: dict | None,
        billing_address: dict | None,
        coupon_id: int | None,
        from_cart: bool,
    ) -> tuple[Checkout, Order, Invoice]:
        """One transaction for all three records. An order-number collision retries with a new number."""
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order_number = new_order_number()
            now = utcnow()
            try:
                checkout = Checkout(
                    owner_id=owner_id,
                    coupon_id=coupon_id,
                    coupon_warning=priced.coupon_warning,
                    payment_method=method,
                    from_cart=from_cart,
                    subtotal=priced.subtotal,
                    discount=priced.discount,
                    delivery_fee=priced.delivery_fee,
                    total=priced.total,
                    total_weight=priced.total_weight,
                    shipping_address=shipping_address,
                    billing_address=billing_address,
                )
                self.db.add(checkout)
                self.db.flush()
                for line in priced.lines:
                    self.db.add(
                        CheckoutItem(
                            checkout_id=checkout.id,
                            product_id=line.product_id,
                            quantity=line.quantity,
                            unit_price=line.unit_price,
                            selected_unit=line.selected_unit,
                        )
                    )
                order = Order(
                    owner_id=owner_id,
                    order_number=order_number,
                    subtotal=priced.subtotal,
                    tax=priced.tax,
                    shipping_fee=priced.delivery_fee,
                    discount=priced.discount,
                    total=priced.total,
                    total_weight=priced.total_weight,
                    currency=self.cfg.currency,
                    coupon_id=coupon_id,
                    payment_method=method,
                    payment_reference=f"PAY-{order_number[4:]}",
                    shipping_address=shipping_address,
                    billing_address=billing_address,
                )
                self.db.add(order)
                self.db.flush()
                for line in priced.lines:
                    self.db.add(
                        OrderItem(
                            order_id=order.id,
                            product_id=line.product_id,
                            title=line.title,
                            sku=line.sku,
                            quantity=line.quantity,
                            unit_price=line.unit_price,
                            line_total=line.line_total,
                            selected_unit=line.selected_unit,
                        )
                    )
                invoice = Invoice(
                    order_id=order.id,
                    owner_id=owner_id,
                    invoice_number=f"INV-{order_number[4:]}",
                    total_amount=order.total,
                    paid_amount=0,
                    balance_amount=order.total,
                    currency=order.currency,
                    status=InvoiceStatus.SENT,
                    payment_status=PaymentStatus.PENDING,
                    due_at=(
                        now + timedelta(hours=self.cfg.bank_transfer_instructions_hours)
                        if method == PaymentMethod.BANK_TRANSFER.value
                        else None
                    ),
                )
                self.db.add(invoice)
                checkout.order_id = order.id
                self.db.add(checkout)
                self.db.commit()
                return checkout, order, invoice
            except IntegrityError:
                self.db.rollback()
                log.warning("order number collision on %s (attempt %s)", order_number, attempt)
        raise StateConflict("Could not allocate an order number, please try again.")

    # --- payment initiation --------------------------------------------------

    def _initiate(self, checkout: Checkout, order: Order, customer: Customer) -> dict:
        """Outside any write transaction: the gateway call may block for the full timeout."""
        adapter = self.registry.get(order.payment_method)
        charge = Charge(
            reference=order.payment_reference,
            amount=order.total,
            currency=order.currency,
            description=f"Order {order.order_number}",
            order_id=order.id,
            order_number=order.order_number,
            metadata={"checkout_id": checkout.id},
        )
        order_id, checkout_id, order_number = order.id, checkout.id, order.order_number
        # Nothing of ours stays open while the gateway call blocks
        self.db.commit()
        try:
            handle = adapter.initiate(charge, customer)
            _check_reference(charge, handle)
        except (GatewayError, InsufficientFunds) as e:
            log.warning("initiate failed for %s via %s: %s", order_number, adapter.method.value, e)
            e.details = {"checkout_id": checkout_id, "order_id": order_id, "order_number": order_number}
            raise

        order = self.db.get(Order, order_id)
        order.initiated_at = utcnow()
        if handle.redirect_url:
            order.redirect_url = handle.redirect_url
        self.db.add(order)
        self.db.commit()

        if adapter.method == PaymentMethod.WALLET:
            # The debit is already settled; confirm the order in the same request
            ReconciliationHandler(self.db, self.registry, self.notifier).apply_verification(
                self.db.get(Order, order_id),
                Verification(
                    outcome=PaymentOutcome.SUCCESS,
                    reference=handle.reference,
                    provider_order_id=handle.provider_order_id,
                    raw_status="debited",
                    amount=charge.amount,
                ),
                source="wallet",
            )
        return _payment_payload(adapter.method.value, handle)

    def retry_initiation(self, owner_id: int, checkout_id: int) -> CheckoutResult:
        """Same order, same reference. A stored redirect is replayed without calling the gateway."""
        checkout = self.get_checkout(owner_id, checkout_id)
        order = self.db.get(Order, checkout.order_id) if checkout.order_id else None
        if order is None:
            raise NotFound("Order not found for this checkout.")
        if (
            checkout.status != CheckoutStatus.PENDING
            or order.status != OrderStatus.PENDING
            or order.payment_status != PaymentStatus.PENDING
        ):
            raise StateConflict(f"Order {order.order_number} is {order.status.value}/{order.payment_status.value}.")
        if order.redirect_url:
            payment = {
                "method": order.payment_method,
                "reference": order.payment_reference,
                "redirect_url": order.redirect_url,
                "provider_order_id": None,
            }
        else:
            payment = self._initiate(checkout, order, self._customer(owner_id))
        return CheckoutResult(
            checkout=self.db.get(Checkout, checkout.id),
            order=self.db.get(Order, order.id),
            invoice=self.db.exec(select(Invoice).where(Invoice.order_id == order.id)).first(),
            payment=payment,
            coupon_warning=checkout.coupon_warning,
        )

    # --- reads and the owner-side PATCH --------------------------------------

    def get_checkout(self, owner_id: int, checkout_id: int) -> Checkout:
        checkout = self.db.get(Checkout, checkout_id)
        # Another owner's checkout is reported as missing
        if checkout is None or checkout.owner_id != owner_id:
            raise NotFound("Checkout not found.")
        return checkout

    def checkout_items(self, checkout_id: int) -> list[CheckoutItem]:
        return list(self.db.exec(select(CheckoutItem).where(CheckoutItem.checkout_id == checkout_id)).all())

    def list_checkouts(
        self,
        owner_id: int,
        status: CheckoutStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Checkout], int]:
        stmt = select(Checkout).where(Checkout.owner_id == owner_id)
        count_stmt = select(func.count()).select_from(Checkout).where(Checkout.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(Checkout.status == status)
            count_stmt = count_stmt.where(Checkout.status == status)
        total = self.db.exec(count_stmt).one()
        rows = self.db.exec(stmt.order_by(Checkout.id.desc()).offset(offset).limit(limit)).all()
        return list(rows), int(total)

    def abandon(self, owner_id: int, checkout_id: int) -> Checkout:
        """Owner gives up on an unpaid checkout: order cancelled, invoice voided."""
        checkout = self.get_checkout(owner_id, checkout_id)
        if checkout.status != CheckoutStatus.PENDING:
            raise StateConflict(f"Checkout is {checkout.status.value}; only PENDING checkouts can be abandoned.")
        now = utcnow()
        if checkout.order_id is not None:
            result = self.db.connection().execute(
                update(Order)
                .where(
                    Order.id == checkout.order_id,
                    Order.status == OrderStatus.PENDING,
                    Order.payment_status == PaymentStatus.PENDING,
                )
                .values(status=OrderStatus.CANCELLED)
            )
            if result.rowcount != 1:
                self.db.rollback()
                raise StateConflict("The order for this checkout is no longer pending.")
            invoice = self.db.exec(select(Invoice).where(Invoice.order_id == checkout.order_id)).first()
            if invoice is not None:
                invoice.status = InvoiceStatus.VOID
                self.db.add(invoice)
        checkout.status = CheckoutStatus.ABANDONED
        checkout.abandoned_at = now
        self.db.add(checkout)
        self.db.commit()
        log.info("checkout %s abandoned by owner %s", checkout_id, owner_id)
        return self.db.get(Checkout, checkout_id)

    # --- wallet top-up -------------------------------------------------------

    def start_wallet_deposit(self, owner_id: int, amount: int, provider: str) -> tuple[WalletTransaction, dict]:
        if provider not in DEPOSIT_PROVIDERS:
            raise ValidationError(f"Wallet deposits are accepted via {', '.join(DEPOSIT_PROVIDERS)}.")
        if amount < self.cfg.wallet_min_deposit:
            raise ValidationError(f"Minimum deposit is {self.cfg.wallet_min_deposit}.")
        adapter = self.registry.get(provider)
        customer = self._customer(owner_id)
        ledger = WalletLedger(self.db)
        txn = ledger.open_deposit(owner_id, amount, adapter.provider, self.cfg.currency)
        reference = txn.reference
        self.db.commit()
        charge = Charge(
            reference=reference,
            amount=amount,
            currency=self.cfg.currency,
            description="Wallet deposit",
            metadata={"kind": "wallet_deposit"},
        )
        try:
            handle = adapter.initiate(charge, customer)
            _check_reference(charge, handle)
        except GatewayError as e:
            # No redirect was handed out, so nothing can be paid against this reference
            ledger.fail_deposit(reference, f"initiate failed: {e}"[:200])
            self.db.commit()
            raise
        txn = ledger.find_transaction(reference)
        txn.meta = {**(txn.meta or {}), "redirect_url": handle.redirect_url, "provider_order_id": handle.provider_order_id}
        self.db.add(txn)
        self.db.commit()
        log.info("wallet deposit %s opened: owner=%s amount=%s via %s", reference, owner_id, amount, provider)
        return ledger.find_transaction(reference), _payment_payload(adapter.method.value, handle)
