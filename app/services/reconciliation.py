"""
Payment reconciliation: maps a gateway outcome onto Order, Checkout, Invoice and Wallet state.

Entry points: signed webhooks (push), owner-initiated verification (pull), operator decisions for
bank transfers, and the periodic re-verification sweep. Every path ends in apply_verification(),
whose first write is a conditional UPDATE on the order row (payment_status = PENDING), so two
concurrent deliveries for one reference cannot both apply. The InvoicePayment unique reference
backs that up.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import NamedTuple

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.clock import utcnow
from app.gateways import GatewayRegistry
from app.gateways.base import GatewayAdapter, PaymentMethod, PaymentOutcome, Verification
from app.models import (
    AuditLog,
    CartItem,
    Checkout,
    CheckoutStatus,
    Invoice,
    InvoicePayment,
    InvoiceStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    SecurityLog,
    User,
    WalletTransaction,
    WalletTransactionStatus,
)
from app.services.coupon import apply_coupon_use
from app.services.errors import (
    Forbidden,
    GatewayError,
    GatewayNotConfigured,
    NotFound,
    SignatureInvalid,
    StateConflict,
)
from app.services.wallet import DEPOSIT_PREFIX, WalletLedger, is_deposit_reference

log = logging.getLogger("storefront.reconcile")

_PAYMENT_TO_OUTCOME = {
    PaymentStatus.PAID: PaymentOutcome.SUCCESS,
    PaymentStatus.FAILED: PaymentOutcome.FAILED,
    PaymentStatus.PENDING: PaymentOutcome.PENDING,
}

_WALLET_TO_OUTCOME = {
    WalletTransactionStatus.SUCCESS: PaymentOutcome.SUCCESS,
    WalletTransactionStatus.FAILED: PaymentOutcome.FAILED,
    WalletTransactionStatus.PENDING: PaymentOutcome.PENDING,
}


class ReconcileResult(NamedTuple):
    kind: str  # "order" | "deposit"
    reference: str
    outcome: PaymentOutcome
    applied: bool
    record_id: int | None
    status: str
    payment_status: str


def _order_result(order: Order, applied: bool) -> ReconcileResult:
    return ReconcileResult(
        kind="order",
        reference=order.payment_reference,
        outcome=_PAYMENT_TO_OUTCOME[order.payment_status],
        applied=applied,
        record_id=order.id,
        status=order.status.value,
        payment_status=order.payment_status.value,
    )


def _deposit_result(txn: WalletTransaction, applied: bool) -> ReconcileResult:
    return ReconcileResult(
        kind="deposit",
        reference=txn.reference,
        outcome=_WALLET_TO_OUTCOME[txn.status],
        applied=applied,
        record_id=txn.id,
        status=txn.status.value,
        payment_status=txn.status.value,
    )


class ReconciliationHandler:
    def __init__(self, db: Session, registry: GatewayRegistry, notifier=None):
        self.db = db
        self.registry = registry
        self.notifier = notifier

    # --- lookups -------------------------------------------------------------

    def find_order(self, reference: str) -> Order | None:
        stmt = (
            select(Order)
            .where(or_(Order.payment_reference == reference, Order.transaction_id == reference))
            .execution_options(populate_existing=True)
        )
        return self.db.exec(stmt).first()

    def _reload_order(self, order_id: int) -> Order:
        stmt = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        return self.db.exec(stmt).one()

    def _checkout_for(self, order_id: int) -> Checkout | None:
        return self.db.exec(select(Checkout).where(Checkout.order_id == order_id)).first()

    def _invoice_for(self, order_id: int) -> Invoice | None:
        return self.db.exec(select(Invoice).where(Invoice.order_id == order_id)).first()

    # --- logging helpers -----------------------------------------------------

    def _audit(self, event: str, owner_id: int | None, reference: str | None, detail: str, ip: str | None = None):
        self.db.add(AuditLog(event=event, owner_id=owner_id, reference=reference, detail=detail[:2000], ip=ip))

    def _release(self) -> None:
        """Ends the read transaction; a gateway call can block for the full timeout."""
        self.db.commit()

    def _anomaly(self, owner_id: int | None, reference: str, detail: str, ip: str | None = None) -> None:
        """Recorded in its own commit; nothing about the payment is changed."""
        log.warning("reconciliation anomaly: ref=%s %s", reference, detail)
        try:
            self._audit("reconciliation_anomaly", owner_id, reference, detail, ip)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            log.warning("AuditLog anomaly write failed: %s", e)

    def _security_event(self, provider: str, ip: str | None, detail: str) -> None:
        try:
            self.db.add(
                SecurityLog(
                    event="signature_invalid",
                    provider=provider,
                    ip=ip,
                    endpoint=f"/webhooks/{provider}",
                    detail=detail[:500],
                )
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            log.warning("SecurityLog signature_invalid write failed: %s", e)

    # --- push ----------------------------------------------------------------

    def handle_webhook(
        self,
        provider: str,
        raw_body: bytes,
        signature: str | None,
        ip: str | None = None,
    ) -> ReconcileResult:
        """
        Signature first, over the exact raw bytes. Only then is the body parsed, and the claimed
        status is never applied as is: the gateway is asked again and its answer wins.
        """
        adapter = self.registry.for_provider(provider)
        if not adapter.validate_signature(raw_body, signature):
            log.warning("webhook signature rejected: provider=%s ip=%s present=%s", provider, ip, bool(signature))
            self._security_event(provider, ip, "missing signature" if not signature else "signature mismatch")
            raise SignatureInvalid("Invalid webhook signature.")
        event = adapter.parse_webhook(raw_body)
        log.info(
            "webhook: provider=%s ref=%s event=%s claimed=%s",
            provider,
            event.reference,
            event.event_type,
            event.claimed_outcome.value,
        )

        if is_deposit_reference(event.reference):
            txn = WalletLedger(self.db).find_transaction(event.reference)
            if txn is None:
                raise NotFound(f"No wallet deposit for reference {event.reference}.")
            if txn.provider != adapter.provider:
                self._anomaly(
                    txn.owner_id,
                    event.reference,
                    f"{provider} webhook for a deposit opened with {txn.provider}",
                    ip,
                )
                return _deposit_result(txn, applied=False)
            return self._reconcile_deposit(txn, claimed=event.claimed_outcome, ip=ip)

        order = self.find_order(event.reference)
        if order is None:
            raise NotFound(f"No order for reference {event.reference}.")

        current = _PAYMENT_TO_OUTCOME[order.payment_status]
        if current != PaymentOutcome.PENDING:
            if current != event.claimed_outcome and event.claimed_outcome != PaymentOutcome.PENDING:
                self._anomaly(
                    order.owner_id,
                    event.reference,
                    f"webhook claims {event.claimed_outcome.value} but order is already {order.payment_status.value}",
                    ip,
                )
            return _order_result(order, applied=False)

        if order.payment_method != adapter.method.value:
            self._anomaly(
                order.owner_id,
                event.reference,
                f"{provider} webhook for an order paid with {order.payment_method}",
                ip,
            )
            return _order_result(order, applied=False)

        reference = order.payment_reference
        self._release()
        verification = adapter.verify(reference)
        if verification.outcome != event.claimed_outcome:
            self._anomaly(
                order.owner_id,
                event.reference,
                f"webhook claims {event.claimed_outcome.value}, gateway reports {verification.outcome.value} "
                f"(raw={verification.raw_status})",
                ip,
            )
        return self.apply_verification(order, verification, source=f"webhook:{provider}")

    # --- pull ----------------------------------------------------------------

    def verify_reference(self, owner_id: int, reference: str) -> ReconcileResult:
        """Owner-scoped re-check; used by the status page and the provider redirect."""
        if is_deposit_reference(reference):
            txn = WalletLedger(self.db).find_transaction(reference)
            if txn is None:
                raise NotFound("Wallet transaction not found.")
            if txn.owner_id != owner_id:
                raise Forbidden("This transaction belongs to another user.")
            return self._reconcile_deposit(txn)

        order = self.find_order(reference)
        if order is None:
            raise NotFound("Payment not found.")
        if order.owner_id != owner_id:
            raise Forbidden("This payment belongs to another user.")
        return self.verify_order(order)

    def verify_order(self, order: Order) -> ReconcileResult:
        if order.payment_status != PaymentStatus.PENDING or order.status != OrderStatus.PENDING:
            return _order_result(order, applied=False)
        adapter = self.registry.get(order.payment_method)
        if not adapter.live_verification:
            return _order_result(order, applied=False)
        reference = order.payment_reference
        self._release()
        return self.apply_verification(order, adapter.verify(reference), source="verify")

    # --- apply ---------------------------------------------------------------

    def apply_verification(self, order: Order, verification: Verification, source: str = "") -> ReconcileResult:
        if verification.outcome == PaymentOutcome.PENDING:
            log.info("ref=%s still pending (%s, raw=%s)", order.payment_reference, source, verification.raw_status)
            return _order_result(order, applied=False)
        if (
            verification.outcome == PaymentOutcome.SUCCESS
            and verification.amount is not None
            and verification.amount != order.total
        ):
            self._anomaly(
                order.owner_id,
                order.payment_reference,
                f"gateway reports amount {verification.amount}, order total is {order.total}",
            )
            return _order_result(order, applied=False)
        if verification.outcome == PaymentOutcome.SUCCESS:
            return self._apply_success(order, verification, source)
        return self._apply_failure(order, verification, source)

    def _claim(self, order_id: int, **values) -> bool:
        result = self.db.connection().execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == OrderStatus.PENDING,
                Order.payment_status == PaymentStatus.PENDING,
            )
            .values(**values)
        )
        return result.rowcount == 1

    def _lost_race(self, order_id: int, wanted: PaymentOutcome, source: str) -> ReconcileResult:
        self.db.rollback()
        order = self._reload_order(order_id)
        if order.payment_status == PaymentStatus.PENDING:
            # Order was cancelled (abandoned) before the gateway settled
            self._anomaly(
                order.owner_id,
                order.payment_reference,
                f"gateway reports {wanted.value} for order in status {order.status.value} ({source})",
            )
        return _order_result(order, applied=False)

    def _apply_success(self, order: Order, verification: Verification, source: str) -> ReconcileResult:
        now = utcnow()
        order_id = order.id
        values = {"status": OrderStatus.CONFIRMED, "payment_status": PaymentStatus.PAID, "processed_at": now}
        if verification.provider_order_id:
            values["transaction_id"] = verification.provider_order_id
        if not self._claim(order_id, **values):
            return self._lost_race(order_id, PaymentOutcome.SUCCESS, source)
        order = self._reload_order(order_id)

        checkout = self._checkout_for(order_id)
        if checkout is not None:
            checkout.status = CheckoutStatus.COMPLETED
            checkout.payment_status = PaymentStatus.PAID
            checkout.completed_at = now
            self.db.add(checkout)
            if checkout.from_cart:
                self.db.connection().execute(delete(CartItem).where(CartItem.owner_id == order.owner_id))

        invoice = self._invoice_for(order_id)
        if invoice is not None:
            invoice.status = InvoiceStatus.PAID
            invoice.payment_status = PaymentStatus.PAID
            invoice.paid_amount = invoice.total_amount
            invoice.balance_amount = 0
            invoice.paid_at = now
            self.db.add(invoice)
            self.db.add(
                InvoicePayment(
                    invoice_id=invoice.id,
                    owner_id=order.owner_id,
                    amount=invoice.total_amount,
                    gateway=order.payment_method,
                    reference=order.payment_reference,
                    transaction_id=verification.provider_order_id,
                    needs_audit=verification.needs_audit,
                    verified_at=now,
                )
            )

        apply_coupon_use(self.db, order.coupon_id)
        self._audit("payment_confirmed", order.owner_id, order.payment_reference, f"{source} raw={verification.raw_status}")
        if verification.needs_audit:
            log.warning("ref=%s settled with status %s, flagged for audit", order.payment_reference, verification.raw_status)
            self._audit(
                "opay_close",
                order.owner_id,
                order.payment_reference,
                f"counted as paid, needs manual audit (raw={verification.raw_status})",
            )
        try:
            self.db.commit()
        except IntegrityError:
            # InvoicePayment for this reference already exists: another delivery got there first
            return self._lost_race(order_id, PaymentOutcome.SUCCESS, source)

        order = self._reload_order(order_id)
        log.info("order %s confirmed via %s (ref=%s)", order.order_number, source, order.payment_reference)
        self._notify("order_confirmed", order, self._invoice_for(order_id))
        return _order_result(order, applied=True)

    def _apply_failure(self, order: Order, verification: Verification, source: str) -> ReconcileResult:
        order_id = order.id
        if not self._claim(order_id, status=OrderStatus.CANCELLED, payment_status=PaymentStatus.FAILED):
            return self._lost_race(order_id, PaymentOutcome.FAILED, source)
        order = self._reload_order(order_id)

        checkout = self._checkout_for(order_id)
        if checkout is not None:
            checkout.status = CheckoutStatus.FAILED
            checkout.payment_status = PaymentStatus.FAILED
            self.db.add(checkout)
        invoice = self._invoice_for(order_id)
        if invoice is not None:
            invoice.status = InvoiceStatus.VOID
            invoice.payment_status = PaymentStatus.FAILED
            self.db.add(invoice)
        self._audit("payment_failed", order.owner_id, order.payment_reference, f"{source} raw={verification.raw_status}")
        self.db.commit()

        order = self._reload_order(order_id)
        log.info("order %s payment failed via %s (raw=%s)", order.order_number, source, verification.raw_status)
        self._notify("payment_failed", order)
        return _order_result(order, applied=True)

    # --- wallet deposits -----------------------------------------------------

    def _reconcile_deposit(
        self,
        txn: WalletTransaction,
        claimed: PaymentOutcome | None = None,
        ip: str | None = None,
    ) -> ReconcileResult:
        if txn.status != WalletTransactionStatus.PENDING:
            return _deposit_result(txn, applied=False)
        adapter: GatewayAdapter = self.registry.get(txn.provider)
        reference = txn.reference
        self._release()
        verification = adapter.verify(reference)
        if claimed is not None and verification.outcome != claimed:
            self._anomaly(
                txn.owner_id,
                txn.reference,
                f"webhook claims {claimed.value}, gateway reports {verification.outcome.value} "
                f"(raw={verification.raw_status})",
                ip,
            )
        ledger = WalletLedger(self.db)
        if verification.outcome == PaymentOutcome.PENDING:
            return _deposit_result(txn, applied=False)
        if verification.outcome == PaymentOutcome.SUCCESS:
            if verification.amount is not None and verification.amount != txn.amount:
                self._anomaly(
                    txn.owner_id,
                    txn.reference,
                    f"gateway reports amount {verification.amount}, deposit is {txn.amount}",
                    ip,
                )
                return _deposit_result(txn, applied=False)
            txn, applied = ledger.complete_deposit(
                txn.reference,
                {"provider_order_id": verification.provider_order_id, "raw_status": verification.raw_status},
            )
            if applied and verification.needs_audit:
                self._audit("opay_close", txn.owner_id, txn.reference, "deposit credited, needs manual audit")
        else:
            txn, applied = ledger.fail_deposit(txn.reference, verification.raw_status)
        self.db.commit()
        txn = ledger.find_transaction(txn.reference)
        if applied:
            log.info("wallet deposit %s -> %s", txn.reference, txn.status.value)
            if txn.status == WalletTransactionStatus.SUCCESS:
                self._notify("wallet_credited", txn)
        return _deposit_result(txn, applied=applied)

    # --- operator ------------------------------------------------------------

    def _bank_transfer_order(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFound("Order not found.")
        if order.payment_method != PaymentMethod.BANK_TRANSFER.value:
            raise StateConflict("Only bank transfer orders are settled by an operator.")
        return order

    def confirm_manual_payment(self, order_id: int, note: str | None = None) -> ReconcileResult:
        order = self._bank_transfer_order(order_id)
        if order.payment_status == PaymentStatus.PAID:
            return _order_result(order, applied=False)
        if order.status != OrderStatus.PENDING or order.payment_status != PaymentStatus.PENDING:
            raise StateConflict(f"Order is {order.status.value}/{order.payment_status.value}; cannot confirm.")
        verification = Verification(
            outcome=PaymentOutcome.SUCCESS,
            reference=order.payment_reference,
            provider_order_id=f"manual-{order.id}",
            raw_status=f"operator_confirmed{': ' + note if note else ''}"[:200],
        )
        return self.apply_verification(order, verification, source="operator")

    def reject_manual_payment(self, order_id: int, reason: str | None = None) -> ReconcileResult:
        order = self._bank_transfer_order(order_id)
        if order.payment_status == PaymentStatus.FAILED:
            return _order_result(order, applied=False)
        if order.status != OrderStatus.PENDING or order.payment_status != PaymentStatus.PENDING:
            raise StateConflict(f"Order is {order.status.value}/{order.payment_status.value}; cannot reject.")
        verification = Verification(
            outcome=PaymentOutcome.FAILED,
            reference=order.payment_reference,
            raw_status=f"operator_rejected{': ' + reason if reason else ''}"[:200],
        )
        return self.apply_verification(order, verification, source="operator")

    def sweep_pending(self, min_age_minutes: int = 10, limit: int = 100) -> dict:
        """Re-verifies stale PENDING orders and deposits. Gateway errors are counted, never applied."""
        cutoff = utcnow() - timedelta(minutes=min_age_minutes)
        live = [m.value for m in PaymentMethod if m != PaymentMethod.BANK_TRANSFER]
        orders = self.db.exec(
            select(Order)
            .where(
                Order.status == OrderStatus.PENDING,
                Order.payment_status == PaymentStatus.PENDING,
                Order.payment_method.in_(live),
                Order.created_at < cutoff,
            )
            .order_by(Order.id)
            .limit(limit)
        ).all()
        deposits = self.db.exec(
            select(WalletTransaction)
            .where(
                WalletTransaction.status == WalletTransactionStatus.PENDING,
                WalletTransaction.reference.startswith(DEPOSIT_PREFIX),
                WalletTransaction.created_at < cutoff,
            )
            .order_by(WalletTransaction.id)
            .limit(limit)
        ).all()

        stats = {"checked": 0, "confirmed": 0, "failed": 0, "pending": 0, "errors": 0}
        for order in orders:
            stats["checked"] += 1
            try:
                result = self.verify_order(order)
            except GatewayNotConfigured:
                stats["errors"] += 1
                continue
            except GatewayError as e:
                self.db.rollback()
                log.warning("sweep: verify failed for %s: %s", order.payment_reference, e)
                stats["errors"] += 1
                continue
            self._count(stats, result)
        for txn in deposits:
            stats["checked"] += 1
            try:
                result = self._reconcile_deposit(txn)
            except GatewayError as e:
                self.db.rollback()
                log.warning("sweep: verify failed for %s: %s", txn.reference, e)
                stats["errors"] += 1
                continue
            self._count(stats, result)
        log.info("sweep finished: %s", stats)
        return stats

    @staticmethod
    def _count(stats: dict, result: ReconcileResult) -> None:
        if not result.applied:
            stats["pending"] += 1
        elif result.outcome == PaymentOutcome.SUCCESS:
            stats["confirmed"] += 1
        else:
            stats["failed"] += 1

    # --- notifications -------------------------------------------------------

    def _notify(self, kind: str, record, *extra) -> None:
        """After commit only. A failed email never touches the payment state."""
        if self.notifier is None:
            return
        try:
            user = self.db.get(User, record.owner_id)
            email = user.email if user else None
            getattr(self.notifier, kind)(record, *extra, email)
        except Exception as e:
            log.exception("notification %s failed for owner=%s: %s", kind, record.owner_id, e)
