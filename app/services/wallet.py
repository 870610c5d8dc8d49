"""
Wallet ledger: append-only WalletTransaction rows and the balance they drive.

Balance writes are single conditional UPDATEs (balance >= amount for debits, status = PENDING for
deposit completion), so two concurrent requests cannot both pass the check. Every method works inside
the caller's session and leaves the commit to the caller.
"""
import logging
import secrets
import time

from sqlalchemy import update
from sqlmodel import Session, select

from app.core.clock import utcnow
from app.models import Wallet, WalletTransaction, WalletTransactionStatus, WalletTransactionType
from app.services.errors import Forbidden, InsufficientFunds, NotFound, StateConflict, ValidationError

log = logging.getLogger("storefront.wallet")

DEPOSIT_PREFIX = "WD_"


def new_deposit_reference() -> str:
    return f"{DEPOSIT_PREFIX}{secrets.token_hex(6).upper()}_{int(time.time() * 1000)}"


def is_deposit_reference(reference: str | None) -> bool:
    return bool(reference) and reference.startswith(DEPOSIT_PREFIX)


class WalletLedger:
    def __init__(self, db: Session):
        self.db = db

    def get_wallet(self, owner_id: int) -> Wallet | None:
        return self.db.exec(select(Wallet).where(Wallet.owner_id == owner_id)).first()

    def get_or_create_wallet(self, owner_id: int, currency: str = "NGN") -> Wallet:
        wallet = self.get_wallet(owner_id)
        if wallet is None:
            wallet = Wallet(owner_id=owner_id, balance=0, currency=currency, last_activity=utcnow())
            self.db.add(wallet)
            self.db.flush()
        return wallet

    def _reload_wallet(self, wallet_id: int) -> Wallet:
        stmt = select(Wallet).where(Wallet.id == wallet_id).execution_options(populate_existing=True)
        return self.db.exec(stmt).one()

    def _owned_wallet(self, wallet_id: int, owner_id: int | None) -> Wallet:
        wallet = self.db.get(Wallet, wallet_id)
        if wallet is None:
            raise NotFound("Wallet not found.")
        if owner_id is not None and wallet.owner_id != owner_id:
            raise Forbidden("This wallet belongs to another user.")
        if not wallet.is_active:
            raise StateConflict("Wallet is not active.")
        return wallet

    def find_transaction(self, reference: str, for_update: bool = False) -> WalletTransaction | None:
        stmt = select(WalletTransaction).where(WalletTransaction.reference == reference)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.exec(stmt).first()

    def _existing(self, reference: str, wallet_id: int, amount: int, tx_type: WalletTransactionType):
        """A retried call with the same reference returns the first result instead of moving money twice."""
        existing = self.find_transaction(reference)
        if existing is None:
            return None
        if existing.wallet_id != wallet_id or existing.amount != amount or existing.type != tx_type:
            raise StateConflict(f"Reference {reference} is already used by another wallet transaction.")
        if existing.status == WalletTransactionStatus.FAILED:
            raise StateConflict(f"Wallet transaction {reference} previously failed.")
        return existing

    def credit(
        self,
        wallet_id: int,
        amount: int,
        reference: str,
        *,
        owner_id: int | None = None,
        provider: str | None = None,
        description: str | None = None,
    ) -> WalletTransaction:
        """Immediate settled credit (refunds, operator adjustments)."""
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero.")
        wallet = self._owned_wallet(wallet_id, owner_id)
        existing = self._existing(reference, wallet.id, amount, WalletTransactionType.CREDIT)
        if existing is not None:
            return existing
        self.db.connection().execute(
            update(Wallet)
            .where(Wallet.id == wallet.id)
            .values(balance=Wallet.balance + amount, last_activity=utcnow())
        )
        after = self._reload_wallet(wallet.id).balance
        txn = WalletTransaction(
            wallet_id=wallet.id,
            owner_id=wallet.owner_id,
            amount=amount,
            type=WalletTransactionType.CREDIT,
            status=WalletTransactionStatus.SUCCESS,
            balance_before=after - amount,
            balance_after=after,
            reference=reference,
            provider=provider,
            description=description,
            completed_at=utcnow(),
        )
        self.db.add(txn)
        self.db.flush()
        return txn

    def debit(
        self,
        wallet_id: int,
        amount: int,
        reference: str,
        *,
        owner_id: int | None = None,
        description: str | None = None,
        meta: dict | None = None,
    ) -> WalletTransaction:
        """Settled debit. InsufficientFunds leaves the balance untouched."""
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero.")
        wallet = self._owned_wallet(wallet_id, owner_id)
        existing = self._existing(reference, wallet.id, amount, WalletTransactionType.DEBIT)
        if existing is not None:
            return existing
        result = self.db.connection().execute(
            update(Wallet)
            .where(Wallet.id == wallet.id, Wallet.balance >= amount)
            .values(balance=Wallet.balance - amount, last_activity=utcnow())
        )
        if result.rowcount != 1:
            balance = self._reload_wallet(wallet.id).balance
            log.info("wallet debit refused: wallet=%s amount=%s balance=%s ref=%s", wallet.id, amount, balance, reference)
            raise InsufficientFunds(f"Insufficient wallet balance: {balance} available, {amount} required.")
        after = self._reload_wallet(wallet.id).balance
        txn = WalletTransaction(
            wallet_id=wallet.id,
            owner_id=wallet.owner_id,
            amount=amount,
            type=WalletTransactionType.DEBIT,
            status=WalletTransactionStatus.SUCCESS,
            balance_before=after + amount,
            balance_after=after,
            reference=reference,
            provider="wallet",
            description=description,
            meta=meta,
            completed_at=utcnow(),
        )
        self.db.add(txn)
        self.db.flush()
        return txn

    def open_deposit(self, owner_id: int, amount: int, provider: str, currency: str = "NGN") -> WalletTransaction:
        """PENDING top-up; the balance only moves in complete_deposit."""
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero.")
        wallet = self.get_or_create_wallet(owner_id, currency)
        txn = WalletTransaction(
            wallet_id=wallet.id,
            owner_id=owner_id,
            amount=amount,
            type=WalletTransactionType.CREDIT,
            status=WalletTransactionStatus.PENDING,
            balance_before=wallet.balance,
            balance_after=wallet.balance,
            reference=new_deposit_reference(),
            provider=provider,
            description=f"Wallet deposit via {provider}",
            meta={"kind": "deposit"},
        )
        self.db.add(txn)
        self.db.flush()
        return txn

    def _transition(self, txn: WalletTransaction, status: WalletTransactionStatus) -> bool:
        result = self.db.connection().execute(
            update(WalletTransaction)
            .where(
                WalletTransaction.id == txn.id,
                WalletTransaction.status == WalletTransactionStatus.PENDING,
            )
            .values(status=status, completed_at=utcnow())
        )
        return result.rowcount == 1

    def complete_deposit(self, reference: str, provider_meta: dict | None = None) -> tuple[WalletTransaction, bool]:
        """PENDING -> SUCCESS exactly once. Returns (transaction, applied_now)."""
        txn = self.find_transaction(reference, for_update=True)
        if txn is None:
            raise NotFound("Wallet transaction not found.")
        if txn.type != WalletTransactionType.CREDIT:
            raise StateConflict("Only credits can be completed as deposits.")
        if txn.status != WalletTransactionStatus.PENDING or not self._transition(txn, WalletTransactionStatus.SUCCESS):
            return self.find_transaction(reference, for_update=True), False
        self.db.connection().execute(
            update(Wallet)
            .where(Wallet.id == txn.wallet_id)
            .values(balance=Wallet.balance + txn.amount, last_activity=utcnow())
        )
        after = self._reload_wallet(txn.wallet_id).balance
        txn = self.find_transaction(reference, for_update=True)
        txn.balance_before = after - txn.amount
        txn.balance_after = after
        txn.meta = {**(txn.meta or {}), **(provider_meta or {})}
        self.db.add(txn)
        self.db.flush()
        return txn, True

    def fail_deposit(self, reference: str, reason: str | None = None) -> tuple[WalletTransaction, bool]:
        txn = self.find_transaction(reference, for_update=True)
        if txn is None:
            raise NotFound("Wallet transaction not found.")
        if txn.status != WalletTransactionStatus.PENDING or not self._transition(txn, WalletTransactionStatus.FAILED):
            return self.find_transaction(reference, for_update=True), False
        txn = self.find_transaction(reference, for_update=True)
        if reason:
            txn.meta = {**(txn.meta or {}), "failure_reason": reason}
            self.db.add(txn)
            self.db.flush()
        return txn, True

    def transactions(self, owner_id: int, limit: int = 50, offset: int = 0) -> list[WalletTransaction]:
        stmt = (
            select(WalletTransaction)
            .where(WalletTransaction.owner_id == owner_id)
            .order_by(WalletTransaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.exec(stmt).all())
