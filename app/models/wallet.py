from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from app.core.clock import UtcDateTime, utcnow


class WalletTransactionType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class WalletTransactionStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Wallet(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    owner_id: int = Field(unique=True, index=True)
    balance: int = 0  # minor units, never negative
    currency: str = "NGN"
    is_active: bool = True
    last_activity: datetime | None = Field(default=None, sa_type=UtcDateTime)
    created_at: datetime | None = Field(default_factory=utcnow, sa_type=UtcDateTime)


class WalletTransaction(SQLModel, table=True):
    """
    Ledger row. Wallet.balance only moves when a row reaches SUCCESS, exactly once;
    reference is unique so a redelivered top-up or a retried debit cannot apply twice.
    """

    id: int | None = Field(default=None, primary_key=True)
    wallet_id: int = Field(index=True)
    owner_id: int = Field(index=True)
    amount: int
    type: WalletTransactionType
    status: WalletTransactionStatus = Field(default=WalletTransactionStatus.PENDING, index=True)
    balance_before: int
    balance_after: int
    reference: str = Field(unique=True, index=True, max_length=80)
    provider: str | None = None  # paystack | opay | wallet
    description: str | None = None
    meta: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime | None = Field(default_factory=utcnow, sa_type=UtcDateTime)
    completed_at: datetime | None = Field(default=None, sa_type=UtcDateTime)
