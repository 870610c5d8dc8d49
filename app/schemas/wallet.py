from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.models import WalletTransactionStatus, WalletTransactionType


class WalletBalance(BaseModel):
    balance: int
    currency: str
    is_active: bool = True


class WalletTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: int
    type: WalletTransactionType
    status: WalletTransactionStatus
    balance_before: int
    balance_after: int
    reference: str
    provider: str | None = None
    description: str | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


class DepositRequest(BaseModel):
    amount: int = Field(gt=0, description="Minor units")
    provider: Literal["paystack", "opay"]


class DepositResponse(BaseModel):
    transaction: WalletTransactionOut
    payment_instructions: dict


class WalletVerifyRequest(BaseModel):
    reference: str = Field(min_length=1, max_length=80)
