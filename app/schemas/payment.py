from pydantic import BaseModel, Field


class VerifyResponse(BaseModel):
    """Status as stored after reconciliation; clients must not cache it as the truth."""
    reference: str
    kind: str
    outcome: str
    status: str
    payment_status: str
    applied: bool
    order_id: int | None = None


class ManualDecision(BaseModel):
    """Operator confirm/reject of a bank transfer."""
    note: str | None = Field(default=None, max_length=200)


class SweepRequest(BaseModel):
    min_age_minutes: int | None = Field(default=None, ge=0)
    limit: int = Field(default=100, ge=1, le=500)
