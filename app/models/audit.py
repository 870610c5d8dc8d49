from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.clock import UtcDateTime, utcnow


class AuditLog(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    event: str = Field(index=True)  # payment_confirmed, reconciliation_anomaly, opay_close, ...
    owner_id: int | None = Field(default=None, index=True)
    reference: str | None = Field(default=None, index=True)
    detail: str | None = None
    ip: str | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UtcDateTime)
