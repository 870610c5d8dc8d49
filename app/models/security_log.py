"""Security events: bad webhook signatures, rate limits."""
from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.clock import UtcDateTime, utcnow


class SecurityLog(SQLModel, table=True):
    __tablename__ = "security_logs"
    id: int | None = Field(default=None, primary_key=True)
    event: str = Field(index=True)  # signature_invalid | rate_limit
    provider: str | None = None
    ip: str | None = None
    endpoint: str | None = None
    detail: str | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UtcDateTime)
