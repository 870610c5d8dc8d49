from datetime import datetime

from sqlmodel import Field, SQLModel

from app.core.clock import UtcDateTime, utcnow


class User(SQLModel, table=True):
    """Identity mirrored from the auth provider; only what gateways need for a charge."""

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    full_name: str = ""
    phone: str | None = None
    created_at: datetime | None = Field(default_factory=utcnow, sa_type=UtcDateTime)
