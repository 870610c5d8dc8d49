from datetime import datetime, timezone

from sqlalchemy import DateTime

# Column type for every timestamp; values are always aware UTC on the way in
UtcDateTime = DateTime(timezone=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
