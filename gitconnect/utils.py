from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return the current time in UTC as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def token_prefix(token: Optional[str], length: int = 6) -> str:
    if not token:
        return "<none>"
    return f"{token[:length]}..."
