from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def duration_ms(start: Optional[datetime], end: datetime) -> int:
    start = ensure_utc(start)
    if start is None:
        return 0
    return max(int((ensure_utc(end) - start).total_seconds() * 1000), 0)
