from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo even on timezone=True columns)."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
