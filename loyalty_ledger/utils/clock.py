"""Time helpers. All stored timestamps are naive UTC."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def month_start(now: datetime = None) -> datetime:
    """First instant of the calendar month containing ``now``."""
    now = now or utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
