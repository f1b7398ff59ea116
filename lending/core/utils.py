# lending/core/utils.py
import math
import uuid
from datetime import datetime, timezone
from typing import Optional

SECONDS_PER_HOUR = 60 * 60
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR


def new_id() -> str:
    """Opaque string id used for every entity."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC (Mongo hands back naive values unless tz_aware)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def hours_between(start: datetime, end: datetime) -> float:
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / SECONDS_PER_HOUR


def days_between_floor(start: datetime, end: datetime) -> int:
    return math.floor((ensure_utc(end) - ensure_utc(start)).total_seconds() / SECONDS_PER_DAY)


def days_between_ceil(start: datetime, end: datetime) -> int:
    return math.ceil((ensure_utc(end) - ensure_utc(start)).total_seconds() / SECONDS_PER_DAY)
