"""UTC day keys and midnight-aligned TTLs for daily counters."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from schemas.quota import QuotaKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: Optional[datetime]) -> datetime:
    if dt is None:
        return utcnow()
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_day_key(now: Optional[datetime] = None) -> str:
    """UTC calendar date as YYYYMMDD."""
    return _as_utc(now).strftime("%Y%m%d")


def next_midnight(now: Optional[datetime] = None) -> datetime:
    now = _as_utc(now)
    return datetime(now.year, now.month, now.day, tzinfo=timezone.utc) + timedelta(days=1)


def seconds_until_midnight(now: Optional[datetime] = None) -> int:
    """Whole seconds until the next UTC midnight (never less than 1)."""
    now = _as_utc(now)
    remaining = int((next_midnight(now) - now).total_seconds())
    return max(remaining, 1)


def quota_key(kind: QuotaKind, identity: str, now: Optional[datetime] = None) -> str:
    """Counter key, e.g. enh:anon:<id>:20250101."""
    return f"enh:{kind.value}:{identity}:{get_day_key(now)}"


def link_key(user_id: str, anon_id: str, now: Optional[datetime] = None) -> str:
    """Marker key recording that anon usage was folded into user for a day."""
    return f"link:anon:{user_id}:{anon_id}:{get_day_key(now)}"
