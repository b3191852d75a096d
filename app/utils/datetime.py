from __future__ import annotations
from datetime import datetime, UTC
from typing import Optional

__all__ = ["utc_now", "ensure_aware_utc", "isoformat_utc"]

def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(UTC)

def ensure_aware_utc(dt: datetime | None) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware in UTC (SQLite hands back naive values already in UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)

def isoformat_utc(dt: datetime | None) -> Optional[str]:
    """ISO-8601 string in UTC for notification payloads."""
    aware = ensure_aware_utc(dt)
    return aware.isoformat() if aware else None
