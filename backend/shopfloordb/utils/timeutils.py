"""
Clock helpers shared by the maintenance services.

All persisted timestamps are UTC. Calendar questions ("is this due today?",
"what is 17:00 on the due day?") are answered in the shop's local timezone,
configured through SHOP_TIMEZONE.
"""

from __future__ import annotations

import os
from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def shop_timezone() -> ZoneInfo:
    return ZoneInfo(os.getenv("SHOP_TIMEZONE", "UTC"))


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_date(value: datetime) -> date:
    return ensure_utc(value).astimezone(shop_timezone()).date()


def local_datetime(day: date, at: time) -> datetime:
    """Combine a shop-local date and wall-clock time into an aware UTC datetime."""
    return datetime.combine(day, at, tzinfo=shop_timezone()).astimezone(timezone.utc)
