"""
Time helpers.

Storage and every deadline comparison use naive UTC datetimes; the display
timezone only affects formatted strings sent to clients.
"""
from datetime import datetime, timezone
from typing import Optional
import pytz

from ..core.config import settings


def utc_now() -> datetime:
    """Current time as naive UTC, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_display_timezone():
    return pytz.timezone(settings.default_timezone)


def to_display_time(utc_dt: datetime) -> datetime:
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=pytz.UTC)
    return utc_dt.astimezone(get_display_timezone())


def format_display_time(dt: Optional[datetime], format_str: Optional[str] = None) -> Optional[str]:
    if dt is None:
        return None
    return to_display_time(dt).strftime(format_str or settings.timezone_display_format)


def isoformat_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()
