from __future__ import annotations

from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from ..config import get_settings


def get_app_tz() -> ZoneInfo:
    s = get_settings()
    try:
        return ZoneInfo(s.app.timezone)
    except Exception:
        return ZoneInfo("UTC")


def today_local() -> date:
    """Current calendar date in the reference time zone."""
    return datetime.now(get_app_tz()).date()


def due_date_for(end_date: date) -> date:
    # Stored end dates are exclusive; the due date is the last covered day.
    return end_date - timedelta(days=1)


def end_date_for(due: date) -> date:
    return due + timedelta(days=1)


def parse_date(value) -> date:
    """Accept a date, datetime or ISO string (YYYY-MM-DD, optionally with a time part)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value or "").strip()
    if not raw:
        raise ValueError("Missing date")
    return date.fromisoformat(raw[:10])
