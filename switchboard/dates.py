"""
Current-date service.

Every component that needs "today" (instruction placeholders, default skill
periods, usage period keys) reads it from here so tests can pin the clock
with `set_override`.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import get_settings

_WEEKDAYS = ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"]
_MONTHS = [
    "enero",
    "febrero",
    "marzo",
    "abril",
    "mayo",
    "junio",
    "julio",
    "agosto",
    "septiembre",
    "octubre",
    "noviembre",
    "diciembre",
]

_override: Optional[datetime] = None


def set_override(value: datetime) -> None:
    """Pin "now" to a fixed instant (tests, debugging)."""
    global _override
    _override = value


def clear_override() -> None:
    global _override
    _override = None


def _tz() -> Optional[ZoneInfo]:
    try:
        return ZoneInfo(get_settings().timezone)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def now() -> datetime:
    if _override is not None:
        return _override
    return datetime.now(_tz())


def today() -> date:
    return now().date()


def formatted(value: Optional[date] = None) -> str:
    """Spanish long date, e.g. "jueves, 8 de enero de 2026"."""
    d = value or today()
    return f"{_WEEKDAYS[d.weekday()]}, {d.day} de {_MONTHS[d.month - 1]} de {d.year}"


def iso_date(value: Optional[date] = None) -> str:
    return (value or today()).isoformat()


def current_month() -> str:
    """Period key in YYYY-MM form."""
    return today().strftime("%Y-%m")


def month_label(d: date) -> str:
    return f"{_MONTHS[d.month - 1]} {d.year}"


def current_month_period() -> Tuple[str, str, str]:
    """(start, end, label) from the first of the month through today."""
    d = today()
    start = d.replace(day=1)
    return start.isoformat(), d.isoformat(), month_label(d)


def previous_month_period() -> Tuple[str, str, str]:
    """(start, end, label) covering the whole previous calendar month."""
    first_this_month = today().replace(day=1)
    last_prev = first_this_month - timedelta(days=1)
    start = last_prev.replace(day=1)
    end = last_prev.replace(day=calendar.monthrange(last_prev.year, last_prev.month)[1])
    return start.isoformat(), end.isoformat(), month_label(last_prev)


def days_between(start_iso: str, end: Optional[date] = None) -> int:
    """Whole days from `start_iso` (YYYY-MM-DD) until `end` (default today)."""
    start = date.fromisoformat(str(start_iso)[:10])
    return ((end or today()) - start).days
