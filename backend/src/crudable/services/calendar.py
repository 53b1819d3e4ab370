"""Date-range labels for tables that declare a ``calendar`` block."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from crudable.schema.loader import CalendarConfig

DATE_RANGE_FIELD = "_dateRange"

_DATE_FORMAT = "%d %b %Y"
_TIME_FORMAT = "%H:%M"


def _parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).strip())
    except ValueError:
        return None


def format_date_range(calendar: CalendarConfig, row: dict[str, Any]) -> str | None:
    """Compact start→end label for a calendar row.

    Same day: ``"15 Jan 2024 14:30→18:00"``.
    Different days: ``"15 Jan 2024 14:30→16 Jan 2024 10:00"``.
    None when either bound is missing or not a date.
    """
    start = _parse_datetime(row.get(calendar.start_date))
    end = _parse_datetime(row.get(calendar.end_date))
    if start is None or end is None:
        return None
    head = f"{start.strftime(_DATE_FORMAT)} {start.strftime(_TIME_FORMAT)}"
    if start.date() == end.date():
        return f"{head}→{end.strftime(_TIME_FORMAT)}"
    return f"{head}→{end.strftime(_DATE_FORMAT)} {end.strftime(_TIME_FORMAT)}"


def enrich_row_with_date_range(calendar: CalendarConfig | None, row: dict[str, Any]) -> dict[str, Any]:
    """Add ``_dateRange`` to the row in place when both bounds are present."""
    if calendar is None:
        return row
    label = format_date_range(calendar, row)
    if label is not None:
        row[DATE_RANGE_FIELD] = label
    return row
