"""
Month utilities for billing operations.

Billing months travel as 'YYYY-MM' strings at the API boundary and are
stored as first-of-month dates.
"""

from datetime import date, datetime, timezone
from typing import Optional, Union

import pytz


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention for all DateTime columns)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_month(value: Union[str, date, datetime]) -> date:
    """
    Convert a billing month to its first-of-month date.

    Args:
        value: 'YYYY-MM' string, 'YYYY-MM-DD' string, date or datetime

    Returns:
        date: First day of the month

    Raises:
        ValueError: If the value cannot be read as a month
    """
    if isinstance(value, datetime):
        return date(value.year, value.month, 1)
    if isinstance(value, date):
        return date(value.year, value.month, 1)
    if not isinstance(value, str):
        raise ValueError(f"Invalid billing month: {value!r}")

    parts = value.strip().split('-')
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid billing month: {value!r} (expected YYYY-MM)")

    try:
        year, month = int(parts[0]), int(parts[1])
        return date(year, month, 1)
    except ValueError:
        raise ValueError(f"Invalid billing month: {value!r} (expected YYYY-MM)")


def format_month(value: Union[str, date, datetime]) -> str:
    """Format a month as 'YYYY-MM'."""
    month = parse_month(value)
    return f"{month.year:04d}-{month.month:02d}"


def add_months(value: Union[str, date], count: int) -> date:
    """
    Shift a month forward (or backward for negative counts).

    Args:
        value: Month to shift
        count: Number of months

    Returns:
        date: First day of the resulting month
    """
    month = parse_month(value)
    index = month.year * 12 + (month.month - 1) + count
    return date(index // 12, index % 12 + 1, 1)


def current_month(tz_name: Optional[str] = None) -> str:
    """
    Current billing month as 'YYYY-MM'.

    Args:
        tz_name: Timezone used to decide the calendar date (UTC if omitted)
    """
    tz = pytz.timezone(tz_name) if tz_name else pytz.UTC
    now = datetime.now(tz)
    return f"{now.year:04d}-{now.month:02d}"
