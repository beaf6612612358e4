"""
Helper Utilities Module
Small time and identifier helpers shared across the engine
"""

import uuid
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Optional, Union

import pandas as pd

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Naive UTC timestamp, the representation stored in every table"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


def start_of_day(value: Union[date, datetime]) -> datetime:
    """Midnight of the given day"""
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def parse_datetime(value: Any, default: Optional[datetime] = None) -> Optional[datetime]:
    """Parse ISO strings, dates and timestamps into a naive UTC datetime

    Args:
        value: Value to parse
        default: Returned when value is empty

    Returns:
        Naive datetime or default
    """
    if value is None or value == '':
        return default
    if isinstance(value, datetime):
        parsed = pd.Timestamp(value)
    elif isinstance(value, date):
        return start_of_day(value)
    else:
        try:
            parsed = pd.Timestamp(value)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid datetime value: {value!r}") from e
    if parsed.tzinfo is not None:
        parsed = parsed.tz_convert('UTC').tz_localize(None)
    return parsed.to_pydatetime()


def parse_date(value: Any, default: Optional[date] = None) -> Optional[date]:
    """Parse a value into a date"""
    if value is None or value == '':
        return default
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_datetime(value).date()


def days_between(later: datetime, earlier: datetime) -> int:
    """Whole days from earlier to later, floored"""
    return int((later - earlier).total_seconds() // 86400)
