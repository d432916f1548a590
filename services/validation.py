"""
Reading Validation
Measure type parsing, timestamp parsing and calendar-month windows
"""
from datetime import datetime, timezone
from typing import Optional, Tuple

from database.models import MeasureType
from services.errors import InvalidInput, InvalidMeasureType


def parse_measure_type(value) -> MeasureType:
    """
    Strict parsing used on submission: only the exact names are accepted.
    """
    if not isinstance(value, str) or value not in MeasureType.__members__:
        raise InvalidInput(detail=f"unknown measure type: {value!r}")
    return MeasureType[value]


def parse_measure_type_filter(value: Optional[str]) -> Optional[MeasureType]:
    """
    Case-insensitive parsing used by listing; empty means no filter.
    """
    if value is None:
        return None

    normalized = value.strip().upper()
    if not normalized:
        return None

    if normalized not in MeasureType.__members__:
        raise InvalidMeasureType(detail=f"unknown measure type filter: {value!r}")
    return MeasureType[normalized]


def parse_measure_datetime(value) -> datetime:
    """
    ISO-8601 string -> naive UTC datetime.

    Aware values are converted to UTC, naive values are taken as UTC.
    A trailing "Z" is accepted.
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(detail=f"missing measure datetime: {value!r}")

    raw = value.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise InvalidInput(detail=f"malformed measure datetime: {value!r}")

    try:
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        # The month window must be representable (fails for 9999-12)
        month_window(parsed)
    except (ValueError, OverflowError):
        raise InvalidInput(detail=f"measure datetime out of supported range: {value!r}")

    return parsed


def month_window(value: datetime) -> Tuple[datetime, datetime]:
    """
    Half-open [first day of month, first day of next month) around value.
    """
    start = value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end
