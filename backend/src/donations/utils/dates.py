"""Date helpers for recurring schedules and gateway timestamps."""
import calendar
from datetime import datetime, timezone
from typing import Optional


def add_months(value: datetime, months: int = 1) -> datetime:
    """
    Move a timestamp forward by calendar months.

    The day is clamped to the last day of the target month, so January 31st
    plus one month is the last day of February.

    Args:
        value: Starting timestamp
        months: Number of months to add

    Returns:
        Timestamp in the target month with the same time of day

    Example:
        >>> add_months(datetime(2025, 1, 31))
        datetime.datetime(2025, 2, 28, 0, 0)
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def parse_gateway_time(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a gateway ``submitTimeUtc`` value into a naive UTC datetime.

    Example:
        >>> parse_gateway_time("2025-03-01T10:15:00Z")
        datetime.datetime(2025, 3, 1, 10, 15)
    """
    if not value:
        return None

    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
