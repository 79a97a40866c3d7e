"""
Time-window overlap rules shared by constraints, notices, capacity records
and contract seasons.

Instants are stored in the graph as canonical strings
(``YYYY-MM-DDTHH:MM:SS``, UTC, no offset) so that comparisons made by the
database and comparisons made here agree.
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple, Union

from .errors import ValidationError

INSTANT_FORMAT = "%Y-%m-%dT%H:%M:%S"
FLOW_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

Instant = Union[datetime, str]


def parse_instant(value: Instant) -> datetime:
    """Parse an ISO-8601 instant into a naive UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid ISO-8601 datetime: '{value}'")
    else:
        raise ValidationError(f"Invalid ISO-8601 datetime: '{value}'")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed.replace(microsecond=0)


def format_instant(value: Instant) -> str:
    return parse_instant(value).strftime(INSTANT_FORMAT)


def parse_flow_date(value: Union[str, date]) -> date:
    """Parse a strict ``YYYY-MM-DD`` flow date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not FLOW_DATE_PATTERN.match(value):
        raise ValidationError(f"Invalid date '{value}'. Expected YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date '{value}'. Expected YYYY-MM-DD")


def gas_day_window(flow_date: Union[str, date]) -> Tuple[datetime, datetime]:
    """
    Return the inclusive window covering one gas day.

    The window ends one second before the next day starts, so
    ``2025-11-01`` spans ``2025-11-01T00:00:00`` .. ``2025-11-01T23:59:59``.
    """
    day = parse_flow_date(flow_date)
    day_start = datetime(day.year, day.month, day.day)
    day_end = day_start + timedelta(days=1) - timedelta(seconds=1)
    return day_start, day_end


def overlap_bounds(query_start, query_end=None):
    """
    Bounds a window must satisfy to overlap the query.

    A window overlaps when its start is no later than the first returned
    value and its end is open or no earlier than the second returned value.
    An instant query is the degenerate range ``[query_start, query_start]``.
    """
    latest_start = query_end if query_end is not None else query_start
    return latest_start, query_start


def overlaps(
    window_start: datetime,
    window_end: Optional[datetime],
    query_start: datetime,
    query_end: Optional[datetime] = None,
) -> bool:
    """
    Decide whether ``[window_start, window_end]`` overlaps the query.

    ``window_end`` of ``None`` means the window is still open. ``query_end``
    of ``None`` means the query is the single instant ``query_start``.
    """
    latest_start, earliest_end = overlap_bounds(query_start, query_end)
    if window_start > latest_start:
        return False
    return window_end is None or window_end >= earliest_end


def window_overlaps(
    window_start: Optional[Instant],
    window_end: Optional[Instant],
    query_start: Instant,
    query_end: Optional[Instant] = None,
) -> bool:
    """`overlaps` for stored string windows; a window without a start never matches."""
    if window_start is None:
        return False
    return overlaps(
        parse_instant(window_start),
        parse_instant(window_end) if window_end is not None else None,
        parse_instant(query_start),
        parse_instant(query_end) if query_end is not None else None,
    )
