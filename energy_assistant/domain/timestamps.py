"""
Timestamp parsing and formatting helpers.

Telemetry buckets come back from the database either as datetimes
(PostgreSQL) or as text (SQLite); both are normalized to UTC and rendered
as ISO8601 with a ``Z`` suffix.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional, Union

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400


def parse_timestamp(value: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """
    Parse an ISO8601 string or datetime into an aware UTC datetime.

    Parameters
    ----------
    value : str, datetime, or None
        The timestamp to parse. Naive values are assumed to be UTC.

    Returns
    -------
    datetime or None
        Parsed datetime in UTC, or None if parsing fails

    Examples
    --------
    >>> parse_timestamp("2024-06-08T00:00:00Z")
    datetime.datetime(2024, 6, 8, 0, 0, tzinfo=datetime.timezone.utc)
    >>> parse_timestamp("2024-06-08 13:00:00")
    datetime.datetime(2024, 6, 8, 13, 0, tzinfo=datetime.timezone.utc)
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            logger.warning(
                "timestamps.parse_iso8601_failed",
                extra={"value": value, "error": "invalid format"},
            )
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso8601(dt: Optional[datetime]) -> Optional[str]:
    """
    Convert datetime to ISO8601 string with 'Z' suffix for UTC.

    >>> from datetime import datetime, timezone
    >>> to_iso8601(datetime(2024, 6, 8, 0, 0, 0, tzinfo=timezone.utc))
    '2024-06-08T00:00:00Z'
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    iso_str = dt.astimezone(timezone.utc).isoformat()
    if iso_str.endswith("+00:00"):
        iso_str = iso_str[:-6] + "Z"
    return iso_str


def day_span(start: datetime, end: datetime) -> int:
    """Whole days between ``start`` and ``end``, rounded up.

    >>> from datetime import datetime
    >>> day_span(datetime(2024, 6, 8), datetime(2024, 6, 15))
    7
    >>> day_span(datetime(2024, 6, 8), datetime(2024, 6, 8, 1))
    1
    """
    seconds = (end - start).total_seconds()
    return math.ceil(seconds / _SECONDS_PER_DAY)
