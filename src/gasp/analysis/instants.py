"""
Instant coercion shared by extraction, the data models and normalization.

Instants cross the worker boundary as epoch milliseconds or ISO-8601 strings;
these helpers turn any of those back into timezone-aware UTC datetimes and
report anything unusable as None instead of inventing a fallback value.
"""

import math
import numbers

from datetime import UTC, datetime, timedelta
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_ONE_MILLISECOND = timedelta(milliseconds=1)
_ONE_MICROSECOND = timedelta(microseconds=1)
MICROSECONDS_PER_SECOND = 1_000_000


def to_valid_instant(value: Any) -> datetime | None:
    """
    Coerce a transported instant into an aware datetime.

    Accepts:
        - datetime: returned as-is when aware, read as UTC when naive
        - int/float (not bool): epoch milliseconds, must be finite
        - str: non-empty ISO-8601 text; a trailing "Z" is accepted and
          naive text is read as UTC

    Args:
        value: Candidate instant

    Returns:
        Aware datetime, or None if the value cannot be resolved
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    if isinstance(value, bool):
        return None

    if isinstance(value, numbers.Real):
        millis = float(value)
        if not math.isfinite(millis):
            return None
        try:
            return EPOCH + timedelta(milliseconds=millis)
        except OverflowError:
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed

    return None


def to_epoch_ms(instant: datetime) -> int:
    """Convert a datetime to integer epoch milliseconds (naive read as UTC)."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return (instant - EPOCH) // _ONE_MILLISECOND


def to_epoch_us(instant: datetime) -> int:
    """Convert a datetime to integer epoch microseconds (naive read as UTC)."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return (instant - EPOCH) // _ONE_MICROSECOND


def seconds_between(start: datetime, end: datetime) -> float:
    """Signed number of seconds from start to end."""
    return (end - start).total_seconds()
