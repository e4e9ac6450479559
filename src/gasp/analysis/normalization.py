"""
Normalization of analysis results received from the worker.

Results cross the process boundary as plain data, with instants encoded as
epoch milliseconds or ISO-8601 strings. Every instant-bearing field goes
through to_valid_instant(); records whose start cannot be resolved, even via
the fallbacks below, are discarded rather than given a made-up date.

Fallbacks:
    - cluster start: first member event's date
    - cluster end: last member event's date, then the cluster start
    - false-negative end: its start
    - member events with an unresolvable date are dropped
"""

import logging

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from gasp.analysis.extraction import parse_magnitude
from gasp.analysis.instants import seconds_between, to_epoch_ms, to_valid_instant
from gasp.analysis.types import AnnotationEvent, Cluster, FalseNegativeWindow

logger = logging.getLogger(__name__)

__all__ = [
    "normalize_cluster",
    "normalize_clusters",
    "normalize_false_negative",
    "normalize_false_negatives",
    "to_epoch_ms",
    "to_valid_instant",
]


def _as_mapping(record: Any) -> Mapping[str, Any] | None:
    if isinstance(record, BaseModel):
        return record.model_dump()
    if isinstance(record, Mapping):
        return record
    return None


def _field(record: Mapping[str, Any], *names: str) -> Any:
    """First present value among the given key spellings."""
    for name in names:
        if name in record:
            return record[name]
    return None


def _non_negative(value: Any) -> float | None:
    number = parse_magnitude(value)
    if number is None or number < 0:
        return None
    return number


def _normalize_event(record: Any) -> AnnotationEvent | None:
    event = _as_mapping(record)
    if event is None:
        return None

    timestamp = to_valid_instant(_field(event, "date", "timestamp"))
    if timestamp is None:
        return None

    duration = _non_negative(_field(event, "durationSec", "duration_sec"))
    kind = _field(event, "kind")
    return AnnotationEvent(
        timestamp=timestamp,
        duration_sec=duration if duration is not None else 0.0,
        kind=kind if isinstance(kind, str) else None,
    )


def _resolve_count(value: Any, fallback: int) -> int:
    number = _non_negative(value)
    if number is None or not number.is_integer():
        return fallback
    return int(number)


def normalize_cluster(record: Any) -> Cluster | None:
    """
    Rebuild a Cluster from transported data.

    Accepts a mapping (camelCase or snake_case keys) or a Cluster and is
    idempotent: normalizing a normalized cluster returns an equal cluster.
    Missing ``count`` defaults to the number of surviving member events and
    missing ``durationSec`` to end - start. A transported ``count`` is kept
    as sent even when member events with unusable dates are dropped, so
    ``count`` can exceed ``len(events)``.

    Args:
        record: Cluster mapping or model

    Returns:
        Cluster, or None if no start can be resolved
    """
    cluster = _as_mapping(record)
    if cluster is None:
        return None

    raw_events = _field(cluster, "events")
    if not isinstance(raw_events, list | tuple):
        raw_events = []
    events = [
        event
        for event in (_normalize_event(raw) for raw in raw_events)
        if event is not None
    ]

    start: datetime | None = to_valid_instant(_field(cluster, "start"))
    if start is None and events:
        start = events[0].timestamp
    if start is None:
        return None

    end = to_valid_instant(_field(cluster, "end"))
    if end is None:
        end = events[-1].timestamp if events else start

    duration = parse_magnitude(_field(cluster, "durationSec", "duration_sec"))
    if duration is None:
        duration = seconds_between(start, end)

    return Cluster(
        start=start,
        end=end,
        duration_sec=duration,
        count=_resolve_count(_field(cluster, "count"), len(events)),
        events=events,
        severity=parse_magnitude(_field(cluster, "severity")),
    )


def normalize_false_negative(record: Any) -> FalseNegativeWindow | None:
    """
    Rebuild a FalseNegativeWindow from transported data.

    Args:
        record: Window mapping or model

    Returns:
        FalseNegativeWindow, or None if its start cannot be resolved
    """
    window = _as_mapping(record)
    if window is None:
        return None

    start = to_valid_instant(_field(window, "start"))
    if start is None:
        return None
    end = to_valid_instant(_field(window, "end")) or start

    duration = parse_magnitude(_field(window, "durationSec", "duration_sec"))
    if duration is None:
        duration = seconds_between(start, end)
    confidence = parse_magnitude(_field(window, "confidence"))

    return FalseNegativeWindow(
        start=start,
        end=end,
        duration_sec=duration,
        confidence=confidence if confidence is not None else 0.0,
    )


def normalize_clusters(records: Any) -> list[Cluster]:
    """Normalize a list of clusters, dropping unusable records (non-lists give [])."""
    if not isinstance(records, list | tuple):
        return []
    clusters = [normalize_cluster(record) for record in records]
    kept = [cluster for cluster in clusters if cluster is not None]
    if len(kept) < len(clusters):
        logger.debug(f"Discarded {len(clusters) - len(kept)} clusters with no start")
    return kept


def normalize_false_negatives(records: Any) -> list[FalseNegativeWindow]:
    """Normalize a list of false-negative windows, dropping unusable records."""
    if not isinstance(records, list | tuple):
        return []
    windows = [normalize_false_negative(record) for record in records]
    kept = [window for window in windows if window is not None]
    if len(kept) < len(windows):
        discarded = len(windows) - len(kept)
        logger.debug(f"Discarded {discarded} false negatives with no start")
    return kept
