"""
Event extraction from OSCAR detail rows.

Rows arrive as loosely typed mappings (one per CSV line). This module is the
only place that looks fields up by name: it classifies each row, parses its
timestamp and magnitude once, and hands the engine typed event streams.
"""

import logging
import math
import numbers

from collections.abc import Iterable, Mapping
from typing import Any

from gasp.analysis.instants import to_valid_instant
from gasp.analysis.types import (
    AnnotationEvent,
    EventClassification,
    ExtractedEvents,
    FlowSample,
)

logger = logging.getLogger(__name__)

__all__ = ["extract_events", "parse_magnitude"]


def parse_magnitude(value: Any) -> float | None:
    """
    Parse a row magnitude (duration or FLG level).

    Args:
        value: Raw field value (number or numeric text)

    Returns:
        Finite float, or None if the value is missing or not numeric
    """
    if isinstance(value, bool):
        return None

    if isinstance(value, numbers.Real):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None

    return number if math.isfinite(number) else None


def extract_events(
    rows: Iterable[Any],
    classification: EventClassification | None = None,
) -> ExtractedEvents:
    """
    Split detail rows into annotation events and flow samples.

    Rows of any other kind are ignored. Rows with an unresolvable timestamp,
    a non-numeric magnitude or a negative annotation duration are dropped
    without error. Output keeps arrival order.

    Args:
        rows: Detail rows (mappings keyed by column name)
        classification: Field names and event kinds (defaults to OSCAR Details)

    Returns:
        ExtractedEvents with both typed streams
    """
    rule = classification or EventClassification()

    annotations: list[AnnotationEvent] = []
    flow_samples: list[FlowSample] = []
    ignored = 0
    dropped = 0

    for row in rows:
        if not isinstance(row, Mapping):
            dropped += 1
            continue

        kind = row.get(rule.event_field)
        if not isinstance(kind, str):
            ignored += 1
            continue
        kind = kind.strip()

        is_annotation = kind in rule.annotation_kinds
        if not is_annotation and kind != rule.flow_kind:
            ignored += 1
            continue

        timestamp = to_valid_instant(row.get(rule.time_field))
        magnitude = parse_magnitude(row.get(rule.value_field))
        if timestamp is None or magnitude is None:
            dropped += 1
            continue

        if is_annotation:
            if magnitude < 0:
                dropped += 1
                continue
            annotations.append(
                AnnotationEvent(timestamp=timestamp, duration_sec=magnitude, kind=kind)
            )
        else:
            flow_samples.append(FlowSample(timestamp=timestamp, level=magnitude))

    logger.debug(
        f"Extracted {len(annotations)} annotation events and {len(flow_samples)} "
        f"FLG samples ({dropped} invalid rows dropped, {ignored} rows ignored)"
    )

    return ExtractedEvents(annotations=annotations, flow_samples=flow_samples)
