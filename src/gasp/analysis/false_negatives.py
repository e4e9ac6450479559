"""
False-negative detection.

Looks for sustained flow limitation that the machine never annotated as an
apnea: runs of FLG samples at or above a threshold, long enough to matter,
with no apnea annotation anywhere inside them. These are candidate missed
detections, not diagnoses.
"""

import logging

from collections.abc import Sequence
from operator import attrgetter

import numpy as np

from gasp.analysis.instants import seconds_between, to_epoch_us
from gasp.analysis.types import (
    AnnotationEvent,
    FalseNegativeParams,
    FalseNegativeWindow,
    FlowSample,
)
from gasp.analysis.utils import epoch_us_array, seconds_to_us, split_on_gaps
from gasp.constants import ClusteringConstants as CC
from gasp.constants import FalseNegativeConstants as FNC

logger = logging.getLogger(__name__)

__all__ = [
    "FALSE_NEGATIVE_PRESETS",
    "detect_false_negatives",
    "false_negative_preset",
]

FALSE_NEGATIVE_PRESETS: dict[str, FalseNegativeParams] = {
    "strict": FalseNegativeParams(
        fl_threshold=FNC.STRICT_FL_THRESHOLD,
        peak_level_min=FNC.STRICT_PEAK_LEVEL_MIN,
        cluster_gap_sec=FNC.CLUSTER_GAP_SEC,
        min_duration_sec=FNC.STRICT_MIN_DURATION_SEC,
        max_duration_sec=FNC.PRESET_MAX_DURATION_SEC,
        event_window_sec=FNC.PRESET_EVENT_WINDOW_SEC,
    ),
    "balanced": FalseNegativeParams(
        fl_threshold=FNC.FL_THRESHOLD,
        peak_level_min=FNC.BALANCED_PEAK_LEVEL_MIN,
        cluster_gap_sec=FNC.CLUSTER_GAP_SEC,
        min_duration_sec=FNC.BALANCED_MIN_DURATION_SEC,
        max_duration_sec=FNC.PRESET_MAX_DURATION_SEC,
        event_window_sec=FNC.PRESET_EVENT_WINDOW_SEC,
    ),
    "lenient": FalseNegativeParams(
        fl_threshold=max(
            FNC.LENIENT_BASE_FL_THRESHOLD,
            CC.FLG_BRIDGE_THRESHOLD * FNC.LENIENT_BRIDGE_SCALE,
        ),
        peak_level_min=FNC.LENIENT_PEAK_LEVEL_MIN,
        cluster_gap_sec=FNC.CLUSTER_GAP_SEC,
        min_duration_sec=FNC.LENIENT_MIN_DURATION_SEC,
        max_duration_sec=FNC.PRESET_MAX_DURATION_SEC,
        event_window_sec=FNC.PRESET_EVENT_WINDOW_SEC,
    ),
}


def false_negative_preset(name: str) -> FalseNegativeParams:
    """
    Look up a named detection preset.

    Args:
        name: "strict", "balanced" or "lenient" (case-insensitive)

    Returns:
        FalseNegativeParams for the preset

    Raises:
        ValueError: If the preset name is unknown
    """
    key = name.strip().lower()
    if key not in FALSE_NEGATIVE_PRESETS:
        raise ValueError(
            f"Unknown false-negative preset '{name}'. "
            f"Valid presets are: {', '.join(FALSE_NEGATIVE_PRESETS)}"
        )
    return FALSE_NEGATIVE_PRESETS[key]


class _AnnotationIndex:
    """
    Answers "does any annotation touch [lower, upper]?" in O(log n).

    Annotations are sorted by onset and paired with the running maximum of
    their end times. Every annotation starting at or before ``upper`` lies in
    a prefix of that order, and one of them reaches ``lower`` exactly when
    the running maximum end of that prefix does.
    """

    def __init__(self, annotations: Sequence[AnnotationEvent]):
        ordered = sorted(annotations, key=attrgetter("timestamp"))
        self.starts_us = epoch_us_array([event.timestamp for event in ordered])
        ends_us = epoch_us_array([event.end for event in ordered])
        self.max_end_us = np.maximum.accumulate(ends_us) if len(ends_us) else ends_us

    def overlaps(self, lower_us: float, upper_us: float) -> bool:
        count = int(np.searchsorted(self.starts_us, upper_us, side="right"))
        return count > 0 and self.max_end_us[count - 1] >= lower_us


def _build_windows(
    samples: Sequence[FlowSample], params: FalseNegativeParams
) -> list[FalseNegativeWindow]:
    high = [sample for sample in samples if sample.level >= params.fl_threshold]
    high.sort(key=attrgetter("timestamp"))
    times_us = epoch_us_array([sample.timestamp for sample in high])

    windows = []
    for run in split_on_gaps(times_us, params.cluster_gap_sec):
        group = high[run]
        start = group[0].timestamp
        end = group[-1].timestamp
        windows.append(
            FalseNegativeWindow(
                start=start,
                end=end,
                duration_sec=seconds_between(start, end),
                confidence=max(sample.level for sample in group),
            )
        )
    return windows


def _passes_filters(window: FalseNegativeWindow, params: FalseNegativeParams) -> bool:
    if window.duration_sec < params.min_duration_sec:
        return False
    max_duration = params.max_duration_sec
    if max_duration is not None and window.duration_sec > max_duration:
        return False
    return window.confidence >= params.peak_level_min


def detect_false_negatives(
    flow_samples: Sequence[FlowSample],
    annotations: Sequence[AnnotationEvent],
    params: FalseNegativeParams | None = None,
) -> list[FalseNegativeWindow]:
    """
    Find flow limitation windows with no overlapping apnea annotation.

    The overlap check runs against every annotation passed in, not against
    the clustered or filtered output, and treats both the window and each
    annotation [onset, onset + duration] as closed intervals.

    Args:
        flow_samples: FLG samples in any order
        annotations: All apnea annotations in any order
        params: Detection options (defaults when None)

    Returns:
        False-negative windows in chronological order
    """
    params = params or FalseNegativeParams()

    candidates = _build_windows(flow_samples, params)
    sized = [window for window in candidates if _passes_filters(window, params)]

    index = _AnnotationIndex(annotations)
    padding_us = seconds_to_us(params.event_window_sec)
    windows = [
        window
        for window in sized
        if not index.overlaps(
            to_epoch_us(window.start) - padding_us,
            to_epoch_us(window.end) + padding_us,
        )
    ]

    logger.debug(
        f"False-negative scan: {len(candidates)} FLG windows, {len(sized)} within "
        f"duration/confidence limits, {len(windows)} without annotations"
    )

    return windows
