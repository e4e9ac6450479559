"""Analysis utility functions."""

from collections.abc import Sequence
from datetime import datetime

import numpy as np

from gasp.analysis.instants import MICROSECONDS_PER_SECOND, to_epoch_us


def epoch_us_array(instants: Sequence[datetime]) -> np.ndarray:
    """
    Convert instants into an int64 array of epoch microseconds.

    Integer microseconds keep gap comparisons exact, so a gap that equals a
    threshold is never pushed over it by float rounding.
    """
    return np.fromiter(
        (to_epoch_us(instant) for instant in instants),
        dtype=np.int64,
        count=len(instants),
    )


def seconds_to_us(seconds: float) -> float:
    """Express a threshold in seconds on the epoch-microsecond scale."""
    return seconds * MICROSECONDS_PER_SECOND


def split_on_gaps(times_us: np.ndarray, max_gap_sec: float) -> list[slice]:
    """
    Split sorted sample times into runs at gaps wider than max_gap_sec.

    Consecutive samples whose gap is <= max_gap_sec stay in the same run.

    Args:
        times_us: Sorted epoch-microsecond timestamps
        max_gap_sec: Largest gap (seconds) that keeps samples together

    Returns:
        One slice per run, in chronological order
    """
    if len(times_us) == 0:
        return []

    time_diffs = np.diff(times_us)
    gap_indices = np.where(time_diffs > seconds_to_us(max_gap_sec))[0]

    bounds = [0, *(gap_indices + 1).tolist(), len(times_us)]
    return [slice(start, stop) for start, stop in zip(bounds[:-1], bounds[1:])]
