"""
Apnea annotation clustering.

Groups machine-annotated apnea events that sit close together in time into
clusters. Two neighbouring events join the same cluster when the gap between
the first one's end and the next one's onset is within ``gap_sec``, or within
``bridge_sec`` when a high flow limitation (FLG) reading falls inside the gap.
Each cluster's edges are then stretched over an adjacent block of sustained
flow limitation, since limited breathing usually leads into and out of a run
of apneas.

Filtering and severity scoring happen afterwards in finalize.py.
"""

import logging

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from operator import attrgetter

import numpy as np

from gasp.analysis.instants import seconds_between, to_epoch_us
from gasp.analysis.types import AnnotationEvent, Cluster, ClusterParams, FlowSample
from gasp.analysis.utils import epoch_us_array, seconds_to_us, split_on_gaps

logger = logging.getLogger(__name__)

__all__ = ["FlowBlock", "build_flow_blocks", "cluster_apnea_events"]


@dataclass(frozen=True)
class FlowBlock:
    """A run of high flow limitation samples with no gap wider than bridge_sec."""

    samples: tuple[FlowSample, ...]

    @property
    def start(self) -> datetime:
        return self.samples[0].timestamp

    @property
    def end(self) -> datetime:
        return self.samples[-1].timestamp

    @property
    def span_sec(self) -> float:
        return seconds_between(self.start, self.end)


def _high_flow_samples(
    samples: Sequence[FlowSample], threshold: float
) -> list[FlowSample]:
    high = [sample for sample in samples if sample.level >= threshold]
    high.sort(key=attrgetter("timestamp"))
    return high


def _blocks_from_sorted(
    samples: Sequence[FlowSample], times_us: np.ndarray, max_gap_sec: float
) -> list[FlowBlock]:
    return [
        FlowBlock(samples=tuple(samples[run]))
        for run in split_on_gaps(times_us, max_gap_sec)
    ]


def build_flow_blocks(
    samples: Sequence[FlowSample], threshold: float, max_gap_sec: float
) -> list[FlowBlock]:
    """
    Group high flow limitation samples into chronological blocks.

    Args:
        samples: Flow samples in any order
        threshold: Minimum level for a sample to count as high
        max_gap_sec: Largest gap (seconds) between samples of one block

    Returns:
        Flow blocks in chronological order
    """
    high = _high_flow_samples(samples, threshold)
    times_us = epoch_us_array([sample.timestamp for sample in high])
    return _blocks_from_sorted(high, times_us, max_gap_sec)


def _has_sample_between(times_us: np.ndarray, lower_us: int, upper_us: int) -> bool:
    """True if any sorted time lies in [lower_us, upper_us]."""
    idx = int(np.searchsorted(times_us, lower_us, side="left"))
    return idx < len(times_us) and times_us[idx] <= upper_us


def _group_annotations(
    ordered: Sequence[AnnotationEvent],
    high_times_us: np.ndarray,
    params: ClusterParams,
) -> list[list[AnnotationEvent]]:
    groups: list[list[AnnotationEvent]] = []
    current = [ordered[0]]

    for event in ordered[1:]:
        prev_end = current[-1].end
        gap = seconds_between(prev_end, event.timestamp)

        merge = gap <= params.gap_sec
        if not merge and gap <= params.bridge_sec:
            merge = _has_sample_between(
                high_times_us, to_epoch_us(prev_end), to_epoch_us(event.timestamp)
            )

        if merge:
            current.append(event)
        else:
            groups.append(current)
            current = [event]

    groups.append(current)
    return groups


class _BoundaryExtender:
    """
    Finds the flow block that extends each side of a cluster.

    Blocks are chronological and disjoint, so their first and last sample
    times are both sorted and the first qualifying block on each side can be
    found by binary search.
    """

    def __init__(self, blocks: Sequence[FlowBlock], reach_sec: float):
        self.blocks = list(blocks)
        self.reach_us = seconds_to_us(reach_sec)
        self.first_us = epoch_us_array([block.start for block in self.blocks])
        self.last_us = epoch_us_array([block.end for block in self.blocks])

    def block_before(self, start: datetime) -> FlowBlock | None:
        """First block ending at or before start, no more than reach_sec earlier."""
        start_us = to_epoch_us(start)
        idx = int(np.searchsorted(self.last_us, start_us - self.reach_us, side="left"))
        if idx < len(self.blocks) and self.last_us[idx] <= start_us:
            return self.blocks[idx]
        return None

    def block_after(self, end: datetime) -> FlowBlock | None:
        """First block starting at or after end, no more than reach_sec later."""
        end_us = to_epoch_us(end)
        idx = int(np.searchsorted(self.first_us, end_us, side="left"))
        if idx < len(self.blocks) and self.first_us[idx] <= end_us + self.reach_us:
            return self.blocks[idx]
        return None

    def extend(self, start: datetime, end: datetime) -> tuple[datetime, datetime]:
        before = self.block_before(start)
        after = self.block_after(end)
        if before is not None:
            start = before.start
        if after is not None:
            end = after.end
        return start, end


def cluster_apnea_events(
    annotations: Sequence[AnnotationEvent],
    flow_samples: Sequence[FlowSample],
    params: ClusterParams | None = None,
) -> list[Cluster]:
    """
    Cluster apnea annotations, bridging gaps with high flow limitation.

    Returns raw clusters in chronological order. Every group of events
    becomes a cluster, including single events; finalize_clusters() applies
    the count, duration and density filters.

    Args:
        annotations: Apnea annotation events in any order
        flow_samples: FLG samples in any order
        params: Clustering options (defaults when None)

    Returns:
        Raw clusters with severity unset
    """
    if not annotations:
        return []

    params = params or ClusterParams()

    # Stable sort keeps duplicate onsets in arrival order
    ordered = sorted(annotations, key=attrgetter("timestamp"))

    high = _high_flow_samples(flow_samples, params.bridge_threshold)
    high_times_us = epoch_us_array([sample.timestamp for sample in high])
    blocks = _blocks_from_sorted(high, high_times_us, params.bridge_sec)

    groups = _group_annotations(ordered, high_times_us, params)

    edge_blocks = [
        block for block in blocks if block.span_sec >= params.edge_min_duration_sec
    ]
    extender = _BoundaryExtender(edge_blocks, params.gap_sec)

    clusters = []
    for group in groups:
        start, end = extender.extend(group[0].timestamp, group[-1].end)
        clusters.append(
            Cluster(
                start=start,
                end=end,
                duration_sec=seconds_between(start, end),
                count=len(group),
                events=group,
            )
        )

    logger.debug(
        f"Clustered {len(ordered)} annotation events into {len(clusters)} raw clusters "
        f"({len(high)} high FLG samples in {len(blocks)} blocks, "
        f"{len(edge_blocks)} eligible for boundary extension)"
    )

    return clusters
