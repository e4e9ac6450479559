"""
Cluster finalization: filtering, severity scoring and tabular export.

Raw clusters from clustering.py are filtered by independent predicates
(count, summed event time, span, density) that must all hold, then scored.
The severity score is a tuning policy rather than a clinical measure; it is
kept as a pure function of the cluster so results are reproducible.
"""

import csv
import io
import logging

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from gasp.analysis.types import Cluster, ClusterParams
from gasp.constants import CLUSTER_CSV_FIELDS, SECONDS_PER_MINUTE
from gasp.constants import SeverityConstants as SC

logger = logging.getLogger(__name__)

__all__ = [
    "cluster_to_row",
    "clusters_to_csv",
    "compute_cluster_severity",
    "finalize_clusters",
    "passes_filters",
]


def compute_cluster_severity(cluster: Cluster) -> float:
    """
    Score a cluster from its summed event time, count, span and density.

    Each term grows with its input, so the score never drops when a cluster
    gains events, event time or span. The density term saturates at 1.0
    once density reaches the alert rate.

    Args:
        cluster: Cluster to score

    Returns:
        Severity score rounded to SeverityConstants.SCORE_PRECISION places
    """
    density_term = min(cluster.density_per_min / SC.DENSITY_ALERT_PER_MIN, 1.0)
    score = (
        cluster.total_event_sec / SECONDS_PER_MINUTE
        + cluster.count / SC.CLUSTER_COUNT_ALERT
        + cluster.duration_sec / SC.CLUSTER_DURATION_ALERT_SEC
        + density_term
    )
    return round(score, SC.SCORE_PRECISION)


def passes_filters(cluster: Cluster, params: ClusterParams) -> bool:
    """True if the cluster satisfies every finalization filter."""
    return (
        cluster.count >= params.min_count
        and cluster.total_event_sec >= params.min_total_sec
        and cluster.duration_sec <= params.max_cluster_sec
        and cluster.density_per_min >= params.min_density
    )


def finalize_clusters(
    raw_clusters: Iterable[Cluster], params: ClusterParams | None = None
) -> list[Cluster]:
    """
    Filter raw clusters and attach severity scores.

    Args:
        raw_clusters: Output of cluster_apnea_events()
        params: Filter thresholds (defaults when None)

    Returns:
        Surviving clusters, in input order, with severity set
    """
    params = params or ClusterParams()
    raw = list(raw_clusters)

    finalized = [
        cluster.model_copy(update={"severity": compute_cluster_severity(cluster)})
        for cluster in raw
        if passes_filters(cluster, params)
    ]

    logger.debug(
        f"Finalized {len(finalized)} of {len(raw)} clusters "
        f"(min_count={params.min_count}, min_total_sec={params.min_total_sec}, "
        f"max_cluster_sec={params.max_cluster_sec}, min_density={params.min_density})"
    )

    return finalized


def _format_instant(instant: datetime) -> str:
    text = instant.astimezone(UTC).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def cluster_to_row(index: int, cluster: Cluster) -> dict[str, str]:
    """
    Flatten one cluster into an export row keyed by CLUSTER_CSV_FIELDS.

    Instants are ISO-8601 UTC with millisecond precision, durationSec has
    one decimal and severity two. Unscored clusters are scored on the fly.
    """
    severity = cluster.severity
    if severity is None:
        severity = compute_cluster_severity(cluster)
    return {
        "index": str(index),
        "start": _format_instant(cluster.start),
        "end": _format_instant(cluster.end),
        "durationSec": f"{cluster.duration_sec:.1f}",
        "count": str(cluster.count),
        "severity": f"{severity:.2f}",
    }


def clusters_to_csv(clusters: Sequence[Cluster]) -> str:
    """
    Serialize clusters to CSV text with a stable header.

    Columns: index (1-based), start, end, durationSec, count, severity.
    """
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CLUSTER_CSV_FIELDS, lineterminator="\n")
    writer.writeheader()
    for index, cluster in enumerate(clusters, start=1):
        writer.writerow(cluster_to_row(index, cluster))
    return buffer.getvalue()
