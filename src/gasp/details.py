"""
OSCAR Details CSV input and cluster CSV output.

The Details export has one row per event with at least ``DateTime``,
``Event`` and ``Data/Duration`` columns. Rows are handed to the analysis
untouched; parsing and validation happen in extraction.
"""

import csv
import logging

from collections.abc import Sequence
from datetime import date
from pathlib import Path

from gasp.analysis.finalize import clusters_to_csv
from gasp.analysis.types import Cluster
from gasp.constants import DETAILS_TIME_FIELD

logger = logging.getLogger(__name__)


def read_details_csv(
    path: Path | str,
    day: date | None = None,
    time_field: str = DETAILS_TIME_FIELD,
) -> list[dict[str, str]]:
    """
    Read an OSCAR Details CSV export into row mappings.

    Args:
        path: CSV file path
        day: Keep only rows whose timestamp text starts with this date
        time_field: Column holding the row timestamp

    Returns:
        List of rows keyed by column name

    Raises:
        ValueError: If the file has no header or lacks the time column
    """
    csv_path = Path(path)
    prefix = day.isoformat() if day else None

    with open(csv_path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        if not reader.fieldnames:
            raise ValueError(f"{csv_path} has no header row")
        if time_field not in reader.fieldnames:
            raise ValueError(f"{csv_path} has no '{time_field}' column")

        rows = [
            row
            for row in reader
            if prefix is None or (row.get(time_field) or "").strip().startswith(prefix)
        ]

    logger.info(
        f"Read {len(rows)} detail rows from {csv_path}"
        + (f" for {prefix}" if prefix else "")
    )
    return rows


def write_clusters_csv(clusters: Sequence[Cluster], output_path: Path | str) -> None:
    """Write the clusters_to_csv() export of ``clusters`` to ``output_path``."""
    with open(output_path, "w", newline="", encoding="utf-8") as f:
        f.write(clusters_to_csv(clusters))

    logger.info(f"Wrote {len(clusters)} clusters to {output_path}")
