"""
Analysis service for OSCAR Details rows.

This module is the synchronous pipeline the worker runs for each request:
extraction, clustering, finalization and false-negative detection. It also
resolves the analysis options stored in the user config file.
"""

import logging
import time

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gasp.analysis.clustering import cluster_apnea_events
from gasp.analysis.extraction import extract_events
from gasp.analysis.false_negatives import detect_false_negatives, false_negative_preset
from gasp.analysis.finalize import finalize_clusters
from gasp.analysis.types import (
    ClusterParams,
    DetailsAnalysis,
    EventClassification,
    FalseNegativeParams,
)
from gasp.config import get_section

logger = logging.getLogger(__name__)

__all__ = ["AnalysisSettings", "analyze_details", "load_analysis_settings"]


def analyze_details(
    rows: Iterable[Any],
    params: ClusterParams | None = None,
    fn_params: FalseNegativeParams | None = None,
    classification: EventClassification | None = None,
) -> DetailsAnalysis:
    """
    Run the full analysis over detail rows.

    Clustering and false-negative detection are independent; both read the
    same extracted streams, and the overlap check sees every annotation.

    Args:
        rows: Detail rows (mappings keyed by column name)
        params: Clustering and filter options (defaults when None)
        fn_params: False-negative options (defaults when None)
        classification: Row field names and event kinds

    Returns:
        DetailsAnalysis with finalized clusters and false negatives
    """
    params = params or ClusterParams()
    fn_params = fn_params or FalseNegativeParams()
    start_time = time.time()

    extracted = extract_events(rows, classification)
    logger.info(
        f"Analyzing {len(extracted.annotations)} apnea annotations and "
        f"{len(extracted.flow_samples)} FLG samples"
    )

    raw_clusters = cluster_apnea_events(
        extracted.annotations, extracted.flow_samples, params
    )
    clusters = finalize_clusters(raw_clusters, params)
    false_negatives = detect_false_negatives(
        extracted.flow_samples, extracted.annotations, fn_params
    )

    processing_time_ms = int((time.time() - start_time) * 1000)
    logger.info(
        f"Analysis complete in {processing_time_ms}ms: {len(clusters)} clusters "
        f"({len(raw_clusters)} before filtering), "
        f"{len(false_negatives)} false negatives"
    )

    return DetailsAnalysis(clusters=clusters, false_negatives=false_negatives)


# ============================================================================
# Configured Settings
# ============================================================================


class AnalysisSettings(BaseModel):
    """Analysis options resolved from ~/.gasp/config.toml."""

    model_config = ConfigDict(frozen=True)

    cluster_params: ClusterParams = Field(default_factory=ClusterParams)
    fn_params: FalseNegativeParams = Field(default_factory=FalseNegativeParams)
    timeout_sec: float | None = Field(default=None, gt=0)
    in_process: bool = False


def _known_keys(
    section_name: str, section: Mapping[str, Any], known: set[str]
) -> dict[str, Any]:
    unknown = sorted(key for key in section if key not in known)
    if unknown:
        logger.warning(
            f"Ignoring unknown keys in config section [{section_name}]: "
            f"{', '.join(unknown)}"
        )
    return {key: value for key, value in section.items() if key in known}


def _validated(model: type[BaseModel], section_name: str, values: dict) -> Any:
    try:
        return model.model_validate(values)
    except ValidationError as e:
        raise ValueError(
            f"Invalid settings in config section [{section_name}]: {e}"
        ) from e


def load_analysis_settings() -> AnalysisSettings:
    """
    Merge the config file onto the model defaults.

    ``[false_negatives]`` may name a ``preset``; explicit keys in the same
    section override the preset's values.

    Returns:
        AnalysisSettings

    Raises:
        ValueError: If a configured value is invalid or the preset is unknown
    """
    clustering = _known_keys(
        "clustering", get_section("clustering"), set(ClusterParams.model_fields)
    )
    cluster_params = _validated(ClusterParams, "clustering", clustering)

    fn_section = dict(get_section("false_negatives"))
    preset_name = fn_section.pop("preset", None)
    fn_values = _known_keys(
        "false_negatives", fn_section, set(FalseNegativeParams.model_fields)
    )
    if preset_name is not None:
        base = false_negative_preset(str(preset_name)).model_dump()
        fn_values = {**base, **fn_values}
    fn_params = _validated(FalseNegativeParams, "false_negatives", fn_values)

    worker = _known_keys("worker", get_section("worker"), {"timeout_sec", "in_process"})
    try:
        settings = AnalysisSettings(
            cluster_params=cluster_params, fn_params=fn_params, **worker
        )
    except ValidationError as e:
        raise ValueError(f"Invalid settings in config section [worker]: {e}") from e

    logger.debug(f"Loaded analysis settings: {settings.model_dump()}")
    return settings
