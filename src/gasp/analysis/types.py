"""Analysis data models and parameter types."""

from datetime import datetime, timedelta
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from gasp.analysis.instants import to_epoch_ms, to_valid_instant
from gasp.constants import (
    APNEA_EVENT_KINDS,
    DETAILS_EVENT_FIELD,
    DETAILS_TIME_FIELD,
    DETAILS_VALUE_FIELD,
    EVENT_KIND_FLOW_LIMITATION,
    SECONDS_PER_MINUTE,
)
from gasp.constants import ClusteringConstants as CC
from gasp.constants import FalseNegativeConstants as FNC


def _coerce_instant(value: Any) -> datetime:
    instant = to_valid_instant(value)
    if instant is None:
        raise ValueError("value is not a valid instant")
    return instant


def _drop_unset(data: Any) -> Any:
    """Treat explicit None options as unspecified so defaults apply."""
    if isinstance(data, dict):
        return {key: value for key, value in data.items() if value is not None}
    return data


# ============================================================================
# Event Types
# ============================================================================


class AnnotationEvent(BaseModel):
    """
    One machine-annotated apnea occurrence.

    Attributes:
        timestamp: Event onset (wire name "date")
        duration_sec: Event duration in seconds (0 for point markers)
        kind: Original event label (Obstructive, ClearAirway, Mixed)
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    timestamp: datetime = Field(alias="date", description="Event onset")
    duration_sec: float = Field(
        default=0.0, ge=0, allow_inf_nan=False, description="Duration (seconds)"
    )
    kind: str | None = Field(default=None, description="Original event label")

    @field_validator("timestamp", mode="before")
    @classmethod
    def _validate_timestamp(cls, value: Any) -> datetime:
        return _coerce_instant(value)

    @field_serializer("timestamp", when_used="json")
    def _serialize_timestamp(self, value: datetime) -> int:
        return to_epoch_ms(value)

    @property
    def end(self) -> datetime:
        """Event end (onset + duration)."""
        return self.timestamp + timedelta(seconds=self.duration_sec)


class FlowSample(BaseModel):
    """
    One flow-limitation (FLG) reading.

    Attributes:
        timestamp: Sample time (wire name "date")
        level: FlowLim index, normally 0.0-1.0
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    timestamp: datetime = Field(alias="date", description="Sample time")
    level: float = Field(allow_inf_nan=False, description="Flow limitation level")

    @field_validator("timestamp", mode="before")
    @classmethod
    def _validate_timestamp(cls, value: Any) -> datetime:
        return _coerce_instant(value)

    @field_serializer("timestamp", when_used="json")
    def _serialize_timestamp(self, value: datetime) -> int:
        return to_epoch_ms(value)


class ExtractedEvents(BaseModel):
    """Typed event streams split out of raw detail rows."""

    annotations: list[AnnotationEvent] = Field(default_factory=list)
    flow_samples: list[FlowSample] = Field(default_factory=list)


# ============================================================================
# Result Types
# ============================================================================


class Cluster(BaseModel):
    """
    A span of temporally related apnea annotations.

    Boundaries may reach past the member events when adjacent flow
    limitation blocks extend them. ``severity`` stays None until the
    cluster has been finalized.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    start: datetime = Field(description="Cluster start")
    end: datetime = Field(description="Cluster end")
    duration_sec: float = Field(allow_inf_nan=False, description="Span (seconds)")
    count: int = Field(ge=0, description="Number of member events")
    events: list[AnnotationEvent] = Field(
        default_factory=list, description="Member annotation events"
    )
    severity: float | None = Field(default=None, description="Severity score")

    @field_validator("start", "end", mode="before")
    @classmethod
    def _validate_instant(cls, value: Any) -> datetime:
        return _coerce_instant(value)

    @field_serializer("start", "end", when_used="json")
    def _serialize_instant(self, value: datetime) -> int:
        return to_epoch_ms(value)

    @property
    def total_event_sec(self) -> float:
        """Sum of member event durations (seconds)."""
        return sum(event.duration_sec for event in self.events)

    @property
    def density_per_min(self) -> float:
        """Events per minute of cluster span (inf for zero-length spans)."""
        if self.duration_sec <= 0:
            return float("inf")
        return self.count / (self.duration_sec / SECONDS_PER_MINUTE)


class FalseNegativeWindow(BaseModel):
    """
    Sustained flow limitation with no apnea annotation in or near it.

    Attributes:
        start: First high-flow sample time
        end: Last high-flow sample time
        duration_sec: end - start (seconds)
        confidence: Peak flow limitation level observed in the window
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    start: datetime = Field(description="Window start")
    end: datetime = Field(description="Window end")
    duration_sec: float = Field(allow_inf_nan=False, description="Span (seconds)")
    confidence: float = Field(allow_inf_nan=False, description="Peak FLG level")

    @field_validator("start", "end", mode="before")
    @classmethod
    def _validate_instant(cls, value: Any) -> datetime:
        return _coerce_instant(value)

    @field_serializer("start", "end", when_used="json")
    def _serialize_instant(self, value: datetime) -> int:
        return to_epoch_ms(value)


class DetailsAnalysis(BaseModel):
    """Finalized clusters and false negatives for one set of detail rows."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    clusters: list[Cluster] = Field(default_factory=list)
    false_negatives: list[FalseNegativeWindow] = Field(default_factory=list)


# ============================================================================
# Parameter Types
# ============================================================================


class ClusterParams(BaseModel):
    """
    Options for apnea clustering and cluster finalization.

    Every option has a default; options missing from a request (or sent as
    null) use the default, never a previous request's value. Unknown keys
    are ignored.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore"
    )

    gap_sec: float = Field(
        default=CC.APNEA_GAP_SEC,
        ge=0,
        description="Max gap (seconds) merging adjacent annotation events",
    )
    bridge_threshold: float = Field(
        default=CC.FLG_BRIDGE_THRESHOLD,
        ge=0,
        description="Min FLG level for a sample to count as high flow limitation",
    )
    bridge_sec: float = Field(
        default=CC.FLG_CLUSTER_GAP_SEC,
        ge=0,
        description="Max gap (seconds) bridged by FLG evidence and used for FLG blocks",
    )
    edge_enter: float = Field(
        default=CC.EDGE_ENTER_THRESHOLD,
        ge=0,
        description="Reserved edge-detection entry threshold",
    )
    edge_exit: float = Field(
        default=CC.EDGE_EXIT_THRESHOLD,
        ge=0,
        description="Reserved edge-detection exit threshold",
    )
    edge_min_duration_sec: float = Field(
        default=CC.EDGE_MIN_DURATION_SEC,
        ge=0,
        validation_alias=AliasChoices(
            "edge_min_duration_sec", "edgeMinDurationSec", "edgeMinDurSec"
        ),
        description="Min span (seconds) of an FLG block used for boundary extension",
    )
    min_count: int = Field(
        default=CC.MIN_EVENTS, ge=0, description="Min events to keep a cluster"
    )
    min_total_sec: float = Field(
        default=CC.MIN_TOTAL_SEC,
        ge=0,
        description="Min summed event duration (seconds) to keep a cluster",
    )
    max_cluster_sec: float = Field(
        default=CC.MAX_CLUSTER_SEC,
        gt=0,
        description="Max cluster span (seconds)",
    )
    min_density: float = Field(
        default=CC.MIN_DENSITY_PER_MIN,
        ge=0,
        description="Min event density (events per minute)",
    )

    @model_validator(mode="before")
    @classmethod
    def _ignore_unset(cls, data: Any) -> Any:
        return _drop_unset(data)


class FalseNegativeParams(BaseModel):
    """
    Options for false-negative detection.

    The defaults reproduce the plain detector: no duration cap, no peak
    level floor and no padding around windows. The named presets in
    false_negatives.py tighten these.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore"
    )

    fl_threshold: float = Field(
        default=FNC.FL_THRESHOLD, ge=0, description="Min FLG level considered"
    )
    cluster_gap_sec: float = Field(
        default=FNC.CLUSTER_GAP_SEC,
        ge=0,
        validation_alias=AliasChoices("cluster_gap_sec", "clusterGapSec", "gapSec"),
        description="Max gap (seconds) merging consecutive high FLG samples",
    )
    min_duration_sec: float = Field(
        default=FNC.MIN_DURATION_SEC,
        ge=0,
        description="Min window duration (seconds)",
    )
    max_duration_sec: float | None = Field(
        default=None, gt=0, description="Max window duration (seconds), None = no cap"
    )
    peak_level_min: float = Field(
        default=0.0,
        ge=0,
        validation_alias=AliasChoices(
            "peak_level_min", "peakLevelMin", "peakFLGLevelMin"
        ),
        description="Min peak FLG level (confidence) to report a window",
    )
    event_window_sec: float = Field(
        default=0.0,
        ge=0,
        description="Padding (seconds) around a window when checking for annotations",
    )

    @model_validator(mode="before")
    @classmethod
    def _ignore_unset(cls, data: Any) -> Any:
        return _drop_unset(data)


class EventClassification(BaseModel):
    """
    How detail rows map onto annotation events and flow samples.

    Attributes:
        event_field: Row key holding the event label
        time_field: Row key holding the timestamp
        value_field: Row key holding duration (annotations) or level (FLG)
        annotation_kinds: Labels treated as apnea annotations
        flow_kind: Label treated as a flow limitation sample
    """

    model_config = ConfigDict(frozen=True)

    event_field: str = DETAILS_EVENT_FIELD
    time_field: str = DETAILS_TIME_FIELD
    value_field: str = DETAILS_VALUE_FIELD
    annotation_kinds: frozenset[str] = APNEA_EVENT_KINDS
    flow_kind: str = EVENT_KIND_FLOW_LIMITATION
