"""
Constants and defaults for OSCAR Details analysis.

Event names follow the OSCAR "Details" CSV export, where every row carries an
``Event`` label, a ``DateTime`` stamp and a ``Data/Duration`` magnitude.
"""

from pathlib import Path

# ============================================================================
# OSCAR Details Export Fields
# ============================================================================

DETAILS_EVENT_FIELD = "Event"
DETAILS_TIME_FIELD = "DateTime"
DETAILS_VALUE_FIELD = "Data/Duration"

# ============================================================================
# Event Kinds
# ============================================================================

EVENT_KIND_OBSTRUCTIVE = "Obstructive"
EVENT_KIND_CLEAR_AIRWAY = "ClearAirway"
EVENT_KIND_MIXED = "Mixed"
EVENT_KIND_FLOW_LIMITATION = "FLG"

# Annotation kinds that take part in clustering
APNEA_EVENT_KINDS = frozenset(
    {
        EVENT_KIND_OBSTRUCTIVE,
        EVENT_KIND_CLEAR_AIRWAY,
        EVENT_KIND_MIXED,
    }
)

EVENT_KIND_NAMES = {
    EVENT_KIND_OBSTRUCTIVE: "Obstructive Apnea",
    EVENT_KIND_CLEAR_AIRWAY: "Clear Airway Apnea",
    EVENT_KIND_MIXED: "Mixed Apnea",
    EVENT_KIND_FLOW_LIMITATION: "Flow Limitation",
}


# ============================================================================
# Analysis Algorithm Constants
# ============================================================================


class ClusteringConstants:
    """
    Defaults for apnea clustering (clustering.py, finalize.py).

    FLG values are the ResMed FlowLim index, a dimensionless 0.0-1.0 scale
    (0.1 = mild flattening, 0.5+ = severe limitation).
    """

    APNEA_GAP_SEC = 120.0
    FLG_BRIDGE_THRESHOLD = 0.1
    FLG_CLUSTER_GAP_SEC = 60.0

    EDGE_ENTER_THRESHOLD = 0.5
    EDGE_EXIT_THRESHOLD = 0.35
    EDGE_MIN_DURATION_SEC = 0.0

    MIN_EVENTS = 3
    MIN_TOTAL_SEC = 60.0
    MAX_CLUSTER_SEC = 600.0
    MIN_DENSITY_PER_MIN = 0.0


class SeverityConstants:
    """Weights for cluster severity scoring (finalize.py)."""

    CLUSTER_COUNT_ALERT = 5
    CLUSTER_DURATION_ALERT_SEC = 120.0
    DENSITY_ALERT_PER_MIN = 6.0
    SCORE_PRECISION = 4


class FalseNegativeConstants:
    """Defaults and preset thresholds for false-negative detection."""

    FL_THRESHOLD = ClusteringConstants.FLG_BRIDGE_THRESHOLD
    CLUSTER_GAP_SEC = ClusteringConstants.FLG_CLUSTER_GAP_SEC
    MIN_DURATION_SEC = 60.0

    PRESET_MAX_DURATION_SEC = 600.0
    PRESET_EVENT_WINDOW_SEC = 5.0

    STRICT_FL_THRESHOLD = 0.9
    STRICT_PEAK_LEVEL_MIN = 0.98
    STRICT_MIN_DURATION_SEC = 120.0

    BALANCED_PEAK_LEVEL_MIN = 0.95
    BALANCED_MIN_DURATION_SEC = 60.0

    LENIENT_BASE_FL_THRESHOLD = 0.5
    LENIENT_BRIDGE_SCALE = 0.8
    LENIENT_PEAK_LEVEL_MIN = 0.85
    LENIENT_MIN_DURATION_SEC = 45.0


# ============================================================================
# Worker Protocol
# ============================================================================

ACTION_ANALYZE_DETAILS = "analyzeDetails"

ERROR_MISSING_ACTION = "missing_action"
ERROR_UNKNOWN_ACTION = "unknown_action"
ERROR_MISSING_PAYLOAD = "missing_payload"
ERROR_INVALID_DETAILS = "invalid_details"
ERROR_INVALID_PARAMS = "invalid_params"
ERROR_ANALYSIS_FAILED = "analysis_failed"
ERROR_ANALYSIS_TIMEOUT = "analysis_timeout"
ERROR_ANALYSIS_CANCELLED = "analysis_cancelled"

# ============================================================================
# Export
# ============================================================================

CLUSTER_CSV_FIELDS = ["index", "start", "end", "durationSec", "count", "severity"]

# ============================================================================
# Default Settings
# ============================================================================

DEFAULT_APP_DIR = Path.home() / ".gasp"

# Logging configuration
DEFAULT_LOG_DIR = DEFAULT_APP_DIR / "logs"
DEFAULT_LOG_FILE = "gasp.log"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_BACKUP_COUNT = 5
CONSOLE_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_LOG_FORMAT = "%(asctime)s - %(process)d - %(name)s - %(levelname)s - %(message)s"
CLI_CONSOLE_LOG_FORMAT = "%(levelname)s: %(message)s"

# Time calculations
SECONDS_PER_MINUTE = 60
