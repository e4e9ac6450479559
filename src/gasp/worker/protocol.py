"""
Message protocol between the caller and the analysis worker.

Request::

    {"action": "analyzeDetails",
     "payload": {"detailsData": [row, ...],
                 "params": {...ClusterParams...},
                 "fnOptions": {...FalseNegativeParams...},
                 "requestId": <any, optional>}}

Response::

    {"ok": True, "data": {"clusters": [...], "falseNegatives": [...]}}
    {"ok": False, "error": "<code>"}

``requestId`` is echoed back untouched on every response to a request that
carried one. Error values are fixed codes from gasp.constants and never
contain exception text or row content. Instants in responses are epoch
milliseconds so the response is plain, picklable data.
"""

import logging

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gasp.analysis.normalization import normalize_clusters, normalize_false_negatives
from gasp.analysis.service import analyze_details
from gasp.analysis.types import (
    Cluster,
    ClusterParams,
    FalseNegativeParams,
    FalseNegativeWindow,
)
from gasp.constants import (
    ACTION_ANALYZE_DETAILS,
    ERROR_ANALYSIS_FAILED,
    ERROR_INVALID_DETAILS,
    ERROR_INVALID_PARAMS,
    ERROR_MISSING_ACTION,
    ERROR_MISSING_PAYLOAD,
    ERROR_UNKNOWN_ACTION,
)

logger = logging.getLogger(__name__)

__all__ = [
    "AnalysisOutcome",
    "build_request",
    "handle_message",
    "parse_response",
]


class AnalysisOutcome(BaseModel):
    """
    Caller-side result of one analysis request.

    Attributes:
        ok: True if the worker computed a result
        clusters: Normalized finalized clusters (empty on failure)
        false_negatives: Normalized false-negative windows (empty on failure)
        error: Fixed error code when ok is False
        request_id: Job token echoed by the worker, if any
    """

    model_config = ConfigDict(frozen=True)

    ok: bool
    clusters: list[Cluster] = Field(default_factory=list)
    false_negatives: list[FalseNegativeWindow] = Field(default_factory=list)
    error: str | None = None
    request_id: Any = None

    @classmethod
    def failure(cls, error: str, request_id: Any = None) -> "AnalysisOutcome":
        return cls(ok=False, error=error, request_id=request_id)


def build_request(
    rows: Iterable[Any],
    params: ClusterParams | None = None,
    fn_params: FalseNegativeParams | None = None,
    request_id: Any = None,
) -> dict[str, Any]:
    """
    Build an analyzeDetails request message.

    Options are sent in full (defaults included) so the worker never needs
    state from earlier requests.
    """
    params = params or ClusterParams()
    fn_params = fn_params or FalseNegativeParams()
    payload: dict[str, Any] = {
        "detailsData": list(rows),
        "params": params.model_dump(by_alias=True),
        "fnOptions": fn_params.model_dump(by_alias=True),
    }
    if request_id is not None:
        payload["requestId"] = request_id
    return {"action": ACTION_ANALYZE_DETAILS, "payload": payload}


def _failure(error: str, request_id: Any) -> dict[str, Any]:
    response: dict[str, Any] = {"ok": False, "error": error}
    if request_id is not None:
        response["requestId"] = request_id
    return response


def _parse_options(raw: Any, model: type[BaseModel]) -> BaseModel | None:
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        return None
    try:
        return model.model_validate(dict(raw))
    except ValidationError:
        return None


def handle_message(message: Any) -> dict[str, Any]:
    """
    Validate and execute one request.

    Never raises: protocol problems are rejected before any computation and
    computation errors are logged here and returned as analysis_failed.

    Args:
        message: Request message (see module docstring)

    Returns:
        Response message
    """
    if not isinstance(message, Mapping) or not message.get("action"):
        return _failure(ERROR_MISSING_ACTION, None)

    payload = message.get("payload")
    request_id = payload.get("requestId") if isinstance(payload, Mapping) else None

    action = message["action"]
    if action != ACTION_ANALYZE_DETAILS:
        logger.warning(f"Rejected request with unknown action {action!r}")
        return _failure(ERROR_UNKNOWN_ACTION, request_id)

    if not isinstance(payload, Mapping):
        return _failure(ERROR_MISSING_PAYLOAD, request_id)

    rows = payload.get("detailsData")
    if not isinstance(rows, list | tuple):
        return _failure(ERROR_INVALID_DETAILS, request_id)

    params = _parse_options(payload.get("params"), ClusterParams)
    fn_params = _parse_options(payload.get("fnOptions"), FalseNegativeParams)
    if params is None or fn_params is None:
        return _failure(ERROR_INVALID_PARAMS, request_id)

    try:
        result = analyze_details(rows, params, fn_params)
    except Exception as e:
        logger.error(f"Analysis of {len(rows)} rows failed: {e}", exc_info=True)
        return _failure(ERROR_ANALYSIS_FAILED, request_id)

    response: dict[str, Any] = {
        "ok": True,
        "data": result.model_dump(mode="json", by_alias=True),
    }
    if request_id is not None:
        response["requestId"] = request_id
    return response


def parse_response(response: Any) -> AnalysisOutcome:
    """
    Turn a worker response into an AnalysisOutcome.

    Success payloads are normalized, so clusters and windows with
    unresolvable instants are dropped here. Anything that is not a
    well-formed response counts as analysis_failed.
    """
    if not isinstance(response, Mapping):
        return AnalysisOutcome.failure(ERROR_ANALYSIS_FAILED)

    request_id = response.get("requestId")

    if response.get("ok") is not True:
        error = response.get("error")
        if not isinstance(error, str) or not error:
            error = ERROR_ANALYSIS_FAILED
        return AnalysisOutcome.failure(error, request_id)

    data = response.get("data")
    if not isinstance(data, Mapping):
        return AnalysisOutcome.failure(ERROR_ANALYSIS_FAILED, request_id)

    return AnalysisOutcome(
        ok=True,
        clusters=normalize_clusters(data.get("clusters")),
        false_negatives=normalize_false_negatives(data.get("falseNegatives")),
        request_id=request_id,
    )
