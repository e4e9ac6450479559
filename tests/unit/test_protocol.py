"""
Tests for the worker message protocol (run synchronously, no process).
"""

import pickle

import pytest

from gasp.analysis.types import ClusterParams, FalseNegativeParams
from gasp.worker.protocol import (
    AnalysisOutcome,
    build_request,
    handle_message,
    parse_response,
)
from tests.helpers.synthetic_data import at


class TestBuildRequest:
    """Test request construction."""

    def test_shape(self, night_rows):
        message = build_request(night_rows, request_id=7)

        assert message["action"] == "analyzeDetails"
        payload = message["payload"]
        assert payload["detailsData"] == night_rows
        assert payload["requestId"] == 7
        assert payload["params"]["gapSec"] == 120
        assert payload["fnOptions"]["flThreshold"] == 0.1

    def test_options_round_trip_through_models(self):
        params = ClusterParams(gap_sec=45, min_count=2, edge_min_duration_sec=10)
        fn_params = FalseNegativeParams(max_duration_sec=300, peak_level_min=0.9)

        payload = build_request([], params, fn_params)["payload"]

        assert ClusterParams.model_validate(payload["params"]) == params
        assert FalseNegativeParams.model_validate(payload["fnOptions"]) == fn_params
        assert "requestId" not in payload


class TestHandleMessageValidation:
    """Test fail-fast protocol validation."""

    @pytest.mark.parametrize(
        "message",
        [None, "analyzeDetails", {}, {"action": ""}, {"payload": {"detailsData": []}}],
    )
    def test_missing_action(self, message):
        assert handle_message(message) == {"ok": False, "error": "missing_action"}

    def test_unknown_action(self):
        response = handle_message({"action": "summarize", "payload": {"requestId": 3}})
        assert response == {"ok": False, "error": "unknown_action", "requestId": 3}

    @pytest.mark.parametrize("payload", [None, [], "rows"])
    def test_missing_payload(self, payload):
        response = handle_message({"action": "analyzeDetails", "payload": payload})
        assert response == {"ok": False, "error": "missing_payload"}

    @pytest.mark.parametrize("details", [None, "rows", {"0": {}}, 12])
    def test_details_not_array_shaped(self, details):
        response = handle_message(
            {"action": "analyzeDetails", "payload": {"detailsData": details}}
        )
        assert response == {"ok": False, "error": "invalid_details"}

    @pytest.mark.parametrize(
        "payload",
        [
            {"detailsData": [], "params": "fast"},
            {"detailsData": [], "params": {"gapSec": -5}},
            {"detailsData": [], "params": {"minCount": "many"}},
            {"detailsData": [], "fnOptions": [0.1]},
            {"detailsData": [], "fnOptions": {"maxDurationSec": 0}},
        ],
    )
    def test_invalid_params(self, payload):
        response = handle_message({"action": "analyzeDetails", "payload": payload})
        assert response == {"ok": False, "error": "invalid_params"}


class TestHandleMessageComputation:
    """Test the computing state."""

    def test_success_payload(self, night_rows):
        response = handle_message(build_request(night_rows, request_id="job-1"))

        assert response["ok"] is True
        assert response["requestId"] == "job-1"
        data = response["data"]
        assert set(data) == {"clusters", "falseNegatives"}
        assert len(data["clusters"]) == 1
        assert len(data["falseNegatives"]) == 1

        cluster = data["clusters"][0]
        assert cluster["start"] == 1_749_949_200_000
        assert cluster["count"] == 4
        assert cluster["durationSec"] == 180
        assert cluster["severity"] == pytest.approx(3.8556)
        assert all(isinstance(event["date"], int) for event in cluster["events"])

    def test_response_is_plain_picklable_data(self, night_rows):
        response = handle_message(build_request(night_rows))
        assert pickle.loads(pickle.dumps(response)) == response

    def test_missing_options_use_defaults(self, night_rows):
        explicit = handle_message(build_request(night_rows))
        implicit = handle_message(
            {"action": "analyzeDetails", "payload": {"detailsData": night_rows}}
        )
        nulls = handle_message(
            {
                "action": "analyzeDetails",
                "payload": {
                    "detailsData": night_rows,
                    "params": {"gapSec": None, "minCount": None},
                    "fnOptions": None,
                },
            }
        )
        assert implicit == explicit
        assert nulls == explicit

    def test_unknown_option_keys_ignored(self, night_rows):
        message = build_request(night_rows)
        message["payload"]["params"]["algorithm"] = "kmeans"
        assert handle_message(message)["ok"] is True

    def test_legacy_option_names(self, night_rows):
        message = build_request(night_rows)
        message["payload"]["fnOptions"] = {"gapSec": 10, "peakFLGLevelMin": 0.99}
        response = handle_message(message)
        assert response["ok"] is True
        assert response["data"]["falseNegatives"] == []

    def test_tuple_rows_accepted(self, night_rows):
        message = build_request(night_rows)
        message["payload"]["detailsData"] = tuple(night_rows)
        assert handle_message(message)["ok"] is True

    def test_empty_rows(self):
        response = handle_message(build_request([]))
        assert response["data"] == {"clusters": [], "falseNegatives": []}

    def test_computation_error_is_sanitized(self, monkeypatch, night_rows, caplog):
        def explode(*args, **kwargs):
            raise RuntimeError(f"bad row {night_rows[0]}")

        monkeypatch.setattr("gasp.worker.protocol.analyze_details", explode)

        response = handle_message(build_request(night_rows, request_id=9))

        assert response == {"ok": False, "error": "analysis_failed", "requestId": 9}
        assert "Analysis of" in caplog.text


class TestParseResponse:
    """Test caller-side response handling."""

    def test_success_is_normalized(self, night_rows):
        outcome = parse_response(handle_message(build_request(night_rows, request_id=1)))

        assert outcome.ok is True
        assert outcome.request_id == 1
        assert outcome.error is None
        assert outcome.clusters[0].start == at(0)
        assert outcome.clusters[0].end == at(180)
        assert outcome.false_negatives[0].start == at(1000)
        assert outcome.false_negatives[0].confidence == pytest.approx(0.97)

    def test_failure(self):
        outcome = parse_response({"ok": False, "error": "invalid_details", "requestId": 4})
        assert outcome == AnalysisOutcome(ok=False, error="invalid_details", request_id=4)

    @pytest.mark.parametrize(
        "response",
        [None, "ok", {"ok": True}, {"ok": True, "data": []}, {"ok": False}, {"ok": 1}],
    )
    def test_malformed_responses(self, response):
        outcome = parse_response(response)
        assert outcome.ok is False
        assert outcome.error == "analysis_failed"

    def test_drops_unresolvable_records(self):
        response = {
            "ok": True,
            "data": {
                "clusters": [{"start": None, "events": []}],
                "falseNegatives": [{"start": "2025-06-15T01:00:00Z", "confidence": 0.4}],
            },
        }
        outcome = parse_response(response)
        assert outcome.clusters == []
        assert outcome.false_negatives[0].end == at(0)
