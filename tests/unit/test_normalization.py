"""
Tests for normalization of transported clusters and false negatives.
"""

from datetime import timedelta

import pytest

from gasp.analysis.instants import to_epoch_ms
from gasp.analysis.normalization import (
    normalize_cluster,
    normalize_clusters,
    normalize_false_negative,
    normalize_false_negatives,
)
from gasp.analysis.types import Cluster, FalseNegativeWindow
from tests.helpers.synthetic_data import BASE_TIME, annotation, at


@pytest.fixture
def cluster():
    events = [annotation(0, 20), annotation(45, 15, "ClearAirway"), annotation(90, 30)]
    return Cluster(
        start=at(-30),
        end=at(120),
        duration_sec=150,
        count=3,
        events=events,
        severity=4.125,
    )


@pytest.fixture
def window():
    return FalseNegativeWindow(
        start=at(500), end=at(590), duration_sec=90, confidence=0.97
    )


class TestNormalizeCluster:
    """Test cluster reconstruction and fallbacks."""

    def test_epoch_ms_round_trip(self, cluster):
        wire = cluster.model_dump(mode="json", by_alias=True)
        assert isinstance(wire["start"], int)
        assert isinstance(wire["events"][0]["date"], int)

        restored = normalize_cluster(wire)

        assert restored == cluster

    def test_round_trip_keeps_millisecond_precision(self):
        start = BASE_TIME + timedelta(milliseconds=250)
        original = Cluster(start=start, end=start, duration_sec=0, count=0)

        restored = normalize_cluster(original.model_dump(mode="json", by_alias=True))

        assert restored.start == start
        assert to_epoch_ms(restored.start) == to_epoch_ms(start)

    def test_idempotent(self, cluster):
        wire = cluster.model_dump(mode="json", by_alias=True)
        once = normalize_cluster(wire)
        twice = normalize_cluster(once)
        assert twice == once

    def test_accepts_iso_strings(self, cluster):
        record = {
            "start": "2025-06-15T00:59:30Z",
            "end": "2025-06-15T01:02:00.000Z",
            "durationSec": 150,
            "count": 1,
            "events": [{"date": "2025-06-15T01:00:00Z", "durationSec": 20}],
        }
        restored = normalize_cluster(record)
        assert restored.start == at(-30)
        assert restored.end == at(120)
        assert restored.events[0].timestamp == at(0)

    def test_start_falls_back_to_first_event(self):
        record = {
            "start": "garbage",
            "end": to_epoch_ms(at(100)),
            "events": [
                {"date": to_epoch_ms(at(10)), "durationSec": 5},
                {"date": to_epoch_ms(at(50)), "durationSec": 5},
            ],
        }
        restored = normalize_cluster(record)
        assert restored.start == at(10)
        assert restored.end == at(100)

    def test_end_falls_back_to_last_event_then_start(self):
        with_events = normalize_cluster(
            {
                "start": to_epoch_ms(at(0)),
                "end": None,
                "events": [{"date": to_epoch_ms(at(0))}, {"date": to_epoch_ms(at(40))}],
            }
        )
        without_events = normalize_cluster({"start": to_epoch_ms(at(0)), "end": "?"})

        assert with_events.end == at(40)
        assert without_events.end == at(0)

    def test_unresolvable_start_discards_record(self):
        assert normalize_cluster({"start": None, "events": []}) is None
        assert normalize_cluster({"start": "", "events": [{"date": "bad"}]}) is None
        assert normalize_cluster({"end": to_epoch_ms(at(10))}) is None

    def test_events_with_invalid_dates_are_dropped(self):
        record = {
            "start": to_epoch_ms(at(0)),
            "end": to_epoch_ms(at(60)),
            "count": 3,
            "events": [
                {"date": to_epoch_ms(at(0)), "durationSec": 10},
                {"date": float("nan"), "durationSec": 10},
                {"date": "2025-06-15T01:00:40Z", "durationSec": 10},
                None,
            ],
        }
        restored = normalize_cluster(record)

        assert [e.timestamp for e in restored.events] == [at(0), at(40)]
        # Transported count is kept when events are dropped
        assert restored.count == 3
        assert len(restored.events) == 2

    def test_missing_count_and_duration_are_derived(self):
        restored = normalize_cluster(
            {
                "start": to_epoch_ms(at(0)),
                "end": to_epoch_ms(at(75)),
                "events": [{"date": to_epoch_ms(at(0))}, {"date": to_epoch_ms(at(30))}],
            }
        )
        assert restored.count == 2
        assert restored.duration_sec == 75
        assert restored.severity is None

    def test_accepts_snake_case_keys(self, cluster):
        restored = normalize_cluster(cluster.model_dump())
        assert restored == cluster

    @pytest.mark.parametrize("record", [None, 42, "cluster", ["start"]])
    def test_non_mapping_records(self, record):
        assert normalize_cluster(record) is None


class TestNormalizeFalseNegative:
    """Test false-negative reconstruction and fallbacks."""

    def test_round_trip(self, window):
        restored = normalize_false_negative(window.model_dump(mode="json", by_alias=True))
        assert restored == window

    def test_idempotent(self, window):
        once = normalize_false_negative(window)
        assert normalize_false_negative(once) == once

    def test_end_falls_back_to_start(self):
        restored = normalize_false_negative(
            {"start": to_epoch_ms(at(5)), "end": "nope", "confidence": 0.5}
        )
        assert restored.end == at(5)
        assert restored.duration_sec == 0

    def test_unresolvable_start_discards_record(self):
        assert normalize_false_negative({"start": "nope", "end": 0}) is None
        assert normalize_false_negative(None) is None


class TestNormalizeCollections:
    """Test list normalization."""

    def test_drops_unusable_records(self, cluster, window):
        clusters = normalize_clusters(
            [cluster.model_dump(mode="json", by_alias=True), {"start": None}, None]
        )
        windows = normalize_false_negatives(
            [window.model_dump(mode="json", by_alias=True), {"start": "bad"}]
        )
        assert clusters == [cluster]
        assert windows == [window]

    @pytest.mark.parametrize("value", [None, {}, "clusters", 3])
    def test_non_lists_give_empty(self, value):
        assert normalize_clusters(value) == []
        assert normalize_false_negatives(value) == []
