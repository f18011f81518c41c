"""
Tests for gcplib/aggregate.py.

Covers:
- Aggregate counting, merging and zero-suppression
- Snapshot uniqueness, sealing and rendering
- publish()
"""
import os
import sys
import threading

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gcplib.aggregate import COUNTER, Aggregate, MetricSpec, Snapshot, publish
from gcplib.models import Observation

INSTANCES = MetricSpec("gcp_compute_engine_instances", "Number of instances", ("project", "zone"))
BUCKETS = MetricSpec("gcp_storage_buckets", "Number of buckets", ("project",))


# =============================================================================
# Aggregate Tests
# =============================================================================

class TestAggregate:
    """Tests for Aggregate."""

    def test_add_and_get(self):
        aggregate = Aggregate(INSTANCES)
        aggregate.add(("p1", "z1"))
        aggregate.add(("p1", "z1"), 2)
        assert aggregate.get(("p1", "z1")) == 3
        assert aggregate.get(("p1", "z2")) == 0

    def test_zero_counts_suppressed(self):
        aggregate = Aggregate(INSTANCES)
        aggregate.merge({("p1", "z1"): 2, ("p1", "z2"): 0, ("p1", "z3"): 5})

        observations = aggregate.observations()

        assert [o.labels for o in observations] == [("p1", "z1"), ("p1", "z3")]
        assert [o.value for o in observations] == [2.0, 5.0]

    def test_merge_sums(self):
        aggregate = Aggregate(BUCKETS)
        aggregate.merge({("p1",): 3})
        aggregate.merge({("p1",): 4, ("p2",): 1})
        assert aggregate.get(("p1",)) == 7
        assert aggregate.get(("p2",)) == 1

    def test_label_count_checked(self):
        aggregate = Aggregate(INSTANCES)
        with pytest.raises(ValueError):
            aggregate.add(("p1",))
        with pytest.raises(ValueError):
            aggregate.merge({("p1", "z1", "extra"): 1})

    def test_concurrent_merges(self):
        aggregate = Aggregate(BUCKETS)

        def work():
            for _ in range(500):
                aggregate.merge({("p1",): 1})

        threads = [threading.Thread(target=work) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert aggregate.get(("p1",)) == 4000


# =============================================================================
# Snapshot Tests
# =============================================================================

class TestSnapshot:
    """Tests for Snapshot."""

    def test_duplicate_observation_dropped(self):
        snapshot = Snapshot("compute", [INSTANCES])
        assert snapshot.add(Observation(INSTANCES.name, ("p1", "z1"), 2))
        assert not snapshot.add(Observation(INSTANCES.name, ("p1", "z1"), 7))
        snapshot.seal()

        observations = snapshot.observations()
        assert len(observations) == 1
        assert observations[0].value == 2

    def test_unknown_metric_rejected(self):
        snapshot = Snapshot("compute", [INSTANCES])
        with pytest.raises(KeyError):
            snapshot.add(Observation("gcp_unknown", ("p1",), 1))

    def test_wrong_label_count_rejected(self):
        snapshot = Snapshot("compute", [INSTANCES])
        with pytest.raises(ValueError):
            snapshot.add(Observation(INSTANCES.name, ("p1",), 1))

    def test_sealed_snapshot_is_read_only(self):
        snapshot = Snapshot("compute", [INSTANCES]).seal()
        assert snapshot.sealed
        with pytest.raises(RuntimeError):
            snapshot.add(Observation(INSTANCES.name, ("p1", "z1"), 1))

    def test_unsealed_snapshot_not_readable(self):
        snapshot = Snapshot("compute", [INSTANCES])
        with pytest.raises(RuntimeError):
            snapshot.observations()

    def test_metric_families(self):
        snapshot = Snapshot("test", [INSTANCES, BUCKETS])
        snapshot.add(Observation(INSTANCES.name, ("p1", "z1"), 2))
        snapshot.seal()

        families = list(snapshot.metric_families())

        assert [f.name for f in families] == [INSTANCES.name]
        sample = families[0].samples[0]
        assert sample.labels == {"project": "p1", "zone": "z1"}
        assert sample.value == 2

    def test_metric_families_include_empty(self):
        snapshot = Snapshot("test", [INSTANCES, BUCKETS]).seal()
        families = list(snapshot.metric_families(include_empty=True))
        assert [f.name for f in families] == [INSTANCES.name, BUCKETS.name]

    def test_counter_kind(self):
        spec = MetricSpec("gcp_test_events", "Events", (), kind=COUNTER)
        assert spec.family().type == "counter"


class TestPublish:
    """Tests for publish()."""

    def test_publish_seals_and_merges(self):
        aggregate = Aggregate(INSTANCES)
        aggregate.merge({("p1", "z1"): 2, ("p1", "z2"): 0})

        snapshot = publish(
            Snapshot("compute", [INSTANCES, BUCKETS]),
            [aggregate],
            [Observation(BUCKETS.name, ("p1",), 4)],
        )

        assert snapshot.sealed
        assert [(o.metric, o.labels) for o in snapshot.observations()] == [
            (INSTANCES.name, ("p1", "z1")),
            (BUCKETS.name, ("p1",)),
        ]
