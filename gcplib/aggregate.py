"""
Per-cycle aggregation and snapshot publishing.

Scope tasks write into an Aggregate (dimension tuple -> running count)
concurrently. Once every task of the cycle has joined, the aggregates and
any per-item observations are added to a Snapshot, which is sealed and then
rendered as prometheus_client metric families.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from .models import Observation

logger = logging.getLogger(__name__)

GAUGE = "gauge"
COUNTER = "counter"


@dataclass(frozen=True)
class MetricSpec:
    """Name, help text, label schema and type of one exported metric."""
    name: str
    documentation: str
    labels: Tuple[str, ...] = field(default_factory=tuple)
    kind: str = GAUGE

    def family(self) -> Metric:
        if self.kind == COUNTER:
            return CounterMetricFamily(self.name, self.documentation, labels=list(self.labels))
        return GaugeMetricFamily(self.name, self.documentation, labels=list(self.labels))


class Aggregate:
    """
    Thread-safe dimension-tuple -> count map for one metric in one cycle.

    Only non-zero entries become observations: a dimension that was counted
    as zero and a dimension that was never scanned both produce no series.
    """

    def __init__(self, spec: MetricSpec):
        self.spec = spec
        self._lock = threading.Lock()
        self._counts: Dict[Tuple[str, ...], float] = {}

    def add(self, labels: Sequence[str], amount: float = 1) -> None:
        key = tuple(labels)
        if len(key) != len(self.spec.labels):
            raise ValueError(
                f"{self.spec.name}: expected {len(self.spec.labels)} label values, got {len(key)}"
            )
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + amount

    def merge(self, counts: Dict[Tuple[str, ...], float]) -> None:
        """Add a task-local partial count map in one locked step."""
        for key in counts:
            if len(key) != len(self.spec.labels):
                raise ValueError(
                    f"{self.spec.name}: expected {len(self.spec.labels)} label values, got {len(key)}"
                )
        with self._lock:
            for key, amount in counts.items():
                self._counts[key] = self._counts.get(key, 0) + amount

    def get(self, labels: Sequence[str]) -> float:
        with self._lock:
            return self._counts.get(tuple(labels), 0)

    def observations(self) -> List[Observation]:
        with self._lock:
            items = sorted(self._counts.items())
        return [
            Observation(self.spec.name, labels, float(count))
            for labels, count in items
            if count != 0
        ]


class Snapshot:
    """
    Observations of one collector cycle, released only once sealed.

    At most one observation is kept per (metric, label tuple): a second
    observation for the same key is a collector bug and is dropped with a
    warning rather than emitted twice.
    """

    def __init__(self, name: str, specs: Sequence[MetricSpec]):
        self.name = name
        self.specs: Dict[str, MetricSpec] = {spec.name: spec for spec in specs}
        self._lock = threading.Lock()
        self._observations: Dict[Tuple[str, Tuple[str, ...]], Observation] = {}
        self._sealed = False

    def add(self, observation: Observation) -> bool:
        """Record an observation. Returns False if it was a duplicate."""
        spec = self.specs.get(observation.metric)
        if spec is None:
            raise KeyError(f"[{self.name}] unknown metric {observation.metric}")
        if len(observation.labels) != len(spec.labels):
            raise ValueError(
                f"[{self.name}] {spec.name}: expected {len(spec.labels)} label values, "
                f"got {len(observation.labels)}"
            )
        with self._lock:
            if self._sealed:
                raise RuntimeError(f"[{self.name}] snapshot already published")
            if observation.key in self._observations:
                logger.warning(f"[{self.name}] duplicate observation dropped: {observation.key}")
                return False
            self._observations[observation.key] = observation
            return True

    def add_aggregate(self, aggregate: Aggregate) -> None:
        for observation in aggregate.observations():
            self.add(observation)

    def seal(self) -> 'Snapshot':
        with self._lock:
            self._sealed = True
        return self

    @property
    def sealed(self) -> bool:
        with self._lock:
            return self._sealed

    def observations(self) -> List[Observation]:
        """Observations in a stable (metric, labels) order."""
        with self._lock:
            if not self._sealed:
                raise RuntimeError(f"[{self.name}] snapshot not sealed")
            return [self._observations[key] for key in sorted(self._observations)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._observations)

    def metric_families(self, include_empty: bool = False) -> Iterator[Metric]:
        """
        Render the sealed snapshot as prometheus_client metric families.

        Families with no samples are skipped unless ``include_empty``.
        """
        by_metric: Dict[str, List[Observation]] = {}
        for observation in self.observations():
            by_metric.setdefault(observation.metric, []).append(observation)

        for spec in self.specs.values():
            samples = by_metric.get(spec.name, [])
            if not samples and not include_empty:
                continue
            family = spec.family()
            for observation in samples:
                family.add_metric(list(observation.labels), observation.value)
            yield family


def publish(snapshot: Snapshot, aggregates: Sequence[Aggregate],
            observations: Optional[Sequence[Observation]] = None) -> Snapshot:
    """Move joined aggregates and per-item observations into ``snapshot`` and seal it."""
    for aggregate in aggregates:
        snapshot.add_aggregate(aggregate)
    for observation in observations or ():
        snapshot.add(observation)
    return snapshot.seal()
