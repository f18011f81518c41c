"""
Generic resource collector.

Every resource type is described by one or more Listings: how to discover a
project's scopes (zones, regions, locations, or just the implicit global
scope), how to build a page function for one (project, scope), and what to
do with each listed item, either counting it along some dimensions or
turning it into per-item observations.

A collection cycle fans out one task per (project, listing), each of which
fans out one task per scope. A scope's contribution is only merged into the
cycle's aggregates after its listing has been paged to completion, so a
scope that fails, is forbidden, or runs out of time contributes nothing.
The snapshot is published once every task of the cycle has joined.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from prometheus_client.core import Metric

from .account import Account
from .aggregate import Aggregate, MetricSpec, Snapshot, publish
from .constants import (
    DEFAULT_PARALLEL_WORKERS,
    DEFAULT_SCOPE_WORKERS,
    DEFAULT_TIMEOUT_SECONDS,
    GLOBAL_SCOPE,
    PROJECT_LABEL,
    metric_name,
)
from .errors import Disposition, PermissionDenied, ScopeDiscoveryError, classify
from .models import CollectionOutcome, Observation, Project
from .pagination import PageFunction, walk_pages
from .tasks import Deadline, TaskGroup
from .utils import summarize_outcomes

logger = logging.getLogger(__name__)

ScopeDiscovery = Callable[[Project, Deadline], Sequence[str]]
PageFactory = Callable[[Project, str], PageFunction]
Extractor = Callable[[str, Any], Optional[Sequence[str]]]
# observe(project, scope, item, deadline); may make further calls within the deadline
Observer = Callable[[Project, str, Any, Deadline], Iterable[Observation]]

Counts = Dict[str, Dict[Tuple[str, ...], float]]


def global_scope(project: Project, deadline: Deadline) -> Sequence[str]:
    """Scope discovery for APIs that list a whole project in one call."""
    return [GLOBAL_SCOPE]


def by_scope(scope: str, item: Any) -> Sequence[str]:
    """Dimension extractor: the scope the item was listed in (zone, region...)."""
    return (scope,)


def no_dimensions(scope: str, item: Any) -> Sequence[str]:
    """Dimension extractor for per-project totals."""
    return ()


@dataclass(frozen=True)
class CountMetric:
    """
    A zero-suppressed count metric labelled by project plus ``dimensions``.

    ``extract(scope, item)`` returns the dimension values for one item, or
    None to leave the item out of this metric.
    """
    name: str
    documentation: str
    dimensions: Tuple[str, ...] = ()
    extract: Extractor = no_dimensions


@dataclass
class Listing:
    """One paginated listing, scanned once per (project, scope)."""
    name: str
    pages: PageFactory
    counts: Sequence[CountMetric] = ()
    observe: Optional[Observer] = None
    scopes: ScopeDiscovery = global_scope
    scope_kind: str = "scope"  # For log lines: zone, region, location...


@dataclass
class ScopeResult:
    """Task-local result of one fully-paged scope."""
    counts: Counts = field(default_factory=dict)
    observations: List[Observation] = field(default_factory=list)
    items: int = 0


class ResourceCollector:
    """
    Dimensional counting collector for one resource type.

    Implements the prometheus_client custom collector protocol: every call to
    ``collect()`` runs one full cycle against the projects currently held by
    the Account registry and yields the sealed snapshot's metric families.
    """

    def __init__(
        self,
        subsystem: str,
        account: Account,
        listings: Sequence[Listing],
        info_specs: Sequence[MetricSpec] = (),
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        parallel_workers: int = DEFAULT_PARALLEL_WORKERS,
        scope_workers: int = DEFAULT_SCOPE_WORKERS,
    ):
        self.subsystem = subsystem
        self.account = account
        self.listings = list(listings)
        self.timeout = timeout
        self.parallel_workers = parallel_workers
        self.scope_workers = scope_workers
        self.last_snapshot: Optional[Snapshot] = None
        self.last_outcomes: Dict[Any, CollectionOutcome] = {}

        self.count_specs: Dict[str, MetricSpec] = {}
        for listing in self.listings:
            for count in listing.counts:
                fq_name = metric_name(subsystem, count.name)
                if fq_name in self.count_specs:
                    raise ValueError(f"[{subsystem}] metric {fq_name} defined twice")
                self.count_specs[fq_name] = MetricSpec(
                    fq_name, count.documentation, (PROJECT_LABEL,) + tuple(count.dimensions)
                )
        self.info_specs = list(info_specs)

    @property
    def specs(self) -> List[MetricSpec]:
        return list(self.count_specs.values()) + self.info_specs

    # -------------------------------------------------------------------------
    # prometheus_client collector protocol
    # -------------------------------------------------------------------------

    def describe(self) -> Iterator[Metric]:
        for spec in self.specs:
            yield spec.family()

    def collect(self) -> Iterator[Metric]:
        try:
            snapshot = self.run_cycle()
        except Exception as e:
            # One resource type failing must not break the whole scrape
            logger.error(f"[{self.subsystem}] collection cycle failed: {e}", exc_info=True)
            return
        yield from snapshot.metric_families()

    # -------------------------------------------------------------------------
    # Collection cycle
    # -------------------------------------------------------------------------

    def run_cycle(self, deadline: Optional[Deadline] = None) -> Snapshot:
        """
        Run one collection cycle and return its sealed snapshot.

        Blocks until every (project, listing) task and every scope task under
        it has reached a terminal outcome.
        """
        deadline = deadline or Deadline(self.timeout)
        projects = self.account.snapshot()
        started = time.monotonic()
        logger.debug(f"[{self.subsystem}] collecting from {len(projects)} project(s)")

        aggregates = {name: Aggregate(spec) for name, spec in self.count_specs.items()}
        observations: List[Observation] = []

        with TaskGroup(self.subsystem, max_workers=self.parallel_workers) as group:
            for project in projects:
                for listing in self.listings:
                    group.spawn(
                        (project.project_id, listing.name),
                        self.scan_project, project, listing, deadline,
                    )
            outcomes = group.join()

        for outcome in outcomes.values():
            if outcome.ok:
                for result in outcome.value:
                    self._merge(aggregates, result)
                    observations.extend(result.observations)

        snapshot = publish(
            Snapshot(self.subsystem, self.specs),
            list(aggregates.values()),
            observations,
        )
        self.last_snapshot = snapshot
        self.last_outcomes = outcomes
        logger.info(
            f"[{self.subsystem}] {len(snapshot)} observation(s) from {len(projects)} project(s) "
            f"in {time.monotonic() - started:.1f}s {summarize_outcomes(outcomes)}"
        )
        return snapshot

    def scan_project(self, project: Project, listing: Listing, deadline: Deadline) -> List[ScopeResult]:
        """
        Discover a project's scopes for ``listing`` and scan each concurrently.

        Returns the results of the scopes that succeeded. Raises
        PermissionDenied if scope discovery is forbidden, so the whole
        project is skipped for this listing.
        """
        name = f"{self.subsystem}/{listing.name}/{project.project_id}"
        scopes = self.discover_scopes(project, listing, deadline)

        with TaskGroup(name, max_workers=self.scope_workers) as group:
            for scope in scopes:
                group.spawn(scope, self.scan_scope, project, scope, listing, deadline)
            outcomes = group.join()

        return [outcome.value for outcome in outcomes.values() if outcome.ok]

    def discover_scopes(self, project: Project, listing: Listing, deadline: Deadline) -> Sequence[str]:
        context = f"[{self.subsystem}] project {project.project_id}: {listing.scope_kind}s"
        deadline.check(context)
        try:
            scopes = list(listing.scopes(project, deadline))
        except Exception as e:
            if classify(e, context) is Disposition.PERMISSION_OR_DISABLED:
                raise PermissionDenied(f"{context}: 403", original_error=e) from e
            raise ScopeDiscoveryError(f"{context}: {e}", original_error=e) from e
        logger.debug(f"{context}: {len(scopes)} found")
        return scopes

    def scan_scope(self, project: Project, scope: str, listing: Listing, deadline: Deadline) -> ScopeResult:
        """Page through one (project, scope) listing into a task-local result."""
        result = ScopeResult()
        project_id = project.project_id
        counters = [(metric_name(self.subsystem, count.name), count) for count in listing.counts]

        def on_page(items: Sequence[Any]) -> None:
            result.items += len(items)
            for item in items:
                for fq_name, count in counters:
                    dimensions = count.extract(scope, item)
                    if dimensions is None:
                        continue
                    key = (project_id,) + tuple(dimensions)
                    per_metric = result.counts.setdefault(fq_name, {})
                    per_metric[key] = per_metric.get(key, 0) + 1
                if listing.observe is not None:
                    result.observations.extend(listing.observe(project, scope, item, deadline))

        walk_pages(
            listing.pages(project, scope),
            on_page,
            deadline=deadline,
            context=f"[{self.subsystem}] project {project_id} {listing.scope_kind} {scope}",
        )
        return result

    @staticmethod
    def _merge(aggregates: Dict[str, Aggregate], result: ScopeResult) -> None:
        for fq_name, counts in result.counts.items():
            aggregates[fq_name].merge(counts)
