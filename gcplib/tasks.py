"""
Structured concurrency helpers for collector fan-out.

A TaskGroup owns a bounded thread pool, spawns one task per key (a project,
a zone, a location...), and join() blocks until every task has reached a
terminal CollectionOutcome. Failures never escape join(): each task's
exception is classified and recorded against its key so sibling tasks are
unaffected.
"""
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Hashable, List, Optional

from .errors import DeadlineExceeded, Disposition, classify
from .models import CollectionOutcome

logger = logging.getLogger(__name__)


class Deadline:
    """
    A point in time after which a collection cycle stops issuing calls.

    Pass ``None`` seconds for no deadline.
    """

    def __init__(self, seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + seconds

    def remaining(self) -> Optional[float]:
        """Seconds left before expiry (never negative), or None if unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self, context: str = "") -> None:
        """Raise DeadlineExceeded if the deadline has passed."""
        if self.expired:
            raise DeadlineExceeded(f"Deadline exceeded{': ' + context if context else ''}")


class TaskGroup:
    """
    Spawn a bounded set of tasks, join them, collect per-task outcomes.

    Usage:
        with TaskGroup("compute/my-project", max_workers=8) as group:
            for zone in zones:
                group.spawn(zone, scan_zone, zone)
            outcomes = group.join()

    Each outcome is SUCCESS (with the task's return value), SKIPPED (the
    task hit a permission-denied / API-disabled error) or FAILED (any other
    exception, logged at WARNING with the group name and task key).
    """

    def __init__(self, name: str, max_workers: int = 4):
        self.name = name
        self.max_workers = max(1, max_workers)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: Dict[Hashable, Future] = {}
        self._outcomes: Optional[Dict[Hashable, CollectionOutcome]] = None

    def __enter__(self) -> 'TaskGroup':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Never leave tasks running past the group's scope
        self.join()
        return False

    def spawn(self, key: Hashable, fn: Callable[..., Any], *args: Any) -> None:
        """Schedule ``fn(*args)`` as the task for ``key``."""
        if self._outcomes is not None:
            raise RuntimeError(f"TaskGroup {self.name} already joined")
        if key in self._futures:
            raise ValueError(f"TaskGroup {self.name}: duplicate task key {key!r}")
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix=f"tg-{self.name}"[:32],
            )
        self._futures[key] = self._executor.submit(fn, *args)

    @property
    def keys(self) -> List[Hashable]:
        return list(self._futures)

    def join(self) -> Dict[Hashable, CollectionOutcome]:
        """
        Wait for every spawned task and return outcomes keyed by task key.

        Safe to call more than once; later calls return the same outcomes.
        """
        if self._outcomes is not None:
            return self._outcomes
        if self._futures:
            wait(list(self._futures.values()))
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._outcomes = {key: self._outcome(key, future) for key, future in self._futures.items()}
        return self._outcomes

    def _outcome(self, key: Hashable, future: Future) -> CollectionOutcome:
        exc = future.exception()
        context = f"[{self.name}] {key}"
        disposition = classify(exc, context)
        if disposition is Disposition.SUCCESS:
            return CollectionOutcome.success(future.result())
        if disposition is Disposition.PERMISSION_OR_DISABLED:
            return CollectionOutcome.skipped(str(exc))
        if isinstance(exc, DeadlineExceeded):
            logger.warning(f"{context}: deadline exceeded, partial results discarded")
        else:
            logger.warning(f"{context}: {exc}")
        return CollectionOutcome.failed(exc)
