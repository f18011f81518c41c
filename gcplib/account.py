"""
Account registry: the process-wide list of active projects.

The projects collector refreshes it once per scrape; every resource
collector reads it during the same scrape. Refresh replaces the list
wholesale under the lock, so a reader sees either the old list or the new
one, never a mix of both.
"""
import logging
import threading
from typing import Iterable, Tuple

from .models import Project

logger = logging.getLogger(__name__)


class Account:
    """Mutex-guarded, replace-only snapshot of the known projects."""

    def __init__(self, projects: Iterable[Project] = ()):
        self._lock = threading.Lock()
        self._projects: Tuple[Project, ...] = tuple(projects)
        self._populated = bool(self._projects)

    def refresh(self, projects: Iterable[Project]) -> None:
        """Replace the project list."""
        # Build the new tuple outside the lock; only the swap is guarded
        new_projects = tuple(projects)
        logger.debug(f"Replacing projects ({len(new_projects)} project(s))")
        with self._lock:
            self._projects = new_projects
            self._populated = True

    def snapshot(self) -> Tuple[Project, ...]:
        """Return the current project list. The tuple is never mutated."""
        with self._lock:
            return self._projects

    @property
    def populated(self) -> bool:
        """True once a refresh has happened (even if it found no projects)."""
        with self._lock:
            return self._populated

    def __len__(self) -> int:
        return len(self.snapshot())
