"""
Project discovery.

The ProjectsCollector is registered ahead of every resource collector: each
scrape it searches Resource Manager for projects, exports how many are
active, and refreshes the shared Account with the active ones so the
resource collectors that follow in the same scrape scan the current list.
"""
import logging
from typing import Any, Iterator, List, Optional

from prometheus_client.core import Metric

from .account import Account
from .aggregate import MetricSpec, Snapshot
from .constants import DEFAULT_MAX_PROJECTS, DEFAULT_RETRY_ATTEMPTS, DEFAULT_TIMEOUT_SECONDS, metric_name
from .errors import ProjectDiscoveryError
from .gcp import GCPClients, gapic_pages
from .models import Observation, Project
from .pagination import list_all
from .tasks import Deadline
from .utils import extra_label_values, last_segment, parse_extra_labels

logger = logging.getLogger(__name__)

SUBSYSTEM = "projects"
INFO_LABELS = ("name", "id", "number", "parent_type", "parent_id")


def parse_parent(parent: str):
    """
    Split a v3 parent resource name into (type, id).

    Example: folders/123 -> ("folder", "123")
    """
    if not parent or '/' not in parent:
        return "", ""
    collection, _, parent_id = parent.partition('/')
    return collection.rstrip('s'), parent_id


def project_from_resource(resource: Any) -> Project:
    """Convert a resourcemanager_v3 Project message into a Project."""
    parent_type, parent_id = parse_parent(getattr(resource, 'parent', ''))
    state = getattr(resource.state, 'name', None) or str(resource.state)
    return Project(
        project_id=resource.project_id,
        number=last_segment(resource.name),
        state=state,
        display_name=resource.display_name,
        parent_type=parent_type,
        parent_id=parent_id,
        labels=dict(resource.labels),
    )


class ProjectsCollector:
    """
    Discovers projects and keeps the Account up to date.

    Exports gcp_projects_count (active projects) and, when extended metrics
    are enabled, gcp_projects_info per project, valued 1 if ACTIVE.
    """

    def __init__(
        self,
        account: Account,
        clients: GCPClients,
        project_filter: str = "",
        max_projects: int = DEFAULT_MAX_PROJECTS,
        extended: bool = False,
        extra_labels: Optional[str] = None,
        timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
    ):
        self.account = account
        self.clients = clients
        self.project_filter = project_filter or ""
        self.max_projects = max_projects
        self.extended = extended
        self.extra_labels = parse_extra_labels(extra_labels)
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.last_snapshot: Optional[Snapshot] = None

        self.count_spec = MetricSpec(metric_name(SUBSYSTEM, "count"), "Number of Projects")
        self.info_spec = MetricSpec(
            metric_name(SUBSYSTEM, "info"),
            "Info by Project",
            INFO_LABELS + tuple(self.extra_labels.values()),
        )
        logger.info(f"Projects filter: '{self.project_filter}'")

    @property
    def specs(self) -> List[MetricSpec]:
        return [self.count_spec, self.info_spec]

    def describe(self) -> Iterator[Metric]:
        for spec in self.specs:
            yield spec.family()

    def collect(self) -> Iterator[Metric]:
        try:
            snapshot = self.run_cycle()
        except ProjectDiscoveryError as e:
            # Resource collectors keep scanning the previous project list
            logger.error(f"[{SUBSYSTEM}] {e}")
            return
        except Exception as e:
            logger.error(f"[{SUBSYSTEM}] collection cycle failed: {e}", exc_info=True)
            return
        yield from snapshot.metric_families()

    def discover(self, deadline: Optional[Deadline] = None) -> List[Project]:
        """
        Page through every project matching the filter.

        Raises:
            ProjectDiscoveryError: If the client could not be built, any page
                could not be listed or a project could not be read
        """
        try:
            pages = gapic_pages(
                self.clients.projects.search_projects,
                {'query': self.project_filter},
                'projects',
                page_size=self.max_projects,
                retry_attempts=self.retry_attempts,
            )
            resources = list_all(pages, deadline, "project discovery")
            projects = [project_from_resource(resource) for resource in resources]
        except Exception as e:
            raise ProjectDiscoveryError(f"Unable to list projects: {e}", original_error=e) from e
        if not projects:
            logger.warning("There are 0 projects. Nothing to do")
        return projects

    def run_cycle(self, deadline: Optional[Deadline] = None) -> Snapshot:
        deadline = deadline or Deadline(self.timeout)
        projects = self.discover(deadline)
        active = [project for project in projects if project.active]

        snapshot = Snapshot(SUBSYSTEM, self.specs)
        snapshot.add(Observation(self.count_spec.name, (), float(len(active))))
        if self.extended:
            for project in projects:
                snapshot.add(self.info_observation(project))
        snapshot.seal()

        self.account.refresh(active)
        self.last_snapshot = snapshot
        logger.info(f"[{SUBSYSTEM}] {len(active)} active of {len(projects)} project(s)")
        return snapshot

    def info_observation(self, project: Project) -> Observation:
        labels = (
            project.display_name, project.project_id, project.number,
            project.parent_type, project.parent_id,
        ) + tuple(extra_label_values(project.labels, self.extra_labels))
        return Observation(self.info_spec.name, labels, 1.0 if project.active else 0.0)
