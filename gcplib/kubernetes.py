"""
Kubernetes Engine cluster collector.

Unlike the counting collectors, every cluster produces its own series:

    gcp_kubernetes_engine_cluster_up          1 if the cluster is RUNNING
    gcp_kubernetes_engine_cluster_nodes       current node count

and, with kubernetes_extended enabled, per-cluster and per-node-pool info
series carrying the control plane and node pool configuration as labels, plus
the end of standard support date of each control plane and node pool version
(one upgrade-info call per cluster and per node pool).
"""
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Iterator, List, Optional

from .account import Account
from .aggregate import MetricSpec
from .collector import Listing, ResourceCollector
from .constants import CLUSTER_STATUS_RUNNING, PROJECT_LABEL, metric_name
from .errors import DeadlineExceeded, Disposition, classify
from .gcp import GCPClients, location_parent, single_page
from .models import Observation, Project
from .tasks import Deadline
from .utils import bool_label

if TYPE_CHECKING:
    from .config import ExporterConfig

logger = logging.getLogger(__name__)

SUBSYSTEM = "kubernetes_engine"

# Format of end_of_standard_support_timestamp in upgrade info responses
SUPPORT_DATE_FORMAT = "%Y-%m-%d"

CLUSTER_LABELS = (PROJECT_LABEL, "name", "location", "version")
CLUSTER_INFO_LABELS = CLUSTER_LABELS + (
    "id", "mode", "endpoint", "network", "subnetwork", "initial_cluster_version", "node_pools_count",
)
NODE_POOL_INFO_LABELS = CLUSTER_LABELS + (
    "etag", "cluster_id", "autoscaling", "disk_size_gb", "disk_type", "image_type",
    "machine_type", "locations", "spot", "preemptible",
)

CLUSTER_UP = MetricSpec(
    metric_name(SUBSYSTEM, "cluster_up"), "1 if the cluster is running, 0 otherwise", CLUSTER_LABELS,
)
CLUSTER_NODES = MetricSpec(
    metric_name(SUBSYSTEM, "cluster_nodes"), "Number of nodes currently in the cluster", CLUSTER_LABELS,
)
CLUSTER_INFO = MetricSpec(
    metric_name(SUBSYSTEM, "cluster_info"),
    "Cluster control plane information. 1 if the cluster is running, 0 otherwise",
    CLUSTER_INFO_LABELS,
)
NODE_POOLS_INFO = MetricSpec(
    metric_name(SUBSYSTEM, "cluster_node_pools_info"),
    "Cluster Node Pools Information. 1 if the Node Pool is running, 0 otherwise",
    NODE_POOL_INFO_LABELS,
)
CLUSTER_END_OF_SUPPORT = MetricSpec(
    metric_name(SUBSYSTEM, "cluster_endof_standard_support_timestamp"),
    "Cluster control plane version standard support End of Life timestamp",
    ("cluster_id",),
)
NODE_POOL_END_OF_SUPPORT = MetricSpec(
    metric_name(SUBSYSTEM, "node_pool_endof_standard_support_timestamp"),
    "Cluster Node Pools version standard support End of Life timestamp",
    ("etag", "cluster_id"),
)


def _status(value: Any) -> str:
    return getattr(value, 'name', None) or str(value or '')


def is_running(resource: Any) -> float:
    return 1.0 if _status(resource.status) == CLUSTER_STATUS_RUNNING else 0.0


def cluster_mode(cluster: Any) -> str:
    autopilot = getattr(cluster, 'autopilot', None)
    return "Autopilot" if autopilot is not None and autopilot.enabled else "Standard"


def cluster_observations(project: Project, cluster: Any) -> List[Observation]:
    """cluster_up and cluster_nodes for one cluster."""
    running = is_running(cluster)
    return [
        Observation(
            CLUSTER_UP.name,
            (project.project_id, cluster.name, cluster.location, cluster.current_master_version),
            running,
        ),
        Observation(
            CLUSTER_NODES.name,
            (project.project_id, cluster.name, cluster.location, cluster.current_node_version),
            float(cluster.current_node_count),
        ),
    ]


def cluster_info_observations(project: Project, cluster: Any) -> List[Observation]:
    """
    cluster_info plus one cluster_node_pools_info per node pool.

    Clusters without node pools produce nothing here.
    """
    node_pools = list(cluster.node_pools)
    if not node_pools:
        return []

    running = is_running(cluster)
    observations = [
        Observation(
            CLUSTER_INFO.name,
            (
                project.project_id, cluster.name, cluster.location, cluster.current_master_version,
                cluster.id, cluster_mode(cluster), cluster.endpoint, cluster.network,
                cluster.subnetwork, cluster.initial_cluster_version, str(len(node_pools)),
            ),
            running,
        )
    ]

    for node_pool in node_pools:
        config = node_pool.config
        autoscaling = getattr(node_pool, 'autoscaling', None)
        observations.append(Observation(
            NODE_POOLS_INFO.name,
            (
                project.project_id, node_pool.name, cluster.location, node_pool.version,
                node_pool.etag, cluster.id,
                bool_label(autoscaling is not None and autoscaling.enabled),
                str(config.disk_size_gb), config.disk_type, config.image_type, config.machine_type,
                ",".join(node_pool.locations),
                bool_label(config.spot), bool_label(config.preemptible),
            ),
            is_running(node_pool),
        ))
    return observations


def support_date_timestamp(value: Any) -> Optional[float]:
    """UNIX timestamp of a YYYY-MM-DD date (UTC midnight), or None if it does not parse."""
    try:
        parsed = datetime.strptime(value, SUPPORT_DATE_FORMAT)
    except (TypeError, ValueError):
        return None
    return parsed.replace(tzinfo=timezone.utc).timestamp()


def cluster_resource_name(project: Project, cluster: Any) -> str:
    return f"projects/{project.project_id}/locations/{cluster.location}/clusters/{cluster.name}"


def fetch_end_of_support(fetch: Callable[..., Any], name: str, deadline: Deadline) -> Optional[float]:
    """
    End of standard support for one cluster or node pool version.

    Returns None when the upgrade info cannot be fetched or carries no date,
    so the caller drops just this series.

    Raises:
        DeadlineExceeded: If the cycle deadline expires first
    """
    context = f"[{SUBSYSTEM}] upgrade info {name}"
    deadline.check(context)
    try:
        response = fetch(request={'name': name}, timeout=deadline.remaining())
    except Exception as e:
        if deadline.expired:
            raise DeadlineExceeded(f"Deadline exceeded: {context}", original_error=e) from e
        if classify(e, context) is not Disposition.PERMISSION_OR_DISABLED:
            logger.warning(f"{context}: {e}")
        return None

    value = response.end_of_standard_support_timestamp
    timestamp = support_date_timestamp(value)
    if timestamp is None:
        logger.debug(f"{context}: no end of standard support date ({value!r})")
    return timestamp


def end_of_support_observations(client: Any, project: Project, cluster: Any,
                                deadline: Deadline) -> List[Observation]:
    """End of standard support timestamps for a cluster and each of its node pools."""
    cluster_name = cluster_resource_name(project, cluster)
    observations = []

    timestamp = fetch_end_of_support(client.fetch_cluster_upgrade_info, cluster_name, deadline)
    if timestamp is not None:
        observations.append(Observation(CLUSTER_END_OF_SUPPORT.name, (cluster.id,), timestamp))

    for node_pool in cluster.node_pools:
        timestamp = fetch_end_of_support(
            client.fetch_node_pool_upgrade_info, f"{cluster_name}/nodePools/{node_pool.name}", deadline,
        )
        if timestamp is not None:
            observations.append(Observation(
                NODE_POOL_END_OF_SUPPORT.name, (node_pool.etag, cluster.id), timestamp,
            ))
    return observations


def cluster_observer(clients: GCPClients, extended: bool):
    """Per-item observer for the clusters listing."""
    def observe(project: Project, scope: str, cluster: Any, deadline: Deadline) -> Iterator[Observation]:
        logger.debug(f"[{SUBSYSTEM}] project {project.project_id}: cluster {cluster.name}")
        yield from cluster_observations(project, cluster)
        if extended:
            yield from cluster_info_observations(project, cluster)
            yield from end_of_support_observations(clients.cluster_manager, project, cluster, deadline)

    return observe


def kubernetes_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    extended = config.kubernetes_extended
    info_specs = [CLUSTER_UP, CLUSTER_NODES]
    if extended:
        info_specs += [CLUSTER_INFO, NODE_POOLS_INFO, CLUSTER_END_OF_SUPPORT, NODE_POOL_END_OF_SUPPORT]

    return ResourceCollector(
        SUBSYSTEM,
        account,
        [
            Listing(
                name='clusters',
                pages=lambda project, scope: single_page(
                    clients.cluster_manager.list_clusters,
                    {'parent': location_parent(project.project_id)},
                    'clusters',
                    retry_attempts=config.retry_attempts,
                ),
                observe=cluster_observer(clients, extended),
            ),
        ],
        info_specs=info_specs,
        timeout=config.timeout,
        parallel_workers=config.parallel_workers,
        scope_workers=config.scope_workers,
    )
