"""
Resource-type collector definitions.

Each builder wires one Google Cloud API into the generic ResourceCollector:
which scopes to fan out over, which list call to page through, and which
dimensions each listed item is counted under. Every metric carries the
``project`` label first; the table below lists the remaining labels.

    compute           gcp_compute_engine_instances{zone}
                      gcp_compute_engine_forwardingrules{region}
    storage           gcp_storage_buckets
    cloudrun          gcp_cloudrun_services
    functions         gcp_cloudfunctions_functions
                      gcp_cloudfunctions_locations{location}
                      gcp_cloudfunctions_runtimes{runtime}
    artifactregistry  gcp_artifact_registry_registries
                      gcp_artifact_registry_locations{location}
                      gcp_artifact_registry_formats{format}
    scheduler         gcp_cloud_scheduler_jobs{location}
    pubsub            gcp_pubsub_{topics,subscriptions,snapshots,schemas}
    iam               gcp_iam_service_accounts{name,disabled}, one per account
                      gcp_iam_service_account_keys{service_account_email,key,type,disabled},
                      one per key
    monitoring        gcp_cloud_monitoring_{alert_policies,uptime_checks}
    logging           gcp_cloud_logging_logs
    eventarc          gcp_eventarc_{channels,triggers}
    endpoints         gcp_cloud_endpoints_services
"""
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, Optional, Sequence

from .account import Account
from .aggregate import MetricSpec
from .collector import CountMetric, Listing, ResourceCollector, by_scope
from .constants import (
    COLLECTOR_ARTIFACT_REGISTRY,
    COLLECTOR_CLOUDRUN,
    COLLECTOR_COMPUTE,
    COLLECTOR_ENDPOINTS,
    COLLECTOR_EVENTARC,
    COLLECTOR_FUNCTIONS,
    COLLECTOR_IAM,
    COLLECTOR_KUBERNETES,
    COLLECTOR_LOGGING,
    COLLECTOR_MONITORING,
    COLLECTOR_PUBSUB,
    COLLECTOR_SCHEDULER,
    COLLECTOR_STORAGE,
    PROJECT_LABEL,
    metric_name,
)
from .gcp import (
    GCPClients,
    gapic_pages,
    list_locations,
    list_regions,
    list_service_accounts,
    list_zones,
    location_parent,
    project_parent,
    single_page,
    storage_bucket_pages,
)
from .models import Observation, Project
from .tasks import Deadline
from .utils import bool_label, name_segment

if TYPE_CHECKING:
    from .config import ExporterConfig

logger = logging.getLogger(__name__)

CollectorBuilder = Callable[[Account, GCPClients, 'ExporterConfig'], ResourceCollector]


def enum_name(value: Any) -> str:
    """Name of a proto-plus enum value (e.g. DOCKER), or its string form."""
    if value is None:
        return ""
    return getattr(value, 'name', None) or str(value)


def _collector(subsystem: str, account: Account, config: 'ExporterConfig',
               listings: Sequence[Listing], **kwargs: Any) -> ResourceCollector:
    return ResourceCollector(
        subsystem,
        account,
        listings,
        timeout=config.timeout,
        parallel_workers=config.parallel_workers,
        scope_workers=config.scope_workers,
        **kwargs,
    )


def _project_listing(name: str, documentation: str, method: Callable[[], Callable[..., Any]],
                     items_field: str, request_field: str, parent: Callable[[str], str],
                     config: 'ExporterConfig') -> Listing:
    """A project-wide listing counted as a single per-project total."""
    return Listing(
        name=name,
        pages=lambda project, scope: gapic_pages(
            method(), {request_field: parent(project.project_id)}, items_field,
            config.page_size, retry_attempts=config.retry_attempts,
        ),
        counts=[CountMetric(name, documentation)],
    )


# =============================================================================
# Compute Engine
# =============================================================================

def compute_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    """Instances per zone and forwarding rules per region."""
    retry = config.retry_attempts
    return _collector('compute_engine', account, config, [
        Listing(
            name='instances',
            scopes=lambda project, deadline: list_zones(clients, project, deadline, retry),
            scope_kind='zone',
            pages=lambda project, zone: gapic_pages(
                clients.instances.list, {'project': project.project_id, 'zone': zone}, 'items',
                config.page_size, size_field='max_results', retry_attempts=retry,
            ),
            counts=[CountMetric('instances', 'Number of instances', ('zone',), by_scope)],
        ),
        Listing(
            name='forwardingrules',
            scopes=lambda project, deadline: list_regions(clients, project, deadline, retry),
            scope_kind='region',
            pages=lambda project, region: gapic_pages(
                clients.forwarding_rules.list, {'project': project.project_id, 'region': region}, 'items',
                config.page_size, size_field='max_results', retry_attempts=retry,
            ),
            counts=[CountMetric('forwardingrules', 'Number of forwardingrules', ('region',), by_scope)],
        ),
    ])


# =============================================================================
# Cloud Storage
# =============================================================================

def storage_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    return _collector('storage', account, config, [
        Listing(
            name='buckets',
            pages=lambda project, scope: storage_bucket_pages(
                clients.storage, project.project_id, config.page_size, config.retry_attempts,
            ),
            counts=[CountMetric('buckets', 'Number of buckets')],
        ),
    ])


# =============================================================================
# Cloud Run
# =============================================================================

def cloudrun_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    return _collector('cloudrun', account, config, [
        _project_listing('services', 'Number of services', lambda: clients.run_services.list_services,
                         'services', 'parent', location_parent, config),
    ])


# =============================================================================
# Cloud Functions
# =============================================================================

def function_location(scope: str, function: Any) -> Optional[Sequence[str]]:
    """Location parsed from projects/{p}/locations/{location}/functions/{name}."""
    location = name_segment(function.name, 'locations')
    if not location:
        logger.debug(f"[cloudfunctions] Unable to parse function name: {function.name}")
        return None
    return (location,)


def function_runtime(scope: str, function: Any) -> Sequence[str]:
    build_config = getattr(function, 'build_config', None)
    return (getattr(build_config, 'runtime', '') or '',)


def functions_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    return _collector('cloudfunctions', account, config, [
        Listing(
            name='functions',
            pages=lambda project, scope: gapic_pages(
                clients.functions.list_functions, {'parent': location_parent(project.project_id)},
                'functions', config.page_size, retry_attempts=config.retry_attempts,
            ),
            counts=[
                CountMetric('functions', 'Number of Cloud Functions'),
                CountMetric('locations', 'Number of Functions by Location', ('location',), function_location),
                CountMetric('runtimes', 'Number of Functions by Runtime', ('runtime',), function_runtime),
            ],
        ),
    ])


# =============================================================================
# Artifact Registry
# =============================================================================

def repository_format(scope: str, repository: Any) -> Sequence[str]:
    return (enum_name(getattr(repository, 'format_', None)),)


def artifact_registry_collector(account: Account, clients: GCPClients,
                                config: 'ExporterConfig') -> ResourceCollector:
    return _collector('artifact_registry', account, config, [
        Listing(
            name='repositories',
            scopes=lambda project, deadline: list_locations(
                clients.artifact_registry, project, deadline, config.retry_attempts,
            ),
            scope_kind='location',
            pages=lambda project, location: gapic_pages(
                clients.artifact_registry.list_repositories,
                {'parent': location_parent(project.project_id, location)},
                'repositories', config.page_size, retry_attempts=config.retry_attempts,
            ),
            counts=[
                CountMetric('registries', 'Number of Registries'),
                CountMetric('locations', 'Number of Locations', ('location',), by_scope),
                CountMetric('formats', 'Number of Formats', ('format',), repository_format),
            ],
        ),
    ])


# =============================================================================
# Cloud Scheduler
# =============================================================================

def scheduler_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    return _collector('cloud_scheduler', account, config, [
        Listing(
            name='jobs',
            scopes=lambda project, deadline: list_locations(
                clients.scheduler, project, deadline, config.retry_attempts,
            ),
            scope_kind='location',
            pages=lambda project, location: gapic_pages(
                clients.scheduler.list_jobs, {'parent': location_parent(project.project_id, location)},
                'jobs', config.page_size, retry_attempts=config.retry_attempts,
            ),
            counts=[CountMetric('jobs', 'Number of Jobs', ('location',), by_scope)],
        ),
    ])


# =============================================================================
# Pub/Sub
# =============================================================================

def pubsub_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    return _collector('pubsub', account, config, [
        _project_listing('topics', 'Number of Topics', lambda: clients.publisher.list_topics,
                         'topics', 'project', project_parent, config),
        _project_listing('subscriptions', 'Number of Subscriptions',
                         lambda: clients.subscriber.list_subscriptions,
                         'subscriptions', 'project', project_parent, config),
        _project_listing('snapshots', 'Number of Snapshots', lambda: clients.subscriber.list_snapshots,
                         'snapshots', 'project', project_parent, config),
        _project_listing('schemas', 'Number of Schemas', lambda: clients.schemas.list_schemas,
                         'schemas', 'parent', project_parent, config),
    ])


# =============================================================================
# IAM
# =============================================================================

IAM_SERVICE_ACCOUNTS = MetricSpec(
    metric_name('iam', 'service_accounts'), 'Number of Service Accounts',
    (PROJECT_LABEL, 'name', 'disabled'),
)
IAM_SERVICE_ACCOUNT_KEYS = MetricSpec(
    metric_name('iam', 'service_account_keys'), 'Number of Service Account Keys',
    (PROJECT_LABEL, 'service_account_email', 'key', 'type', 'disabled'),
)


def service_account_key_id(name: str) -> Optional[str]:
    """
    Key ID from projects/{project}/serviceAccounts/{account}/keys/{key}.

    Returns None for names of any other shape.
    """
    parts = name.split('/') if name else []
    if len(parts) != 6 or parts[4] != 'keys':
        return None
    return parts[-1]


def observe_service_account(project: Project, scope: str, service_account: Any,
                            deadline: Deadline) -> Iterator[Observation]:
    yield Observation(
        IAM_SERVICE_ACCOUNTS.name,
        (project.project_id, service_account.email, bool_label(service_account.disabled)),
        1.0,
    )


def observe_service_account_key(project: Project, service_account: str, key: Any,
                                deadline: Deadline) -> Iterator[Observation]:
    key_id = service_account_key_id(key.name)
    if key_id is None:
        logger.warning(f"[iam] project {project.project_id}: unable to extract key ID from {key.name!r}")
        return
    yield Observation(
        IAM_SERVICE_ACCOUNT_KEYS.name,
        (
            project.project_id, name_segment(service_account, 'serviceAccounts'), key_id,
            enum_name(key.key_type), bool_label(key.disabled),
        ),
        1.0,
    )


def iam_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    """One series per service account and per service account key (one scope per service account)."""
    return _collector('iam', account, config, [
        Listing(
            name='service_accounts',
            pages=lambda project, scope: gapic_pages(
                clients.iam.list_service_accounts, {'name': project_parent(project.project_id)},
                'accounts', config.page_size, retry_attempts=config.retry_attempts,
            ),
            observe=observe_service_account,
        ),
        Listing(
            name='service_account_keys',
            scopes=lambda project, deadline: list_service_accounts(
                clients, project, deadline, config.retry_attempts,
            ),
            scope_kind='service account',
            pages=lambda project, service_account: single_page(
                clients.iam.list_service_account_keys, {'name': service_account}, 'keys',
                retry_attempts=config.retry_attempts,
            ),
            observe=observe_service_account_key,
        ),
    ], info_specs=[IAM_SERVICE_ACCOUNTS, IAM_SERVICE_ACCOUNT_KEYS])


# =============================================================================
# Cloud Monitoring
# =============================================================================

def monitoring_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    return _collector('cloud_monitoring', account, config, [
        _project_listing('alert_policies', 'Number of Alert Policies',
                         lambda: clients.alert_policies.list_alert_policies,
                         'alert_policies', 'name', project_parent, config),
        _project_listing('uptime_checks', 'Number of Uptime Checks',
                         lambda: clients.uptime_checks.list_uptime_check_configs,
                         'uptime_check_configs', 'parent', project_parent, config),
    ])


# =============================================================================
# Cloud Logging
# =============================================================================

def logging_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    return _collector('cloud_logging', account, config, [
        _project_listing('logs', 'Number of Logs', lambda: clients.logging.list_logs,
                         'log_names', 'parent', project_parent, config),
    ])


# =============================================================================
# Eventarc
# =============================================================================

def eventarc_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    return _collector('eventarc', account, config, [
        _project_listing('channels', 'Number of Channels', lambda: clients.eventarc.list_channels,
                         'channels', 'parent', location_parent, config),
        _project_listing('triggers', 'Number of Triggers', lambda: clients.eventarc.list_triggers,
                         'triggers', 'parent', location_parent, config),
    ])


# =============================================================================
# Cloud Endpoints
# =============================================================================

def endpoints_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    return _collector('cloud_endpoints', account, config, [
        _project_listing('services', 'Number of Cloud Endpoints services',
                         lambda: clients.service_manager.list_services,
                         'services', 'producer_project_id', lambda project_id: project_id, config),
    ])


def _kubernetes_collector(account: Account, clients: GCPClients, config: 'ExporterConfig') -> ResourceCollector:
    from .kubernetes import kubernetes_collector
    return kubernetes_collector(account, clients, config)


COLLECTOR_BUILDERS: Dict[str, CollectorBuilder] = {
    COLLECTOR_COMPUTE: compute_collector,
    COLLECTOR_STORAGE: storage_collector,
    COLLECTOR_CLOUDRUN: cloudrun_collector,
    COLLECTOR_FUNCTIONS: functions_collector,
    COLLECTOR_ARTIFACT_REGISTRY: artifact_registry_collector,
    COLLECTOR_SCHEDULER: scheduler_collector,
    COLLECTOR_PUBSUB: pubsub_collector,
    COLLECTOR_IAM: iam_collector,
    COLLECTOR_MONITORING: monitoring_collector,
    COLLECTOR_LOGGING: logging_collector,
    COLLECTOR_EVENTARC: eventarc_collector,
    COLLECTOR_ENDPOINTS: endpoints_collector,
    COLLECTOR_KUBERNETES: _kubernetes_collector,
}


def build_collectors(names: Sequence[str], account: Account, clients: GCPClients,
                     config: 'ExporterConfig') -> Dict[str, ResourceCollector]:
    """
    Build the named collectors, all sharing one Account and one GCPClients.

    Raises:
        ValueError: If a name is not a known collector
    """
    unknown = [name for name in names if name not in COLLECTOR_BUILDERS]
    if unknown:
        raise ValueError(
            f"Unknown collector(s): {', '.join(unknown)}. "
            f"Choose from: {', '.join(COLLECTOR_BUILDERS)}"
        )
    return {name: COLLECTOR_BUILDERS[name](account, clients, config) for name in names}
