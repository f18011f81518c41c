"""
GCP resource exporter shared library.
"""
# Import constants module for easy access
from . import constants
from .account import Account
from .aggregate import Aggregate, MetricSpec, Snapshot, publish
from .collector import CountMetric, Listing, ResourceCollector, by_scope, global_scope
from .config import ExporterConfig, generate_sample_config, load_config, parse_endpoint
from .constants import (
    ALL_COLLECTORS,
    DEFAULT_COLLECTORS,
    DEFAULT_ENDPOINT,
    DEFAULT_METRICS_PATH,
    HEALTHZ_PATH,
    metric_name,
)
from .errors import (
    ConfigError,
    DeadlineExceeded,
    Disposition,
    ExporterError,
    PermissionDenied,
    ProjectDiscoveryError,
    RemoteListError,
    ScopeDiscoveryError,
    classify,
)
from .exporter import ExporterCollector
from .gcp import GCPClients
from .models import CollectionOutcome, Observation, OutcomeStatus, Project
from .pagination import count_all, list_all, walk_pages
from .projects import ProjectsCollector
from .resources import COLLECTOR_BUILDERS, build_collectors
from .tasks import Deadline, TaskGroup
from .utils import print_startup_summary, retry_with_backoff, setup_logging

__all__ = [
    # Constants
    'constants',
    'ALL_COLLECTORS',
    'DEFAULT_COLLECTORS',
    'DEFAULT_ENDPOINT',
    'DEFAULT_METRICS_PATH',
    'HEALTHZ_PATH',
    'metric_name',
    # Models
    'Project',
    'Observation',
    'OutcomeStatus',
    'CollectionOutcome',
    # Errors
    'ExporterError',
    'RemoteListError',
    'DeadlineExceeded',
    'PermissionDenied',
    'ScopeDiscoveryError',
    'ProjectDiscoveryError',
    'ConfigError',
    'Disposition',
    'classify',
    # Collection engine
    'Account',
    'Deadline',
    'TaskGroup',
    'walk_pages',
    'list_all',
    'count_all',
    'Aggregate',
    'MetricSpec',
    'Snapshot',
    'publish',
    'CountMetric',
    'Listing',
    'ResourceCollector',
    'by_scope',
    'global_scope',
    # Collectors
    'GCPClients',
    'ProjectsCollector',
    'ExporterCollector',
    'COLLECTOR_BUILDERS',
    'build_collectors',
    # Config / utils
    'ExporterConfig',
    'load_config',
    'generate_sample_config',
    'parse_endpoint',
    'setup_logging',
    'retry_with_backoff',
    'print_startup_summary',
]
