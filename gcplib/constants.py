"""
Constants for the GCP resource exporter.

This module defines the magic strings and numbers shared by the collectors,
the HTTP server and the configuration loader.
"""

# =============================================================================
# Metric Naming
# =============================================================================

METRIC_PREFIX = "gcp"
PROJECT_LABEL = "project"


def metric_name(subsystem: str, name: str) -> str:
    """Build a fully-qualified metric name, e.g. gcp_compute_engine_instances."""
    return f"{METRIC_PREFIX}_{subsystem}_{name}"


# =============================================================================
# HTTP Server
# =============================================================================

DEFAULT_ENDPOINT = ":9402"
DEFAULT_METRICS_PATH = "/metrics"
HEALTHZ_PATH = "/healthz"

# =============================================================================
# Collection Defaults
# =============================================================================

DEFAULT_MAX_PROJECTS = 10  # Page size for project discovery
DEFAULT_PAGE_SIZE = 500  # Page size for resource listings
DEFAULT_TIMEOUT_SECONDS = 30.0  # Deadline for one collector cycle
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_PARALLEL_WORKERS = 8  # Concurrent projects per collector
DEFAULT_SCOPE_WORKERS = 8  # Concurrent scopes per project

# =============================================================================
# GCP
# =============================================================================

PROJECT_STATE_ACTIVE = "ACTIVE"
GLOBAL_SCOPE = "global"
ALL_LOCATIONS = "-"  # Wildcard location accepted by most v1/v2 APIs
ZONE_STATUS_UP = "UP"
CLUSTER_STATUS_RUNNING = "RUNNING"

# =============================================================================
# Collectors
# =============================================================================

COLLECTOR_COMPUTE = "compute"
COLLECTOR_STORAGE = "storage"
COLLECTOR_CLOUDRUN = "cloudrun"
COLLECTOR_FUNCTIONS = "functions"
COLLECTOR_ARTIFACT_REGISTRY = "artifactregistry"
COLLECTOR_SCHEDULER = "scheduler"
COLLECTOR_PUBSUB = "pubsub"
COLLECTOR_IAM = "iam"
COLLECTOR_MONITORING = "monitoring"
COLLECTOR_LOGGING = "logging"
COLLECTOR_EVENTARC = "eventarc"
COLLECTOR_ENDPOINTS = "endpoints"
COLLECTOR_KUBERNETES = "kubernetes"

ALL_COLLECTORS = [
    COLLECTOR_COMPUTE,
    COLLECTOR_STORAGE,
    COLLECTOR_CLOUDRUN,
    COLLECTOR_FUNCTIONS,
    COLLECTOR_ARTIFACT_REGISTRY,
    COLLECTOR_SCHEDULER,
    COLLECTOR_PUBSUB,
    COLLECTOR_IAM,
    COLLECTOR_MONITORING,
    COLLECTOR_LOGGING,
    COLLECTOR_EVENTARC,
    COLLECTOR_ENDPOINTS,
    COLLECTOR_KUBERNETES,
]

# Enabled when --collectors is not given
DEFAULT_COLLECTORS = [
    COLLECTOR_COMPUTE,
    COLLECTOR_STORAGE,
    COLLECTOR_CLOUDRUN,
    COLLECTOR_KUBERNETES,
]
