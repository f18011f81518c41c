"""
Google Cloud client plumbing.

Service clients are built once, on first use, and shared by every cycle of
every collector. Listings are exposed as page functions (see
gcplib.pagination) so the exporter drives page tokens itself instead of
letting the client libraries auto-paginate.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import google.auth
from google.api_core.exceptions import ServiceUnavailable, TooManyRequests

from .constants import ALL_LOCATIONS, DEFAULT_PAGE_SIZE, DEFAULT_RETRY_ATTEMPTS, ZONE_STATUS_UP
from .errors import DeadlineExceeded
from .models import Project
from .pagination import Page, PageFunction, list_all
from .tasks import Deadline
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)

# Errors worth retrying within a single page call
RETRYABLE_EXCEPTIONS = (ServiceUnavailable, TooManyRequests)


def get_credentials():
    """Get application default credentials and the default project (if any)."""
    credentials, project = google.auth.default()
    return credentials, project


def project_parent(project_id: str) -> str:
    return f"projects/{project_id}"


def location_parent(project_id: str, location: str = ALL_LOCATIONS) -> str:
    return f"projects/{project_id}/locations/{location}"


class GCPClients:
    """
    Lazily constructed, shared service clients.

    Each property imports its client library and builds the client on first
    access; later accesses (from any thread) return the same instance.
    """

    def __init__(self, credentials=None):
        self._credentials = credentials
        self._lock = threading.Lock()
        self._clients: Dict[str, Any] = {}

    @property
    def credentials(self):
        if self._credentials is None:
            self._credentials, _ = get_credentials()
        return self._credentials

    def get(self, key: str, factory: Callable[[Any], Any]) -> Any:
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                logger.debug(f"Creating {key} client")
                client = factory(self.credentials)
                self._clients[key] = client
            return client

    # Resource Manager
    @property
    def projects(self):
        from google.cloud import resourcemanager_v3
        return self.get('projects', lambda c: resourcemanager_v3.ProjectsClient(credentials=c))

    # Compute Engine
    @property
    def zones(self):
        from google.cloud import compute_v1
        return self.get('zones', lambda c: compute_v1.ZonesClient(credentials=c))

    @property
    def regions(self):
        from google.cloud import compute_v1
        return self.get('regions', lambda c: compute_v1.RegionsClient(credentials=c))

    @property
    def instances(self):
        from google.cloud import compute_v1
        return self.get('instances', lambda c: compute_v1.InstancesClient(credentials=c))

    @property
    def forwarding_rules(self):
        from google.cloud import compute_v1
        return self.get('forwarding_rules', lambda c: compute_v1.ForwardingRulesClient(credentials=c))

    # Cloud Storage
    @property
    def storage(self):
        from google.cloud import storage
        return self.get('storage', lambda c: storage.Client(credentials=c))

    # Cloud Run
    @property
    def run_services(self):
        from google.cloud import run_v2
        return self.get('run_services', lambda c: run_v2.ServicesClient(credentials=c))

    # Cloud Functions
    @property
    def functions(self):
        from google.cloud import functions_v2
        return self.get('functions', lambda c: functions_v2.FunctionServiceClient(credentials=c))

    # Artifact Registry
    @property
    def artifact_registry(self):
        from google.cloud import artifactregistry_v1
        return self.get('artifact_registry', lambda c: artifactregistry_v1.ArtifactRegistryClient(credentials=c))

    # Cloud Scheduler
    @property
    def scheduler(self):
        from google.cloud import scheduler_v1
        return self.get('scheduler', lambda c: scheduler_v1.CloudSchedulerClient(credentials=c))

    # Pub/Sub
    @property
    def publisher(self):
        from google import pubsub_v1
        return self.get('publisher', lambda c: pubsub_v1.PublisherClient(credentials=c))

    @property
    def subscriber(self):
        from google import pubsub_v1
        return self.get('subscriber', lambda c: pubsub_v1.SubscriberClient(credentials=c))

    @property
    def schemas(self):
        from google import pubsub_v1
        return self.get('schemas', lambda c: pubsub_v1.SchemaServiceClient(credentials=c))

    # IAM
    @property
    def iam(self):
        from google.cloud import iam_admin_v1
        return self.get('iam', lambda c: iam_admin_v1.IAMClient(credentials=c))

    # Cloud Monitoring
    @property
    def alert_policies(self):
        from google.cloud import monitoring_v3
        return self.get('alert_policies', lambda c: monitoring_v3.AlertPolicyServiceClient(credentials=c))

    @property
    def uptime_checks(self):
        from google.cloud import monitoring_v3
        return self.get('uptime_checks', lambda c: monitoring_v3.UptimeCheckServiceClient(credentials=c))

    # Cloud Logging
    @property
    def logging(self):
        from google.cloud.logging_v2.services.logging_service_v2 import LoggingServiceV2Client
        return self.get('logging', lambda c: LoggingServiceV2Client(credentials=c))

    # Eventarc
    @property
    def eventarc(self):
        from google.cloud import eventarc_v1
        return self.get('eventarc', lambda c: eventarc_v1.EventarcClient(credentials=c))

    # Service Management (Cloud Endpoints)
    @property
    def service_manager(self):
        from google.cloud import servicemanagement_v1
        return self.get('service_manager', lambda c: servicemanagement_v1.ServiceManagerClient(credentials=c))

    # Kubernetes Engine
    @property
    def cluster_manager(self):
        from google.cloud import container_v1
        return self.get('cluster_manager', lambda c: container_v1.ClusterManagerClient(credentials=c))


# =============================================================================
# Page Functions
# =============================================================================

def _retrying(call: Callable[[str, Optional[float]], Page], retry_attempts: int) -> PageFunction:
    """
    Retry a page call on 429/503 without outliving its timeout.

    The timeout handed in by the walker is the time left in the cycle. Each
    attempt gets whatever is left of it, and no attempt starts once it is used up.
    """
    if retry_attempts <= 1:
        return call

    def retrying_call(page_token: str, timeout: Optional[float]) -> Page:
        if timeout is None:
            return retry_with_backoff(
                max_attempts=retry_attempts, min_wait=0.5, max_wait=5,
                exceptions=RETRYABLE_EXCEPTIONS,
            )(call)(page_token, None)

        end = time.monotonic() + timeout

        def attempt() -> Page:
            remaining = end - time.monotonic()
            if remaining <= 0:
                raise DeadlineExceeded(f"No time left for page call (timeout {timeout:.1f}s)")
            return call(page_token, remaining)

        return retry_with_backoff(
            max_attempts=retry_attempts, min_wait=0.5, max_wait=5,
            exceptions=RETRYABLE_EXCEPTIONS, max_delay=timeout,
        )(attempt)()

    return retrying_call


def _build_request(request: Mapping[str, Any], page_token: str, page_size: Optional[int],
                   size_field: str) -> Dict[str, Any]:
    req = dict(request)
    if page_size:
        req[size_field] = page_size
    if page_token:
        req['page_token'] = page_token
    return req


def gapic_pages(
    method: Callable[..., Any],
    request: Mapping[str, Any],
    items_field: str,
    page_size: Optional[int] = DEFAULT_PAGE_SIZE,
    size_field: str = 'page_size',
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
) -> PageFunction:
    """
    Page function for a GAPIC list method that returns a pager.

    Only the pager's first page is read on each call; the continuation token
    comes back to the walker, which asks for the next page.

    Args:
        method: Bound client method, e.g. ``client.list_functions``
        request: Request fields (parent, filter...) without paging fields
        items_field: Repeated field holding the items, e.g. ``functions``
        page_size: Page size to request (None to use the API default)
        size_field: ``page_size`` for most APIs, ``max_results`` for Compute
        retry_attempts: Attempts per page on 429/503
    """
    def call(page_token: str, timeout: Optional[float]) -> Page:
        req = _build_request(request, page_token, page_size, size_field)
        pager = method(request=req, timeout=timeout)
        response = next(iter(pager.pages))
        return list(getattr(response, items_field)), response.next_page_token

    return _retrying(call, retry_attempts)


def raw_pages(
    method: Callable[..., Any],
    request: Mapping[str, Any],
    items_field: str,
    page_size: Optional[int] = DEFAULT_PAGE_SIZE,
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
) -> PageFunction:
    """Page function for a list method that returns the raw response message."""
    def call(page_token: str, timeout: Optional[float]) -> Page:
        req = _build_request(request, page_token, page_size, 'page_size')
        response = method(request=req, timeout=timeout)
        return list(getattr(response, items_field)), getattr(response, 'next_page_token', '') or ''

    return _retrying(call, retry_attempts)


def single_page(
    method: Callable[..., Any],
    request: Mapping[str, Any],
    items_field: str,
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
) -> PageFunction:
    """Page function for a list method without paging (e.g. GKE list_clusters)."""
    def call(page_token: str, timeout: Optional[float]) -> Page:
        response = method(request=dict(request), timeout=timeout)
        return list(getattr(response, items_field)), ''

    return _retrying(call, retry_attempts)


def storage_bucket_pages(
    client: Any,
    project_id: str,
    page_size: Optional[int] = DEFAULT_PAGE_SIZE,
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
) -> PageFunction:
    """Page function over google-cloud-storage's HTTP iterator for buckets."""
    def call(page_token: str, timeout: Optional[float]) -> Page:
        kwargs: Dict[str, Any] = {'project': project_id, 'page_size': page_size}
        if page_token:
            kwargs['page_token'] = page_token
        if timeout is not None:
            kwargs['timeout'] = timeout
        iterator = client.list_buckets(**kwargs)
        page = next(iterator.pages)
        return list(page), iterator.next_page_token or ''

    return _retrying(call, retry_attempts)


# =============================================================================
# Scope Discovery
# =============================================================================

def _names(items: Sequence[Any], status: Optional[str] = None) -> List[str]:
    names = [item.name for item in items if status is None or item.status == status]
    return sorted(names)


def list_zones(clients: GCPClients, project: Project, deadline: Deadline,
               retry_attempts: int = DEFAULT_RETRY_ATTEMPTS) -> List[str]:
    """Zones that are UP in a project (Compute Engine instances.list is per zone)."""
    pages = gapic_pages(clients.zones.list, {'project': project.project_id}, 'items',
                        size_field='max_results', retry_attempts=retry_attempts)
    return _names(list_all(pages, deadline, f"zones {project.project_id}"), ZONE_STATUS_UP)


def list_regions(clients: GCPClients, project: Project, deadline: Deadline,
                 retry_attempts: int = DEFAULT_RETRY_ATTEMPTS) -> List[str]:
    """Regions that are UP in a project (forwardingRules.list is per region)."""
    pages = gapic_pages(clients.regions.list, {'project': project.project_id}, 'items',
                        size_field='max_results', retry_attempts=retry_attempts)
    return _names(list_all(pages, deadline, f"regions {project.project_id}"), ZONE_STATUS_UP)


def list_locations(client: Any, project: Project, deadline: Deadline,
                   retry_attempts: int = DEFAULT_RETRY_ATTEMPTS) -> List[str]:
    """Location IDs offered by a service through its locations mixin."""
    pages = raw_pages(client.list_locations, {'name': project_parent(project.project_id)},
                      'locations', retry_attempts=retry_attempts)
    locations = list_all(pages, deadline, f"locations {project.project_id}")
    return sorted(location.location_id for location in locations)


def list_service_accounts(clients: GCPClients, project: Project, deadline: Deadline,
                          retry_attempts: int = DEFAULT_RETRY_ATTEMPTS) -> List[str]:
    """Service account resource names; the scopes for service account keys."""
    pages = gapic_pages(clients.iam.list_service_accounts,
                        {'name': project_parent(project.project_id)}, 'accounts',
                        retry_attempts=retry_attempts)
    accounts = list_all(pages, deadline, f"service accounts {project.project_id}")
    return sorted(account.name for account in accounts)
