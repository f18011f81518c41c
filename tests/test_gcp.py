"""
Tests for gcplib/gcp.py client plumbing using unittest.mock.

Covers:
- gapic_pages / raw_pages / single_page / storage_bucket_pages
- retry on 503 within a single page call
- zone, region, location and service account discovery
- GCPClients memoization
"""
import os
import sys
import time
from unittest.mock import Mock, patch

import pytest
from google.api_core.exceptions import NotFound, ServiceUnavailable

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gcplib.errors import DeadlineExceeded
from gcplib.gcp import (
    GCPClients,
    gapic_pages,
    list_locations,
    list_regions,
    list_service_accounts,
    list_zones,
    location_parent,
    project_parent,
    raw_pages,
    single_page,
    storage_bucket_pages,
)
from gcplib.models import Project
from gcplib.pagination import list_all
from gcplib.tasks import Deadline

# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def project():
    """Test project."""
    return Project("my-test-project")


@pytest.fixture
def mock_clients():
    """GCPClients with a mock credential so nothing reaches google.auth."""
    return GCPClients(credentials=Mock())


# =============================================================================
# Helper Functions
# =============================================================================

def create_mock_pager(items_field, items, next_page_token=""):
    """Create a mock GAPIC pager whose first page holds ``items``."""
    response = Mock()
    setattr(response, items_field, items)
    response.next_page_token = next_page_token
    pager = Mock()
    pager.pages = iter([response])
    return pager


def create_paged_method(items_field, pages):
    """Mock list method serving ``pages`` (a list of item lists) by page token."""
    def method(request, timeout=None):
        token = request.get('page_token', '')
        index = int(token) if token else 0
        next_token = str(index + 1) if index + 1 < len(pages) else ""
        return create_mock_pager(items_field, pages[index], next_token)
    return Mock(side_effect=method)


def create_named(name, status="UP"):
    item = Mock()
    item.name = name
    item.status = status
    return item


# =============================================================================
# Resource Name Tests
# =============================================================================

class TestResourceNames:
    """Tests for parent resource name helpers."""

    def test_project_parent(self):
        assert project_parent("p1") == "projects/p1"

    def test_location_parent_defaults_to_all(self):
        assert location_parent("p1") == "projects/p1/locations/-"
        assert location_parent("p1", "us-east1") == "projects/p1/locations/us-east1"


# =============================================================================
# Page Function Tests
# =============================================================================

class TestGapicPages:
    """Tests for gapic_pages."""

    def test_walks_every_page(self):
        method = create_paged_method('functions', [["f1", "f2"], ["f3"]])
        pages = gapic_pages(method, {'parent': 'projects/p1/locations/-'}, 'functions', page_size=2)

        assert list_all(pages) == ["f1", "f2", "f3"]
        first, second = method.call_args_list
        assert first.kwargs['request'] == {'parent': 'projects/p1/locations/-', 'page_size': 2}
        assert second.kwargs['request']['page_token'] == "1"

    def test_compute_uses_max_results(self):
        method = create_paged_method('items', [["vm"]])
        pages = gapic_pages(method, {'project': 'p1', 'zone': 'z1'}, 'items',
                            page_size=500, size_field='max_results')
        list_all(pages)
        assert method.call_args.kwargs['request']['max_results'] == 500

    def test_timeout_passed_through(self):
        method = create_paged_method('items', [[]])
        pages = gapic_pages(method, {}, 'items')
        pages("", 12.5)
        assert method.call_args.kwargs['timeout'] == pytest.approx(12.5, abs=0.5)

    def test_request_not_mutated(self):
        request = {'parent': 'projects/p1'}
        method = create_paged_method('items', [["a"], ["b"]])
        list_all(gapic_pages(method, request, 'items'))
        assert request == {'parent': 'projects/p1'}

    @patch('time.sleep', return_value=None)
    def test_retries_service_unavailable(self, mock_sleep):
        pager = create_mock_pager('items', ["a"])
        method = Mock(side_effect=[ServiceUnavailable("try again"), pager])
        pages = gapic_pages(method, {}, 'items', retry_attempts=3)

        assert pages("", None) == (["a"], "")
        assert method.call_count == 2

    def test_does_not_retry_other_errors(self):
        method = Mock(side_effect=NotFound("gone"))
        pages = gapic_pages(method, {}, 'items', retry_attempts=3)

        with pytest.raises(NotFound):
            pages("", None)
        assert method.call_count == 1

    def test_retries_stop_at_timeout(self):
        """Retries share the caller's timeout instead of each getting a full one."""
        timeouts = []

        def slow_unavailable(request, timeout=None):
            timeouts.append(timeout)
            time.sleep(timeout)
            raise ServiceUnavailable("overloaded")

        pages = gapic_pages(slow_unavailable, {}, 'items', retry_attempts=5)
        started = time.monotonic()

        with pytest.raises((ServiceUnavailable, DeadlineExceeded)):
            pages("", 0.3)

        assert time.monotonic() - started < 1.0
        assert len(timeouts) <= 2

    def test_retry_timeouts_shrink(self):
        timeouts = []

        def unavailable(request, timeout=None):
            timeouts.append(timeout)
            raise ServiceUnavailable("overloaded")

        pages = gapic_pages(unavailable, {}, 'items', retry_attempts=5)
        started = time.monotonic()

        with pytest.raises((ServiceUnavailable, DeadlineExceeded)):
            pages("", 3.0)

        assert time.monotonic() - started < 4.5
        assert len(timeouts) >= 2
        assert timeouts == sorted(timeouts, reverse=True)
        assert all(0 < timeout <= 3.0 for timeout in timeouts)

    @patch('time.sleep', return_value=None)
    def test_gives_up_after_attempts(self, mock_sleep):
        method = Mock(side_effect=ServiceUnavailable("down"))
        pages = gapic_pages(method, {}, 'items', retry_attempts=2)

        with pytest.raises(ServiceUnavailable):
            pages("", None)
        assert method.call_count == 2


class TestOtherPageFunctions:
    """Tests for raw_pages, single_page and storage_bucket_pages."""

    def test_raw_pages(self):
        first = Mock(locations=["l1"], next_page_token="t")
        second = Mock(locations=["l2"], next_page_token="")
        method = Mock(side_effect=[first, second])

        assert list_all(raw_pages(method, {'name': 'projects/p1'}, 'locations')) == ["l1", "l2"]

    def test_single_page_ignores_token(self):
        method = Mock(return_value=Mock(clusters=["c1", "c2"]))
        items, token = single_page(method, {'parent': 'projects/p1/locations/-'}, 'clusters')("", 5)

        assert items == ["c1", "c2"]
        assert token == ""
        method.assert_called_once_with(request={'parent': 'projects/p1/locations/-'}, timeout=5)

    def test_storage_bucket_pages(self):
        iterator = Mock()
        iterator.pages = iter([["bucket-1", "bucket-2"]])
        iterator.next_page_token = "next"
        client = Mock()
        client.list_buckets.return_value = iterator

        items, token = storage_bucket_pages(client, "p1", page_size=2)("", 10)

        assert items == ["bucket-1", "bucket-2"]
        assert token == "next"
        client.list_buckets.assert_called_once_with(project="p1", page_size=2, timeout=10)

    def test_storage_bucket_pages_continuation(self):
        iterator = Mock()
        iterator.pages = iter([[]])
        iterator.next_page_token = None
        client = Mock()
        client.list_buckets.return_value = iterator

        items, token = storage_bucket_pages(client, "p1")("tok", None)

        assert token == ""
        assert client.list_buckets.call_args.kwargs['page_token'] == "tok"
        assert 'timeout' not in client.list_buckets.call_args.kwargs


# =============================================================================
# Scope Discovery Tests
# =============================================================================

class TestScopeDiscovery:
    """Tests for zone/region/location/service account discovery."""

    def test_list_zones_only_up(self, mock_clients, project):
        zones = Mock()
        zones.list = create_paged_method('items', [
            [create_named("us-east1-c"), create_named("us-east1-b", status="DOWN")],
            [create_named("europe-west1-b")],
        ])
        mock_clients._clients['zones'] = zones

        assert list_zones(mock_clients, project, Deadline()) == ["europe-west1-b", "us-east1-c"]
        assert zones.list.call_args_list[0].kwargs['request']['project'] == "my-test-project"

    def test_list_regions(self, mock_clients, project):
        regions = Mock()
        regions.list = create_paged_method('items', [[create_named("us-central1")]])
        mock_clients._clients['regions'] = regions

        assert list_regions(mock_clients, project, Deadline()) == ["us-central1"]

    def test_list_locations(self, project):
        client = Mock()
        client.list_locations.return_value = Mock(
            locations=[Mock(location_id="us-east1"), Mock(location_id="asia-east1")],
            next_page_token="",
        )

        assert list_locations(client, project, Deadline()) == ["asia-east1", "us-east1"]
        request = client.list_locations.call_args.kwargs['request']
        assert request['name'] == "projects/my-test-project"

    def test_list_service_accounts(self, mock_clients, project):
        iam = Mock()
        iam.list_service_accounts = create_paged_method('accounts', [
            [create_named("projects/my-test-project/serviceAccounts/b@x")],
            [create_named("projects/my-test-project/serviceAccounts/a@x")],
        ])
        mock_clients._clients['iam'] = iam

        assert list_service_accounts(mock_clients, project, Deadline()) == [
            "projects/my-test-project/serviceAccounts/a@x",
            "projects/my-test-project/serviceAccounts/b@x",
        ]


# =============================================================================
# GCPClients Tests
# =============================================================================

class TestGCPClients:
    """Tests for the shared client cache."""

    def test_get_builds_once(self):
        credentials = Mock()
        clients = GCPClients(credentials=credentials)
        factory = Mock(return_value="client")

        assert clients.get('x', factory) == "client"
        assert clients.get('x', factory) == "client"
        factory.assert_called_once_with(credentials)

    @patch('gcplib.gcp.google.auth.default')
    def test_default_credentials_loaded_lazily(self, mock_default):
        mock_default.return_value = ("creds", "proj")
        clients = GCPClients()

        mock_default.assert_not_called()
        assert clients.credentials == "creds"
        assert clients.credentials == "creds"
        mock_default.assert_called_once()
