"""
Tests for gcp_exporter.py (HTTP server wiring) and the exporter self-metrics.

Covers:
- /, /healthz and the metrics route
- registry construction and collector order
- command-line parsing and --generate-config
"""
import os
import sys
from unittest.mock import Mock, patch

import pytest
from prometheus_client import CollectorRegistry, generate_latest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import gcp_exporter
from gcp_exporter import build_registry, create_app, parse_args
from gcplib.config import ExporterConfig
from gcplib.exporter import ExporterCollector
from gcplib.projects import ProjectsCollector

# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def mock_clients():
    """Mock GCPClients: one active project with two buckets."""
    clients = Mock()

    project = Mock()
    project.project_id = "p1"
    project.name = "projects/111"
    project.state = "ACTIVE"
    project.display_name = "P1"
    project.parent = "organizations/9"
    project.labels = {}
    response = Mock(projects=[project], next_page_token="")
    clients.projects.search_projects.side_effect = lambda request, timeout=None: Mock(pages=iter([response]))

    def list_buckets(**kwargs):
        iterator = Mock()
        iterator.pages = iter([["b1", "b2"]])
        iterator.next_page_token = None
        return iterator

    clients.storage.list_buckets.side_effect = list_buckets
    return clients


@pytest.fixture
def config():
    return ExporterConfig(collectors=["storage"], retry_attempts=1, git_commit="abc123")


# =============================================================================
# HTTP Route Tests
# =============================================================================

class TestRoutes:
    """Tests for the Flask routes."""

    def make_client(self, registry=None, path="/metrics"):
        app = create_app(registry or CollectorRegistry(), path)
        app.testing = True
        return app.test_client()

    def test_healthz(self):
        response = self.make_client().get("/healthz")
        assert response.status_code == 200
        assert response.get_data(as_text=True) == "ok"

    def test_index_links(self):
        response = self.make_client(path="/custom").get("/")
        body = response.get_data(as_text=True)

        assert response.status_code == 200
        assert response.mimetype == "text/html"
        assert 'href="/custom"' in body
        assert 'href="/healthz"' in body

    def test_metrics_content_type(self):
        registry = CollectorRegistry()
        registry.register(ExporterCollector(git_commit="abc123", start_time=1700000000))

        response = self.make_client(registry).get("/metrics")

        assert response.status_code == 200
        assert response.headers["Content-Type"].startswith("text/plain")
        assert "gcp_exporter_start_time " in response.get_data(as_text=True)

    def test_custom_metrics_path(self):
        client = self.make_client(path="/prom")
        assert client.get("/prom").status_code == 200
        assert client.get("/metrics").status_code == 404


# =============================================================================
# Registry Tests
# =============================================================================

class TestBuildRegistry:
    """Tests for build_registry."""

    def test_full_scrape(self, mock_clients, config):
        registry, account = build_registry(config, mock_clients)

        assert registry.get_sample_value("gcp_storage_buckets", {"project": "p1"}) == 2.0
        assert [p.project_id for p in account.snapshot()] == ["p1"]

    def test_projects_collector_registered_first(self, mock_clients, config):
        registry, _ = build_registry(config, mock_clients)
        collectors = list(registry._collector_to_names)
        assert isinstance(collectors[0], ProjectsCollector)
        assert isinstance(collectors[-1], ExporterCollector)

    def test_exposition(self, mock_clients, config):
        registry, _ = build_registry(config, mock_clients)
        output = generate_latest(registry).decode()

        assert 'gcp_projects_count 1.0' in output
        assert 'gcp_storage_buckets{project="p1"} 2.0' in output
        assert 'git_commit="abc123"' in output


# =============================================================================
# ExporterCollector Tests
# =============================================================================

class TestExporterCollector:
    """Tests for the exporter self-metrics."""

    def test_samples(self):
        registry = CollectorRegistry()
        registry.register(ExporterCollector(
            git_commit="abc", os_version="6.1", python_version="3.12.1", start_time=42,
        ))

        assert registry.get_sample_value("gcp_exporter_start_time") == 42
        assert registry.get_sample_value("gcp_exporter_build_info", {
            "os_version": "6.1", "python_version": "3.12.1", "git_commit": "abc",
        }) == 1


# =============================================================================
# CLI Tests
# =============================================================================

class TestCli:
    """Tests for argument parsing and main()."""

    def test_unset_options_are_none(self):
        args = parse_args([])
        assert args.filter is None
        assert args.max_projects is None
        assert args.extended_metrics is None

    def test_options(self):
        args = parse_args([
            "--filter", "parent.id:1", "--max-projects", "5", "--endpoint", ":9000",
            "--path", "/prom", "--collectors", "compute", "--extended-metrics",
            "--page-size", "100", "--timeout", "12",
        ])
        assert args.filter == "parent.id:1"
        assert args.max_projects == 5
        assert args.endpoint == ":9000"
        assert args.path == "/prom"
        assert args.extended_metrics is True
        assert args.page_size == 100
        assert args.timeout == 12.0

    def test_generate_config(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            gcp_exporter.main(["--generate-config"])
        assert exc_info.value.code == 0
        assert "collectors:" in capsys.readouterr().out

    def test_invalid_config_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            gcp_exporter.main(["--max-projects", "0"])
        assert exc_info.value.code == 1

    def test_malformed_config_file_exits(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("server: [unclosed\n")
        path.chmod(0o600)

        with pytest.raises(SystemExit) as exc_info:
            gcp_exporter.main(["--config", str(path)])
        assert exc_info.value.code == 1

    @patch('gcp_exporter.print_startup_summary')
    @patch('gcp_exporter.build_registry')
    @patch('gcp_exporter.Flask.run')
    def test_main_serves_on_endpoint(self, mock_run, mock_build, mock_summary, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv('HOME', str(tmp_path))
        mock_build.return_value = (CollectorRegistry(), Mock())

        gcp_exporter.main(["--endpoint", "127.0.0.1:9555", "--collectors", "storage"])

        mock_run.assert_called_once_with(host="127.0.0.1", port=9555, threaded=True)
