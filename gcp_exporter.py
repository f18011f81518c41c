#!/usr/bin/env python3
"""
GCP Exporter - Prometheus exporter for Google Cloud resource counts

Exports, per project, how many resources of each supported type exist
(Compute Engine instances per zone, Cloud Run services, GKE clusters...).
Each scrape discovers the matching projects, then fans out one collector
per enabled resource type across those projects.

Usage:
    python gcp_exporter.py
    python gcp_exporter.py --filter "parent.id:123456789" --max-projects 50
    python gcp_exporter.py --collectors compute,storage,functions --extended-metrics
    python gcp_exporter.py --config gcp-exporter.yaml
    python gcp_exporter.py --generate-config > gcp-exporter.yaml

Routes:
    /          HTML index
    /healthz   liveness ("ok")
    /metrics   Prometheus exposition (path configurable with --path)
"""
import argparse
import logging
import sys
from typing import List, Optional, Tuple

from flask import Flask, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

from gcplib import (
    ALL_COLLECTORS,
    HEALTHZ_PATH,
    Account,
    ExporterCollector,
    ExporterConfig,
    ExporterError,
    GCPClients,
    ProjectsCollector,
    build_collectors,
    generate_sample_config,
    load_config,
    parse_endpoint,
    print_startup_summary,
    setup_logging,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Registry
# =============================================================================

def build_registry(config: ExporterConfig,
                   clients: Optional[GCPClients] = None) -> Tuple[CollectorRegistry, Account]:
    """
    Register the projects collector, the enabled resource collectors and the
    exporter self-metrics on a fresh registry.

    The registry collects in registration order, so project discovery runs
    (and refreshes the Account) before any resource collector reads it.
    """
    clients = clients or GCPClients()
    account = Account()
    registry = CollectorRegistry()

    registry.register(ProjectsCollector(
        account,
        clients,
        project_filter=config.project_filter,
        max_projects=config.max_projects,
        extended=config.extended_metrics,
        extra_labels=config.extra_labels,
        timeout=config.timeout,
        retry_attempts=config.retry_attempts,
    ))
    for name, collector in build_collectors(config.collectors, account, clients, config).items():
        logger.debug(f"Registering {name} collector")
        registry.register(collector)
    registry.register(ExporterCollector(git_commit=config.git_commit))

    return registry, account


# =============================================================================
# HTTP
# =============================================================================

def create_app(registry: CollectorRegistry, metrics_path: str = "/metrics") -> Flask:
    """Flask app serving the index page, health check and metrics."""
    app = Flask(__name__)

    @app.route('/')
    def index():
        body = (
            "<h2>Google Cloud Platform Resources Exporter</h2>"
            "<ul>"
            f"<li><a href=\"{metrics_path}\">metrics</a></li>"
            f"<li><a href=\"{HEALTHZ_PATH}\">healthz</a></li>"
            "</ul>"
        )
        return Response(body, mimetype='text/html')

    @app.route(HEALTHZ_PATH)
    def healthz():
        return Response("ok", mimetype='text/plain')

    def metrics():
        return Response(generate_latest(registry), headers={'Content-Type': CONTENT_TYPE_LATEST})

    app.add_url_rule(metrics_path, 'metrics', metrics)
    return app


# =============================================================================
# Main
# =============================================================================

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='GCP Exporter - Prometheus exporter for Google Cloud resource counts',
    )
    # Every option defaults to None so config file / environment values apply
    parser.add_argument('--filter', help='Resource Manager query selecting the projects to scan')
    parser.add_argument('--max-projects', dest='max_projects', type=int,
                        help='Page size for project discovery (default: 10)')
    parser.add_argument('--endpoint', help='host:port of the HTTP server (default: :9402)')
    parser.add_argument('--path', help='Path on which Prometheus metrics are served (default: /metrics)')
    parser.add_argument('--collectors',
                        help=f"Comma-separated collectors to enable ({', '.join(ALL_COLLECTORS)})")
    parser.add_argument('--extended-metrics', dest='extended_metrics', action='store_true', default=None,
                        help='Export gcp_projects_info per project')
    parser.add_argument('--extra-labels', dest='extra_labels',
                        help='Comma-separated project label keys added to gcp_projects_info')
    parser.add_argument('--kubernetes-extended', dest='kubernetes_extended', action='store_true', default=None,
                        help='Export GKE cluster and node pool info metrics')
    parser.add_argument('--timeout', type=float, help='Seconds allowed for one collector cycle (default: 30)')
    parser.add_argument('--parallel-workers', dest='parallel_workers', type=int,
                        help='Projects scanned concurrently per collector (default: 8)')
    parser.add_argument('--scope-workers', dest='scope_workers', type=int,
                        help='Zones/regions/locations scanned concurrently per project (default: 8)')
    parser.add_argument('--page-size', dest='page_size', type=int,
                        help='Page size for resource listings (default: 500)')
    parser.add_argument('--retry-attempts', dest='retry_attempts', type=int,
                        help='Attempts per page on 429/503 responses (default: 3)')
    parser.add_argument('--git-commit', dest='git_commit', help='Git commit reported by build_info')
    parser.add_argument('--config', metavar='FILE', help='Path to YAML config file')
    parser.add_argument('--generate-config', action='store_true',
                        help='Generate a sample config file and exit')
    parser.add_argument('--log-level', dest='log_level', help='Logging level (default: INFO)')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)

    # Handle --generate-config
    if args.generate_config:
        print(generate_sample_config())
        sys.exit(0)

    setup_logging(args.log_level or 'INFO')

    try:
        config = load_config(args)
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)
    except ExporterError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    setup_logging(config.log_level)
    if not config.git_commit:
        logger.info("git_commit not set: expected to be set during build")

    try:
        registry, _ = build_registry(config)
        host, port = parse_endpoint(config.endpoint)
    except Exception as e:
        logger.error(f"Failed to start exporter: {e}", exc_info=True)
        sys.exit(1)

    print_startup_summary(config, config.collectors)

    app = create_app(registry, config.metrics_path)
    logger.info(f"Server starting ({config.endpoint})")
    logger.info(f"metrics served on: {config.metrics_path}")
    app.run(host=host, port=port, threaded=True)


if __name__ == '__main__':
    main()
