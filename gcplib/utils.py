"""
Utility functions for the GCP resource exporter.

Logging Level Standards:
------------------------
- ERROR: Failures that stop an entire collector cycle or project discovery
         "Unable to list projects: {e}"
- WARNING: Partial failures (one project or one scope)
           "[compute] project my-project zone us-east1-b: {e}"
- INFO: Progress messages, resource counts
        "Exporting metrics for 12 project(s)"
- DEBUG: Per-scope details that don't affect overall collection,
         including permission-denied skips
         "[compute] project my-project: 403 with zones.list"
"""
import logging
import re
import sys
from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

if TYPE_CHECKING:
    from .config import ExporterConfig

logger = logging.getLogger(__name__)

# Type variable for generic function decorator
F = TypeVar('F', bound=Callable[..., Any])

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ('werkzeug', 'google', 'google.auth', 'urllib3')


def retry_with_backoff(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    exceptions: tuple = (Exception,),
    max_delay: Optional[float] = None,
) -> Callable[[F], F]:
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait: Minimum wait time between retries in seconds (default: 1)
        max_wait: Maximum wait time between retries in seconds (default: 10)
        exceptions: Tuple of exception types to retry on (default: all Exceptions)
        max_delay: Give up once this many seconds have passed since the first
            attempt; waits are shortened so no retry starts after it

    Returns:
        Decorated function with retry logic

    Example:
        @retry_with_backoff(max_attempts=5, exceptions=(ServiceUnavailable,))
        def list_page(page_token, timeout):
            ...
    """
    stop = stop_after_attempt(max_attempts)
    wait = wait_exponential(multiplier=1, min=min_wait, max=max_wait)
    if max_delay is not None:
        stop = stop | stop_after_delay(max_delay)
        wait = _capped_wait(wait, max_delay)

    def decorator(func: F) -> F:
        return retry(
            stop=stop,
            wait=wait,
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )(func)  # type: ignore[return-value]
    return decorator


def _capped_wait(wait: Callable[[Any], float], max_delay: float) -> Callable[[Any], float]:
    """Wrap a tenacity wait so it never sleeps past ``max_delay`` from the first attempt."""
    def capped(retry_state) -> float:
        left = max_delay - (retry_state.seconds_since_start or 0.0)
        return max(0.0, min(wait(retry_state), left))
    return capped


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Setup logging to stderr.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if numeric_level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger(__name__)


def last_segment(resource_name: str) -> str:
    """
    Return the final path segment of a resource name or URL.

    Example: projects/p/zones/us-central1-a -> us-central1-a
    """
    if not resource_name:
        return ""
    return resource_name.rstrip('/').split('/')[-1]


def bool_label(value: Any) -> str:
    """Prometheus label value for a boolean field."""
    return "true" if value else "false"


def name_segment(resource_name: str, collection: str) -> str:
    """
    Return the segment following ``collection`` in a resource name.

    Example: name_segment("projects/p/locations/us-east1/functions/f", "locations")
          -> "us-east1"
    """
    parts = resource_name.split('/')
    for i, part in enumerate(parts[:-1]):
        if part == collection:
            return parts[i + 1]
    return ""


# =============================================================================
# Extra Labels
# =============================================================================

def to_snake_case(value: str) -> str:
    """
    Convert a label key to snake_case suitable for a Prometheus label name.

    Example: costCenter -> cost_center, team-name -> team_name
    """
    value = re.sub(r'(?<=.)([A-Z])', r'_\1', value).lower()
    value = re.sub(r'[^a-z0-9]+', '_', value)
    value = re.sub(r'_{2,}', '_', value)
    return value.strip('_')


def parse_extra_labels(labels: Optional[str]) -> "OrderedDict[str, str]":
    """
    Parse a comma-separated list of resource label keys.

    Returns an ordered mapping of original key -> Prometheus label name
    (``label_<snake_case>``). Order follows the input so label names and
    values line up.
    """
    extra: "OrderedDict[str, str]" = OrderedDict()
    if not labels:
        return extra
    for label in labels.split(','):
        key = label.strip()
        if key and key not in extra:
            extra[key] = f"label_{to_snake_case(key)}"
    return extra


def extra_label_values(resource_labels: Optional[Mapping[str, str]], extra: Mapping[str, str]) -> List[str]:
    """Values of ``extra`` label keys from a resource, "" when a key is missing."""
    resource_labels = resource_labels or {}
    return [resource_labels.get(key, "") for key in extra]


# =============================================================================
# Console Output
# =============================================================================

def print_startup_summary(config: "ExporterConfig", collectors: Sequence[str],
                          project_count: Optional[int] = None) -> None:
    """
    Print a summary of the exporter configuration.

    Uses a rich panel when stdout is a TTY, plain lines otherwise (e.g. when
    running in a container and stdout is piped to a log collector).
    """
    rows: List[List[str]] = [
        ["Endpoint", config.endpoint],
        ["Metrics path", config.metrics_path],
        ["Project filter", config.project_filter or "(none)"],
        ["Max projects", str(config.max_projects)],
        ["Collectors", ", ".join(collectors) or "(none)"],
        ["Cycle timeout", f"{config.timeout:g}s"],
        ["Workers", f"{config.parallel_workers} projects x {config.scope_workers} scopes"],
    ]
    if project_count is not None:
        rows.append(["Projects", str(project_count)])

    if sys.stdout.isatty():
        from rich.console import Console
        from rich.panel import Panel
        from rich.table import Table

        table = Table(title="GCP Exporter", show_header=False)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        for name, value in rows:
            table.add_row(name, value)
        Console().print(Panel(table))
        return

    width = max(len(name) for name, _ in rows)
    for name, value in rows:
        print(f"{name.ljust(width)} : {value}")


def summarize_outcomes(outcomes: Dict[Any, Any]) -> Dict[str, int]:
    """Count outcomes by status name, e.g. {'success': 10, 'skipped': 2}."""
    summary: Dict[str, int] = {}
    for outcome in outcomes.values():
        key = outcome.status.value
        summary[key] = summary.get(key, 0) + 1
    return summary
