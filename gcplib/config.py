"""
GCP Exporter - Configuration Management

Supports loading configuration from:
1. Environment variables (GCP_EXPORTER_*)
2. YAML config file (--config, or a default location)
3. Command-line arguments (highest priority)

Config file example:
```yaml
log_level: INFO

server:
  endpoint: ":9402"
  metrics_path: /metrics

projects:
  filter: "parent.id:123456789"
  max_projects: 50
  extended_metrics: true
  extra_labels: team,costCenter

collection:
  collectors: [compute, storage, cloudrun, kubernetes]
  timeout: 30
```
"""
import os
import re
import stat
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .constants import (
    ALL_COLLECTORS,
    DEFAULT_COLLECTORS,
    DEFAULT_ENDPOINT,
    DEFAULT_MAX_PROJECTS,
    DEFAULT_METRICS_PATH,
    DEFAULT_PAGE_SIZE,
    DEFAULT_PARALLEL_WORKERS,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_SCOPE_WORKERS,
    DEFAULT_TIMEOUT_SECONDS,
    HEALTHZ_PATH,
)
from .errors import ConfigError

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './gcp-exporter.yaml',
    './gcp-exporter.yml',
    '~/.gcp-exporter/config.yaml',
    '~/.gcp-exporter/config.yml',
]

# Environment variable prefix
ENV_PREFIX = 'GCP_EXPORTER_'

# Config key (dot notation) -> ExporterConfig field
CONFIG_FIELDS = {
    'log_level': 'log_level',
    'git_commit': 'git_commit',
    'server.endpoint': 'endpoint',
    'server.metrics_path': 'metrics_path',
    'projects.filter': 'project_filter',
    'projects.max_projects': 'max_projects',
    'projects.extended_metrics': 'extended_metrics',
    'projects.extra_labels': 'extra_labels',
    'collection.collectors': 'collectors',
    'collection.timeout': 'timeout',
    'collection.parallel_workers': 'parallel_workers',
    'collection.scope_workers': 'scope_workers',
    'collection.page_size': 'page_size',
    'collection.retry_attempts': 'retry_attempts',
    'kubernetes.extended': 'kubernetes_extended',
}

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    key: ENV_PREFIX + field_name.upper() for key, field_name in CONFIG_FIELDS.items()
}

# argparse attribute -> config key
ARG_MAPPING = {
    'log_level': 'log_level',
    'git_commit': 'git_commit',
    'endpoint': 'server.endpoint',
    'path': 'server.metrics_path',
    'filter': 'projects.filter',
    'max_projects': 'projects.max_projects',
    'extended_metrics': 'projects.extended_metrics',
    'extra_labels': 'projects.extra_labels',
    'collectors': 'collection.collectors',
    'timeout': 'collection.timeout',
    'parallel_workers': 'collection.parallel_workers',
    'scope_workers': 'collection.scope_workers',
    'page_size': 'collection.page_size',
    'retry_attempts': 'collection.retry_attempts',
    'kubernetes_extended': 'kubernetes.extended',
}

INT_FIELDS = ('max_projects', 'parallel_workers', 'scope_workers', 'page_size', 'retry_attempts')
BOOL_FIELDS = ('extended_metrics', 'kubernetes_extended')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR')


@dataclass
class ExporterConfig:
    """Effective exporter settings after all sources are merged."""
    endpoint: str = DEFAULT_ENDPOINT
    metrics_path: str = DEFAULT_METRICS_PATH
    project_filter: str = ""
    max_projects: int = DEFAULT_MAX_PROJECTS
    extended_metrics: bool = False
    extra_labels: str = ""
    collectors: List[str] = field(default_factory=lambda: list(DEFAULT_COLLECTORS))
    kubernetes_extended: bool = False
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    parallel_workers: int = DEFAULT_PARALLEL_WORKERS
    scope_workers: int = DEFAULT_SCOPE_WORKERS
    page_size: int = DEFAULT_PAGE_SIZE
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    log_level: str = "INFO"
    git_commit: str = ""

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'ExporterConfig':
        """
        Build an ExporterConfig from a merged (nested) config dict.

        Raises:
            ConfigError: If a value has the wrong type or is out of range
        """
        values: Dict[str, Any] = {}
        for key, field_name in CONFIG_FIELDS.items():
            value = _get_nested(config, key)
            if value is not None:
                values[field_name] = _coerce(field_name, value)
        exporter_config = cls(**values)
        exporter_config.validate()
        return exporter_config

    def validate(self) -> None:
        if self.max_projects < 1:
            raise ConfigError(f"max_projects must be positive, got {self.max_projects}")
        if self.page_size < 1:
            raise ConfigError(f"page_size must be positive, got {self.page_size}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.parallel_workers < 1 or self.scope_workers < 1:
            raise ConfigError("parallel_workers and scope_workers must be at least 1")
        if self.retry_attempts < 1:
            raise ConfigError(f"retry_attempts must be at least 1, got {self.retry_attempts}")
        if not self.metrics_path.startswith('/') or self.metrics_path in ('/', HEALTHZ_PATH):
            raise ConfigError(f"Invalid metrics path: {self.metrics_path}")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"Invalid log level: {self.log_level}")
        unknown = [name for name in self.collectors if name not in ALL_COLLECTORS]
        if unknown:
            raise ConfigError(
                f"Unknown collector(s): {', '.join(unknown)}. Choose from: {', '.join(ALL_COLLECTORS)}"
            )
        parse_endpoint(self.endpoint)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _coerce(field_name: str, value: Any) -> Any:
    """Convert env var / YAML values to the field's type."""
    try:
        if field_name in INT_FIELDS:
            return int(value)
        if field_name == 'timeout':
            return float(value)
        if field_name in BOOL_FIELDS:
            if isinstance(value, str):
                return value.strip().lower() in ('true', '1', 'yes')
            return bool(value)
        if field_name == 'collectors':
            return _split_list(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {field_name}: {value!r}", original_error=e) from e
    if field_name == 'extra_labels' and isinstance(value, list):
        return ','.join(str(v) for v in value)
    return str(value)


def _split_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    return [str(v).strip() for v in value]


def parse_endpoint(endpoint: str) -> Tuple[str, int]:
    """
    Split a ``host:port`` endpoint; an empty host listens on all interfaces.

    Example: ":9402" -> ("0.0.0.0", 9402)
    """
    host, sep, port = endpoint.rpartition(':')
    if not sep or not port.isdigit():
        raise ConfigError(f"Invalid endpoint (expected host:port): {endpoint}")
    return host or '0.0.0.0', int(port)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            var_name = match.group(1)
            default = match.group(2) or ''
            return os.environ.get(var_name, default)

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    value = data
    for key in key_path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Warn if config file has loose permissions
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {config_path} is not valid YAML: {e}", original_error=e) from e

    if not isinstance(config, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}
    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_nested(config, config_key, value)
    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}
    for arg_name, config_key in ARG_MAPPING.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            _set_nested(config, config_key, value)
    return config


def load_config(args) -> ExporterConfig:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns the effective ExporterConfig.
    """
    configs = []

    # 1. Environment variables (lowest priority)
    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    # 2. Config file
    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    # 3. CLI arguments (highest priority)
    configs.append(args_to_config(args))

    return ExporterConfig.from_dict(merge_configs(*configs))


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return f'''# GCP Exporter Configuration
#
# Every setting can also be given as an environment variable
# (e.g. GCP_EXPORTER_MAX_PROJECTS=50) or a command-line flag.
# Command-line flags win over this file, which wins over the environment.
#
# Environment variable substitution supported:
#   ${{VAR_NAME}}           - required env var
#   ${{VAR_NAME:-default}}  - env var with default value

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Git commit reported by gcp_exporter_build_info
git_commit: ${{GIT_COMMIT:-}}

server:
  # host:port to listen on (empty host = all interfaces)
  endpoint: "{DEFAULT_ENDPOINT}"
  metrics_path: {DEFAULT_METRICS_PATH}

projects:
  # Resource Manager search query, e.g. "parent.id:123456789" or "labels.env:prod"
  filter: ""
  # Page size used for project discovery
  max_projects: {DEFAULT_MAX_PROJECTS}
  # Export gcp_projects_info per project
  extended_metrics: false
  # Project label keys to add to gcp_projects_info (as label_<snake_case>)
  # extra_labels: team,costCenter

collection:
  # Available: {', '.join(ALL_COLLECTORS)}
  collectors:
{chr(10).join('    - ' + name for name in DEFAULT_COLLECTORS)}
  # Seconds allowed for one collector cycle
  timeout: {DEFAULT_TIMEOUT_SECONDS:g}
  # Projects scanned concurrently per collector
  parallel_workers: {DEFAULT_PARALLEL_WORKERS}
  # Zones/regions/locations scanned concurrently per project
  scope_workers: {DEFAULT_SCOPE_WORKERS}
  page_size: {DEFAULT_PAGE_SIZE}
  # Attempts per page on 429/503 responses
  retry_attempts: {DEFAULT_RETRY_ATTEMPTS}

kubernetes:
  # Export cluster_info and cluster_node_pools_info
  extended: false
'''
