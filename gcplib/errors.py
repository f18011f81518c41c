"""
Exception taxonomy and failure classification for the exporter.

Every collector task ends in one of three dispositions:

- PERMISSION_OR_DISABLED: the provider answered 403 / PERMISSION_DENIED. This is
  expected whenever an API is not enabled in a project, so the task's
  contribution is dropped without surfacing an error.
- TRANSIENT: anything else. Logged for operator visibility; only the failing
  scope loses its contribution.
- SUCCESS: the task finished and its result is aggregated.
"""
import logging
from enum import Enum
from http import HTTPStatus
from typing import Optional

from google.api_core import exceptions as api_exceptions

logger = logging.getLogger(__name__)


class ExporterError(Exception):
    """Base class for exporter errors."""

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        self.original_error = original_error
        super().__init__(message)


class RemoteListError(ExporterError):
    """A provider or network failure while paging through a listing."""


class DeadlineExceeded(RemoteListError):
    """The collection cycle deadline expired before pagination finished."""


class PermissionDenied(ExporterError):
    """The provider forbids the call (API disabled or missing permission)."""


class ScopeDiscoveryError(ExporterError):
    """Sub-scopes (zones, regions, locations) could not be enumerated."""


class ProjectDiscoveryError(ExporterError):
    """Project discovery failed; there is nothing to scan this cycle."""


class Disposition(Enum):
    SUCCESS = "success"
    PERMISSION_OR_DISABLED = "permission_or_disabled"
    TRANSIENT = "transient"


# GCP exception types that indicate the API is disabled or access is denied
GCP_FORBIDDEN_EXCEPTIONS = (api_exceptions.Forbidden, api_exceptions.PermissionDenied)


def _root_error(exc: BaseException) -> BaseException:
    """Unwrap exporter errors down to the provider exception that caused them."""
    seen = set()
    while isinstance(exc, ExporterError) and id(exc) not in seen:
        seen.add(id(exc))
        cause = exc.original_error or exc.__cause__
        if cause is None:
            break
        exc = cause
    return exc


def is_permission_error(exc: BaseException) -> bool:
    """
    Check if an exception represents a 403 / PERMISSION_DENIED response.

    Handles exporter wrappers, google-api-core exceptions (gRPC and REST
    transports alike) and any exception exposing an HTTP ``code`` of 403.
    """
    if isinstance(exc, PermissionDenied):
        return True

    root = _root_error(exc)
    if isinstance(root, PermissionDenied):
        return True
    if isinstance(root, GCP_FORBIDDEN_EXCEPTIONS):
        return True

    return getattr(root, "code", None) == HTTPStatus.FORBIDDEN


def classify(exc: Optional[BaseException], context: str = "") -> Disposition:
    """
    Classify the outcome of a remote call.

    Args:
        exc: The exception raised by the call, or None if it succeeded
        context: Description of the call (resource type, project, scope)

    Returns:
        The Disposition for the call
    """
    if exc is None:
        return Disposition.SUCCESS
    if is_permission_error(exc):
        logger.debug(f"{context}: permission denied or API disabled ({exc})")
        return Disposition.PERMISSION_OR_DISABLED
    return Disposition.TRANSIENT


class ConfigError(ExporterError):
    """Invalid configuration value."""
