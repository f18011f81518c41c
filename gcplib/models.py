"""
Data models for the GCP resource exporter.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .constants import PROJECT_STATE_ACTIVE


@dataclass(frozen=True)
class Project:
    """
    A project as returned by project discovery.

    Immutable: the Account registry replaces the whole list every cycle
    rather than updating projects in place.
    """
    project_id: str
    number: str = ""
    state: str = PROJECT_STATE_ACTIVE
    display_name: str = ""
    parent_type: str = ""  # "folder" or "organization"
    parent_id: str = ""
    labels: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    @property
    def active(self) -> bool:
        return self.state == PROJECT_STATE_ACTIVE


@dataclass(frozen=True)
class Observation:
    """One labeled numeric sample destined for the metrics sink."""
    metric: str
    labels: Tuple[str, ...]
    value: float

    @property
    def key(self) -> Tuple[str, Tuple[str, ...]]:
        return (self.metric, self.labels)


class OutcomeStatus(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class CollectionOutcome:
    """
    Terminal result of one scope-scan task.

    SUCCESS carries the task's return value, SKIPPED a reason (the API is
    disabled or forbidden) and FAILED the exception that ended the task.
    """
    status: OutcomeStatus
    value: Any = None
    reason: str = ""
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, value: Any = None) -> 'CollectionOutcome':
        return cls(OutcomeStatus.SUCCESS, value=value)

    @classmethod
    def skipped(cls, reason: str) -> 'CollectionOutcome':
        return cls(OutcomeStatus.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, error: BaseException) -> 'CollectionOutcome':
        return cls(OutcomeStatus.FAILED, reason=str(error), error=error)

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS
