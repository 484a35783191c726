"""
Core plugin types and dataclasses.

This module contains the shared types used across a reconciliation pass:
desired resources, observed state, plan steps and execution results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class ResourceKind(Enum):
    """Kinds of managed resources."""

    DATABASE = "database"
    SECRET = "secret"
    IMAGE = "image"
    SERVICE = "service"


class ObservedStatus(Enum):
    """Outcome of probing one resource."""

    ABSENT = "absent"
    PRESENT = "present"
    ERROR = "error"


class StepAction(Enum):
    """Action a plan step takes on its resource."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


class StepOutcome(Enum):
    """Per-step outcome of an execution."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_DEPENDENCY_FAILED = "skipped_dependency_failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ResourceSpec:
    """A desired external resource, as declared in the descriptor."""

    name: str
    kind: ResourceKind
    config: Mapping[str, Any]
    depends_on: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ObservedState:
    """Current state of one resource as reported by its provider."""

    status: ObservedStatus
    attributes: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def absent(cls) -> "ObservedState":
        return cls(status=ObservedStatus.ABSENT)

    @classmethod
    def present(cls, attributes: Dict[str, Any]) -> "ObservedState":
        return cls(status=ObservedStatus.PRESENT, attributes=dict(attributes))

    @classmethod
    def failed(cls, cause: str) -> "ObservedState":
        return cls(status=ObservedStatus.ERROR, error=cause)

    @property
    def is_present(self) -> bool:
        return self.status is ObservedStatus.PRESENT

    @property
    def is_absent(self) -> bool:
        return self.status is ObservedStatus.ABSENT

    @property
    def is_error(self) -> bool:
        return self.status is ObservedStatus.ERROR


@dataclass(frozen=True)
class PlanStep:
    """One planned action tied to a resource and its dependencies."""

    spec: ResourceSpec
    action: StepAction
    changes: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def depends_on(self) -> Tuple[str, ...]:
        return self.spec.depends_on


@dataclass
class ExecutionResult:
    """Outcome of executing one plan step."""

    name: str
    action: StepAction
    outcome: StepOutcome
    reason: Optional[str] = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.outcome is StepOutcome.SUCCEEDED


@dataclass
class ProviderContext:
    """Context passed to provider plugins for one resource."""

    resource_name: str
    project: Optional[str]
    region: str
    config: Dict[str, Any]
    # Outputs of dependencies, keyed by resource name
    dependency_outputs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    # Declared specs, keyed by resource name
    resources: Dict[str, ResourceSpec] = field(default_factory=dict)
