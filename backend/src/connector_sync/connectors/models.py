"""Result and request types of the connector lifecycle layer."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from connector_sync.orchestration.models import ContainerRef, UnitKind
from connector_sync.store.models import Connector

T = TypeVar("T")


class FailureReason(str, Enum):
    """Why a lifecycle operation failed."""

    NOT_FOUND = "not_found"
    INVALID_CONFIGURATION = "invalid_configuration"
    UNSUPPORTED = "unsupported"
    UPSTREAM_ERROR = "upstream_error"
    CONFLICT = "conflict"
    INTERNAL_ERROR = "internal_error"


@dataclass
class OperationResult(Generic[T]):
    """Outcome of a lifecycle operation.

    Attributes:
        ok: Whether the operation succeeded
        value: Operation result when ok
        reason: Failure category when not ok
        message: Human-readable failure description
    """

    ok: bool
    value: Optional[T] = None
    reason: Optional[FailureReason] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: FailureReason, message: str) -> "OperationResult[T]":
        return cls(ok=False, reason=reason, message=message)


@dataclass(frozen=True)
class ResourceRef:
    """One upstream resource of a GitHub connector.

    Attributes:
        kind: code, issue, discussion or repository
        repository: Owning repository
        number: Issue or discussion number
    """

    kind: UnitKind
    repository: ContainerRef
    number: Optional[int] = None

    @property
    def suffix(self) -> str:
        """Task id suffix naming the resource."""
        if self.number is None:
            return f"{self.kind.value}-{self.repository.id}"
        return f"{self.kind.value}-{self.repository.id}-{self.number}"


@dataclass
class ConnectorStatus:
    """Connector record plus the ids of its running tasks."""

    connector: Connector
    running_tasks: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "connector": self.connector.model_dump(mode="json"),
            "running_tasks": self.running_tasks,
        }
