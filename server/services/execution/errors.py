"""Domain exceptions and node error classification.

classify_error maps any exception raised while running a node onto a small
set of error types; the type decides whether the orchestration activity is
retried.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import httpx
from pydantic import ValidationError

from models.enums import WorkflowNodeType


class WorkflowErrorType(str, Enum):
    """Classification of a node failure."""
    CLIENT_ERROR = "CLIENT_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SECURITY_ERROR = "SECURITY_ERROR"
    CONTROL_FLOW_ERROR = "CONTROL_FLOW_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset([WorkflowErrorType.SERVER_ERROR, WorkflowErrorType.EXECUTION_ERROR])


# =============================================================================
# EXCEPTIONS
# =============================================================================

class NotFoundError(ValueError):
    """A referenced record does not exist."""


class WorkspaceAccessError(PermissionError):
    """A record was addressed through a workspace that does not own it."""


class NodeConfigValidationError(ValueError):
    """A node config failed semantic validation."""

    def __init__(self, node_key: str, errors: List[str]):
        super().__init__(f"Invalid config for node '{node_key}': {'; '.join(errors)}")
        self.node_key = node_key
        self.errors = errors


class ConditionResultError(RuntimeError):
    """A condition expression evaluated to something other than a boolean."""


# =============================================================================
# CLASSIFICATION
# =============================================================================

@dataclass(frozen=True)
class ClassifiedError:
    error_type: WorkflowErrorType
    retryable: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.error_type.value,
            "retryable": self.retryable,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassifiedError":
        error_type = WorkflowErrorType(data.get("error_type", WorkflowErrorType.EXECUTION_ERROR.value))
        return cls(
            error_type=error_type,
            retryable=data.get("retryable", error_type.retryable),
            message=data.get("message", ""),
        )


def _causes(error: BaseException) -> Iterator[BaseException]:
    """Walk the explicit cause chain, guarding against loops."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__


def _message(error: BaseException) -> str:
    return str(error) or type(error).__name__


def _classify_one(error: BaseException) -> Optional[WorkflowErrorType]:
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if 400 <= status < 500:
            return WorkflowErrorType.CLIENT_ERROR
        if status >= 500:
            return WorkflowErrorType.SERVER_ERROR
    return None


def classify_error(error: BaseException,
                   node_type: Optional[WorkflowNodeType] = None) -> ClassifiedError:
    """Classify a node failure.

    First match wins: HTTP 4xx, HTTP 5xx, validation, security, any failure of
    a control-flow node, then everything else as a retryable execution error.
    HTTP and validation/security checks also look through the cause chain.
    """
    chain = list(_causes(error))
    message = _message(error)

    for link in chain:
        error_type = _classify_one(link)
        if error_type is not None:
            return ClassifiedError(error_type, error_type.retryable, message)

    for link in chain:
        if isinstance(link, (ValidationError, NodeConfigValidationError, ValueError)):
            return ClassifiedError(WorkflowErrorType.VALIDATION_ERROR, False, message)
        if isinstance(link, (WorkspaceAccessError, PermissionError)):
            return ClassifiedError(WorkflowErrorType.SECURITY_ERROR, False, message)

    if node_type == WorkflowNodeType.CONTROL_FLOW:
        return ClassifiedError(WorkflowErrorType.CONTROL_FLOW_ERROR, False, message)

    return ClassifiedError(WorkflowErrorType.EXECUTION_ERROR, True, message)
