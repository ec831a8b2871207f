"""
Custom Exception Classes

This module defines the exceptions raised by the workflow engine,
providing clear, specific error types with standardized status codes,
error codes for client-side handling, and detailed error information.

Two families exist:
- Control errors (validation, auth, not-found, invalid state) surface
  directly to the Control API caller.
- Execution errors are raised inside a run, caught by the coordinator,
  and only ever observed through the execution record.
"""

from typing import Dict, List, Optional, Any
from enum import Enum


class ErrorCode(str, Enum):
    """
    Standardized error codes for client-side handling.

    Format: CATEGORY_SPECIFIC_ERROR
    Categories: AUTH, RESOURCE, VALIDATION, EXECUTION, SERVICE, TIMEOUT
    """
    # Authentication errors
    AUTH_UNAUTHORIZED = "AUTH_001"
    AUTH_TOKEN_INVALID = "AUTH_004"

    # Resource errors
    RESOURCE_NOT_FOUND = "RESOURCE_001"
    RESOURCE_CONFLICT = "RESOURCE_002"

    # Validation errors
    VALIDATION_FAILED = "VALIDATION_001"
    VALIDATION_GRAPH_INVALID = "VALIDATION_004"

    # Execution errors
    EXECUTION_FAILED = "EXECUTION_001"
    EXECUTION_NODE_FAILED = "EXECUTION_002"
    EXECUTION_CONDITION_INVALID = "EXECUTION_003"
    EXECUTION_CYCLE_DETECTED = "EXECUTION_004"
    EXECUTION_INVALID_STATE = "EXECUTION_005"

    # Service errors
    SERVICE_UNAVAILABLE = "SERVICE_001"
    SERVICE_STORE_ERROR = "SERVICE_002"

    # Timeout errors
    TIMEOUT_EXCEEDED = "TIMEOUT_001"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_001"
    UNKNOWN_ERROR = "INTERNAL_999"


class AppException(Exception):
    """
    Base application exception

    All custom exceptions inherit from this class to ensure
    consistent error handling across the application.

    Attributes:
        message: Human-readable error message
        status_code: HTTP status code (default: 500)
        error_code: Standardized error code for client handling
        details: Additional error details as a dictionary
        retryable: Whether the operation can be retried
        retry_after: Suggested retry delay in seconds (if retryable)
    """
    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False,
        retry_after: Optional[int] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable
        }
        if self.retry_after:
            result["retry_after"] = self.retry_after
        return result


class NotFoundError(AppException):
    """
    Resource not found error

    Raised when an execution does not exist or is not owned by the caller.
    Both cases look identical to the caller. Returns HTTP 404.

    Example:
        raise NotFoundError("Execution", "123e4567-e89b-12d3-a456-426614174000")
    """
    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"{resource} with id {identifier} not found",
            status_code=404,
            error_code=ErrorCode.RESOURCE_NOT_FOUND,
            details={"resource": resource, "identifier": identifier}
        )


class ValidationError(AppException):
    """
    Validation error

    Raised when a submitted workflow graph is malformed, before any
    execution record is created. Returns HTTP 400.

    Example:
        raise ValidationError(
            "Edge references unknown node",
            details={"edge_id": "e1", "missing": ["n9"]}
        )
    """
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        super().__init__(
            message,
            status_code=400,
            error_code=error_code,
            details=details
        )


class GraphValidationError(ValidationError):
    """Workflow graph failed structural validation."""
    def __init__(self, errors: List[str]):
        super().__init__(
            f"Invalid workflow graph: {'; '.join(errors)}",
            details={"errors": errors},
            error_code=ErrorCode.VALIDATION_GRAPH_INVALID
        )
        self.errors = errors


class AuthError(AppException):
    """
    Authentication error

    Raised when the caller identity is missing or invalid.
    Returns HTTP 401.

    Example:
        raise AuthError("Could not validate credentials")
    """
    def __init__(
        self,
        message: str = "Not authenticated",
        details: Optional[Dict[str, Any]] = None,
        error_code: ErrorCode = ErrorCode.AUTH_UNAUTHORIZED
    ):
        super().__init__(
            message,
            status_code=401,
            error_code=error_code,
            details=details
        )


class InvalidStateError(AppException):
    """
    Execution invalid state error

    Raised when a control operation is not allowed from the execution's
    current status (e.g. resuming a completed run). Returns HTTP 409.

    Example:
        raise InvalidStateError(
            "Only paused executions can be resumed",
            current_state="completed",
            allowed_states=["paused"]
        )
    """
    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        allowed_states: Optional[list] = None
    ):
        details = {}
        if current_state:
            details["current_state"] = current_state
        if allowed_states:
            details["allowed_states"] = allowed_states

        super().__init__(
            message,
            status_code=409,
            error_code=ErrorCode.EXECUTION_INVALID_STATE,
            details=details
        )


class ExecutionError(AppException):
    """
    Workflow execution error

    Raised inside a run. The coordinator converts it into a failed
    execution record; it is never re-raised to the Control API caller.
    """
    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: ErrorCode = ErrorCode.EXECUTION_FAILED
    ):
        merged = dict(details or {})
        if node_id:
            merged["node_id"] = node_id
        super().__init__(
            message,
            status_code=500,
            error_code=error_code,
            details=merged
        )
        self.node_id = node_id


class NodeExecutionError(ExecutionError):
    """A node executor failed after exhausting its retry policy."""
    def __init__(self, message: str, node_id: Optional[str] = None, attempts: int = 1):
        super().__init__(
            message,
            node_id=node_id,
            details={"attempts": attempts},
            error_code=ErrorCode.EXECUTION_NODE_FAILED
        )
        self.attempts = attempts


class ConditionEvaluationError(ExecutionError):
    """A condition node's expression could not be evaluated."""
    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(
            message,
            node_id=node_id,
            error_code=ErrorCode.EXECUTION_CONDITION_INVALID
        )


class CycleDetectedError(ExecutionError):
    """
    Dependency cycle detected during traversal

    Raised when the walker leads back to a node that already has a result,
    or when a run exceeds the configured step limit.

    Example:
        raise CycleDetectedError(node_id="c1", path=["t1", "c1", "a1", "c1"])
    """
    def __init__(
        self,
        message: str = "Cycle detected in workflow traversal",
        node_id: Optional[str] = None,
        path: Optional[list] = None
    ):
        super().__init__(
            message,
            node_id=node_id,
            details={"path": path} if path else None,
            error_code=ErrorCode.EXECUTION_CYCLE_DETECTED
        )


class ExecutionTimeoutError(ExecutionError):
    """A run exceeded its wall-clock budget."""
    def __init__(self, timeout: float):
        super().__init__(
            f"Execution timed out after {timeout}s",
            details={"timeout": timeout},
            error_code=ErrorCode.TIMEOUT_EXCEEDED
        )


class StoreUnavailableError(AppException):
    """
    Execution store unavailable error

    Raised when the configured store backend cannot be reached.
    Returns HTTP 503. This is a retryable error.
    """
    def __init__(
        self,
        backend: str,
        details: Optional[Dict[str, Any]] = None,
        retry_after: int = 5
    ):
        super().__init__(
            f"Execution store {backend} is unavailable",
            status_code=503,
            error_code=ErrorCode.SERVICE_STORE_ERROR,
            details={**(details or {}), "backend": backend},
            retryable=True,
            retry_after=retry_after
        )
