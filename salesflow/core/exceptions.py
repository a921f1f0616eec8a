"""Exception hierarchy for the workflow orchestration engine."""

import traceback
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    LIFECYCLE = "lifecycle"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    RESOURCE = "resource"


class OrchestratorError(Exception):
    """Base exception for all orchestrator errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.utcnow()
        self.traceback_info = traceback.format_stack()

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class WorkflowValidationError(OrchestratorError):
    """Raised when a workflow definition is malformed (unknown reference, cycle, bad predicate)."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        self.workflow_id = workflow_id
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class NotFoundError(OrchestratorError):
    """Raised when a workflow definition or execution id is unknown."""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        if resource_type:
            self.add_context(resource_type=resource_type)
        if resource_id:
            self.add_context(resource_id=resource_id)


class InvalidStateError(OrchestratorError):
    """Raised when a lifecycle transition is not allowed from the current status."""

    def __init__(
        self,
        message: str,
        execution_id: Optional[str] = None,
        current_status: Optional[str] = None,
        requested: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.LIFECYCLE,
            **kwargs
        )
        if execution_id:
            self.add_context(execution_id=execution_id)
        if current_status:
            self.add_details(current_status=current_status)
        if requested:
            self.add_details(requested_transition=requested)


class CapabilityNotFoundError(NotFoundError):
    """Raised when an (agent, capability) pair has no registered handler."""

    def __init__(self, agent_id: str, capability: str, **kwargs):
        super().__init__(
            f"Capability '{capability}' is not registered for agent '{agent_id}'",
            resource_type="capability",
            resource_id=f"{agent_id}.{capability}",
            **kwargs
        )
        self.agent_id = agent_id
        self.capability = capability


class StepExecutionError(OrchestratorError):
    """Raised when a step's capability call failed after retries were exhausted."""

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        attempts: Optional[int] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        self.step_id = step_id
        self.execution_id = execution_id
        self.attempts = attempts
        if step_id:
            self.add_context(step_id=step_id)
        if execution_id:
            self.add_context(execution_id=execution_id)
        if attempts is not None:
            self.add_details(attempts=attempts)


class TransientError(OrchestratorError):
    """Raised for transient errors that should be retried."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("retry_after", 5)
        super().__init__(message, recoverable=True, **kwargs)


class StepTimeoutError(TransientError):
    """Raised when a capability call exceeds its timeout."""

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, category=ErrorCategory.EXECUTION, **kwargs)
        self.timeout = timeout
        if timeout is not None:
            self.add_details(timeout_seconds=timeout)


class CircuitOpenError(TransientError):
    """Raised when a capability's circuit breaker is open and rejects the call."""

    def __init__(
        self,
        message: str,
        breaker_name: Optional[str] = None,
        reopen_at: Optional[datetime] = None,
        **kwargs
    ):
        super().__init__(message, category=ErrorCategory.RESOURCE, **kwargs)
        if breaker_name:
            self.add_context(breaker=breaker_name)
        if reopen_at:
            self.add_details(reopen_at=reopen_at.isoformat())


class StorageError(OrchestratorError):
    """Raised when execution state store operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=True,
            retry_after=3,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)


class ConfigurationError(OrchestratorError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


def create_error_response(error: OrchestratorError) -> Dict[str, Any]:
    """Create a standardized error response from an OrchestratorError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
