"""Core orchestration components.

The orchestrator itself lives in ``salesflow.core.orchestrator`` and is not
re-exported here because it depends on the storage package.
"""

from .exceptions import (
    OrchestratorError,
    WorkflowValidationError,
    NotFoundError,
    InvalidStateError,
    CapabilityNotFoundError,
    StepExecutionError,
    TransientError,
    StepTimeoutError,
    CircuitOpenError,
    StorageError,
    ConfigurationError,
)
from .logging import setup_logging, get_logger
from .capabilities import CapabilityRegistry
from .event_bus import EventBus
from .registry import WorkflowDefinitionRegistry

__all__ = [
    "OrchestratorError",
    "WorkflowValidationError",
    "NotFoundError",
    "InvalidStateError",
    "CapabilityNotFoundError",
    "StepExecutionError",
    "TransientError",
    "StepTimeoutError",
    "CircuitOpenError",
    "StorageError",
    "ConfigurationError",
    "setup_logging",
    "get_logger",
    "CapabilityRegistry",
    "EventBus",
    "WorkflowDefinitionRegistry",
]
