"""Data models for the orchestration engine."""

from .core import (
    TERMINAL_STATUSES,
    DomainEvent,
    ErrorHandlingPolicy,
    ExecutionErrorRecord,
    ExecutionStatusEnum,
    FailureAction,
    ResiliencePolicy,
    RetryPolicy,
    SkipReason,
    StepPriority,
    StepResult,
    StepStatusEnum,
    ValidationResult,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStep,
    WorkflowSummary,
    WorkflowTrigger,
)

__all__ = [
    "TERMINAL_STATUSES",
    "DomainEvent",
    "ErrorHandlingPolicy",
    "ExecutionErrorRecord",
    "ExecutionStatusEnum",
    "FailureAction",
    "ResiliencePolicy",
    "RetryPolicy",
    "SkipReason",
    "StepPriority",
    "StepResult",
    "StepStatusEnum",
    "ValidationResult",
    "WorkflowDefinition",
    "WorkflowExecution",
    "WorkflowStep",
    "WorkflowSummary",
    "WorkflowTrigger",
]
