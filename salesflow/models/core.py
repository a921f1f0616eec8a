"""Core Pydantic models for the orchestration engine."""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


_STEP_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_.:-]+$')


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow execution statuses."""
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    ExecutionStatusEnum.COMPLETED,
    ExecutionStatusEnum.FAILED,
    ExecutionStatusEnum.CANCELLED,
})


class StepStatusEnum(str, Enum):
    """Enumeration of step result statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class SkipReason(str, Enum):
    """Why a step was recorded as skipped."""
    CONDITIONS_NOT_MET = "conditions_not_met"
    UPSTREAM_FAILURE = "upstream_failure"


class FailureAction(str, Enum):
    """What the orchestrator does after a step failure."""
    STOP = "stop"
    CONTINUE = "continue"


class StepPriority(str, Enum):
    """Informational step priority carried through to events."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class _DefinitionModel(BaseModel):
    """Base for definition models: frozen, camelCase aliases accepted."""
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


class ValidationResult(BaseModel):
    """Result of workflow definition validation."""
    is_valid: bool = Field(..., description="Whether the definition is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class RetryPolicy(_DefinitionModel):
    """Per-step retry settings; unset fields fall back to process defaults."""
    max_retries: Optional[int] = Field(None, ge=0, description="Additional attempts after the first")
    backoff_seconds: Optional[float] = Field(None, ge=0, description="Base delay before the first retry")
    jitter: Optional[bool] = Field(None, description="Randomize delays between 50% and 100%")


class ResiliencePolicy(BaseModel):
    """Timeout, retry and circuit breaker settings applied uniformly to a step call."""
    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = Field(30.0, gt=0)
    max_retries: int = Field(3, ge=0)
    backoff_seconds: float = Field(1.0, ge=0)
    max_backoff_seconds: float = Field(30.0, ge=0)
    jitter: bool = True
    failure_threshold: int = Field(3, ge=1)
    recovery_timeout_seconds: float = Field(60.0, ge=0)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def for_step(self, step: "WorkflowStep") -> "ResiliencePolicy":
        """Overlay a step's timeout and retry policy onto these defaults."""
        updates: Dict[str, Any] = {}
        if step.timeout is not None:
            updates["timeout_seconds"] = step.timeout
        if step.retry_policy is not None:
            if step.retry_policy.max_retries is not None:
                updates["max_retries"] = step.retry_policy.max_retries
            if step.retry_policy.backoff_seconds is not None:
                updates["backoff_seconds"] = step.retry_policy.backoff_seconds
            if step.retry_policy.jitter is not None:
                updates["jitter"] = step.retry_policy.jitter
        return self.model_copy(update=updates) if updates else self


class WorkflowTrigger(_DefinitionModel):
    """Event name plus an optional predicate over the event payload."""
    event: str = Field(..., description="Event type that starts the workflow")
    conditions: Optional[Dict[str, Any]] = Field(None, description="Predicate over the event payload")

    @field_validator('event')
    @classmethod
    def validate_event(cls, event):
        if not event or not event.strip():
            raise ValueError("Trigger event name cannot be empty")
        return event.strip()


class WorkflowStep(_DefinitionModel):
    """One unit of work bound to a capability on a worker agent."""
    id: str = Field(..., description="Step id, unique within the definition")
    name: str = Field("", description="Human readable step name")
    agent: str = Field(..., description="Target agent identifier")
    action: str = Field(..., description="Capability name on the agent")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Static parameters merged over the context")
    depends_on: List[str] = Field(default_factory=list, description="Ids of steps that must resolve first")
    conditions: Optional[Dict[str, Any]] = Field(None, description="Predicate over the execution context")
    timeout: Optional[float] = Field(None, description="Timeout in seconds for the capability call")
    retry_policy: Optional[RetryPolicy] = Field(None, description="Retry overrides")
    critical: bool = Field(False, description="Abort the workflow when this step fails")
    priority: Optional[StepPriority] = Field(None, description="Informational priority")

    @field_validator('id')
    @classmethod
    def validate_id_format(cls, id_value):
        """Ensure step ID follows valid format."""
        if not id_value or not id_value.strip():
            raise ValueError("Step ID cannot be empty")
        if not _STEP_ID_PATTERN.match(id_value.strip()):
            raise ValueError("Step ID must contain only alphanumeric characters, '_', '-', '.' and ':'")
        return id_value.strip()

    @field_validator('agent', 'action')
    @classmethod
    def validate_target(cls, value):
        if not value or not value.strip():
            raise ValueError("Agent and action cannot be empty")
        return value.strip()

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, timeout):
        """Ensure timeout is positive if specified."""
        if timeout is not None and timeout <= 0:
            raise ValueError("Timeout must be positive")
        return timeout

    @model_validator(mode='before')
    @classmethod
    def default_name(cls, data):
        if isinstance(data, dict) and not data.get("name") and data.get("id"):
            data = {**data, "name": data["id"]}
        return data


class ErrorHandlingPolicy(_DefinitionModel):
    """What to do when steps fail."""
    on_step_failure: FailureAction = Field(FailureAction.CONTINUE, description="Policy for non-critical failures")
    on_critical_failure: FailureAction = Field(FailureAction.STOP, description="Policy for critical step failures")
    notification_channels: List[str] = Field(default_factory=list, description="Channels named in failure events")


class WorkflowDefinition(_DefinitionModel):
    """Immutable definition of a workflow: steps, dependency edges, triggers and error policy."""
    id: str = Field(..., description="Workflow id")
    name: str = Field(..., description="Workflow name")
    description: str = Field("", description="Workflow description")
    version: str = Field("1.0.0", description="Definition version")
    triggers: List[WorkflowTrigger] = Field(default_factory=list, description="Events that start the workflow")
    steps: List[WorkflowStep] = Field(..., description="Steps in declaration order")
    error_handling: ErrorHandlingPolicy = Field(default_factory=ErrorHandlingPolicy, description="Failure policy")

    @field_validator('id', 'name')
    @classmethod
    def validate_not_empty(cls, value):
        if not value or not value.strip():
            raise ValueError("Workflow id and name cannot be empty")
        return value.strip()

    @field_validator('steps')
    @classmethod
    def validate_unique_step_ids(cls, steps):
        """Ensure all step IDs are unique."""
        if not steps:
            raise ValueError("Workflow must contain at least one step")
        step_ids = [step.id for step in steps]
        if len(step_ids) != len(set(step_ids)):
            duplicates = sorted({sid for sid in step_ids if step_ids.count(sid) > 1})
            raise ValueError(f"Step IDs must be unique, duplicated: {', '.join(duplicates)}")
        return steps

    @property
    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]


class StepResult(BaseModel):
    """Outcome of one step within an execution."""
    step_id: str
    status: StepStatusEnum = StepStatusEnum.PENDING
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    output: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    attempts: int = 0
    skip_reason: Optional[SkipReason] = None

    @property
    def blocks_dependents(self) -> bool:
        """Whether steps depending on this one must be skipped."""
        return self.status == StepStatusEnum.FAILED or self.skip_reason == SkipReason.UPSTREAM_FAILURE


class ExecutionErrorRecord(BaseModel):
    """Entry in an execution's append-only error list."""
    step: str
    error: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class WorkflowExecution(BaseModel):
    """Running or finished instance of a workflow definition."""
    id: str
    workflow_id: str
    workflow_version: str = "1.0.0"
    status: ExecutionStatusEnum = ExecutionStatusEnum.RUNNING
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    step_results: Dict[str, StepResult] = Field(default_factory=dict)
    current_step: int = Field(0, description="Index of the next batch to schedule")
    total_batches: int = 0
    triggered_by: str = "manual"
    errors: List[ExecutionErrorRecord] = Field(default_factory=list)
    depth: int = Field(0, description="Trigger-chain depth of the event that started this execution")
    chain: List[str] = Field(default_factory=list, description="Workflow ids upstream in the trigger chain")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def record_step_result(self, result: StepResult) -> None:
        """Insert or update a step result; entries are never removed."""
        self.step_results[result.step_id] = result

    def record_error(self, step: str, error: str) -> None:
        self.errors.append(ExecutionErrorRecord(step=step, error=error))


class DomainEvent(BaseModel):
    """Event exchanged over the event bus, both domain events and lifecycle events."""
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    depth: int = Field(0, ge=0, description="Number of workflow hops that led to this event")
    chain: List[str] = Field(default_factory=list, description="Workflow ids whose lifecycle produced this event")

    @field_validator('type')
    @classmethod
    def validate_type(cls, event_type):
        if not event_type or not event_type.strip():
            raise ValueError("Event type cannot be empty")
        return event_type.strip()


class WorkflowSummary(BaseModel):
    """Summary information about a registered workflow definition."""
    id: str
    name: str
    description: str
    version: str
    step_count: int
    trigger_events: List[str]
