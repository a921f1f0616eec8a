"""Execution of a single workflow step."""

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from ..models.core import (
    FailureAction,
    ResiliencePolicy,
    SkipReason,
    StepResult,
    StepStatusEnum,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStep,
)
from .capabilities import CapabilityRegistry
from .conditions import evaluate
from .event_bus import STEP_COMPLETED, STEP_FAILED, STEP_SKIPPED, EventBus, lifecycle_event
from .exceptions import StepExecutionError
from .logging import get_logger, logging_context
from .resilience import CircuitBreakerRegistry, call_with_timeout, retry_async

logger = get_logger(__name__)


class StepExecutor:
    """Runs one step: dependency and condition gating, then the guarded capability call."""

    def __init__(
        self,
        capabilities: CapabilityRegistry,
        event_bus: EventBus,
        breakers: Optional[CircuitBreakerRegistry] = None,
        default_policy: Optional[ResiliencePolicy] = None
    ):
        self.capabilities = capabilities
        self.event_bus = event_bus
        self.breakers = breakers if breakers is not None else CircuitBreakerRegistry()
        self.default_policy = default_policy or ResiliencePolicy()

    async def execute(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        step: WorkflowStep,
        lock: Optional[asyncio.Lock] = None
    ) -> StepResult:
        """
        Execute one step of an execution and record its result.

        Args:
            execution: Execution the step belongs to
            definition: Definition the execution was started from
            step: Step to run
            lock: Lock guarding mutations of ``execution``

        Returns:
            StepResult: The recorded result (completed, failed or skipped)

        Raises:
            StepExecutionError: If the step failed and the error policy says to stop the workflow
        """
        lock = lock or asyncio.Lock()

        with logging_context(execution_id=execution.id, workflow_id=execution.workflow_id, step_id=step.id):
            blocking = self._blocking_dependency(execution, step)
            if blocking is not None:
                logger.info(f"Skipping step {step.id}: dependency {blocking} did not succeed")
                return await self._record_skip(execution, step, lock, SkipReason.UPSTREAM_FAILURE, blocking)

            if not evaluate(step.conditions, execution.context):
                logger.debug(f"Skipping step {step.id}: conditions not met")
                return await self._record_skip(execution, step, lock, SkipReason.CONDITIONS_NOT_MET)

            async with lock:
                result = StepResult(step_id=step.id, status=StepStatusEnum.RUNNING)
                execution.record_step_result(result)
                parameters = {**execution.context, **step.parameters}

            logger.info(f"Executing step {step.id} via {step.agent}.{step.action}")
            policy = self.default_policy.for_step(step)
            tracker = {"attempts": 0}

            def on_attempt(number: int) -> None:
                tracker["attempts"] = number

            try:
                output = await self._call(step, parameters, policy, on_attempt)
            except Exception as e:
                return await self._record_failure(
                    execution, definition, step, lock, result, e, tracker["attempts"]
                )

            attempts = tracker["attempts"]

            async with lock:
                result.status = StepStatusEnum.COMPLETED
                result.output = output
                result.attempts = attempts
                result.end_time = datetime.utcnow()
                execution.record_step_result(result)

            logger.info(f"Step {step.id} completed after {attempts} attempt(s)")
            await self.event_bus.publish(lifecycle_event(
                STEP_COMPLETED, execution,
                stepId=step.id, agent=step.agent, action=step.action,
                attempts=attempts, output=output,
                priority=step.priority.value if step.priority else None,
            ))
            return result

    async def _call(self, step: WorkflowStep, parameters: Dict[str, Any], policy: ResiliencePolicy, on_attempt) -> Any:
        breaker = self.breakers.get(step.agent, step.action, policy)
        operation = f"{step.agent}.{step.action}"

        async def attempt(number: int) -> Any:
            on_attempt(number)
            return await breaker.call(
                lambda: call_with_timeout(
                    lambda: self.capabilities.invoke(step.agent, step.action, dict(parameters)),
                    policy.timeout_seconds,
                    operation,
                )
            )

        return await retry_async(attempt, policy, operation)

    @staticmethod
    def _blocking_dependency(execution: WorkflowExecution, step: WorkflowStep) -> Optional[str]:
        for dep in step.depends_on:
            dep_result = execution.step_results.get(dep)
            if dep_result is not None and dep_result.blocks_dependents:
                return dep
        return None

    async def _record_skip(
        self,
        execution: WorkflowExecution,
        step: WorkflowStep,
        lock: asyncio.Lock,
        reason: SkipReason,
        blocking_step: Optional[str] = None
    ) -> StepResult:
        now = datetime.utcnow()
        result = StepResult(
            step_id=step.id,
            status=StepStatusEnum.SKIPPED,
            start_time=now,
            end_time=now,
            output={"skipped": True, "reason": reason.value},
            skip_reason=reason,
        )
        async with lock:
            execution.record_step_result(result)

        payload: Dict[str, Any] = {"stepId": step.id, "reason": reason.value}
        if blocking_step:
            payload["blockedBy"] = blocking_step
        await self.event_bus.publish(lifecycle_event(STEP_SKIPPED, execution, **payload))
        return result

    async def _record_failure(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        step: WorkflowStep,
        lock: asyncio.Lock,
        result: StepResult,
        error: Exception,
        attempts: int
    ) -> StepResult:
        message = str(error) or type(error).__name__
        async with lock:
            result.status = StepStatusEnum.FAILED
            result.error = message
            result.error_type = type(error).__name__
            result.attempts = attempts
            result.end_time = datetime.utcnow()
            execution.record_step_result(result)
            execution.record_error(step.id, message)

        logger.error(f"Step {step.id} failed after {attempts} attempt(s): {message}")

        policy = definition.error_handling
        abort = (
            (step.critical and policy.on_critical_failure == FailureAction.STOP)
            or policy.on_step_failure == FailureAction.STOP
        )
        await self.event_bus.publish(lifecycle_event(
            STEP_FAILED, execution,
            stepId=step.id, agent=step.agent, action=step.action,
            error=message, errorType=type(error).__name__, attempts=attempts,
            critical=step.critical, abortsWorkflow=abort,
            notificationChannels=list(policy.notification_channels),
        ))

        if abort:
            raise StepExecutionError(
                f"Step {step.id} failed: {message}",
                step_id=step.id,
                execution_id=execution.id,
                attempts=attempts
            ) from error
        return result
