"""Workflow orchestrator: execution lifecycle and batch scheduling."""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..config import AppConfig, get_config
from ..models.core import (
    DomainEvent,
    ExecutionStatusEnum,
    WorkflowDefinition,
    WorkflowExecution,
)
from ..storage.state_store import ExecutionStateStore, InMemoryExecutionStateStore
from .capabilities import CapabilityRegistry
from .event_bus import (
    WORKFLOW_CANCELLED,
    WORKFLOW_COMPLETED,
    WORKFLOW_FAILED,
    WORKFLOW_PAUSED,
    WORKFLOW_RESUMED,
    WORKFLOW_STARTED,
    EventBus,
    lifecycle_event,
)
from .exceptions import InvalidStateError, NotFoundError, StepExecutionError
from .execution_store import ActiveExecution, ActiveExecutionStore
from .logging import get_logger, logging_context
from .registry import WorkflowDefinitionRegistry
from .resilience import CircuitBreakerRegistry
from .scheduler import build_batches
from .step_executor import StepExecutor
from .trigger_matcher import TriggerMatcher

logger = get_logger(__name__)


class WorkflowOrchestrator:
    """Coordinates workflow executions across the worker agents.

    Batches of one execution run strictly in sequence; the steps of a batch
    run concurrently. Lifecycle changes are published on the event bus, and
    the trigger matcher listens on the same bus so workflows can start other
    workflows, bounded by the trigger depth limit.
    """

    def __init__(
        self,
        registry: Optional[WorkflowDefinitionRegistry] = None,
        capabilities: Optional[CapabilityRegistry] = None,
        event_bus: Optional[EventBus] = None,
        state_store: Optional[ExecutionStateStore] = None,
        config: Optional[AppConfig] = None,
        active_store: Optional[ActiveExecutionStore] = None,
        breakers: Optional[CircuitBreakerRegistry] = None
    ):
        # Registries and stores define __len__, so an empty one is falsy
        self.config = config if config is not None else get_config()
        self.capabilities = capabilities if capabilities is not None else CapabilityRegistry()
        self.registry = registry if registry is not None else WorkflowDefinitionRegistry(self.capabilities)
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self.state_store = state_store if state_store is not None else InMemoryExecutionStateStore()
        self.active = active_store if active_store is not None else ActiveExecutionStore(
            retention_seconds=self.config.execution_retention,
            sweep_interval=self.config.eviction_interval,
        )
        self.breakers = breakers if breakers is not None else CircuitBreakerRegistry()
        self.step_executor = StepExecutor(
            self.capabilities,
            self.event_bus,
            self.breakers,
            self.config.default_resilience_policy(),
        )
        self.trigger_matcher = TriggerMatcher(self.registry, self, self.config.max_trigger_depth)
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_workflows)
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Start the eviction sweeper and listen for trigger events."""
        if self._initialized:
            return
        await self.active.initialize()
        self.trigger_matcher.attach(self.event_bus)
        self._initialized = True
        logger.info(f"Workflow orchestrator initialized with {len(self.registry)} workflow(s)")

    async def shutdown(self) -> None:
        """Cancel unfinished executions and stop background work."""
        logger.info("Shutting down workflow orchestrator")
        self.trigger_matcher.detach()

        tasks = [
            entry.task for entry in self.active.entries()
            if entry.task is not None and not entry.task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} unfinished execution(s)")

        await self.active.shutdown()
        await self.state_store.close()
        self._initialized = False

    # Definitions

    def register_workflow(self, definition: WorkflowDefinition) -> None:
        """
        Raises:
            WorkflowValidationError: If the definition is invalid
        """
        self.registry.register(definition)

    def unregister_workflow(self, workflow_id: str) -> None:
        """
        Raises:
            NotFoundError: If no definition has this id
        """
        self.registry.unregister(workflow_id)

    # Execution lifecycle

    async def start_workflow(
        self,
        workflow_id: str,
        context: Optional[Dict[str, Any]] = None,
        triggered_by: Optional[str] = None,
        *,
        depth: int = 0,
        chain: Sequence[str] = ()
    ) -> str:
        """
        Start a new execution of a registered workflow.

        Args:
            workflow_id: Definition to run
            context: Initial execution context
            triggered_by: Event type or caller that started the execution
            depth: Trigger depth of the event that caused this start
            chain: Workflow ids whose lifecycle produced that event

        Returns:
            str: The new execution id

        Raises:
            NotFoundError: If the workflow is not registered
            WorkflowValidationError: If the dependency plan cannot be built
        """
        definition = self.registry.get(workflow_id)
        batches = build_batches(definition)

        execution = WorkflowExecution(
            id=str(uuid.uuid4()),
            workflow_id=definition.id,
            workflow_version=definition.version,
            status=ExecutionStatusEnum.RUNNING,
            context=dict(context or {}),
            total_batches=len(batches),
            triggered_by=triggered_by or "manual",
            depth=depth,
            chain=list(chain),
        )
        entry = self.active.add(execution, definition, batches)

        with logging_context(execution_id=execution.id, workflow_id=definition.id):
            logger.info(
                f"Starting workflow {definition.id} as execution {execution.id} "
                f"({len(batches)} batches, triggered by {execution.triggered_by})"
            )
            await self._persist(execution)
            await self.event_bus.publish(lifecycle_event(
                WORKFLOW_STARTED, execution,
                triggeredBy=execution.triggered_by,
                totalBatches=len(batches),
            ))
            entry.task = asyncio.create_task(self._run(entry), name=f"workflow-{execution.id}")

        return execution.id

    async def pause_workflow(self, execution_id: str) -> WorkflowExecution:
        """
        Pause a running execution; the in-flight batch finishes first.

        Raises:
            NotFoundError: If the execution is unknown
            InvalidStateError: If the execution is not running
        """
        entry = await self._require_active(execution_id, "pause")
        async with entry.lock:
            self._check_transition(entry.execution, "pause", (ExecutionStatusEnum.RUNNING,))
            entry.execution.status = ExecutionStatusEnum.PAUSED
            entry.resume_event.clear()

        logger.info(f"Paused execution {execution_id}")
        await self.event_bus.publish(lifecycle_event(WORKFLOW_PAUSED, entry.execution))
        return entry.execution.model_copy(deep=True)

    async def resume_workflow(self, execution_id: str) -> WorkflowExecution:
        """
        Resume a paused execution from its next unexecuted batch.

        Raises:
            NotFoundError: If the execution is unknown
            InvalidStateError: If the execution is not paused
        """
        entry = await self._require_active(execution_id, "resume")
        async with entry.lock:
            self._check_transition(entry.execution, "resume", (ExecutionStatusEnum.PAUSED,))
            entry.execution.status = ExecutionStatusEnum.RUNNING
            entry.resume_event.set()

        logger.info(f"Resumed execution {execution_id} at batch {entry.execution.current_step}")
        await self.event_bus.publish(lifecycle_event(
            WORKFLOW_RESUMED, entry.execution, nextBatch=entry.execution.current_step
        ))
        return entry.execution.model_copy(deep=True)

    async def cancel_workflow(self, execution_id: str) -> WorkflowExecution:
        """
        Cancel a running or paused execution. In-flight capability calls are not interrupted.

        Raises:
            NotFoundError: If the execution is unknown
            InvalidStateError: If the execution already finished
        """
        entry = await self._require_active(execution_id, "cancel")
        async with entry.lock:
            self._check_transition(
                entry.execution, "cancel", (ExecutionStatusEnum.RUNNING, ExecutionStatusEnum.PAUSED)
            )
            entry.execution.status = ExecutionStatusEnum.CANCELLED
            entry.execution.end_time = datetime.utcnow()

        logger.info(f"Cancelled execution {execution_id}")
        try:
            await self._persist(entry.execution)
            await self.event_bus.publish(lifecycle_event(WORKFLOW_CANCELLED, entry.execution))
        finally:
            self.active.mark_terminal(execution_id)
        return entry.execution.model_copy(deep=True)

    # Queries

    async def get_workflow_status(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Snapshot of an execution from the active set, else from the state store; None if unknown."""
        entry = self.active.get(execution_id)
        if entry is not None:
            return entry.execution.model_copy(deep=True)
        return await self.state_store.get_execution(execution_id)

    def get_active_workflows(self) -> List[WorkflowExecution]:
        """Executions still held in memory, including recently finished ones."""
        return [execution.model_copy(deep=True) for execution in self.active.list()]

    async def get_workflow_history(self, workflow_id: str, limit: Optional[int] = None) -> List[WorkflowExecution]:
        return await self.state_store.get_history(workflow_id, limit or self.config.history_limit)

    async def handle_event(self, event: DomainEvent) -> List[str]:
        """Start every workflow whose trigger matches a domain event; returns the new execution ids."""
        return await self.trigger_matcher.handle_event(event)

    async def wait_for_execution(self, execution_id: str, timeout: Optional[float] = None) -> WorkflowExecution:
        """
        Wait until an execution reaches a terminal state.

        Raises:
            NotFoundError: If the execution is unknown
            asyncio.TimeoutError: If it does not finish within ``timeout`` seconds
        """
        entry = self.active.get(execution_id)
        if entry is None:
            stored = await self.state_store.get_execution(execution_id)
            if stored is None:
                raise NotFoundError(
                    f"Execution '{execution_id}' not found",
                    resource_type="execution", resource_id=execution_id
                )
            return stored

        await asyncio.wait_for(entry.finished.wait(), timeout=timeout)
        return entry.execution.model_copy(deep=True)

    async def health_check(self) -> Dict[str, Any]:
        executions = self.active.list()
        open_breakers = self.breakers.open_breakers()
        return {
            "status": "healthy" if open_breakers == 0 else "degraded",
            "initialized": self._initialized,
            "registered_workflows": len(self.registry),
            "registered_agents": len(self.capabilities),
            "active_executions": len(executions),
            "running_executions": sum(1 for e in executions if e.status == ExecutionStatusEnum.RUNNING),
            "paused_executions": sum(1 for e in executions if e.status == ExecutionStatusEnum.PAUSED),
            "open_breakers": open_breakers,
            "breakers": self.breakers.snapshot(),
        }

    # Internals

    async def _run(self, entry: ActiveExecution) -> None:
        execution = entry.execution
        async with self._semaphore:
            with logging_context(execution_id=execution.id, workflow_id=execution.workflow_id):
                try:
                    await self._run_batches(entry)
                except StepExecutionError as e:
                    logger.error(f"Execution {execution.id} aborted: {e.message}")
                    await self._finalize(entry, ExecutionStatusEnum.FAILED, failed_step=e.step_id)
                except asyncio.CancelledError:
                    async with entry.lock:
                        if not execution.is_terminal:
                            execution.record_error("orchestrator", "Execution interrupted by shutdown")
                    await self._finalize(entry, ExecutionStatusEnum.CANCELLED)
                    raise
                except Exception as e:
                    logger.error(f"Unexpected error in execution {execution.id}: {e}", exc_info=True)
                    async with entry.lock:
                        execution.record_error("orchestrator", str(e) or type(e).__name__)
                    await self._finalize(entry, ExecutionStatusEnum.FAILED)

    async def _run_batches(self, entry: ActiveExecution) -> None:
        execution = entry.execution

        while True:
            await entry.resume_event.wait()
            async with entry.lock:
                if execution.status == ExecutionStatusEnum.PAUSED:
                    continue
                if execution.status != ExecutionStatusEnum.RUNNING:
                    logger.info(f"Execution {execution.id} stopped scheduling with status {execution.status.value}")
                    return
                if execution.current_step >= len(entry.batches):
                    # Decided under the same lock hold so a pause cannot slip in
                    self._mark_finished(execution, ExecutionStatusEnum.COMPLETED)
                    break
                index = execution.current_step

            batch = entry.batches[index]
            logger.debug(f"Running batch {index + 1}/{len(entry.batches)}: {[step.id for step in batch]}")
            outcomes = await asyncio.gather(
                *(self.step_executor.execute(execution, entry.definition, step, entry.lock) for step in batch),
                return_exceptions=True,
            )

            async with entry.lock:
                execution.current_step = index + 1

            failures = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
            for failure in failures:
                if isinstance(failure, StepExecutionError):
                    raise failure
            if failures:
                raise failures[0]

        await self._announce_finished(entry, ExecutionStatusEnum.COMPLETED)

    async def _finalize(
        self,
        entry: ActiveExecution,
        status: ExecutionStatusEnum,
        failed_step: Optional[str] = None
    ) -> None:
        execution = entry.execution
        async with entry.lock:
            if execution.is_terminal:
                # Cancelled while the last batch was in flight
                return
            self._mark_finished(execution, status)

        await self._announce_finished(entry, status, failed_step)

    @staticmethod
    def _mark_finished(execution: WorkflowExecution, status: ExecutionStatusEnum) -> None:
        execution.status = status
        execution.end_time = datetime.utcnow()

    async def _announce_finished(
        self,
        entry: ActiveExecution,
        status: ExecutionStatusEnum,
        failed_step: Optional[str] = None
    ) -> None:
        execution = entry.execution
        logger.info(f"Execution {execution.id} finished with status {status.value}")
        try:
            await self._persist(execution)
            await self.event_bus.publish(self._terminal_event(entry, status, failed_step))
        finally:
            # Waiters wake only after the terminal event went out
            self.active.mark_terminal(execution.id)

    def _terminal_event(
        self,
        entry: ActiveExecution,
        status: ExecutionStatusEnum,
        failed_step: Optional[str]
    ) -> DomainEvent:
        execution = entry.execution
        event_type = {
            ExecutionStatusEnum.COMPLETED: WORKFLOW_COMPLETED,
            ExecutionStatusEnum.FAILED: WORKFLOW_FAILED,
            ExecutionStatusEnum.CANCELLED: WORKFLOW_CANCELLED,
        }[status]
        payload: Dict[str, Any] = {
            "durationSeconds": execution.duration_seconds,
            "stepStatuses": {sid: r.status.value for sid, r in execution.step_results.items()},
        }
        if failed_step:
            payload["failedStep"] = failed_step
            payload["notificationChannels"] = list(entry.definition.error_handling.notification_channels)
        if execution.errors:
            payload["errors"] = [record.model_dump(mode="json") for record in execution.errors]
        return lifecycle_event(event_type, execution, **payload)

    async def _persist(self, execution: WorkflowExecution) -> None:
        try:
            await self.state_store.store_execution(execution)
        except Exception as e:
            logger.error(f"Failed to store execution {execution.id}: {e}")

    async def _require_active(self, execution_id: str, requested: str) -> ActiveExecution:
        entry = self.active.get(execution_id)
        if entry is not None:
            return entry

        stored = await self.state_store.get_execution(execution_id)
        if stored is not None:
            raise InvalidStateError(
                f"Cannot {requested} execution {execution_id} in status {stored.status.value}",
                execution_id=execution_id,
                current_status=stored.status.value,
                requested=requested,
            )
        raise NotFoundError(
            f"Execution '{execution_id}' not found",
            resource_type="execution", resource_id=execution_id
        )

    @staticmethod
    def _check_transition(
        execution: WorkflowExecution,
        requested: str,
        allowed_from: Sequence[ExecutionStatusEnum]
    ) -> None:
        if execution.status not in allowed_from:
            raise InvalidStateError(
                f"Cannot {requested} execution {execution.id} in status {execution.status.value}",
                execution_id=execution.id,
                current_status=execution.status.value,
                requested=requested,
            )
