"""Tests for the workflow orchestrator: runs, lifecycle control and event triggers."""

import asyncio

import pytest

from salesflow.agents import register_default_workflows, register_demo_agents
from salesflow.core.event_bus import (
    STEP_FAILED,
    WORKFLOW_COMPLETED,
    WORKFLOW_FAILED,
    WORKFLOW_PAUSED,
    WORKFLOW_STARTED,
)
from salesflow.core.exceptions import InvalidStateError, NotFoundError, StorageError, WorkflowValidationError
from salesflow.core.orchestrator import WorkflowOrchestrator
from salesflow.core.registry import WorkflowDefinitionRegistry
from salesflow.models.core import DomainEvent, ExecutionStatusEnum, SkipReason, StepStatusEnum
from salesflow.storage import InMemoryExecutionStateStore

from .conftest import make_definition


async def wait_until(predicate, timeout=2.0):
    """Poll until ``predicate()`` is true."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class TestWorkflowRuns:

    @pytest.mark.asyncio
    async def test_runs_batches_to_completion(self, orchestrator, agent, recorded_events):
        orchestrator.register_workflow(make_definition([
            {"id": "a", "action": "echo"},
            {"id": "b", "action": "syncEcho", "dependsOn": ["a"]},
            {"id": "c", "action": "echo", "dependsOn": ["a"]},
        ]))

        execution_id = await orchestrator.start_workflow("test-workflow", {"value": 7})
        execution = await orchestrator.wait_for_execution(execution_id, timeout=2)

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert execution.current_step == execution.total_batches == 2
        assert {r.status for r in execution.step_results.values()} == {StepStatusEnum.COMPLETED}
        assert execution.end_time is not None
        assert recorded_events[0].type == WORKFLOW_STARTED
        assert recorded_events[-1].type == WORKFLOW_COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.start_workflow("missing")

    @pytest.mark.asyncio
    async def test_continue_policy_completes_despite_failure(self, orchestrator, agent):
        orchestrator.register_workflow(make_definition(
            [
                {"id": "a", "action": "alwaysFail"},
                {"id": "b", "action": "echo", "dependsOn": ["a"]},
                {"id": "c", "action": "echo"},
            ],
            error_handling={"onStepFailure": "continue"},
        ))

        execution_id = await orchestrator.start_workflow("test-workflow")
        execution = await orchestrator.wait_for_execution(execution_id, timeout=2)

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert execution.step_results["a"].status == StepStatusEnum.FAILED
        assert execution.step_results["a"].attempts == 3
        assert execution.step_results["b"].skip_reason == SkipReason.UPSTREAM_FAILURE
        assert execution.step_results["c"].status == StepStatusEnum.COMPLETED
        assert [record.step for record in execution.errors] == ["a"]

    @pytest.mark.asyncio
    async def test_critical_failure_fails_execution(self, orchestrator, agent, recorded_events):
        orchestrator.register_workflow(make_definition(
            [
                {"id": "a", "action": "alwaysFail", "critical": True, "retryPolicy": {"maxRetries": 0}},
                {"id": "b", "action": "echo", "dependsOn": ["a"]},
            ],
            error_handling={"onCriticalFailure": "stop", "notificationChannels": ["sales-ops"]},
        ))

        execution_id = await orchestrator.start_workflow("test-workflow")
        execution = await orchestrator.wait_for_execution(execution_id, timeout=2)

        assert execution.status == ExecutionStatusEnum.FAILED
        assert "b" not in execution.step_results
        assert agent.count("echo") == 0
        failed = [e for e in recorded_events if e.type == WORKFLOW_FAILED][0]
        assert failed.payload["failedStep"] == "a"
        assert failed.payload["notificationChannels"] == ["sales-ops"]
        assert any(e.type == STEP_FAILED for e in recorded_events)

    @pytest.mark.asyncio
    async def test_condition_skip_makes_no_call(self, orchestrator, agent):
        orchestrator.register_workflow(make_definition([
            {"id": "demo", "action": "echo", "conditions": {"autoSchedulingEnabled": True}},
        ]))

        execution_id = await orchestrator.start_workflow("test-workflow", {"autoSchedulingEnabled": False})
        execution = await orchestrator.wait_for_execution(execution_id, timeout=2)

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert execution.step_results["demo"].status == StepStatusEnum.SKIPPED
        assert agent.calls == []

    @pytest.mark.asyncio
    async def test_finished_execution_is_persisted(self, orchestrator, state_store):
        orchestrator.register_workflow(make_definition([{"id": "a", "action": "echo"}]))
        execution_id = await orchestrator.start_workflow("test-workflow")
        await orchestrator.wait_for_execution(execution_id, timeout=2)

        stored = await state_store.get_execution(execution_id)
        assert stored.status == ExecutionStatusEnum.COMPLETED

        history = await orchestrator.get_workflow_history("test-workflow")
        assert [e.id for e in history] == [execution_id]

    @pytest.mark.asyncio
    async def test_status_falls_back_to_store_after_eviction(self, orchestrator):
        orchestrator.register_workflow(make_definition([{"id": "a", "action": "echo"}]))
        execution_id = await orchestrator.start_workflow("test-workflow")
        await orchestrator.wait_for_execution(execution_id, timeout=2)

        orchestrator.active.retention_seconds = 0
        assert orchestrator.active.evict_expired() == 1
        assert orchestrator.get_active_workflows() == []

        status = await orchestrator.get_workflow_status(execution_id)
        assert status.status == ExecutionStatusEnum.COMPLETED
        assert await orchestrator.get_workflow_status("unknown") is None

        with pytest.raises(InvalidStateError):
            await orchestrator.pause_workflow(execution_id)

    @pytest.mark.asyncio
    async def test_unregister_does_not_affect_running_execution(self, orchestrator, agent):
        agent.release.clear()
        orchestrator.register_workflow(make_definition([
            {"id": "a", "action": "gated"},
            {"id": "b", "action": "echo", "dependsOn": ["a"]},
        ]))
        execution_id = await orchestrator.start_workflow("test-workflow")
        await wait_until(lambda: agent.count("gated") == 1)

        orchestrator.unregister_workflow("test-workflow")
        agent.release.set()
        execution = await orchestrator.wait_for_execution(execution_id, timeout=2)

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert agent.count("echo") == 1


class TestLifecycleControl:

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, orchestrator, agent):
        agent.release.clear()
        orchestrator.register_workflow(make_definition([
            {"id": "a", "action": "gated"},
            {"id": "b", "action": "echo", "dependsOn": ["a"]},
        ]))
        execution_id = await orchestrator.start_workflow("test-workflow")
        await wait_until(lambda: agent.count("gated") == 1)

        paused = await orchestrator.pause_workflow(execution_id)
        assert paused.status == ExecutionStatusEnum.PAUSED

        # The in-flight batch finishes, the next one waits
        agent.release.set()
        await wait_until(lambda: orchestrator.active.get(execution_id).execution.current_step == 1)
        await asyncio.sleep(0.05)
        assert agent.count("echo") == 0
        status = await orchestrator.get_workflow_status(execution_id)
        assert status.status == ExecutionStatusEnum.PAUSED

        resumed = await orchestrator.resume_workflow(execution_id)
        assert resumed.status == ExecutionStatusEnum.RUNNING

        execution = await orchestrator.wait_for_execution(execution_id, timeout=2)
        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert agent.count("echo") == 1

    @pytest.mark.asyncio
    async def test_cancel_stops_scheduling(self, orchestrator, agent):
        agent.release.clear()
        orchestrator.register_workflow(make_definition([
            {"id": "a", "action": "gated"},
            {"id": "b", "action": "echo", "dependsOn": ["a"]},
        ]))
        execution_id = await orchestrator.start_workflow("test-workflow")
        await wait_until(lambda: agent.count("gated") == 1)

        cancelled = await orchestrator.cancel_workflow(execution_id)
        assert cancelled.status == ExecutionStatusEnum.CANCELLED

        agent.release.set()
        execution = await orchestrator.wait_for_execution(execution_id, timeout=2)
        await asyncio.sleep(0.05)

        assert execution.status == ExecutionStatusEnum.CANCELLED
        assert agent.count("echo") == 0

    @pytest.mark.asyncio
    async def test_cancel_paused_execution(self, orchestrator, agent):
        agent.release.clear()
        orchestrator.register_workflow(make_definition([
            {"id": "a", "action": "gated"},
            {"id": "b", "action": "echo", "dependsOn": ["a"]},
        ]))
        execution_id = await orchestrator.start_workflow("test-workflow")
        await wait_until(lambda: agent.count("gated") == 1)
        await orchestrator.pause_workflow(execution_id)
        agent.release.set()

        await orchestrator.cancel_workflow(execution_id)
        execution = await orchestrator.wait_for_execution(execution_id, timeout=2)

        assert execution.status == ExecutionStatusEnum.CANCELLED
        assert agent.count("echo") == 0

    @pytest.mark.asyncio
    async def test_invalid_transitions(self, orchestrator):
        orchestrator.register_workflow(make_definition([{"id": "a", "action": "echo"}]))
        execution_id = await orchestrator.start_workflow("test-workflow")
        await orchestrator.wait_for_execution(execution_id, timeout=2)

        with pytest.raises(InvalidStateError) as exc_info:
            await orchestrator.pause_workflow(execution_id)
        assert exc_info.value.details["current_status"] == "completed"

        with pytest.raises(InvalidStateError):
            await orchestrator.resume_workflow(execution_id)
        with pytest.raises(InvalidStateError):
            await orchestrator.cancel_workflow(execution_id)

    @pytest.mark.asyncio
    async def test_resume_requires_paused(self, orchestrator, agent):
        agent.release.clear()
        orchestrator.register_workflow(make_definition([{"id": "a", "action": "gated"}]))
        execution_id = await orchestrator.start_workflow("test-workflow")

        with pytest.raises(InvalidStateError):
            await orchestrator.resume_workflow(execution_id)
        agent.release.set()
        await orchestrator.wait_for_execution(execution_id, timeout=2)

    @pytest.mark.asyncio
    async def test_unknown_execution(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.pause_workflow("nope")


class TestEventTriggers:

    @pytest.mark.asyncio
    async def test_high_value_lead_runs_end_to_end(self, orchestrator, capabilities, registry):
        register_demo_agents(capabilities)
        register_default_workflows(registry)

        started = await orchestrator.handle_event(DomainEvent(
            type="lead.created",
            payload={"leadId": "L-1", "leadScore": 85, "company": "Acme", "dealValue": 50000},
        ))

        assert len(started) == 1
        execution = await orchestrator.wait_for_execution(started[0], timeout=5)
        assert execution.workflow_id == "high-value-lead-processing"
        assert execution.triggered_by == "lead.created"
        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert len(execution.step_results) == 4
        assert all(r.status == StepStatusEnum.COMPLETED for r in execution.step_results.values())

    @pytest.mark.asyncio
    async def test_trigger_conditions_filter_events(self, orchestrator, capabilities, registry):
        register_demo_agents(capabilities)
        register_default_workflows(registry)

        started = await orchestrator.handle_event(DomainEvent(
            type="lead.created", payload={"leadId": "L-2", "leadScore": 75}
        ))

        assert started == []
        assert orchestrator.get_active_workflows() == []

    @pytest.mark.asyncio
    async def test_unmatched_event_type(self, orchestrator, capabilities, registry):
        register_demo_agents(capabilities)
        register_default_workflows(registry)
        assert await orchestrator.handle_event(DomainEvent(type="deal.closed")) == []

    @pytest.mark.asyncio
    async def test_bus_events_start_workflows(self, orchestrator, event_bus):
        orchestrator.register_workflow(make_definition(
            [{"id": "a", "action": "echo"}], triggers=[{"event": "deal.updated"}]
        ))

        await event_bus.emit("deal.updated", {"value": 1})
        await wait_until(lambda: len(orchestrator.get_active_workflows()) == 1)

    @pytest.mark.asyncio
    async def test_lifecycle_event_chains_workflows(self, orchestrator, recorded_events):
        orchestrator.register_workflow(make_definition(
            [{"id": "a", "action": "echo"}], workflow_id="first", triggers=[{"event": "deal.updated"}]
        ))
        orchestrator.register_workflow(make_definition(
            [{"id": "b", "action": "echo"}], workflow_id="second",
            triggers=[{"event": WORKFLOW_COMPLETED, "conditions": {"workflowId": "first"}}],
        ))

        started = await orchestrator.handle_event(DomainEvent(type="deal.updated"))
        await orchestrator.wait_for_execution(started[0], timeout=2)
        await wait_until(lambda: any(e.workflow_id == "second" for e in orchestrator.get_active_workflows()))

        second = next(e for e in orchestrator.get_active_workflows() if e.workflow_id == "second")
        assert second.triggered_by == WORKFLOW_COMPLETED
        assert second.depth == 1
        assert second.chain == ["first"]

    @pytest.mark.asyncio
    async def test_self_triggering_workflow_does_not_loop(self, orchestrator):
        orchestrator.register_workflow(make_definition(
            [{"id": "a", "action": "echo"}], workflow_id="loop",
            triggers=[{"event": "deal.updated"}, {"event": WORKFLOW_COMPLETED}],
        ))

        started = await orchestrator.handle_event(DomainEvent(type="deal.updated"))
        await orchestrator.wait_for_execution(started[0], timeout=2)
        await asyncio.sleep(0.05)

        assert len(orchestrator.get_active_workflows()) == 1

    @pytest.mark.asyncio
    async def test_depth_limit(self, orchestrator):
        orchestrator.register_workflow(make_definition(
            [{"id": "a", "action": "echo"}], triggers=[{"event": "deal.updated"}]
        ))
        deep = DomainEvent(type="deal.updated", depth=orchestrator.config.max_trigger_depth)
        assert await orchestrator.handle_event(deep) == []

    @pytest.mark.asyncio
    async def test_workflow_started_once_per_event(self, orchestrator):
        orchestrator.register_workflow(make_definition(
            [{"id": "a", "action": "echo"}],
            triggers=[{"event": "deal.updated"}, {"event": "deal.updated", "conditions": {"stage": "won"}}],
        ))
        started = await orchestrator.handle_event(DomainEvent(type="deal.updated", payload={"stage": "won"}))
        assert len(started) == 1


class TestOrchestratorHealth:

    @pytest.mark.asyncio
    async def test_health_check(self, orchestrator):
        health = await orchestrator.health_check()
        assert health["status"] == "healthy"
        assert health["initialized"] is True
        assert health["registered_agents"] == 1



class FailingStateStore(InMemoryExecutionStateStore):
    """State store whose writes always fail."""

    def __init__(self):
        super().__init__()
        self.write_attempts = 0

    async def store_execution(self, execution):
        self.write_attempts += 1
        raise StorageError("disk full", operation="store_execution")


def cyclic_definition(workflow_id="cyclic", triggers=None):
    return make_definition(
        [
            {"id": "a", "action": "echo", "dependsOn": ["b"]},
            {"id": "b", "action": "echo", "dependsOn": ["a"]},
        ],
        workflow_id=workflow_id,
        triggers=triggers,
    )


class TestCollaborators:

    @pytest.mark.asyncio
    async def test_empty_injected_collaborators_are_kept(self, capabilities, config):
        registry = WorkflowDefinitionRegistry(capabilities)
        state_store = InMemoryExecutionStateStore()
        orchestrator = WorkflowOrchestrator(
            registry=registry, capabilities=capabilities, state_store=state_store, config=config
        )
        assert orchestrator.registry is registry
        assert orchestrator.state_store is state_store
        assert orchestrator.capabilities is capabilities

        # Registered on the caller's registry after construction
        registry.register(make_definition([{"id": "a", "action": "echo"}], triggers=[{"event": "lead.created"}]))
        await orchestrator.initialize()
        try:
            started = await orchestrator.handle_event(DomainEvent(type="lead.created", payload={"value": 1}))
            assert len(started) == 1
            await orchestrator.wait_for_execution(started[0], timeout=2)
            assert len(state_store) == 1
        finally:
            await orchestrator.shutdown()

    @pytest.mark.asyncio
    async def test_fixture_orchestrator_uses_given_components(
        self, orchestrator, registry, capabilities, event_bus, state_store
    ):
        assert orchestrator.registry is registry
        assert orchestrator.capabilities is capabilities
        assert orchestrator.event_bus is event_bus
        assert orchestrator.state_store is state_store

    @pytest.mark.asyncio
    async def test_store_failures_do_not_abort_execution(self, registry, capabilities, config):
        store = FailingStateStore()
        orchestrator = WorkflowOrchestrator(
            registry=registry, capabilities=capabilities, state_store=store, config=config
        )
        orchestrator.register_workflow(make_definition([
            {"id": "a", "action": "echo"},
            {"id": "b", "action": "echo", "dependsOn": ["a"]},
        ]))
        await orchestrator.initialize()
        try:
            execution_id = await orchestrator.start_workflow("test-workflow", {"value": 3})
            execution = await orchestrator.wait_for_execution(execution_id, timeout=2)
        finally:
            await orchestrator.shutdown()

        assert execution.status == ExecutionStatusEnum.COMPLETED
        assert store.write_attempts == 2
        assert len(store) == 0


class TestStartValidation:

    @pytest.mark.asyncio
    async def test_start_of_cyclic_definition_invokes_nothing(self, orchestrator, agent):
        # Bypasses registration-time validation
        orchestrator.registry._definitions["cyclic"] = cyclic_definition()

        with pytest.raises(WorkflowValidationError):
            await orchestrator.start_workflow("cyclic")

        await asyncio.sleep(0.02)
        assert agent.calls == []
        assert orchestrator.get_active_workflows() == []

    @pytest.mark.asyncio
    async def test_failed_start_does_not_block_other_matches(self, orchestrator, agent):
        orchestrator.registry._definitions["cyclic"] = cyclic_definition(triggers=[{"event": "deal.updated"}])
        orchestrator.register_workflow(make_definition(
            [{"id": "a", "action": "echo"}],
            workflow_id="healthy",
            triggers=[{"event": "deal.updated"}],
        ))

        started = await orchestrator.handle_event(DomainEvent(type="deal.updated", payload={"value": 2}))

        assert len(started) == 1
        execution = await orchestrator.wait_for_execution(started[0], timeout=2)
        assert execution.workflow_id == "healthy"
        assert execution.status == ExecutionStatusEnum.COMPLETED


class TestPauseAroundCompletion:

    @pytest.mark.asyncio
    async def test_pause_during_final_batch_holds_completion(self, orchestrator, agent, recorded_events):
        agent.release.clear()
        orchestrator.register_workflow(make_definition([{"id": "only", "action": "gated"}]))
        execution_id = await orchestrator.start_workflow("test-workflow")
        await wait_until(lambda: agent.count("gated") == 1)

        await orchestrator.pause_workflow(execution_id)
        agent.release.set()
        await wait_until(lambda: orchestrator.active.get(execution_id).execution.current_step == 1)
        await asyncio.sleep(0.05)

        status = await orchestrator.get_workflow_status(execution_id)
        assert status.status == ExecutionStatusEnum.PAUSED
        assert WORKFLOW_COMPLETED not in [event.type for event in recorded_events]

        await orchestrator.resume_workflow(execution_id)
        execution = await orchestrator.wait_for_execution(execution_id, timeout=2)
        assert execution.status == ExecutionStatusEnum.COMPLETED

    @pytest.mark.asyncio
    async def test_completed_execution_cannot_be_paused(self, orchestrator, recorded_events):
        orchestrator.register_workflow(make_definition([{"id": "a", "action": "echo"}]))
        execution_id = await orchestrator.start_workflow("test-workflow")
        await orchestrator.wait_for_execution(execution_id, timeout=2)

        with pytest.raises(InvalidStateError):
            await orchestrator.pause_workflow(execution_id)

        types = [event.type for event in recorded_events]
        assert WORKFLOW_PAUSED not in types
        assert types[-1] == WORKFLOW_COMPLETED
