"""Pytest configuration and fixtures."""

import asyncio
from typing import Any, Dict, List

import pytest
import pytest_asyncio

from salesflow.config import get_testing_config
from salesflow.core.capabilities import CapabilityRegistry
from salesflow.core.event_bus import WILDCARD, EventBus
from salesflow.core.orchestrator import WorkflowOrchestrator
from salesflow.core.registry import WorkflowDefinitionRegistry
from salesflow.models.core import DomainEvent, WorkflowDefinition
from salesflow.storage import InMemoryExecutionStateStore


class RecordingAgent:
    """Capability handlers that record every call they receive."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.failures_remaining = 0
        self.release = asyncio.Event()
        self.release.set()

    def record(self, action: str, params: Dict[str, Any]) -> None:
        self.calls.append({"action": action, "params": dict(params)})

    def count(self, action: str) -> int:
        return sum(1 for call in self.calls if call["action"] == action)

    async def echo(self, params):
        self.record("echo", params)
        return {"echoed": params.get("value")}

    async def always_fail(self, params):
        self.record("always_fail", params)
        raise RuntimeError("capability exploded")

    async def flaky(self, params):
        self.record("flaky", params)
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise ConnectionError("temporary outage")
        return {"recovered": True}

    async def slow(self, params):
        self.record("slow", params)
        await asyncio.sleep(params.get("sleep", 5))
        return {"slow": True}

    async def gated(self, params):
        """Blocks until the test sets ``release``."""
        self.record("gated", params)
        await self.release.wait()
        return {"gated": True}

    def sync_echo(self, params):
        self.record("sync_echo", params)
        return {"sync": True, "value": params.get("value")}

    def table(self):
        return {
            "echo": self.echo,
            "alwaysFail": self.always_fail,
            "flaky": self.flaky,
            "slow": self.slow,
            "gated": self.gated,
            "syncEcho": self.sync_echo,
        }


def make_definition(steps, workflow_id="test-workflow", triggers=None, error_handling=None, **kwargs) -> WorkflowDefinition:
    """Build a definition from camelCase step dicts targeting the ``test`` agent."""
    data = {
        "id": workflow_id,
        "name": kwargs.pop("name", workflow_id.replace("-", " ").title()),
        "triggers": triggers or [],
        "steps": [{"agent": "test", **step} for step in steps],
    }
    if error_handling is not None:
        data["errorHandling"] = error_handling
    data.update(kwargs)
    return WorkflowDefinition.model_validate(data)


@pytest.fixture
def config():
    """Testing configuration with fast retries."""
    return get_testing_config()


@pytest.fixture
def agent():
    return RecordingAgent()


@pytest.fixture
def capabilities(agent):
    registry = CapabilityRegistry()
    registry.register_agent("test", agent.table(), description="Recording test agent")
    return registry


@pytest.fixture
def registry(capabilities):
    return WorkflowDefinitionRegistry(capabilities)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def recorded_events(event_bus):
    """Every event published on the bus, in order."""
    events: List[DomainEvent] = []
    event_bus.subscribe(WILDCARD, events.append)
    return events


@pytest.fixture
def state_store():
    return InMemoryExecutionStateStore()


@pytest_asyncio.fixture
async def orchestrator(registry, capabilities, event_bus, state_store, config):
    """Initialized orchestrator; shut down after the test."""
    instance = WorkflowOrchestrator(
        registry=registry,
        capabilities=capabilities,
        event_bus=event_bus,
        state_store=state_store,
        config=config,
    )
    await instance.initialize()
    yield instance
    await instance.shutdown()
