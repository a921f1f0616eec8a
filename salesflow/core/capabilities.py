"""Capability registry mapping (agent, capability) pairs to handlers."""

import asyncio
import inspect
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .exceptions import CapabilityNotFoundError, ConfigurationError
from .logging import get_logger

logger = get_logger(__name__)

CapabilityHandler = Callable[[Dict[str, Any]], Any]


@dataclass
class AgentEntry:
    """Capability table of one worker agent."""
    agent_id: str
    description: str = ""
    capabilities: Dict[str, CapabilityHandler] = field(default_factory=dict)


class CapabilityRegistry:
    """Explicit capability tables for the worker agents a workflow step can call.

    Handlers take the merged parameter dictionary and return the step output.
    Coroutine functions are awaited; plain functions run in a worker thread so
    that step timeouts still apply to them.
    """

    def __init__(self):
        self._agents: Dict[str, AgentEntry] = {}
        self._lock = threading.RLock()

    def register_agent(
        self,
        agent_id: str,
        capabilities: Mapping[str, CapabilityHandler],
        description: str = ""
    ) -> None:
        """Register an agent with its capability table, replacing any previous table.

        Args:
            agent_id: Agent identifier used by workflow steps
            capabilities: Capability name to handler mapping
            description: Optional description of the agent

        Raises:
            ConfigurationError: If the id is empty or a handler is not callable
        """
        if not agent_id or not agent_id.strip():
            raise ConfigurationError("Agent id cannot be empty", config_key="agent_id")
        agent_id = agent_id.strip()

        table: Dict[str, CapabilityHandler] = {}
        for name, handler in capabilities.items():
            self._check_handler(agent_id, name, handler)
            table[name.strip()] = handler

        with self._lock:
            if agent_id in self._agents:
                logger.info(f"Replacing capability table of agent '{agent_id}'")
            self._agents[agent_id] = AgentEntry(agent_id=agent_id, description=description, capabilities=table)

        logger.info(f"Registered agent '{agent_id}' with capabilities: {sorted(table)}")

    def register_capability(self, agent_id: str, name: str, handler: CapabilityHandler) -> None:
        """Add or replace a single capability, creating the agent entry if needed."""
        self._check_handler(agent_id, name, handler)
        with self._lock:
            entry = self._agents.setdefault(agent_id, AgentEntry(agent_id=agent_id))
            entry.capabilities[name.strip()] = handler
        logger.debug(f"Registered capability {agent_id}.{name}")

    def unregister_agent(self, agent_id: str) -> bool:
        """Remove an agent; returns False when it was not registered."""
        with self._lock:
            removed = self._agents.pop(agent_id, None)
        if removed is not None:
            logger.info(f"Unregistered agent '{agent_id}'")
        return removed is not None

    def has_capability(self, agent_id: str, name: str) -> bool:
        with self._lock:
            entry = self._agents.get(agent_id)
            return entry is not None and name in entry.capabilities

    def get_handler(self, agent_id: str, name: str) -> CapabilityHandler:
        """
        Look up a capability handler.

        Raises:
            CapabilityNotFoundError: If the agent or capability is unknown
        """
        with self._lock:
            entry = self._agents.get(agent_id)
            if entry is None or name not in entry.capabilities:
                raise CapabilityNotFoundError(agent_id, name)
            return entry.capabilities[name]

    def list_agents(self) -> List[Dict[str, Any]]:
        """Describe every registered agent and its capability names."""
        with self._lock:
            return [
                {
                    "agent_id": entry.agent_id,
                    "description": entry.description,
                    "capabilities": sorted(entry.capabilities),
                }
                for entry in sorted(self._agents.values(), key=lambda e: e.agent_id)
            ]

    async def invoke(self, agent_id: str, name: str, parameters: Optional[Dict[str, Any]] = None) -> Any:
        """Invoke a capability with the given parameters and return its output."""
        handler = self.get_handler(agent_id, name)
        parameters = parameters or {}

        if inspect.iscoroutinefunction(handler):
            return await handler(parameters)

        result = await asyncio.to_thread(handler, parameters)
        if inspect.isawaitable(result):
            result = await result
        return result

    @staticmethod
    def _check_handler(agent_id: str, name: str, handler: Any) -> None:
        if not name or not name.strip():
            raise ConfigurationError(f"Capability name for agent '{agent_id}' cannot be empty")
        if not callable(handler):
            raise ConfigurationError(f"Capability '{agent_id}.{name}' must be callable")
        try:
            sig = inspect.signature(handler)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Cannot inspect handler signature for '{agent_id}.{name}': {e}")
        if len(sig.parameters) == 0:
            raise ConfigurationError(
                f"Capability '{agent_id}.{name}' must accept the parameter dictionary"
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._agents)
