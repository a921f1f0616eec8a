"""Starts workflows whose triggers match incoming domain events."""

from typing import TYPE_CHECKING, List, Optional

from ..models.core import DomainEvent
from .conditions import evaluate
from .event_bus import WILDCARD, EventBus
from .logging import get_logger
from .registry import WorkflowDefinitionRegistry

if TYPE_CHECKING:
    from .orchestrator import WorkflowOrchestrator

logger = get_logger(__name__)


class TriggerMatcher:
    """Matches events against definition triggers and starts executions.

    Each definition starts at most once per event. Events that have already
    passed through ``max_trigger_depth`` workflows, or whose chain already
    contains the definition, do not start it again.
    """

    def __init__(
        self,
        registry: WorkflowDefinitionRegistry,
        orchestrator: "WorkflowOrchestrator",
        max_trigger_depth: int = 5
    ):
        self.registry = registry
        self.orchestrator = orchestrator
        self.max_trigger_depth = max_trigger_depth
        self._bus: Optional[EventBus] = None

    def attach(self, event_bus: EventBus) -> None:
        """Listen to every event published on the bus."""
        if self._bus is event_bus:
            return
        event_bus.subscribe(WILDCARD, self.handle_event)
        self._bus = event_bus

    def detach(self) -> None:
        if self._bus is not None:
            self._bus.unsubscribe(WILDCARD, self.handle_event)
            self._bus = None

    async def handle_event(self, event: DomainEvent) -> List[str]:
        """
        Start every definition whose trigger matches the event.

        Args:
            event: Incoming domain or lifecycle event

        Returns:
            Ids of the executions that were started
        """
        started: List[str] = []

        for definition in self.registry.find_by_event(event.type):
            matching = [
                trigger for trigger in definition.triggers
                if trigger.event == event.type and evaluate(trigger.conditions, event.payload)
            ]
            if not matching:
                logger.debug(f"Event {event.type} did not satisfy trigger conditions of {definition.id}")
                continue

            if event.depth >= self.max_trigger_depth:
                logger.warning(
                    f"Not starting {definition.id} from {event.type}: trigger depth {event.depth} "
                    f"reached the limit of {self.max_trigger_depth}"
                )
                continue
            if definition.id in event.chain:
                logger.warning(
                    f"Not starting {definition.id} from {event.type}: workflow already in trigger chain {event.chain}"
                )
                continue

            try:
                execution_id = await self.orchestrator.start_workflow(
                    definition.id,
                    dict(event.payload),
                    triggered_by=event.type,
                    depth=event.depth,
                    chain=event.chain,
                )
            except Exception as e:
                logger.error(f"Failed to start workflow {definition.id} for event {event.type}: {e}", exc_info=True)
                continue

            started.append(execution_id)

        if started:
            logger.info(f"Event {event.type} started {len(started)} workflow(s): {started}")
        return started
