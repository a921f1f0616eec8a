"""In-process publish/subscribe bus for domain and lifecycle events."""

import inspect
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Union

from ..models.core import DomainEvent, WorkflowExecution
from .logging import get_logger

logger = get_logger(__name__)

WILDCARD = "*"

# Lifecycle events published by the orchestrator
WORKFLOW_STARTED = "workflow.started"
STEP_COMPLETED = "workflow.step_completed"
STEP_FAILED = "workflow.step_failed"
STEP_SKIPPED = "workflow.step_skipped"
WORKFLOW_COMPLETED = "workflow.completed"
WORKFLOW_FAILED = "workflow.failed"
WORKFLOW_PAUSED = "workflow.paused"
WORKFLOW_RESUMED = "workflow.resumed"
WORKFLOW_CANCELLED = "workflow.cancelled"

EventHandler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


def lifecycle_event(event_type: str, execution: WorkflowExecution, **payload: Any) -> DomainEvent:
    """Build a lifecycle event for an execution, one hop deeper in its trigger chain."""
    body = {
        "executionId": execution.id,
        "workflowId": execution.workflow_id,
        "status": execution.status.value,
    }
    body.update(payload)
    return DomainEvent(
        type=event_type,
        payload=body,
        depth=execution.depth + 1,
        chain=[*execution.chain, execution.workflow_id],
    )


class EventBus:
    """Delivers events to subscribers in subscription order.

    A failing subscriber is logged and never affects the other subscribers
    or the publisher.
    """

    def __init__(self, history_size: int = 200):
        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._recent: Deque[DomainEvent] = deque(maxlen=history_size)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Subscribe a handler to one event type, or to all with ``"*"``."""
        if not callable(handler):
            raise TypeError("Event handler must be callable")
        self._subscribers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__qualname__', handler)!s} to {event_type}")

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def subscriber_count(self, event_type: Optional[str] = None) -> int:
        if event_type is None:
            return sum(len(handlers) for handlers in self._subscribers.values())
        return len(self._subscribers.get(event_type, []))

    async def publish(self, event: DomainEvent) -> None:
        """Deliver an event to exact-type subscribers, then wildcard subscribers."""
        self._recent.append(event)
        handlers = list(self._subscribers.get(event.type, []))
        if event.type != WILDCARD:
            handlers.extend(self._subscribers.get(WILDCARD, []))

        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Event handler {getattr(handler, '__qualname__', handler)!s} failed for {event.type}: {e}",
                    exc_info=True
                )

    async def emit(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None,
        depth: int = 0,
        chain: Sequence[str] = ()
    ) -> DomainEvent:
        """Build and publish an event; returns the published event."""
        event = DomainEvent(type=event_type, payload=payload or {}, depth=depth, chain=list(chain))
        await self.publish(event)
        return event

    def recent_events(self, limit: int = 50, event_type: Optional[str] = None) -> List[DomainEvent]:
        """Most recent events, oldest first."""
        events = [e for e in self._recent if event_type is None or e.type == event_type]
        return events[-limit:] if limit > 0 else []
