"""In-memory set of active and recently finished executions."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..models.core import WorkflowDefinition, WorkflowExecution, WorkflowStep
from .logging import get_logger

logger = get_logger(__name__)


@dataclass
class ActiveExecution:
    """An execution together with the primitives that coordinate it."""
    execution: WorkflowExecution
    definition: WorkflowDefinition
    batches: List[List[WorkflowStep]]
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    resume_event: asyncio.Event = field(default_factory=asyncio.Event)
    finished: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None
    terminal_at: Optional[float] = None

    def __post_init__(self):
        # Not paused until someone pauses it
        self.resume_event.set()


class ActiveExecutionStore:
    """Owns the active set; finished executions are evicted after a retention period."""

    def __init__(
        self,
        retention_seconds: float = 300.0,
        sweep_interval: float = 30.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.retention_seconds = retention_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: Dict[str, ActiveExecution] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def add(
        self,
        execution: WorkflowExecution,
        definition: WorkflowDefinition,
        batches: List[List[WorkflowStep]]
    ) -> ActiveExecution:
        entry = ActiveExecution(execution=execution, definition=definition, batches=batches)
        self._entries[execution.id] = entry
        return entry

    def get(self, execution_id: str) -> Optional[ActiveExecution]:
        return self._entries.get(execution_id)

    def entries(self) -> List[ActiveExecution]:
        return list(self._entries.values())

    def list(self) -> List[WorkflowExecution]:
        return [entry.execution for entry in self._entries.values()]

    def mark_terminal(self, execution_id: str, now: Optional[float] = None) -> None:
        """Start the retention clock and wake anyone waiting for the execution."""
        entry = self._entries.get(execution_id)
        if entry is None:
            return
        if entry.terminal_at is None:
            entry.terminal_at = now if now is not None else self._clock()
        entry.finished.set()
        # A paused execution that was cancelled must not stay blocked
        entry.resume_event.set()

    def evict_expired(self, now: Optional[float] = None) -> int:
        """Drop terminal executions older than the retention period; returns how many were dropped."""
        now = now if now is not None else self._clock()
        expired = [
            execution_id for execution_id, entry in self._entries.items()
            if entry.terminal_at is not None and now - entry.terminal_at >= self.retention_seconds
        ]
        for execution_id in expired:
            del self._entries[execution_id]
        if expired:
            logger.debug(f"Evicted {len(expired)} finished executions from the active set")
        return len(expired)

    async def initialize(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="salesflow-execution-sweeper")
            logger.info(
                f"Execution sweeper started (retention {self.retention_seconds}s, interval {self.sweep_interval}s)"
            )

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
            logger.info("Execution sweeper stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.evict_expired()
            except Exception as e:
                logger.error(f"Execution sweep failed: {e}", exc_info=True)

    def __contains__(self, execution_id: str) -> bool:
        return execution_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
