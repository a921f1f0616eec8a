"""Execution state stores used for status lookups after eviction and for history."""

import asyncio
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..core.exceptions import StorageError
from ..core.logging import get_logger
from ..models.core import ExecutionStatusEnum, WorkflowExecution
from .database import Database
from .models import WorkflowExecutionModel

logger = get_logger(__name__)


class ExecutionStateStore(ABC):
    """Persistence interface for workflow executions."""

    @abstractmethod
    async def store_execution(self, execution: WorkflowExecution) -> None:
        """Insert or overwrite the stored snapshot of an execution."""

    @abstractmethod
    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Return the stored execution, or None if it was never stored."""

    @abstractmethod
    async def get_history(self, workflow_id: str, limit: int = 50) -> List[WorkflowExecution]:
        """Stored executions of a workflow, most recently started first."""

    async def health_check(self) -> Dict[str, object]:
        return {"status": "healthy", "store": type(self).__name__}

    async def close(self) -> None:
        return None


class InMemoryExecutionStateStore(ExecutionStateStore):
    """Process-local store; snapshots are deep copies so later mutations do not leak in."""

    def __init__(self):
        self._executions: Dict[str, WorkflowExecution] = {}
        self._lock = threading.RLock()

    async def store_execution(self, execution: WorkflowExecution) -> None:
        snapshot = execution.model_copy(deep=True)
        with self._lock:
            self._executions[execution.id] = snapshot

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        with self._lock:
            stored = self._executions.get(execution_id)
        return stored.model_copy(deep=True) if stored is not None else None

    async def get_history(self, workflow_id: str, limit: int = 50) -> List[WorkflowExecution]:
        with self._lock:
            matching = [e for e in self._executions.values() if e.workflow_id == workflow_id]
        matching.sort(key=lambda e: e.start_time, reverse=True)
        return [e.model_copy(deep=True) for e in matching[:limit]]

    def __len__(self) -> int:
        with self._lock:
            return len(self._executions)


class SqlAlchemyExecutionStateStore(ExecutionStateStore):
    """Stores execution snapshots in the ``workflow_executions`` table.

    SQLAlchemy sessions are blocking, so every call runs in a worker thread.
    SQLite connections do not tolerate concurrent sessions, so on SQLite
    those threads take turns.
    """

    def __init__(self, database: Database, create_tables: bool = True):
        self._db = database
        self._sqlite_lock = threading.Lock() if database.is_sqlite else None
        if create_tables:
            self._db.create_tables()

    async def store_execution(self, execution: WorkflowExecution) -> None:
        await asyncio.to_thread(self._serialized, self._store_sync, execution.model_copy(deep=True))

    async def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        return await asyncio.to_thread(self._serialized, self._get_sync, execution_id)

    async def get_history(self, workflow_id: str, limit: int = 50) -> List[WorkflowExecution]:
        return await asyncio.to_thread(self._serialized, self._history_sync, workflow_id, limit)

    async def health_check(self) -> Dict[str, object]:
        def ping():
            with self._db.session() as db:
                return db.query(WorkflowExecutionModel).count()

        count = await asyncio.to_thread(self._serialized, ping)
        return {"status": "healthy", "store": type(self).__name__, "stored_executions": count}

    async def close(self) -> None:
        await asyncio.to_thread(self._serialized, self._db.dispose)

    def _serialized(self, func, *args):
        if self._sqlite_lock is None:
            return func(*args)
        with self._sqlite_lock:
            return func(*args)

    def _store_sync(self, execution: WorkflowExecution) -> None:
        try:
            data = execution.model_dump(mode="json")
            with self._db.session() as db:
                row = db.get(WorkflowExecutionModel, execution.id)
                if row is None:
                    row = WorkflowExecutionModel(id=execution.id)
                    db.add(row)
                row.workflow_id = execution.workflow_id
                row.workflow_version = execution.workflow_version
                row.status = execution.status.value
                row.triggered_by = execution.triggered_by
                row.start_time = execution.start_time
                row.end_time = execution.end_time
                row.current_step = execution.current_step
                row.total_batches = execution.total_batches
                row.depth = execution.depth
                row.context = data["context"]
                row.step_results = data["step_results"]
                row.errors = data["errors"]
                row.chain = data["chain"]
            logger.debug(f"Stored execution {execution.id} with status {execution.status.value}")
        except SQLAlchemyError as e:
            logger.error(f"Database error while storing execution {execution.id}: {e}")
            raise StorageError(f"Failed to store execution {execution.id}: {e}", operation="store_execution")
        except (TypeError, ValueError) as e:
            raise StorageError(
                f"Execution {execution.id} is not serializable: {e}", operation="store_execution"
            )

    def _get_sync(self, execution_id: str) -> Optional[WorkflowExecution]:
        try:
            with self._db.session() as db:
                row = db.get(WorkflowExecutionModel, execution_id)
                return self._to_execution(row) if row is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Database error while reading execution {execution_id}: {e}")
            raise StorageError(f"Failed to read execution {execution_id}: {e}", operation="get_execution")

    def _history_sync(self, workflow_id: str, limit: int) -> List[WorkflowExecution]:
        try:
            with self._db.session() as db:
                rows = (
                    db.query(WorkflowExecutionModel)
                    .filter(WorkflowExecutionModel.workflow_id == workflow_id)
                    .order_by(WorkflowExecutionModel.start_time.desc())
                    .limit(limit)
                    .all()
                )
                return [self._to_execution(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Database error while reading history of {workflow_id}: {e}")
            raise StorageError(f"Failed to read history of {workflow_id}: {e}", operation="get_history")

    @staticmethod
    def _to_execution(row: WorkflowExecutionModel) -> WorkflowExecution:
        return WorkflowExecution.model_validate({
            "id": row.id,
            "workflow_id": row.workflow_id,
            "workflow_version": row.workflow_version,
            "status": ExecutionStatusEnum(row.status),
            "start_time": row.start_time,
            "end_time": row.end_time,
            "context": row.context or {},
            "step_results": row.step_results or {},
            "current_step": row.current_step,
            "total_batches": row.total_batches,
            "triggered_by": row.triggered_by,
            "errors": row.errors or [],
            "depth": row.depth,
            "chain": row.chain or [],
        })
