"""Database models and execution state stores."""

from .database import Base, Database
from .models import WorkflowExecutionModel
from .state_store import (
    ExecutionStateStore,
    InMemoryExecutionStateStore,
    SqlAlchemyExecutionStateStore,
)

__all__ = [
    "Base",
    "Database",
    "WorkflowExecutionModel",
    "ExecutionStateStore",
    "InMemoryExecutionStateStore",
    "SqlAlchemyExecutionStateStore",
]
