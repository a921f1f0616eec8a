"""SQLAlchemy models for persisted workflow executions."""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String

from .database import Base


class WorkflowExecutionModel(Base):
    """Snapshot of a workflow execution, rewritten on every store."""
    __tablename__ = "workflow_executions"

    id = Column(String(64), primary_key=True)
    workflow_id = Column(String(255), nullable=False, index=True)
    workflow_version = Column(String(50), nullable=False, default="1.0.0")
    status = Column(String(20), nullable=False)
    triggered_by = Column(String(255), nullable=False, default="manual")
    start_time = Column(DateTime, nullable=False, default=datetime.utcnow)
    end_time = Column(DateTime, nullable=True)
    current_step = Column(Integer, nullable=False, default=0)
    total_batches = Column(Integer, nullable=False, default=0)
    depth = Column(Integer, nullable=False, default=0)
    context = Column(JSON, nullable=False, default=dict)
    step_results = Column(JSON, nullable=False, default=dict)
    errors = Column(JSON, nullable=False, default=list)
    chain = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_workflow_executions_workflow_started", "workflow_id", "start_time"),
    )

    def __repr__(self):
        return f"<WorkflowExecutionModel(id={self.id}, workflow_id={self.workflow_id}, status={self.status})>"
