"""
Workflow Execution Model

One row per run. Mirrors ExecutionRecord; metrics and per-node results
are stored as JSON documents.
"""

from datetime import datetime
from typing import Any, Dict, Iterable

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Integer, String, TEXT

from flowrunner.schemas.execution import ExecutionRecord

from .base import Base


class WorkflowExecution(Base):
    """Persisted execution record."""

    __tablename__ = "workflow_executions"

    id = Column(
        String(36),
        primary_key=True,
        comment="Execution identifier (UUID4)",
    )

    workflow_id = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Executed workflow",
    )

    workflow_name = Column(
        String(200),
        nullable=True,
        comment="Workflow name at execution time",
    )

    owner_id = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Caller that started the execution",
    )

    status = Column(
        String(20),
        nullable=False,
        index=True,
        comment="running | paused | completed | failed | cancelled",
    )

    start_time = Column(
        DateTime,
        nullable=False,
        index=True,
        comment="Execution start (UTC)",
    )

    end_time = Column(
        DateTime,
        nullable=True,
        comment="Execution end (UTC)",
    )

    progress = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Progress percentage (0-100)",
    )

    current_node = Column(
        String(255),
        nullable=True,
        comment="Node being executed",
    )

    metrics = Column(
        JSON,
        nullable=False,
        comment="{totalNodes, completedNodes, errorCount, avgExecutionTime}",
    )

    results = Column(
        JSON,
        nullable=False,
        comment="Node id -> serialized node result, in execution order",
    )

    error_details = Column(
        TEXT,
        nullable=True,
        comment="Failure message",
    )

    updated_at = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        comment="Last write (UTC)",
    )

    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="check_execution_progress_range"),
    )

    def apply(self, record: ExecutionRecord) -> None:
        """Copy every field of ``record`` onto this row."""
        data = record.to_storage()
        self.workflow_id = record.workflow_id
        self.workflow_name = record.workflow_name
        self.owner_id = record.owner_id
        self.status = record.status.value
        self.start_time = record.start_time
        self.end_time = record.end_time
        self.progress = record.progress
        self.current_node = record.current_node
        self.metrics = data["metrics"]
        self.results = data["results"]
        self.error_details = record.error_details
        self.updated_at = record.updated_at

    @staticmethod
    def column_values(record: ExecutionRecord, fields: Iterable[str]) -> Dict[str, Any]:
        """Column values of ``record`` for the named fields only."""
        data = record.to_storage()
        values: Dict[str, Any] = {}
        for field in fields:
            if field in ("metrics", "results"):
                values[field] = data[field]
            elif field == "status":
                values[field] = record.status.value
            else:
                values[field] = getattr(record, field)
        return values

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> "WorkflowExecution":
        row = cls(id=record.id)
        row.apply(record)
        return row

    def to_record(self) -> ExecutionRecord:
        return ExecutionRecord(
            id=self.id,
            workflow_id=self.workflow_id,
            workflow_name=self.workflow_name,
            owner_id=self.owner_id,
            status=self.status,
            start_time=self.start_time,
            end_time=self.end_time,
            progress=self.progress,
            current_node=self.current_node,
            metrics=self.metrics or {},
            results=self.results or {},
            error_details=self.error_details,
            updated_at=self.updated_at,
        )

    def __repr__(self):
        return f"<WorkflowExecution(id={self.id}, status={self.status})>"
