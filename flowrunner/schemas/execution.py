"""
Execution Schemas

The persisted execution record and the request/response models of the
control endpoints.
"""

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from flowrunner.workflows.graph import WorkflowGraph


class ExecutionStatus(str, enum.Enum):
    """Workflow execution status."""
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
})

ACTIVE_STATUSES = frozenset({
    ExecutionStatus.RUNNING,
    ExecutionStatus.PAUSED,
})


class ExecutionMetrics(BaseModel):
    """Run counters. Serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_nodes: int = Field(default=0, ge=0)
    completed_nodes: int = Field(default=0, ge=0)
    error_count: int = Field(default=0, ge=0)
    avg_execution_time: float = Field(default=0.0, ge=0)  # ms per completed node


class ExecutionRecord(BaseModel):
    """
    Durable projection of one run.

    Created at run start, updated after every node step and by every
    control call. Terminal once status is completed, failed or cancelled.
    """

    id: str
    workflow_id: str
    workflow_name: Optional[str] = None
    owner_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    start_time: datetime = Field(default_factory=datetime.utcnow)
    end_time: Optional[datetime] = None
    progress: int = Field(default=0, ge=0, le=100)
    current_node: Optional[str] = None
    metrics: ExecutionMetrics = Field(default_factory=ExecutionMetrics)
    results: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    error_details: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def apply(self, changes: Dict[str, Any]) -> "ExecutionRecord":
        """Return a validated copy with ``changes`` merged in."""
        data = self.model_dump()
        data.update(changes)
        return ExecutionRecord.model_validate(data)

    def to_storage(self) -> Dict[str, Any]:
        """JSON-safe mapping used by the store backends."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "ExecutionRecord":
        return cls.model_validate(data)


class ExecuteWorkflowRequest(BaseModel):
    """Workflow execution request."""

    workflow: WorkflowGraph
    variables: Dict[str, Any] = Field(default_factory=dict)


class ExecuteWorkflowResponse(BaseModel):
    """Workflow execution accepted."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    execution_id: str = Field(..., alias="executionId")
    message: str = "Workflow execution started"


class ExecutionAck(BaseModel):
    """Acknowledgement of a pause, resume or stop call."""

    success: bool = True
    message: str


class ExecutionStatusResponse(BaseModel):
    """Execution status response."""

    success: bool = True
    execution: ExecutionRecord


class ExecutionListResponse(BaseModel):
    """Execution history response, newest first."""

    success: bool = True
    executions: List[ExecutionRecord]
    total: int
