"""Pydantic schemas for API request/response validation"""

from .execution import (
    ExecutionStatus,
    TERMINAL_STATUSES,
    ExecutionMetrics,
    ExecutionRecord,
    ExecuteWorkflowRequest,
    ExecuteWorkflowResponse,
    ExecutionAck,
    ExecutionStatusResponse,
    ExecutionListResponse,
)

__all__ = [
    "ExecutionStatus",
    "TERMINAL_STATUSES",
    "ExecutionMetrics",
    "ExecutionRecord",
    "ExecuteWorkflowRequest",
    "ExecuteWorkflowResponse",
    "ExecutionAck",
    "ExecutionStatusResponse",
    "ExecutionListResponse",
]
