"""
Workflow Execution Endpoints

Start workflow runs, control them (pause, resume, stop) and read their
status. Every route is scoped to the authenticated owner; executions of
other owners look like unknown ids.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from flowrunner.auth.dependencies import get_current_owner
from flowrunner.dependencies import get_coordinator
from flowrunner.logging_config import get_logger
from flowrunner.schemas.execution import (
    ExecuteWorkflowRequest,
    ExecuteWorkflowResponse,
    ExecutionAck,
    ExecutionListResponse,
    ExecutionStatusResponse,
)
from flowrunner.services.execution_coordinator import ExecutionCoordinator

logger = get_logger(__name__)
router = APIRouter()


@router.post(
    "/execute",
    response_model=ExecuteWorkflowResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def execute_workflow(
    request: ExecuteWorkflowRequest,
    owner_id: str = Depends(get_current_owner),
    coordinator: ExecutionCoordinator = Depends(get_coordinator),
):
    """
    Start executing a workflow graph.

    Returns as soon as the execution record exists; poll the status
    endpoint for progress.
    """
    execution_id = await coordinator.execute(
        request.workflow,
        owner_id=owner_id,
        variables=request.variables,
    )
    return ExecuteWorkflowResponse(execution_id=execution_id)


@router.get("/executions", response_model=ExecutionListResponse)
async def list_executions(
    workflow_id: Optional[str] = Query(None, description="Only executions of this workflow"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    owner_id: str = Depends(get_current_owner),
    coordinator: ExecutionCoordinator = Depends(get_coordinator),
):
    """
    List the caller's executions, newest first.
    """
    executions = await coordinator.list(owner_id, workflow_id=workflow_id, limit=limit)
    return ExecutionListResponse(executions=executions, total=len(executions))


@router.post("/{execution_id}/pause", response_model=ExecutionAck)
async def pause_execution(
    execution_id: str,
    owner_id: str = Depends(get_current_owner),
    coordinator: ExecutionCoordinator = Depends(get_coordinator),
):
    """
    Pause a running execution.
    """
    await coordinator.pause(execution_id, owner_id)
    return ExecutionAck(message="Workflow paused")


@router.post("/{execution_id}/resume", response_model=ExecutionAck)
async def resume_execution(
    execution_id: str,
    owner_id: str = Depends(get_current_owner),
    coordinator: ExecutionCoordinator = Depends(get_coordinator),
):
    """
    Resume a paused execution.
    """
    await coordinator.resume(execution_id, owner_id)
    return ExecutionAck(message="Workflow resumed")


@router.post("/{execution_id}/stop", response_model=ExecutionAck)
async def stop_execution(
    execution_id: str,
    owner_id: str = Depends(get_current_owner),
    coordinator: ExecutionCoordinator = Depends(get_coordinator),
):
    """
    Stop a running or paused execution.
    """
    await coordinator.stop(execution_id, owner_id)
    return ExecutionAck(message="Workflow stopped")


@router.get("/{execution_id}/status", response_model=ExecutionStatusResponse)
async def get_execution_status(
    execution_id: str,
    owner_id: str = Depends(get_current_owner),
    coordinator: ExecutionCoordinator = Depends(get_coordinator),
):
    """
    Get the current execution record.
    """
    execution = await coordinator.status(execution_id, owner_id)
    return ExecutionStatusResponse(execution=execution)
