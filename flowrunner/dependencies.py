"""
Dependency Injection

FastAPI dependency injection functions for the execution coordinator.
"""

from fastapi import Request

from flowrunner.exceptions import AppException, ErrorCode
from flowrunner.services.execution_coordinator import ExecutionCoordinator


def get_coordinator(request: Request) -> ExecutionCoordinator:
    """
    Get the execution coordinator built by the application lifespan

    Usage:
        @router.get("/{execution_id}/status")
        async def status(coordinator: ExecutionCoordinator = Depends(get_coordinator)):
            ...
    """
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise AppException(
            "Execution coordinator not initialized",
            status_code=503,
            error_code=ErrorCode.SERVICE_UNAVAILABLE,
            retryable=True,
            retry_after=5,
        )
    return coordinator
