"""
Health Check API

Health check endpoint for monitoring service status.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from flowrunner.config import get_settings, Settings
from flowrunner.dependencies import get_coordinator
from flowrunner.logging_config import get_logger
from flowrunner.services.execution_coordinator import ExecutionCoordinator

logger = get_logger(__name__)

router = APIRouter()

# Track application start time
_app_start_time: Optional[datetime] = None


def set_app_start_time():
    """Set application start time (called from lifespan)"""
    global _app_start_time
    _app_start_time = datetime.utcnow()


def get_uptime_seconds() -> Optional[float]:
    """Get application uptime in seconds"""
    if _app_start_time:
        return (datetime.utcnow() - _app_start_time).total_seconds()
    return None


@router.get("/health")
async def health_check(
    coordinator: ExecutionCoordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_settings),
):
    """
    Health check endpoint

    Checks connectivity to the configured execution store.

    Returns:
        {
            "status": "healthy",
            "store": "connected",
            "store_backend": "memory",
            "active_executions": 0
        }
    """
    health_status = {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "store_backend": settings.STORE_BACKEND,
        "active_executions": coordinator.active_count,
        "uptime_seconds": get_uptime_seconds(),
    }

    if await coordinator.store.ping():
        health_status["store"] = "connected"
    else:
        health_status["store"] = "disconnected"
        health_status["status"] = "unhealthy"

    # Return 503 if the store is unreachable
    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status
