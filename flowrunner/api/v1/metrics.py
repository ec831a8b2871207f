"""
Metrics API Endpoint

Exposes Prometheus metrics for scraping
"""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()


@router.get(
    "/metrics",
    response_class=PlainTextResponse,
    summary="Prometheus Metrics",
    description="Exposes application metrics in Prometheus format for scraping",
    tags=["Metrics"],
)
async def metrics() -> PlainTextResponse:
    """
    Prometheus metrics endpoint

    Metrics include:
    - HTTP request count and latency
    - Executions started, finished by status, and running
    - Node executions by type and outcome
    - Agent invocation outcomes and response times
    """
    return PlainTextResponse(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
