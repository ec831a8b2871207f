"""
Prometheus Metrics Middleware

Collects application metrics for monitoring and observability:
- HTTP request metrics (count, latency, errors)
- Workflow execution lifecycle counters
- Agent invocation outcomes and response times
"""

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import Counter, Histogram, Gauge, Info
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
import structlog

from flowrunner.config import settings


logger = structlog.get_logger(__name__)


# Application info
app_info = Info("flowrunner_app", "Application information")
app_info.info({
    "name": settings.APP_NAME,
    "version": settings.APP_VERSION,
    "environment": settings.ENVIRONMENT,
})


# HTTP Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency by method and endpoint",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently being processed",
    ["method", "endpoint"],
)


# Execution Metrics
executions_started_total = Counter(
    "workflow_executions_started_total",
    "Total number of workflow executions started",
)

executions_finished_total = Counter(
    "workflow_executions_finished_total",
    "Total number of workflow executions that reached a terminal status",
    ["status"],
)

executions_running = Gauge(
    "workflow_executions_running",
    "Number of execution tasks currently alive in this process",
)

execution_duration_seconds = Histogram(
    "workflow_execution_duration_seconds",
    "Wall-clock duration of finished executions",
    ["status"],
    buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 300, 900, 3600),
)

node_executions_total = Counter(
    "workflow_node_executions_total",
    "Node executions by node type and outcome",
    ["node_type", "outcome"],
)


# Agent Metrics
agent_invocations_total = Counter(
    "agent_invocations_total",
    "Agent invocations by outcome",
    ["outcome"],
)

agent_response_time_seconds = Histogram(
    "agent_response_time_seconds",
    "Agent response time reported by the agent runtime",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect Prometheus metrics for HTTP requests

    Tracks:
    - Request count by endpoint, method, and status code
    - Request latency histogram
    - Requests in progress gauge
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        logger.info("PrometheusMiddleware initialized")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics collection for the metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = self._get_endpoint_pattern(request)
        method = request.method

        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response

        except Exception as e:
            logger.error(
                "Request processing error",
                method=method,
                endpoint=endpoint,
                duration=time.time() - start_time,
                error=str(e),
            )
            raise

        finally:
            http_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()
            http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint,
            ).observe(time.time() - start_time)
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()

    def _get_endpoint_pattern(self, request: Request) -> str:
        """
        Extract the endpoint pattern from the request

        Converts paths like /api/v1/workflows/123/status to
        /api/v1/workflows/{execution_id}/status to avoid high cardinality.
        """
        if request.scope.get("route"):
            return request.scope["route"].path
        return request.url.path


def record_execution_finished(status: str, duration_seconds: float) -> None:
    """Count a run reaching a terminal status."""
    executions_finished_total.labels(status=status).inc()
    execution_duration_seconds.labels(status=status).observe(duration_seconds)


def record_node_execution(node_type: str, success: bool) -> None:
    node_executions_total.labels(
        node_type=node_type,
        outcome="success" if success else "error",
    ).inc()
