"""
Flowrunner Workflow Engine - FastAPI Backend

Main application entry point with lifespan management, middleware, and routing.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowrunner.config import settings
from flowrunner.logging_config import setup_logging, get_logger
from flowrunner.middleware.error_handler import register_exception_handlers
from flowrunner.middleware.metrics import PrometheusMiddleware
from flowrunner.services.execution_coordinator import create_coordinator
from flowrunner.services.execution_store import create_execution_store

# Import API routers
from flowrunner.api.v1 import health
from flowrunner.api.v1.health import set_app_start_time
from flowrunner.api.v1 import executions
from flowrunner.api.v1 import metrics

# Setup logging
setup_logging(log_level=settings.LOG_LEVEL, log_format=settings.LOG_FORMAT)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager

    Builds the execution store and coordinator on startup; cancels
    in-flight runs and closes the store on shutdown.
    """
    logger.info("Starting Flowrunner API", version=settings.APP_VERSION)

    set_app_start_time()

    try:
        store = await create_execution_store(settings)
    except Exception as e:
        logger.error("Failed to initialize execution store", backend=settings.STORE_BACKEND, error=str(e))
        raise

    coordinator = create_coordinator(store, settings)
    app.state.store = store
    app.state.coordinator = coordinator

    logger.info("All services initialized successfully")

    yield

    logger.info("Shutting down Flowrunner API")

    await coordinator.shutdown()
    await store.close()
    app.state.coordinator = None

    logger.info("Shutdown complete")


# OpenAPI Tags for better documentation organization
openapi_tags = [
    {
        "name": "Health",
        "description": "System health checks and monitoring endpoints",
    },
    {
        "name": "Executions",
        "description": "Workflow execution start, control and status",
    },
    {
        "name": "Metrics",
        "description": "Prometheus metrics endpoint",
    },
]


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        description="""
## Workflow Execution Engine

Executes workflow graphs of trigger, agent, action, condition and delay
nodes as stateful, resumable, progress-tracked runs.

### Quick Start

1. **Execute**: `POST /api/v1/workflows/execute` with `{workflow: {id, name, nodes, edges}}`
2. **Poll**: `GET /api/v1/workflows/{execution_id}/status`
3. **Control**: `POST /api/v1/workflows/{execution_id}/pause | resume | stop`

### Authentication

All workflow endpoints require JWT authentication:
```
Authorization: Bearer <your_token>
```
        """,
        version=settings.APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        openapi_tags=openapi_tags,
    )

    # Prometheus Metrics Middleware (register first to capture all requests)
    app.add_middleware(PrometheusMiddleware)

    # CORS Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Requested-With",
            "Accept",
            "Origin",
        ],
        max_age=600,  # Cache preflight requests for 10 minutes
    )

    register_exception_handlers(app)

    @app.get("/")
    async def root():
        """
        Root endpoint

        Returns basic API information.
        """
        return {
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs" if settings.DEBUG else "disabled",
            "health": "/api/v1/health",
        }

    # API v1 routes
    app.include_router(health.router, prefix="/api/v1", tags=["Health"])
    app.include_router(executions.router, prefix="/api/v1/workflows", tags=["Executions"])
    app.include_router(metrics.router, tags=["Metrics"])

    logger.info("FastAPI application configured", debug=settings.DEBUG)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "flowrunner.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD or settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
