from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from jobrelay.config.logging import setup_logging
from jobrelay.config.settings import settings
from jobrelay.infra.database import close_database
from jobrelay.v1.core.exceptions import (
    JobRelayException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    job_relay_exception_handler,
)
from jobrelay.v1.core.registries import JobHandlerRegistry
from jobrelay.v1.healthz import router as health_router
from jobrelay.v1.jobs.handlers import build_job_handler_registry
from jobrelay.v1.jobs.registry_init import get_job_config_registry
from jobrelay.v1.jobs.routes import build_worker_router
from jobrelay.v1.jobs.routes import router as executions_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_database()


def create_app(handlers: JobHandlerRegistry | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    # Initialize structured logging
    setup_logging()

    app = FastAPI(
        title=settings.app_name,
        description="Job dispatch and execution tracking for push-based delivery",
        version=settings.version,
        debug=settings.debug,
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(JobRelayException, job_relay_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Registries are built complete and frozen before any route is mounted
    configs = get_job_config_registry()
    handlers = handlers or build_job_handler_registry()

    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(executions_router, prefix="/v1")
    app.include_router(build_worker_router(handlers, configs))

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "jobrelay.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )
