"""
Admin service for the job queue.

Thin HTTP surface over the queue core; workers run separately
(``jobctl worker run``) and share only the database.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from jobqueue.config.logging import get_logger, setup_logging
from jobqueue.config.settings import settings
from jobqueue.infra.database import close_database, get_database
from jobqueue.v1.core.exceptions import (
    JobQueueException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    job_queue_exception_handler,
    validation_exception_handler,
)
from jobqueue.v1.core.registries import job_registry
from jobqueue.v1.healthz import router as health_router
from jobqueue.v1.jobs.registry_init import register_job_handlers
from jobqueue.v1.jobs.routes import router as jobs_router
from jobqueue.v1.jobs.routes import workers_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database = get_database(settings)
    if database.is_sqlite:
        # Embedded mode: no migration step, build the schema in place
        await database.create_all()
    logger.info(
        "Admin API started",
        environment=settings.environment,
        job_types=sorted(job_registry.list_types()),
    )

    yield

    await close_database()
    logger.info("Admin API stopped")


def create_app() -> FastAPI:
    """Create and configure the admin FastAPI application."""

    setup_logging(settings, component="admin")

    app = FastAPI(
        title=settings.app_name,
        description="Database-backed background job queue",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    app.add_middleware(RequestContextMiddleware)
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(JobQueueException, job_queue_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(workers_router, prefix="/v1")

    # Producers are validated against this registry, so it must hold every
    # type the deployment's workers can run
    register_job_handlers(job_registry, settings)
    if settings.environment != "development":
        job_registry.freeze()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "jobqueue.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
