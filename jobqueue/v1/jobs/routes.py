"""
Admin API endpoints for the job queue.

Thin wrappers over QueueCore, LivenessMonitor and StatsAggregator.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings, SettingsDep
from jobqueue.infra.database import Database, get_database
from jobqueue.v1.core.exceptions import NotFoundError, create_success_response
from jobqueue.v1.core.registries import job_registry
from jobqueue.v1.jobs.liveness import LivenessMonitor
from jobqueue.v1.jobs.models import JobStatus, WorkerStatus
from jobqueue.v1.jobs.queue import QueueCore
from jobqueue.v1.jobs.schemas import (
    CleanupResponse,
    JobEnqueueRequest,
    JobFilter,
    JobLogResponse,
    JobResponse,
    OrderBy,
    OrderDir,
    WorkerResponse,
)
from jobqueue.v1.jobs.stats import StatsAggregator

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])
workers_router = APIRouter(prefix="/workers", tags=["workers"])


def get_queue(
    database: Database = Depends(get_database), settings: Settings = SettingsDep
) -> QueueCore:
    return QueueCore.from_database(database, job_registry, settings)


def get_liveness_monitor(
    queue: QueueCore = Depends(get_queue), settings: Settings = SettingsDep
) -> LivenessMonitor:
    return LivenessMonitor(queue, settings)


def get_stats_aggregator(
    queue: QueueCore = Depends(get_queue), settings: Settings = SettingsDep
) -> StatsAggregator:
    return StatsAggregator(queue, settings)


@router.post("", response_model=dict, status_code=201)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    queue: QueueCore = Depends(get_queue),
) -> dict[str, Any]:
    """Enqueue a new background job."""

    job = await queue.enqueue(job_request.type, job_request.payload, job_request.options)

    logger.info("Job enqueued via API", job_id=str(job.id), type=job.type)

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.get("", response_model=dict)
async def list_jobs(
    status: JobStatus | None = Query(default=None, description="Filter by status"),
    type: str | None = Query(default=None, description="Filter by job type"),
    limit: int = Query(default=50, ge=1, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    order_by: OrderBy = Query(default="created_at", description="Sort column"),
    order_dir: OrderDir = Query(default="desc", description="Sort direction"),
    queue: QueueCore = Depends(get_queue),
) -> dict[str, Any]:
    """List jobs with filtering and pagination."""

    page = await queue.get_jobs(
        JobFilter(status=status, type=type),
        limit=limit,
        offset=offset,
        order_by=order_by,
        order_dir=order_dir,
    )
    return create_success_response(data=page.model_dump(mode="json"))


@router.get("/types", response_model=dict)
async def list_job_types(queue: QueueCore = Depends(get_queue)) -> dict[str, Any]:
    """Job types with a registered handler."""
    return create_success_response(data=sorted(queue.list_available_job_types()))


@router.get("/stats", response_model=dict)
async def get_job_stats(
    aggregator: StatsAggregator = Depends(get_stats_aggregator),
) -> dict[str, Any]:
    """Queue statistics. Failed sections are listed under ``errors``."""
    stats = await aggregator.get_stats()
    return create_success_response(data=stats.model_dump(mode="json"))


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID, queue: QueueCore = Depends(get_queue)
) -> dict[str, Any]:
    """Get a specific job by ID."""

    job = await queue.get_job(job_id)
    if not job:
        raise NotFoundError("Job not found", {"job_id": str(job_id)})

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.get("/{job_id}/logs", response_model=dict)
async def get_job_logs(
    job_id: UUID, queue: QueueCore = Depends(get_queue)
) -> dict[str, Any]:
    """Execution log of a job, oldest first."""

    try:
        logs = await queue.get_logs(job_id)
    except SQLAlchemyError:
        logger.exception("Failed to load job logs", job_id=str(job_id))
        logs = []

    return create_success_response(
        data=[JobLogResponse.model_validate(log).model_dump(mode="json") for log in logs]
    )


@workers_router.get("", response_model=dict)
async def list_workers(
    status: WorkerStatus | None = Query(default=None, description="Filter by status"),
    monitor: LivenessMonitor = Depends(get_liveness_monitor),
) -> dict[str, Any]:
    """List registered workers."""

    workers = await monitor.list_workers(status.value if status else None)
    return create_success_response(
        data=[
            WorkerResponse.model_validate(worker).model_dump(mode="json")
            for worker in workers
        ]
    )


@workers_router.post("/cleanup", response_model=dict)
async def cleanup_dead_workers(
    timeout_minutes: float | None = Query(
        default=None, gt=0, description="Heartbeat age after which a worker is dead"
    ),
    monitor: LivenessMonitor = Depends(get_liveness_monitor),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Declare silent workers dead and return their jobs to the queue."""

    timeout = timeout_minutes or settings.worker_heartbeat_timeout_minutes
    reclaimed = await monitor.cleanup_dead_workers(timeout)

    logger.info(
        "Dead worker cleanup via API", reclaimed_jobs=reclaimed, timeout_minutes=timeout
    )

    return create_success_response(
        data=CleanupResponse(
            reclaimed_jobs=reclaimed, timeout_minutes=timeout
        ).model_dump()
    )
