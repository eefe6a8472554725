"""Liveness probe for the admin service and its job store."""

import time
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings, SettingsDep
from jobqueue.infra.database import Database, get_database
from jobqueue.v1.core.exceptions import create_success_response
from jobqueue.v1.jobs.store import JobStore

logger = get_logger(__name__)

router = APIRouter()


class StoreHealth(BaseModel):
    connected: bool
    backend: str
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Snapshot of queue pressure; zeros when the store could not be read."""

    active_workers: int = 0
    queue_depth: int = 0
    running_jobs: int = 0


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, database: Database = Depends(get_database)
):
    """Report store connectivity and queue pressure. ``ok`` tracks the store."""
    store_health = await _probe_store(database)

    queue_health = QueueHealth()
    if store_health.connected:
        try:
            queue_health = await _queue_snapshot(database, settings)
        except SQLAlchemyError as e:
            logger.warning("Queue snapshot failed", error=str(e))

    return create_success_response(
        data={
            "ok": store_health.connected,
            "version": settings.version,
            "environment": settings.environment,
            "timestamp": datetime.now(UTC).isoformat(),
            "database": store_health.model_dump(),
            "worker": queue_health.model_dump(),
        }
    )


async def _probe_store(database: Database) -> StoreHealth:
    backend = "sqlite" if database.is_sqlite else "postgresql"
    started = time.perf_counter()
    try:
        async with database.SessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.error("Job store unreachable", error=str(e))
        return StoreHealth(connected=False, backend=backend, error=str(e))

    elapsed_ms = (time.perf_counter() - started) * 1000
    return StoreHealth(
        connected=True, backend=backend, response_time_ms=round(elapsed_ms, 2)
    )


async def _queue_snapshot(database: Database, settings: Settings) -> QueueHealth:
    store = JobStore(database.SessionLocal)
    cutoff = datetime.now(UTC) - timedelta(
        minutes=settings.worker_heartbeat_timeout_minutes
    )
    workers = await store.worker_totals(cutoff)
    by_status = await store.count_by_status()
    return QueueHealth(
        active_workers=workers["active"],
        queue_depth=by_status.get("pending", 0),
        running_jobs=by_status.get("running", 0),
    )
