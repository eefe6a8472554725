import asyncio
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from jobqueue.config.settings import Settings, get_settings
from jobqueue.infra.database import Database, get_database
from jobqueue.v1.core.registries import HandlerRegistry
from jobqueue.v1.jobs.handlers import EchoHandler, PruneJobsHandler
from jobqueue.v1.jobs.liveness import LivenessMonitor
from jobqueue.v1.jobs.queue import QueueCore
from jobqueue.v1.jobs.stats import StatsAggregator


class FakeClock:
    """Controllable clock injected into QueueCore."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current += timedelta(**delta)
        return self.current


class NoopHandler:
    async def handle(self, ctx, payload: dict[str, Any]) -> dict[str, Any] | None:
        return None


class FailingHandler:
    async def handle(self, ctx, payload: dict[str, Any]) -> dict[str, Any] | None:
        raise RuntimeError(payload.get("message", "boom"))


class SleepingHandler:
    async def handle(self, ctx, payload: dict[str, Any]) -> dict[str, Any] | None:
        await asyncio.sleep(payload.get("seconds", 0.2))
        return {"slept": payload.get("seconds", 0.2)}


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file with fast loop timings."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        environment="test",
        debug=False,
        job_poll_interval_ms=10,
        job_poll_error_backoff_s=0.1,
        worker_heartbeat_interval_s=0.05,
        worker_heartbeat_timeout_minutes=5,
        worker_shutdown_grace_s=2,
        job_timeout_s=5,
    )


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    database = Database(settings)
    await database.create_all()
    yield database
    await database.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(settings) -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register("test.noop", NoopHandler())
    registry.register("test.fail", FailingHandler())
    registry.register("test.sleep", SleepingHandler())
    registry.register("system.echo", EchoHandler())
    registry.register("maintenance.prune_jobs", PruneJobsHandler(settings))
    return registry


@pytest.fixture
def queue(database, registry, settings, clock) -> QueueCore:
    return QueueCore.from_database(database, registry, settings, clock=clock)


@pytest.fixture
def liveness(queue, settings) -> LivenessMonitor:
    return LivenessMonitor(queue, settings)


@pytest.fixture
def stats(queue, settings) -> StatsAggregator:
    return StatsAggregator(queue, settings)


@pytest.fixture
def app(database, queue, settings):
    """Admin app wired to the test database and queue."""
    from jobqueue.main import create_app
    from jobqueue.v1.jobs.routes import get_queue

    app = create_app()
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_queue] = lambda: queue

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _wait_for_status(
    queue: QueueCore, job_id, status: str, timeout: float = 5.0
):
    """Poll the store until the job reaches ``status``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        job = await queue.get_job(job_id)
        if job is not None and job.status == status:
            return job
        if loop.time() > deadline:
            raise AssertionError(
                f"job {job_id} did not reach {status!r} (last: "
                f"{job.status if job else None!r})"
            )
        await asyncio.sleep(0.02)


@pytest.fixture
def wait_for_status():
    return _wait_for_status
