"""
Worker registry and dead-worker reclamation.
"""

import asyncio
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings
from jobqueue.v1.jobs.models import LogLevel, Worker
from jobqueue.v1.jobs.queue import QueueCore

logger = get_logger(__name__)


class LivenessMonitor:
    """Tracks workers by heartbeat and returns orphaned jobs to the queue.

    Only this class moves a worker to ``dead``. Reclaimed jobs keep their
    ``attempts`` count: a crash is not charged against the retry budget.
    """

    def __init__(self, queue: QueueCore, settings: Settings):
        self.queue = queue
        self.store = queue.store
        self.settings = settings
        self.running = False

    async def register_worker(
        self,
        worker_id: str,
        hostname: str | None = None,
        pid: int | None = None,
        concurrency: int = 1,
        job_types: list[str] | None = None,
    ) -> None:
        await self.store.upsert_worker(
            worker_id,
            self.queue.now(),
            hostname=hostname,
            pid=pid,
            concurrency=concurrency,
            job_types=list(job_types or []),
        )
        logger.info(
            "Worker registered",
            worker_id=worker_id,
            hostname=hostname,
            pid=pid,
            concurrency=concurrency,
            job_types=job_types or "all",
        )

    async def heartbeat(self, worker_id: str) -> bool:
        """Refresh ``last_heartbeat``. False once the worker has been declared dead."""
        return await self.store.touch_worker(worker_id, self.queue.now())

    async def list_workers(self, status: str | None = None) -> list[Worker]:
        return await self.store.list_workers(status)

    async def cleanup_dead_workers(self, timeout_minutes: float | None = None) -> int:
        """
        Mark workers with an expired heartbeat dead and release their jobs.

        Args:
            timeout_minutes: heartbeat age after which a worker is dead;
                defaults to ``worker_heartbeat_timeout_minutes``

        Returns:
            Number of jobs returned to ``pending``
        """
        if timeout_minutes is None:
            timeout_minutes = self.settings.worker_heartbeat_timeout_minutes
        if timeout_minutes <= 0:
            raise ValueError("timeout_minutes must be positive")

        now = self.queue.now()
        cutoff = now - timedelta(minutes=timeout_minutes)
        reclaimed = 0

        for worker_id in await self.store.expired_worker_ids(cutoff):
            # Re-checks the heartbeat, so a worker that beat just now survives
            if not await self.store.mark_worker_dead(worker_id, cutoff):
                continue

            job_ids = await self.store.release_claims_of(worker_id, now)
            reclaimed += len(job_ids)
            logger.warning(
                "Worker declared dead",
                worker_id=worker_id,
                reclaimed_jobs=len(job_ids),
                timeout_minutes=timeout_minutes,
            )
            for job_id in job_ids:
                await self.queue.record_event(
                    job_id,
                    LogLevel.WARN,
                    f"Job reclaimed from dead worker {worker_id}",
                )

        # Leases held by workers that never registered or are already dead
        orphaned = await self.store.release_orphaned_claims(cutoff, now)
        if orphaned:
            reclaimed += len(orphaned)
            logger.warning(
                "Released orphaned job leases",
                reclaimed_jobs=len(orphaned),
                timeout_minutes=timeout_minutes,
            )
            for job_id in orphaned:
                await self.queue.record_event(
                    job_id, LogLevel.WARN, "Job reclaimed from expired lease"
                )

        return reclaimed

    async def run(self, interval_s: float | None = None) -> None:
        """Sweep for dead workers until ``stop()`` is called."""
        interval_s = interval_s or self.settings.worker_heartbeat_interval_s
        self.running = True
        logger.info("Starting liveness monitor", interval_s=interval_s)

        while self.running:
            try:
                await self.cleanup_dead_workers()
            except SQLAlchemyError:
                logger.exception("Error in dead worker cleanup")
            await asyncio.sleep(interval_s)

    def stop(self) -> None:
        self.running = False
