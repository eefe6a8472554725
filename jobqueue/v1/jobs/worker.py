"""
Worker runtime: polls the queue, runs handlers, reports outcomes and
heartbeats on an independent task.
"""

import asyncio
import inspect
import json
import os
import socket
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError

from jobqueue.config.logging import bind_worker_context, get_logger
from jobqueue.config.settings import Settings
from jobqueue.v1.core.exceptions import HandlerTimeout
from jobqueue.v1.core.registries import Handler
from jobqueue.v1.jobs.liveness import LivenessMonitor
from jobqueue.v1.jobs.models import Job
from jobqueue.v1.jobs.queue import JobContext, QueueCore

logger = get_logger(__name__)

# Job store errors the poll loop survives by backing off
STORE_ERRORS = (SQLAlchemyError, OSError)

REPORT_ATTEMPTS = 3


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


class WorkerRuntime:
    """
    Process-local worker loop.

    Features:
    - Up to ``concurrency`` jobs in flight, each under a timeout
    - Heartbeats on a separate task so a long handler never looks dead
    - Bounded sleep when idle, longer back-off when the job store errors
    - Graceful stop that waits for in-flight jobs
    """

    def __init__(
        self,
        queue: QueueCore,
        monitor: LivenessMonitor,
        settings: Settings,
        worker_id: str | None = None,
        concurrency: int | None = None,
        job_types: list[str] | None = None,
        job_timeout_s: float | None = None,
        poll_interval_s: float | None = None,
        heartbeat_interval_s: float | None = None,
    ):
        self.queue = queue
        self.monitor = monitor
        self.settings = settings
        self.worker_id = worker_id or default_worker_id()
        self.concurrency = max(1, concurrency or settings.job_concurrency)
        self.job_types = list(job_types or [])
        self.job_timeout_s = job_timeout_s or settings.job_timeout_s
        self.poll_interval_s = (
            poll_interval_s
            if poll_interval_s is not None
            else settings.job_poll_interval_ms / 1000
        )
        self.heartbeat_interval_s = (
            heartbeat_interval_s or settings.worker_heartbeat_interval_s
        )

        self.running = False
        self.active_jobs: dict[UUID, asyncio.Task] = {}
        self._stop_event = asyncio.Event()
        self._heartbeat_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Register the worker and run until ``stop()`` is called."""
        if self.running:
            raise RuntimeError("Worker is already running")

        bind_worker_context(self.worker_id)
        await self.monitor.register_worker(
            self.worker_id,
            hostname=socket.gethostname(),
            pid=os.getpid(),
            concurrency=self.concurrency,
            job_types=self.job_types,
        )

        self.running = True
        self._stop_event.clear()
        logger.info(
            "Starting worker",
            worker_id=self.worker_id,
            concurrency=self.concurrency,
            job_types=self.job_types or "all",
            poll_interval_s=self.poll_interval_s,
        )

        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        try:
            await self._worker_loop()
        finally:
            self.running = False
            self._heartbeat_task.cancel()
            await asyncio.gather(self._heartbeat_task, return_exceptions=True)

    async def stop(self, grace_s: float | None = None) -> None:
        """Stop claiming and wait for in-flight jobs up to the grace period."""
        if grace_s is None:
            grace_s = self.settings.worker_shutdown_grace_s
        logger.info(
            "Stopping worker",
            worker_id=self.worker_id,
            active_jobs=len(self.active_jobs),
        )
        self.running = False
        self._stop_event.set()

        pending = list(self.active_jobs.values())
        if not pending:
            return

        _, still_running = await asyncio.wait(pending, timeout=grace_s)
        if still_running:
            job_ids = [
                job_id
                for job_id, task in self.active_jobs.items()
                if task in still_running
            ]
            logger.warning(
                "Worker stopped with active jobs",
                worker_id=self.worker_id,
                active_jobs=len(still_running),
            )
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)
            # Back to the queue now rather than after the heartbeat timeout
            await self._report(
                self.queue.release_claims,
                self.worker_id,
                job_ids,
                "shutdown grace period exceeded",
            )

    def status(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "running": self.running,
            "active_jobs": len(self.active_jobs),
            "concurrency": self.concurrency,
            "job_types": self.job_types,
        }

    async def _worker_loop(self) -> None:
        """Main loop that claims and dispatches jobs."""
        while self.running:
            if len(self.active_jobs) >= self.concurrency:
                await self._sleep(self.poll_interval_s)
                continue

            try:
                job = await self.queue.claim_next(self.worker_id, self.job_types)
            except STORE_ERRORS:
                logger.exception(
                    "Error claiming job, backing off", worker_id=self.worker_id
                )
                await self._sleep(self.settings.job_poll_error_backoff_s)
                continue

            if job is None:
                await self._sleep(self.poll_interval_s)
                continue

            task = asyncio.create_task(self._process_job(job))
            self.active_jobs[job.id] = task
            task.add_done_callback(lambda _t, job_id=job.id: self.active_jobs.pop(job_id, None))

    async def run_once(self) -> Job | None:
        """Claim and fully process a single job, if one is eligible."""
        job = await self.queue.claim_next(self.worker_id, self.job_types)
        if job is not None:
            await self._process_job(job)
        return job

    async def _process_job(self, job: Job) -> None:
        """Run one claimed job and report its outcome."""
        job_logger = logger.bind(
            job_id=str(job.id), job_type=job.type, worker_id=self.worker_id
        )
        job_logger.info("Processing job started", attempt=job.attempts)

        try:
            result = await self._execute(job)
        except asyncio.CancelledError:
            job_logger.warning("Job processing cancelled")
            raise
        except Exception as e:
            job_logger.warning("Job processing failed", error=str(e), exc_info=True)
            reported = await self._report(
                self.queue.report_failure, job.id, self.worker_id, e
            )
        else:
            job_logger.info("Processing job completed successfully")
            reported = await self._report(
                self.queue.report_success, job.id, self.worker_id, result
            )

        if not reported:
            # Heartbeats keep this worker alive, so no sweep would free the job
            await self._report(
                self.queue.release_claims,
                self.worker_id,
                [job.id],
                "outcome could not be reported",
            )

    async def _execute(self, job: Job) -> dict[str, Any] | None:
        handler = self.queue.registry.get(job.type)
        timeout_s = getattr(handler, "timeout_s", None) or self.job_timeout_s
        ctx = JobContext(self.queue, job, self.worker_id)
        payload = dict(job.payload or {})

        try:
            result = await asyncio.wait_for(
                self._invoke(handler, ctx, payload), timeout=timeout_s
            )
        except TimeoutError as e:
            raise HandlerTimeout(job.type, timeout_s) from e

        if result is not None and not isinstance(result, dict):
            result = {"value": result}
        if result is not None:
            try:
                json.dumps(result)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Handler result is not JSON serializable: {e}") from e
        return result

    @staticmethod
    async def _invoke(handler: Handler, ctx: JobContext, payload: dict[str, Any]):
        fn = getattr(handler, "handle", handler)
        if inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
            getattr(fn, "__call__", None)
        ):
            return await fn(ctx, payload)
        # Blocking handlers run off the event loop so heartbeats keep flowing
        result = await asyncio.to_thread(fn, ctx, payload)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _report(self, report, *args) -> bool:
        """Call a store-backed report, retrying store errors. False if all failed."""
        for attempt in range(1, REPORT_ATTEMPTS + 1):
            try:
                await report(*args)
                return True
            except STORE_ERRORS:
                logger.exception(
                    "Failed to report job outcome",
                    worker_id=self.worker_id,
                    report=report.__name__,
                    attempt=attempt,
                )
                if attempt < REPORT_ATTEMPTS:
                    await asyncio.sleep(self.settings.job_poll_error_backoff_s)
        return False

    async def _heartbeat_loop(self) -> None:
        """Refresh the worker heartbeat on a fixed interval."""
        while True:
            await asyncio.sleep(self.heartbeat_interval_s)
            try:
                alive = await self.monitor.heartbeat(self.worker_id)
                if not alive:
                    logger.error(
                        "Worker was declared dead, re-registering",
                        worker_id=self.worker_id,
                    )
                    await self.monitor.register_worker(
                        self.worker_id,
                        hostname=socket.gethostname(),
                        pid=os.getpid(),
                        concurrency=self.concurrency,
                        job_types=self.job_types,
                    )
            except STORE_ERRORS:
                logger.exception("Heartbeat failed", worker_id=self.worker_id)

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early when the worker is stopped."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass
