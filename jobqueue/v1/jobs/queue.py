"""
Queue core: job submission, claiming and terminal reporting.

A ``QueueCore`` is an explicit value owned by the process and handed to
each worker runtime; it holds no job state of its own. All coordination
happens through conditional updates in ``JobStore``.
"""

import json
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings
from jobqueue.infra.database import Database
from jobqueue.v1.core.exceptions import InvalidJobType, InvalidPayload
from jobqueue.v1.core.registries import HandlerRegistry
from jobqueue.v1.jobs.models import Job, JobLog, JobStatus, LogLevel, utcnow
from jobqueue.v1.jobs.schemas import (
    EnqueueOptions,
    JobFilter,
    JobPage,
    JobResponse,
    Pagination,
)
from jobqueue.v1.jobs.store import ORDERABLE_COLUMNS, JobStore

logger = get_logger(__name__)

Clock = Callable[[], datetime]

# Lost races against other claimers before claim_next gives up for this poll
CLAIM_RACE_RETRIES = 3


def describe_error(error: str | BaseException) -> str:
    if isinstance(error, BaseException):
        message = str(error)
        return f"{type(error).__name__}: {message}" if message else type(error).__name__
    return error


class JobContext:
    """Per-execution view of a job handed to its handler."""

    def __init__(self, queue: "QueueCore", job: Job, worker_id: str):
        self.queue = queue
        self.job = job
        self.worker_id = worker_id

    @property
    def job_id(self) -> UUID:
        return self.job.id

    @property
    def attempt(self) -> int:
        return self.job.attempts

    async def log(self, message: str, level: str = "info", **metadata: Any) -> None:
        """Append a line to this job's execution log."""
        await self.queue.log(self.job.id, level, message, **metadata)


class QueueCore:
    """Scheduler over the job store.

    Write paths (``claim_next``, ``report_success``, ``report_failure``) are
    each one conditional update; a report from a worker that no longer
    holds the lease is logged and ignored rather than raised.
    """

    def __init__(
        self,
        store: JobStore,
        registry: HandlerRegistry,
        settings: Settings,
        clock: Clock | None = None,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings
        self.clock = clock or utcnow

    @classmethod
    def from_database(
        cls,
        database: Database,
        registry: HandlerRegistry,
        settings: Settings,
        clock: Clock | None = None,
    ) -> "QueueCore":
        return cls(JobStore(database.SessionLocal), registry, settings, clock)

    def now(self) -> datetime:
        return self.clock()

    def backoff(self, attempts: int) -> timedelta:
        """Exponential retry delay: ``base * 2^attempts`` capped at the maximum."""
        delay = self.settings.job_backoff_base_s * (2 ** max(0, attempts))
        return timedelta(seconds=min(delay, self.settings.job_max_backoff_s))

    def list_available_job_types(self) -> set[str]:
        return self.registry.list_types()

    # ---------- producer boundary ----------

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        options: EnqueueOptions | dict[str, Any] | None = None,
    ) -> Job:
        """
        Validate and persist a new pending job.

        Raises:
            InvalidJobType: no handler is registered for ``job_type``
            InvalidPayload: payload is not a JSON object or options are invalid
        """
        if not isinstance(job_type, str) or job_type not in self.registry:
            raise InvalidJobType(str(job_type), list(self.registry))

        opts = self._parse_options(options)
        self._validate_payload(payload)

        now = self.now()
        if opts.scheduled_at is not None:
            scheduled_at = opts.scheduled_at
            if scheduled_at.tzinfo is None:
                scheduled_at = scheduled_at.replace(tzinfo=UTC)
        else:
            scheduled_at = now + timedelta(seconds=opts.delay or 0)

        job = Job(
            id=uuid4(),
            type=job_type,
            payload=payload,
            status=JobStatus.PENDING.value,
            priority=(
                opts.priority
                if opts.priority is not None
                else self.settings.job_default_priority
            ),
            scheduled_at=scheduled_at,
            attempts=0,
            max_retries=(
                opts.max_retries
                if opts.max_retries is not None
                else self.settings.job_default_max_retries
            ),
            tags=opts.tags,
            created_by=opts.created_by,
            created_at=now,
            updated_at=now,
        )
        await self.store.insert_job(job)

        logger.info(
            "Job enqueued",
            job_id=str(job.id),
            type=job.type,
            priority=job.priority,
            scheduled_at=job.scheduled_at.isoformat(),
        )
        await self.record_event(job.id, LogLevel.INFO, f"Job created: {job_type}")
        return job

    def _parse_options(
        self, options: EnqueueOptions | dict[str, Any] | None
    ) -> EnqueueOptions:
        if isinstance(options, EnqueueOptions):
            return options
        try:
            return EnqueueOptions.model_validate(options or {})
        except ValidationError as e:
            raise InvalidPayload(
                "Invalid job options",
                {"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    @staticmethod
    def _validate_payload(payload: Any) -> None:
        if not isinstance(payload, dict):
            raise InvalidPayload(
                "Job payload must be a JSON object",
                {"received": type(payload).__name__},
            )
        try:
            json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise InvalidPayload(
                "Job payload is not JSON serializable", {"error": str(e)}
            ) from e

    # ---------- worker boundary ----------

    async def claim_next(
        self, worker_id: str, job_types: Sequence[str] | None = None
    ) -> Job | None:
        """Atomically claim the highest-priority eligible job, or None."""
        for _ in range(CLAIM_RACE_RETRIES):
            now = self.now()
            job = await self.store.claim(worker_id, now, job_types)
            if job is not None:
                logger.info(
                    "Job claimed",
                    job_id=str(job.id),
                    type=job.type,
                    worker_id=worker_id,
                    attempt=job.attempts,
                )
                await self.record_event(
                    job.id, LogLevel.INFO, f"Job claimed by worker {worker_id}"
                )
                return job
            # Zero rows with work still eligible means another worker won the row
            if not await self.store.has_eligible(now, job_types):
                return None
        return None

    async def report_success(
        self,
        job_id: UUID,
        worker_id: str,
        result: dict[str, Any] | None = None,
    ) -> bool:
        """running -> completed. Returns False (no-op) for a stale reporter."""
        job = await self.store.complete(job_id, worker_id, self.now(), result)
        if job is None:
            self._log_stale("report_success", job_id, worker_id)
            return False

        await self.store.record_outcome(worker_id, succeeded=True)
        logger.info("Job completed", job_id=str(job_id), worker_id=worker_id)
        await self.record_event(job_id, LogLevel.INFO, "Job completed successfully")
        return True

    async def report_failure(
        self, job_id: UUID, worker_id: str, error: str | BaseException
    ) -> bool:
        """Retry with backoff while budget remains, otherwise fail terminally.

        Returns False (no-op) for a stale reporter.
        """
        message = describe_error(error)
        job = await self.store.get_job(job_id)
        if (
            job is None
            or job.status != JobStatus.RUNNING.value
            or job.claimed_by != worker_id
        ):
            self._log_stale("report_failure", job_id, worker_id)
            return False

        now = self.now()
        if job.can_retry():
            run_at = now + self.backoff(job.attempts)
            updated = await self.store.reschedule(
                job_id, worker_id, job.attempts, now, run_at, message
            )
            if updated is None:
                self._log_stale("report_failure", job_id, worker_id)
                return False
            logger.warning(
                "Job failed, retry scheduled",
                job_id=str(job_id),
                worker_id=worker_id,
                attempt=job.attempts,
                max_retries=job.max_retries,
                retry_at=run_at.isoformat(),
                error=message,
            )
            await self.record_event(
                job_id,
                LogLevel.WARN,
                f"Job failed (attempt {job.attempts}/{job.max_retries + 1}), "
                f"retrying at {run_at.isoformat()}",
                error=message,
                backoff_seconds=(run_at - now).total_seconds(),
            )
        else:
            updated = await self.store.fail(
                job_id, worker_id, job.attempts, now, message
            )
            if updated is None:
                self._log_stale("report_failure", job_id, worker_id)
                return False
            logger.error(
                "Job failed permanently",
                job_id=str(job_id),
                worker_id=worker_id,
                attempts=job.attempts,
                error=message,
            )
            await self.record_event(
                job_id,
                LogLevel.ERROR,
                f"Job failed permanently after {job.attempts} attempts",
                error=message,
            )

        await self.store.record_outcome(worker_id, succeeded=False)
        return True

    async def release_claims(
        self, worker_id: str, job_ids: Sequence[UUID], reason: str
    ) -> list[UUID]:
        """Hand jobs the worker still holds back to the queue, uncharged.

        Used when a worker cannot finish or report a job itself, so the job
        does not wait for a dead-worker sweep. Jobs the worker no longer
        holds are left alone.
        """
        released = await self.store.release_claims_of(worker_id, self.now(), job_ids)
        if released:
            logger.warning(
                "Released job leases",
                worker_id=worker_id,
                job_ids=[str(job_id) for job_id in released],
                reason=reason,
            )
        for job_id in released:
            await self.record_event(
                job_id,
                LogLevel.WARN,
                f"Job released by worker {worker_id}: {reason}",
            )
        return released

    def _log_stale(self, operation: str, job_id: UUID, worker_id: str) -> None:
        logger.warning(
            "Ignoring report from worker that no longer holds the job",
            operation=operation,
            job_id=str(job_id),
            worker_id=worker_id,
        )

    # ---------- read side ----------

    async def get_job(self, job_id: UUID) -> Job | None:
        return await self.store.get_job(job_id)

    async def get_jobs(
        self,
        filter: JobFilter | None = None,
        limit: int = 50,
        offset: int = 0,
        order_by: str = "created_at",
        order_dir: str = "desc",
    ) -> JobPage:
        """Page through jobs. Read-only."""
        if order_by not in ORDERABLE_COLUMNS:
            raise ValueError(
                f"order_by must be one of {', '.join(sorted(ORDERABLE_COLUMNS))}"
            )
        if order_dir not in ("asc", "desc"):
            raise ValueError("order_dir must be 'asc' or 'desc'")

        filter = filter or JobFilter()
        limit = max(1, min(limit, self.settings.job_list_max_limit))
        offset = max(0, offset)

        jobs, total = await self.store.query_jobs(
            status=filter.status.value if filter.status else None,
            job_type=filter.type,
            limit=limit,
            offset=offset,
            order_by=order_by,
            order_dir=order_dir,
        )
        return JobPage(
            items=[JobResponse.model_validate(job) for job in jobs],
            pagination=Pagination(
                limit=limit,
                offset=offset,
                order_by=order_by,
                order_dir=order_dir,
                total=total,
            ),
        )

    async def get_logs(self, job_id: UUID) -> list[JobLog]:
        """Execution log of a job, oldest first."""
        return await self.store.list_logs(job_id)

    async def log(
        self, job_id: UUID, level: str | LogLevel, message: str, **metadata: Any
    ) -> None:
        level_value = LogLevel(level).value
        await self.store.append_log(
            job_id, level_value, message, metadata or None, self.now()
        )

    async def record_event(
        self, job_id: UUID, level: LogLevel, message: str, **metadata: Any
    ) -> None:
        """Lifecycle log entry; a failed write never undoes the transition."""
        try:
            await self.log(job_id, level, message, **metadata)
        except SQLAlchemyError:
            logger.warning(
                "Failed to append job log", job_id=str(job_id), exc_info=True
            )

    # ---------- retention ----------

    async def prune_finished_jobs(
        self, older_than_days: int, dry_run: bool = False
    ) -> int:
        """Delete completed/failed jobs (and their logs) finished before the cutoff.

        With ``dry_run`` only counts what would be deleted.
        """
        if older_than_days < 1:
            raise ValueError("older_than_days must be at least 1")
        cutoff = self.now() - timedelta(days=older_than_days)
        if dry_run:
            return await self.store.count_finished_before(cutoff)
        deleted = await self.store.delete_finished_before(cutoff)
        if deleted:
            logger.info(
                "Pruned finished jobs",
                deleted_count=deleted,
                older_than_days=older_than_days,
            )
        return deleted
