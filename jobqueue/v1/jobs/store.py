"""
SQLAlchemy-backed job store.

Every state-changing method here is a single conditional UPDATE whose WHERE
clause restates the state the caller expects ("still pending", "still
claimed by me"). The affected-row result is the only arbiter between
concurrent workers; nothing is locked in process memory.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, asc, delete, desc, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from jobqueue.v1.jobs.models import (
    TERMINAL_STATUSES,
    Job,
    JobLog,
    JobStatus,
    Worker,
    WorkerStatus,
)

ORDERABLE_COLUMNS = {
    "created_at": Job.created_at,
    "scheduled_at": Job.scheduled_at,
    "priority": Job.priority,
}


class JobStore:
    """Repository over the ``jobs``, ``workers`` and ``job_logs`` tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ---------- jobs: writes ----------

    async def insert_job(self, job: Job) -> Job:
        async with self.session_factory.begin() as session:
            session.add(job)
        return job

    async def claim(
        self,
        worker_id: str,
        now: datetime,
        job_types: Sequence[str] | None = None,
    ) -> Job | None:
        """Move the best eligible pending job to running for ``worker_id``.

        Candidate selection and the transition are one statement; the outer
        ``status = 'pending'`` guard makes a lost race affect zero rows
        instead of double-claiming.
        """
        # aliased so the subquery is not correlated to the UPDATE target
        eligible = aliased(Job)
        candidate = (
            select(eligible.id)
            .where(
                eligible.status == JobStatus.PENDING.value,
                eligible.scheduled_at <= now,
            )
            .order_by(
                desc(eligible.priority),
                asc(eligible.scheduled_at),
                asc(eligible.created_at),
            )
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        if job_types:
            candidate = candidate.where(eligible.type.in_(list(job_types)))

        stmt = (
            update(Job)
            .where(
                Job.id == candidate.scalar_subquery(),
                Job.status == JobStatus.PENDING.value,
            )
            .values(
                status=JobStatus.RUNNING.value,
                claimed_by=worker_id,
                claimed_at=now,
                started_at=now,
                completed_at=None,
                attempts=Job.attempts + 1,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory.begin() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def has_eligible(
        self, now: datetime, job_types: Sequence[str] | None = None
    ) -> bool:
        query = select(Job.id).where(
            Job.status == JobStatus.PENDING.value, Job.scheduled_at <= now
        )
        if job_types:
            query = query.where(Job.type.in_(list(job_types)))
        async with self.session_factory() as session:
            result = await session.execute(query.limit(1))
            return result.first() is not None

    async def complete(
        self,
        job_id: UUID,
        worker_id: str,
        now: datetime,
        result: dict[str, Any] | None = None,
    ) -> Job | None:
        """running -> completed, iff the lease still belongs to ``worker_id``."""
        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.RUNNING.value,
                Job.claimed_by == worker_id,
            )
            .values(
                status=JobStatus.COMPLETED.value,
                result=result,
                completed_at=now,
                claimed_by=None,
                claimed_at=None,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory.begin() as session:
            res = await session.execute(stmt)
            return res.scalars().first()

    async def reschedule(
        self,
        job_id: UUID,
        worker_id: str,
        expected_attempts: int,
        now: datetime,
        run_at: datetime,
        error: str,
    ) -> Job | None:
        """running -> pending with a delayed ``scheduled_at``."""
        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.RUNNING.value,
                Job.claimed_by == worker_id,
                Job.attempts == expected_attempts,
            )
            .values(
                status=JobStatus.PENDING.value,
                scheduled_at=run_at,
                last_error=error,
                claimed_by=None,
                claimed_at=None,
                started_at=None,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory.begin() as session:
            res = await session.execute(stmt)
            return res.scalars().first()

    async def fail(
        self,
        job_id: UUID,
        worker_id: str,
        expected_attempts: int,
        now: datetime,
        error: str,
    ) -> Job | None:
        """running -> failed (terminal)."""
        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.RUNNING.value,
                Job.claimed_by == worker_id,
                Job.attempts == expected_attempts,
            )
            .values(
                status=JobStatus.FAILED.value,
                last_error=error,
                completed_at=now,
                claimed_by=None,
                claimed_at=None,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory.begin() as session:
            res = await session.execute(stmt)
            return res.scalars().first()

    async def release_claims_of(
        self,
        worker_id: str,
        now: datetime,
        job_ids: Sequence[UUID] | None = None,
    ) -> list[UUID]:
        """Return running jobs still leased by ``worker_id`` to pending.

        ``job_ids`` narrows the release to those jobs; attempts are kept.
        """
        conditions = [
            Job.status == JobStatus.RUNNING.value,
            Job.claimed_by == worker_id,
        ]
        if job_ids is not None:
            if not job_ids:
                return []
            conditions.append(Job.id.in_(list(job_ids)))
        stmt = (
            update(Job)
            .where(*conditions)
            .values(
                status=JobStatus.PENDING.value,
                claimed_by=None,
                claimed_at=None,
                started_at=None,
                updated_at=now,
            )
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory.begin() as session:
            res = await session.execute(stmt)
            return list(res.scalars().all())

    async def release_orphaned_claims(
        self, cutoff: datetime, now: datetime
    ) -> list[UUID]:
        """Release leases older than ``cutoff`` whose holder is not an active worker."""
        active_workers = select(Worker.id).where(
            Worker.status == WorkerStatus.ACTIVE.value
        )
        stmt = (
            update(Job)
            .where(
                Job.status == JobStatus.RUNNING.value,
                Job.claimed_at < cutoff,
                Job.claimed_by.not_in(active_workers),
            )
            .values(
                status=JobStatus.PENDING.value,
                claimed_by=None,
                claimed_at=None,
                started_at=None,
                updated_at=now,
            )
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory.begin() as session:
            res = await session.execute(stmt)
            return list(res.scalars().all())

    async def delete_finished_before(self, cutoff: datetime) -> int:
        finished = select(Job.id).where(
            Job.status.in_(TERMINAL_STATUSES), Job.completed_at < cutoff
        )
        async with self.session_factory.begin() as session:
            await session.execute(delete(JobLog).where(JobLog.job_id.in_(finished)))
            result = await session.execute(
                delete(Job)
                .where(Job.status.in_(TERMINAL_STATUSES), Job.completed_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    async def count_finished_before(self, cutoff: datetime) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(Job.id)).where(
                    Job.status.in_(TERMINAL_STATUSES), Job.completed_at < cutoff
                )
            )
            return result.scalar_one()

    # ---------- jobs: reads ----------

    async def get_job(self, job_id: UUID) -> Job | None:
        async with self.session_factory() as session:
            return await session.get(Job, job_id)

    async def query_jobs(
        self,
        status: str | None,
        job_type: str | None,
        limit: int,
        offset: int,
        order_by: str,
        order_dir: str,
    ) -> tuple[list[Job], int]:
        conditions = []
        if status:
            conditions.append(Job.status == status)
        if job_type:
            conditions.append(Job.type == job_type)
        where = and_(True, *conditions)

        column = ORDERABLE_COLUMNS[order_by]
        direction = desc if order_dir == "desc" else asc

        async with self.session_factory() as session:
            total_result = await session.execute(
                select(func.count(Job.id)).where(where)
            )
            total = total_result.scalar() or 0

            jobs_result = await session.execute(
                select(Job)
                .where(where)
                .order_by(direction(column), direction(Job.created_at), Job.id)
                .offset(offset)
                .limit(limit)
            )
            return list(jobs_result.scalars().all()), total

    # ---------- job logs ----------

    async def append_log(
        self,
        job_id: UUID,
        level: str,
        message: str,
        meta: dict[str, Any] | None,
        now: datetime,
    ) -> None:
        async with self.session_factory.begin() as session:
            session.add(
                JobLog(
                    job_id=job_id,
                    level=level,
                    message=message,
                    meta=meta,
                    created_at=now,
                )
            )

    async def list_logs(self, job_id: UUID) -> list[JobLog]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(JobLog).where(JobLog.job_id == job_id).order_by(asc(JobLog.id))
            )
            return list(result.scalars().all())

    # ---------- workers ----------

    async def upsert_worker(
        self,
        worker_id: str,
        now: datetime,
        hostname: str | None,
        pid: int | None,
        concurrency: int,
        job_types: list[str],
    ) -> None:
        """Register a worker as active with a fresh heartbeat."""
        values = {
            "id": worker_id,
            "status": WorkerStatus.ACTIVE.value,
            "last_heartbeat": now,
            "hostname": hostname,
            "pid": pid,
            "concurrency": concurrency,
            "job_types": job_types,
            "jobs_processed": 0,
            "jobs_succeeded": 0,
            "jobs_failed": 0,
            "created_at": now,
        }
        refreshed = ("status", "last_heartbeat", "hostname", "pid", "concurrency", "job_types")

        async with self.session_factory.begin() as session:
            insert = (
                pg_insert
                if session.get_bind().dialect.name == "postgresql"
                else sqlite_insert
            )
            stmt = insert(Worker).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[Worker.id],
                set_={name: stmt.excluded[name] for name in refreshed},
            )
            await session.execute(stmt)

    async def touch_worker(self, worker_id: str, now: datetime) -> bool:
        """Refresh the heartbeat of an active worker; False if it was declared dead."""
        stmt = (
            update(Worker)
            .where(Worker.id == worker_id, Worker.status == WorkerStatus.ACTIVE.value)
            .values(last_heartbeat=now)
        )
        async with self.session_factory.begin() as session:
            result = await session.execute(stmt)
            return (result.rowcount or 0) > 0

    async def record_outcome(self, worker_id: str, succeeded: bool) -> None:
        values: dict[str, Any] = {"jobs_processed": Worker.jobs_processed + 1}
        if succeeded:
            values["jobs_succeeded"] = Worker.jobs_succeeded + 1
        else:
            values["jobs_failed"] = Worker.jobs_failed + 1
        async with self.session_factory.begin() as session:
            await session.execute(
                update(Worker).where(Worker.id == worker_id).values(**values)
            )

    async def expired_worker_ids(self, cutoff: datetime) -> list[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Worker.id).where(
                    Worker.status == WorkerStatus.ACTIVE.value,
                    Worker.last_heartbeat < cutoff,
                )
            )
            return list(result.scalars().all())

    async def mark_worker_dead(self, worker_id: str, cutoff: datetime) -> bool:
        """active -> dead, iff the heartbeat is still older than ``cutoff``."""
        stmt = (
            update(Worker)
            .where(
                Worker.id == worker_id,
                Worker.status == WorkerStatus.ACTIVE.value,
                Worker.last_heartbeat < cutoff,
            )
            .values(status=WorkerStatus.DEAD.value)
        )
        async with self.session_factory.begin() as session:
            result = await session.execute(stmt)
            return (result.rowcount or 0) > 0

    async def get_worker(self, worker_id: str) -> Worker | None:
        async with self.session_factory() as session:
            return await session.get(Worker, worker_id)

    async def list_workers(self, status: str | None = None) -> list[Worker]:
        query = select(Worker).order_by(desc(Worker.last_heartbeat))
        if status:
            query = query.where(Worker.status == status)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # ---------- aggregates ----------

    async def count_by_status(self) -> dict[str, int]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job.status, func.count(Job.id)).group_by(Job.status)
            )
            return {status: count for status, count in result.all()}

    async def count_by_type(self) -> list[tuple[str, int]]:
        count = func.count(Job.id)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job.type, count)
                .group_by(Job.type)
                .order_by(desc(count), asc(Job.type))
            )
            return [(job_type, n) for job_type, n in result.all()]

    async def count_by_status_and_type(
        self, since: datetime
    ) -> list[tuple[str, str, int]]:
        count = func.count(Job.id)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job.status, Job.type, count)
                .where(Job.updated_at >= since)
                .group_by(Job.status, Job.type)
                .order_by(desc(count), asc(Job.type), asc(Job.status))
            )
            return [(status, job_type, n) for status, job_type, n in result.all()]

    async def worker_totals(self, cutoff: datetime) -> dict[str, int]:
        async with self.session_factory() as session:
            active_result = await session.execute(
                select(func.count(Worker.id)).where(
                    Worker.status == WorkerStatus.ACTIVE.value,
                    Worker.last_heartbeat >= cutoff,
                )
            )
            sums_result = await session.execute(
                select(
                    func.coalesce(func.sum(Worker.jobs_processed), 0),
                    func.coalesce(func.sum(Worker.jobs_succeeded), 0),
                    func.coalesce(func.sum(Worker.jobs_failed), 0),
                )
            )
            processed, succeeded, failed = sums_result.one()
            return {
                "active": active_result.scalar() or 0,
                "total_processed": int(processed),
                "total_succeeded": int(succeeded),
                "total_failed": int(failed),
            }

    async def recent_durations(self, sample_size: int) -> list[tuple[datetime, datetime]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job.started_at, Job.completed_at)
                .where(
                    Job.status == JobStatus.COMPLETED.value,
                    Job.started_at.is_not(None),
                    Job.completed_at.is_not(None),
                )
                .order_by(desc(Job.completed_at))
                .limit(sample_size)
            )
            return [(started, completed) for started, completed in result.all()]
