"""
Job store models: jobs, workers and the per-job execution log.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jobqueue.infra.database import Base, UTCDateTime


def utcnow() -> datetime:
    return datetime.now(UTC)


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class WorkerStatus(str, Enum):
    """Worker liveness enumeration."""

    ACTIVE = "active"
    DEAD = "dead"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class Job(Base):
    """
    A unit of asynchronous work.

    Only the queue core writes ``status``/``claimed_by``; every write is a
    conditional UPDATE so the row is the single source of mutual exclusion
    between workers.
    """

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Handler registry key"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Handler-interpreted parameters"
    )

    # Scheduling
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: pending|running|completed|failed",
    )
    priority: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Higher is served first"
    )
    scheduled_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, comment="Earliest time to run"
    )

    # Retry accounting
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Execution attempts so far"
    )
    max_retries: Mapped[int] = mapped_column(
        Integer, nullable=False, default=3, comment="Attempt ceiling"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last handler error"
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Handler result on success"
    )

    # Lease
    claimed_by: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker holding the exclusive lease"
    )
    claimed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Lease start"
    )

    # Provenance
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_by: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed')",
            name="jobs_status_check",
        ),
        CheckConstraint("attempts >= 0", name="jobs_attempts_check"),
        Index(
            "ix_jobs_claim_order",
            "status",
            "priority",
            "scheduled_at",
            "created_at",
        ),
        Index("ix_jobs_claimed_by", "claimed_by"),
        Index("ix_jobs_type_status", "type", "status"),
        Index("ix_jobs_completed_at", "completed_at"),
    )

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_retry(self) -> bool:
        """Whether a failure of the current attempt would be retried.

        ``max_retries`` counts re-executions after the first attempt, so a
        job runs at most ``max_retries + 1`` times.
        """
        return self.attempts <= self.max_retries

    def duration_seconds(self) -> float | None:
        if not self.started_at or not self.completed_at:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class Worker(Base):
    """A registered worker runtime and its liveness/throughput counters."""

    __tablename__ = "workers"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=WorkerStatus.ACTIVE.value,
        comment="Worker status: active|dead",
    )
    last_heartbeat: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    hostname: Mapped[str | None] = mapped_column(Text, nullable=True)
    pid: Mapped[int | None] = mapped_column(Integer, nullable=True)
    concurrency: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    job_types: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    jobs_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    jobs_succeeded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    jobs_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("status IN ('active', 'dead')", name="workers_status_check"),
        Index("ix_workers_status_heartbeat", "status", "last_heartbeat"),
    )


class JobLog(Base):
    """Append-only log line attached to a job."""

    __tablename__ = "job_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False
    )
    level: Mapped[str] = mapped_column(Text, nullable=False, default=LogLevel.INFO.value)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow
    )

    __table_args__ = (Index("ix_job_logs_job_id_id", "job_id", "id"),)
