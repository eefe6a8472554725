"""
Pydantic schemas for the job queue boundary.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from jobqueue.v1.jobs.models import JobStatus, WorkerStatus

OrderBy = Literal["created_at", "scheduled_at", "priority"]
OrderDir = Literal["asc", "desc"]


class EnqueueOptions(BaseModel):
    """Scheduling options accepted by ``QueueCore.enqueue``."""

    model_config = ConfigDict(extra="forbid")

    priority: int | None = Field(
        default=None, ge=-100, le=100, description="Higher numbers run first"
    )
    delay: float | None = Field(
        default=None, ge=0, description="Seconds before the job becomes eligible"
    )
    scheduled_at: datetime | None = Field(
        default=None, description="Absolute earliest run time"
    )
    max_retries: int | None = Field(
        default=None, ge=0, le=100, description="Maximum execution attempts"
    )
    tags: list[str] = Field(default_factory=list, description="Free-form labels")
    created_by: str | None = Field(default=None, description="Producer identity")

    @model_validator(mode="after")
    def check_schedule(self) -> "EnqueueOptions":
        if self.delay is not None and self.scheduled_at is not None:
            raise ValueError("delay and scheduled_at are mutually exclusive")
        return self


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via the admin API."""

    type: str = Field(..., min_length=1, description="Job type")
    payload: Any = Field(..., description="Job payload, a JSON object")
    options: dict[str, Any] = Field(
        default_factory=dict, description="Priority, delay, max_retries, tags"
    )


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: str
    payload: dict[str, Any]
    status: JobStatus
    priority: int
    scheduled_at: datetime
    attempts: int
    max_retries: int
    last_error: str | None = None
    result: dict[str, Any] | None = None

    claimed_by: str | None = None
    claimed_at: datetime | None = None

    tags: list[str] = Field(default_factory=list)
    created_by: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime


class JobLogResponse(BaseModel):
    """A single execution log line."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    job_id: UUID
    level: str
    message: str
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="meta")
    created_at: datetime


class WorkerResponse(BaseModel):
    """Schema for worker API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    status: WorkerStatus
    last_heartbeat: datetime
    hostname: str | None = None
    pid: int | None = None
    concurrency: int
    job_types: list[str] = Field(default_factory=list)
    jobs_processed: int
    jobs_succeeded: int
    jobs_failed: int
    created_at: datetime


class JobFilter(BaseModel):
    """Filter for job listings."""

    status: JobStatus | None = None
    type: str | None = None


class Pagination(BaseModel):
    limit: int
    offset: int
    order_by: OrderBy
    order_dir: OrderDir
    total: int


class JobPage(BaseModel):
    """A page of jobs with the pagination that produced it."""

    items: list[JobResponse]
    pagination: Pagination


class QueueDepth(BaseModel):
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0


class JobTypeCount(BaseModel):
    type: str
    count: int


class RecentActivity(BaseModel):
    status: JobStatus
    type: str
    count: int


class WorkerTotals(BaseModel):
    active: int = 0
    total_processed: int = 0
    total_succeeded: int = 0
    total_failed: int = 0


class Performance(BaseModel):
    avg_processing_time_seconds: float = 0.0


class JobStatsResponse(BaseModel):
    """Dashboard statistics; every section degrades to its defaults on error."""

    queue: QueueDepth = Field(default_factory=QueueDepth)
    job_types: list[JobTypeCount] = Field(default_factory=list)
    recent_activity: list[RecentActivity] = Field(default_factory=list)
    workers: WorkerTotals = Field(default_factory=WorkerTotals)
    performance: Performance = Field(default_factory=Performance)
    errors: list[str] = Field(
        default_factory=list, description="Sections that fell back to defaults"
    )


class CleanupResponse(BaseModel):
    reclaimed_jobs: int
    timeout_minutes: float
