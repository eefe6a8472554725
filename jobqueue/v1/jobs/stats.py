"""
Read-side statistics derived from the job store.
"""

from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import TypeVar

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings
from jobqueue.v1.jobs.models import JobStatus
from jobqueue.v1.jobs.queue import QueueCore
from jobqueue.v1.jobs.schemas import (
    JobStatsResponse,
    JobTypeCount,
    Performance,
    QueueDepth,
    RecentActivity,
    WorkerTotals,
)

logger = get_logger(__name__)

T = TypeVar("T")


class StatsAggregator:
    """Builds the dashboard view; each section fails independently."""

    def __init__(self, queue: QueueCore, settings: Settings):
        self.queue = queue
        self.store = queue.store
        self.settings = settings

    async def get_stats(self) -> JobStatsResponse:
        stats = JobStatsResponse()

        stats.queue = await self._section(
            stats, "queue", self.queue_depth, QueueDepth
        )
        stats.job_types = await self._section(
            stats, "job_types", self.job_type_counts, list
        )
        stats.recent_activity = await self._section(
            stats, "recent_activity", self.recent_activity, list
        )
        stats.workers = await self._section(
            stats, "workers", self.worker_totals, WorkerTotals
        )
        stats.performance = await self._section(
            stats, "performance", self.performance, Performance
        )
        return stats

    async def _section(
        self,
        stats: JobStatsResponse,
        name: str,
        compute: Callable[[], Awaitable[T]],
        default: Callable[[], T],
    ) -> T:
        try:
            return await compute()
        except Exception:
            # Any failure (driver, decoding, arithmetic) blanks only this section
            logger.exception("Stats section failed, using default", section=name)
            stats.errors.append(name)
            return default()

    async def queue_depth(self) -> QueueDepth:
        counts = await self.store.count_by_status()
        depth = QueueDepth(
            **{
                status.value: counts.get(status.value, 0)
                for status in JobStatus
            }
        )
        depth.total = sum(counts.values())
        return depth

    async def job_type_counts(self) -> list[JobTypeCount]:
        return [
            JobTypeCount(type=job_type, count=count)
            for job_type, count in await self.store.count_by_type()
        ]

    async def recent_activity(self) -> list[RecentActivity]:
        since = self.queue.now() - timedelta(
            hours=self.settings.stats_recent_window_hours
        )
        return [
            RecentActivity(status=status, type=job_type, count=count)
            for status, job_type, count in await self.store.count_by_status_and_type(
                since
            )
        ]

    async def worker_totals(self) -> WorkerTotals:
        cutoff = self.queue.now() - timedelta(
            minutes=self.settings.worker_heartbeat_timeout_minutes
        )
        return WorkerTotals(**await self.store.worker_totals(cutoff))

    async def performance(self) -> Performance:
        samples = await self.store.recent_durations(
            self.settings.stats_duration_sample_size
        )
        if not samples:
            return Performance()
        total = sum(
            (completed - started).total_seconds() for started, completed in samples
        )
        return Performance(avg_processing_time_seconds=round(total / len(samples), 3))
