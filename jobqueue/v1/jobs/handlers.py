"""
Built-in job handlers.

Handlers implement the JobHandler protocol and are registered in the job
registry by ``registry_init``. Applications register their own handlers
the same way.
"""

from typing import Any

from jobqueue.config.logging import get_logger
from jobqueue.config.settings import Settings
from jobqueue.v1.jobs.queue import JobContext

logger = get_logger(__name__)


class PruneJobsHandler:
    """
    Job handler that deletes finished jobs past the retention window.

    Payload expected:
    {
        "older_than_days": 30,  # optional, defaults to JOB_CLEANUP_AFTER_DAYS
        "dry_run": false  # optional
    }
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    async def handle(
        self, ctx: JobContext, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        older_than_days = payload.get(
            "older_than_days", self.settings.job_cleanup_after_days
        )
        dry_run = bool(payload.get("dry_run", False))

        if not isinstance(older_than_days, int) or older_than_days < 1:
            raise ValueError(
                f"older_than_days must be a positive integer, got: {older_than_days}"
            )

        await ctx.log(
            "Starting job cleanup",
            older_than_days=older_than_days,
            dry_run=dry_run,
        )
        count = await ctx.queue.prune_finished_jobs(older_than_days, dry_run=dry_run)

        logger.info(
            "Job cleanup task completed",
            older_than_days=older_than_days,
            dry_run=dry_run,
            count=count,
        )
        await ctx.log(
            f"Would delete {count} jobs" if dry_run else f"Deleted {count} jobs"
        )

        return {
            "status": "dry_run" if dry_run else "completed",
            "older_than_days": older_than_days,
            "deleted_count": 0 if dry_run else count,
            "matched_count": count,
        }


class EchoHandler:
    """Returns its payload. Useful for smoke-testing a deployment."""

    async def handle(
        self, ctx: JobContext, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        if payload.get("fail"):
            raise RuntimeError(payload.get("message") or "Echo asked to fail")
        await ctx.log("Echo", attempt=ctx.attempt)
        return {"echo": payload, "attempt": ctx.attempt}
