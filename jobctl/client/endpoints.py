"""API Endpoint Wrappers - Typed admin API calls"""

from typing import Any

from ..utils.config_manager import config
from .base import APIClient, JobCtlError

__all__ = ["JobsClient", "JobCtlError"]


class JobsClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_headers = headers or api_config.get("headers", {})

        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=final_headers,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Jobs Endpoints
    def list_jobs(
        self,
        status: str | None = None,
        type: str | None = None,
        limit: int = 20,
        offset: int = 0,
        order_by: str = "created_at",
        order_dir: str = "desc",
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {
            "limit": limit,
            "offset": offset,
            "order_by": order_by,
            "order_dir": order_dir,
        }
        if status:
            params["status"] = status
        if type:
            params["type"] = type
        return self.api.get("/jobs", params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get specific job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def get_job_logs(self, job_id: str) -> list[dict[str, Any]]:
        """Get the execution log of a job"""
        return self.api.get(f"/jobs/{job_id}/logs")

    def enqueue_job(
        self,
        type: str,
        payload: dict[str, Any],
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Submit a new job"""
        return self.api.post(
            "/jobs", {"type": type, "payload": payload, "options": options or {}}
        )

    def list_job_types(self) -> list[str]:
        """Job types with a registered handler"""
        return self.api.get("/jobs/types")

    def get_stats(self) -> dict[str, Any]:
        """Queue statistics"""
        return self.api.get("/jobs/stats")

    # Workers Endpoints
    def list_workers(self, status: str | None = None) -> list[dict[str, Any]]:
        """List registered workers"""
        params = {"status": status} if status else None
        return self.api.get("/workers", params)

    def cleanup_workers(self, timeout_minutes: float | None = None) -> dict[str, Any]:
        """Declare silent workers dead and reclaim their jobs"""
        params = (
            {"timeout_minutes": timeout_minutes} if timeout_minutes is not None else None
        )
        return self.api.post("/workers/cleanup", params=params)
