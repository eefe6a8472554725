"""Tests for CLI commands"""

import json
from unittest.mock import Mock, patch

import httpx
import pytest
from typer.testing import CliRunner

from jobctl.client.base import APIClient, JobCtlError
from jobctl.main import app
from jobctl.utils.config_manager import ConfigManager


@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point every command module at a throwaway config directory."""
    manager = ConfigManager(config_dir=tmp_path / "jobctl")
    for module in (
        "jobctl.main.config_manager",
        "jobctl.commands.jobs.config",
        "jobctl.commands.workers.config",
        "jobctl.commands.config.config",
    ):
        monkeypatch.setattr(module, manager)
    return manager


def make_client(**returns):
    """Mock JobsClient usable as a context manager."""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    for name, value in returns.items():
        if isinstance(value, Exception):
            getattr(client, name).side_effect = value
        else:
            getattr(client, name).return_value = value
    return client


JOB = {
    "id": "6f1c2a9e-8a53-4c1e-9a53-6c0b8a8e2f11",
    "type": "system.echo",
    "payload": {"message": "hi"},
    "status": "pending",
    "priority": 0,
    "scheduled_at": "2025-01-01T12:00:00Z",
    "attempts": 0,
    "max_retries": 3,
    "last_error": None,
    "result": None,
    "claimed_by": None,
    "claimed_at": None,
    "tags": [],
    "created_by": None,
    "created_at": "2025-01-01T12:00:00Z",
    "started_at": None,
    "completed_at": None,
    "updated_at": "2025-01-01T12:00:00Z",
}


class TestMainCommands:
    """Test main CLI commands"""

    def test_version_option(self, runner):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "HAOS Jobs CLI v1.0.0" in result.stdout

    def test_version_command(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "1.0.0" in result.stdout

    @patch("jobctl.main.JobsClient")
    def test_status_success(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            health_check={
                "ok": True,
                "version": "1.0.0",
                "environment": "development",
                "database": {"connected": True},
                "worker": {"active_workers": 2, "queue_depth": 5},
            }
        )

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout

    @patch("jobctl.main.JobsClient")
    def test_status_failure(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            health_check=JobCtlError("Connection failed")
        )

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestJobsCommands:
    """Test jobs commands"""

    @patch("jobctl.commands.jobs.JobsClient")
    def test_list_jobs(self, mock_client_class, runner):
        client = make_client(
            list_jobs={"items": [JOB], "pagination": {"total": 1}}
        )
        mock_client_class.return_value = client

        result = runner.invoke(app, ["jobs", "list", "--status", "pending"])
        assert result.exit_code == 0
        assert JOB["id"][:8] in result.stdout
        assert client.list_jobs.call_args.kwargs["status"] == "pending"
        assert client.list_jobs.call_args.kwargs["limit"] == 20

    @patch("jobctl.commands.jobs.JobsClient")
    def test_list_jobs_empty(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            list_jobs={"items": [], "pagination": {"total": 0}}
        )

        result = runner.invoke(app, ["jobs", "list"])
        assert result.exit_code == 0
        assert "No jobs found" in result.stdout

    @patch("jobctl.commands.jobs.JobsClient")
    def test_show_job(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(get_job=JOB)

        result = runner.invoke(app, ["jobs", "show", JOB["id"]])
        assert result.exit_code == 0
        assert "system.echo" in result.stdout

    @patch("jobctl.commands.jobs.JobsClient")
    def test_show_missing_job(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            get_job=JobCtlError("API Error 404: Job not found")
        )

        result = runner.invoke(app, ["jobs", "show", JOB["id"]])
        assert result.exit_code == 1
        assert "Failed to get job" in result.stdout

    @patch("jobctl.commands.jobs.JobsClient")
    def test_enqueue_job(self, mock_client_class, runner):
        client = make_client(enqueue_job=JOB)
        mock_client_class.return_value = client

        result = runner.invoke(
            app,
            [
                "jobs",
                "enqueue",
                "system.echo",
                "--payload",
                json.dumps({"message": "hi"}),
                "--priority",
                "5",
                "--tag",
                "smoke",
            ],
        )
        assert result.exit_code == 0
        assert "Enqueued system.echo job" in result.stdout
        client.enqueue_job.assert_called_once_with(
            "system.echo", {"message": "hi"}, {"priority": 5, "tags": ["smoke"]}
        )

    @patch("jobctl.commands.jobs.JobsClient")
    def test_enqueue_with_invalid_json(self, mock_client_class, runner):
        result = runner.invoke(
            app, ["jobs", "enqueue", "system.echo", "--payload", "{not json"]
        )
        assert result.exit_code == 1
        assert "not valid JSON" in result.stdout
        mock_client_class.assert_not_called()

    @patch("jobctl.commands.jobs.JobsClient")
    def test_logs(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            get_job_logs=[
                {
                    "id": 1,
                    "job_id": JOB["id"],
                    "level": "info",
                    "message": "Job created: system.echo",
                    "metadata": None,
                    "created_at": "2025-01-01T12:00:00Z",
                }
            ]
        )

        result = runner.invoke(app, ["jobs", "logs", JOB["id"]])
        assert result.exit_code == 0
        assert "Job created" in result.stdout

    @patch("jobctl.commands.jobs.JobsClient")
    def test_types(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            list_job_types=["maintenance.prune_jobs", "system.echo"]
        )

        result = runner.invoke(app, ["jobs", "types"])
        assert result.exit_code == 0
        assert "maintenance.prune_jobs" in result.stdout

    @patch("jobctl.commands.jobs.JobsClient")
    def test_stats_with_degraded_sections(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            get_stats={
                "queue": {
                    "pending": 3,
                    "running": 1,
                    "completed": 10,
                    "failed": 2,
                    "total": 16,
                },
                "job_types": [{"type": "system.echo", "count": 16}],
                "recent_activity": [],
                "workers": {
                    "active": 1,
                    "total_processed": 12,
                    "total_succeeded": 10,
                    "total_failed": 2,
                },
                "performance": {"avg_processing_time_seconds": 0.0},
                "errors": ["performance"],
            }
        )

        result = runner.invoke(app, ["jobs", "stats"])
        assert result.exit_code == 0
        assert "Unavailable sections" in result.stdout
        assert "performance" in result.stdout


class TestWorkersCommands:
    """Test workers commands"""

    @patch("jobctl.commands.workers.JobsClient")
    def test_list_workers(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            list_workers=[
                {
                    "id": "box-42-abcd1234",
                    "status": "active",
                    "last_heartbeat": "2025-01-01T12:00:00Z",
                    "hostname": "box",
                    "pid": 42,
                    "concurrency": 2,
                    "job_types": [],
                    "jobs_processed": 4,
                    "jobs_succeeded": 3,
                    "jobs_failed": 1,
                    "created_at": "2025-01-01T11:00:00Z",
                }
            ]
        )

        result = runner.invoke(app, ["workers", "list"])
        assert result.exit_code == 0
        assert "box-42-abcd1234" in result.stdout

    @patch("jobctl.commands.workers.JobsClient")
    def test_list_workers_empty(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(list_workers=[])

        result = runner.invoke(app, ["workers", "list"])
        assert result.exit_code == 0
        assert "No workers registered" in result.stdout

    @patch("jobctl.commands.workers.JobsClient")
    def test_cleanup_reclaims(self, mock_client_class, runner):
        client = make_client(
            cleanup_workers={"reclaimed_jobs": 2, "timeout_minutes": 1.0}
        )
        mock_client_class.return_value = client

        result = runner.invoke(app, ["workers", "cleanup", "--timeout-minutes", "1"])
        assert result.exit_code == 0
        assert "Reclaimed 2 jobs" in result.stdout
        client.cleanup_workers.assert_called_once_with(1.0)

    @patch("jobctl.commands.workers.JobsClient")
    def test_cleanup_with_nothing_to_do(self, mock_client_class, runner):
        mock_client_class.return_value = make_client(
            cleanup_workers={"reclaimed_jobs": 0, "timeout_minutes": 5.0}
        )

        result = runner.invoke(app, ["workers", "cleanup"])
        assert result.exit_code == 0
        assert "No jobs needed reclaiming" in result.stdout

    @patch("jobctl.commands.workers.JobsClient")
    def test_cleanup_rejects_non_positive_timeout(self, mock_client_class, runner):
        result = runner.invoke(app, ["workers", "cleanup", "--timeout-minutes", "0"])
        assert result.exit_code == 1
        mock_client_class.assert_not_called()


class TestWorkerCommand:
    """Test the worker runner's argument checks"""

    def test_unknown_job_type_is_rejected(self, runner):
        result = runner.invoke(app, ["worker", "run", "--type", "nope.nothing"])
        assert result.exit_code == 1
        assert "nope.nothing" in result.stdout


class TestConfigCommands:
    """Test config commands"""

    def test_set_and_show(self, runner, isolated_config):
        result = runner.invoke(
            app, ["config", "set", "api.base_url", "http://jobs.internal:9000"]
        )
        assert result.exit_code == 0
        assert isolated_config.get("api.base_url") == "http://jobs.internal:9000"

        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "http://jobs.internal:9000" in result.stdout

    def test_set_numeric_value(self, runner, isolated_config):
        result = runner.invoke(app, ["config", "set", "display.jobs_per_page", "50"])
        assert result.exit_code == 0
        assert isolated_config.get("display.jobs_per_page") == 50

    def test_set_rejects_bad_url(self, runner, isolated_config):
        result = runner.invoke(app, ["config", "set", "api.base_url", "jobs.internal"])
        assert result.exit_code == 1
        assert not isolated_config.config_file.exists()

    def test_set_rejects_non_numeric_timeout(self, runner):
        result = runner.invoke(app, ["config", "set", "api.timeout", "soon"])
        assert result.exit_code == 1

    def test_reset(self, runner, isolated_config):
        isolated_config.set("api.timeout", 99)

        result = runner.invoke(app, ["config", "reset", "--yes"])
        assert result.exit_code == 0
        assert isolated_config.get("api.timeout") == 30

    def test_get(self, runner, isolated_config):
        isolated_config.set("api.timeout", 12)

        result = runner.invoke(app, ["config", "get", "api.timeout"])
        assert result.exit_code == 0
        assert "12" in result.stdout

        result = runner.invoke(app, ["config", "get", "api.nothing"])
        assert result.exit_code == 1


class TestConfigManager:
    """Test YAML-backed configuration"""

    def test_defaults_without_file(self, isolated_config):
        assert isolated_config.get("api.timeout") == 30
        assert isolated_config.get("display.jobs_per_page") == 20
        assert isolated_config.get("missing.key", "fallback") == "fallback"

    def test_partial_file_is_merged_with_defaults(self, isolated_config):
        isolated_config.ensure_config_dir()
        isolated_config.config_file.write_text("api:\n  timeout: 5\n")

        assert isolated_config.get("api.timeout") == 5
        assert isolated_config.get("display.jobs_per_page") == 20

    def test_corrupt_file_falls_back_to_defaults(self, isolated_config):
        isolated_config.ensure_config_dir()
        isolated_config.config_file.write_text("api: [unclosed\n")

        assert isolated_config.get("api.timeout") == 30


class TestAPIClient:
    """Test response envelope handling"""

    def _client(self, handler) -> APIClient:
        return APIClient("http://test", transport=httpx.MockTransport(handler))

    def test_unwraps_success_envelope(self):
        def handler(request):
            assert request.url.path == "/v1/jobs/types"
            return httpx.Response(200, json={"ok": True, "data": ["system.echo"]})

        with self._client(handler) as client:
            assert client.get("/jobs/types") == ["system.echo"]

    def test_error_envelope_raises(self):
        def handler(request):
            return httpx.Response(
                400,
                json={"ok": False, "error": {"message": "Invalid job type: x"}},
            )

        with self._client(handler) as client:
            with pytest.raises(JobCtlError, match="Invalid job type: x"):
                client.post("/jobs", json={"type": "x", "payload": {}})

    def test_validation_error_without_envelope(self):
        def handler(request):
            return httpx.Response(422, json={"detail": [{"msg": "bad"}]})

        with self._client(handler) as client:
            with pytest.raises(JobCtlError, match="422"):
                client.get("/jobs")

    def test_validation_envelope_names_fields(self):
        def handler(request):
            assert request.headers["X-Request-ID"]
            return httpx.Response(
                422,
                json={
                    "ok": False,
                    "error": {
                        "message": "Request validation failed",
                        "code": 422,
                        "details": {
                            "errors": [{"loc": ["query", "limit"], "msg": "too big"}]
                        },
                    },
                },
            )

        with self._client(handler) as client:
            with pytest.raises(JobCtlError, match=r"Request validation failed \(limit\)") as exc:
                client.get("/jobs", {"limit": 5000})

        assert exc.value.status_code == 422

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self._client(handler) as client:
            with pytest.raises(JobCtlError, match="Connection failed"):
                client.get("/healthz")
