"""Tests for the worker runtime"""

import asyncio
import time
from datetime import UTC, datetime

import pytest

from jobqueue.v1.core.registries import HandlerRegistry
from jobqueue.v1.jobs.models import JobStatus, WorkerStatus
from jobqueue.v1.jobs.queue import QueueCore
from jobqueue.v1.jobs.worker import WorkerRuntime


@pytest.fixture
def runtime(queue, liveness, settings):
    return WorkerRuntime(queue, liveness, settings, worker_id="test-worker")


async def _start(runtime: WorkerRuntime) -> asyncio.Task:
    task = asyncio.create_task(runtime.start())
    # Let the worker register before the test continues
    for _ in range(100):
        if runtime.running:
            break
        await asyncio.sleep(0.01)
    return task


async def _shutdown(runtime: WorkerRuntime, task: asyncio.Task) -> None:
    await runtime.stop()
    await asyncio.wait_for(task, timeout=5)


class TestProcessing:
    """Single-job execution through run_once"""

    @pytest.mark.asyncio
    async def test_success_is_reported_with_result(self, runtime, queue):
        job = await queue.enqueue("system.echo", {"hello": "world"})

        processed = await runtime.run_once()

        assert processed.id == job.id
        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.COMPLETED.value
        assert stored.result == {"echo": {"hello": "world"}, "attempt": 1}

    @pytest.mark.asyncio
    async def test_handler_error_is_reported_as_failure(self, runtime, queue):
        job = await queue.enqueue("test.fail", {"message": "disk full"})

        await runtime.run_once()

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.PENDING.value
        assert stored.attempts == 1
        assert stored.last_error == "RuntimeError: disk full"

    @pytest.mark.asyncio
    async def test_timeout_is_reported_as_failure(self, queue, liveness, settings):
        runtime = WorkerRuntime(queue, liveness, settings, job_timeout_s=0.05)
        job = await queue.enqueue("test.sleep", {"seconds": 2}, {"max_retries": 0})

        started = time.monotonic()
        await runtime.run_once()

        assert time.monotonic() - started < 1.5
        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.FAILED.value
        assert stored.last_error.startswith("HandlerTimeout:")

    @pytest.mark.asyncio
    async def test_missing_handler_is_reported_as_failure(
        self, queue, liveness, settings
    ):
        """A worker without the handler fails the job instead of crashing."""
        job = await queue.enqueue("test.noop", {}, {"max_retries": 0})
        bare_queue = QueueCore(queue.store, HandlerRegistry(), settings, queue.clock)
        runtime = WorkerRuntime(bare_queue, liveness, settings)

        await runtime.run_once()

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.FAILED.value
        assert "HandlerNotFound" in stored.last_error

    @pytest.mark.asyncio
    async def test_plain_function_handler(self, queue, liveness, settings, registry):
        def add(ctx, payload):
            return payload["a"] + payload["b"]

        registry.register("test.add", add)
        runtime = WorkerRuntime(queue, liveness, settings)
        job = await queue.enqueue("test.add", {"a": 2, "b": 3})

        await runtime.run_once()

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.COMPLETED.value
        assert stored.result == {"value": 5}

    @pytest.mark.asyncio
    async def test_async_callable_handler(self, queue, liveness, settings, registry):
        class Doubler:
            async def __call__(self, ctx, payload):
                await asyncio.sleep(0)
                return {"doubled": payload["n"] * 2}

        registry.register("test.double", Doubler())
        runtime = WorkerRuntime(queue, liveness, settings)
        job = await queue.enqueue("test.double", {"n": 21})

        await runtime.run_once()

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.COMPLETED.value
        assert stored.result == {"doubled": 42}

    @pytest.mark.asyncio
    async def test_unserializable_result_fails_the_attempt(
        self, queue, liveness, settings, registry
    ):
        class StampHandler:
            async def handle(self, ctx, payload):
                return {"finished": datetime(2025, 1, 1, tzinfo=UTC)}

        registry.register("test.stamp", StampHandler())
        runtime = WorkerRuntime(queue, liveness, settings)
        job = await queue.enqueue("test.stamp", {})

        await runtime.run_once()

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.PENDING.value
        assert stored.claimed_by is None
        assert stored.attempts == 1
        assert stored.last_error.startswith(
            "ValueError: Handler result is not JSON serializable"
        )

    @pytest.mark.asyncio
    async def test_unreportable_outcome_releases_the_job(
        self, runtime, queue, monkeypatch
    ):
        async def report_success(*args, **kwargs):
            raise OSError("job store unreachable")

        monkeypatch.setattr(queue, "report_success", report_success)
        job = await queue.enqueue("test.noop", {})

        await runtime.run_once()

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.PENDING.value
        assert stored.claimed_by is None
        assert stored.attempts == 1
        logs = await queue.get_logs(job.id)
        assert any(
            log.message == "Job released by worker test-worker: "
            "outcome could not be reported"
            for log in logs
        )

        # Claimable again straight away, without waiting for a liveness sweep
        reclaimed = await queue.claim_next("other-worker")
        assert reclaimed.id == job.id

    @pytest.mark.asyncio
    async def test_handler_logs_through_context(self, queue, liveness, settings, registry):
        class LoggingHandler:
            async def handle(self, ctx, payload):
                await ctx.log("step one", level="debug", rows=3)
                return None

        registry.register("test.logging", LoggingHandler())
        runtime = WorkerRuntime(queue, liveness, settings)
        job = await queue.enqueue("test.logging", {})

        await runtime.run_once()

        logs = await queue.get_logs(job.id)
        entry = next(log for log in logs if log.message == "step one")
        assert entry.level == "debug"
        assert entry.meta == {"rows": 3}

    @pytest.mark.asyncio
    async def test_run_once_with_empty_queue(self, runtime):
        assert await runtime.run_once() is None


class TestLoop:
    """The polling loop, heartbeats and shutdown"""

    @pytest.mark.asyncio
    async def test_worker_processes_queued_jobs(
        self, runtime, queue, liveness, wait_for_status
    ):
        jobs = [await queue.enqueue("system.echo", {"n": n}) for n in range(3)]

        task = await _start(runtime)
        try:
            for job in jobs:
                await wait_for_status(queue, job.id, JobStatus.COMPLETED.value)
        finally:
            await _shutdown(runtime, task)

        worker = await queue.store.get_worker("test-worker")
        assert worker.status == WorkerStatus.ACTIVE.value
        assert worker.jobs_succeeded == 3
        assert not runtime.running

    @pytest.mark.asyncio
    async def test_heartbeat_continues_during_long_job(
        self, queue, liveness, settings, monkeypatch, wait_for_status
    ):
        beats = []
        original = liveness.heartbeat

        async def counting_heartbeat(worker_id):
            beats.append(time.monotonic())
            return await original(worker_id)

        monkeypatch.setattr(liveness, "heartbeat", counting_heartbeat)
        runtime = WorkerRuntime(queue, liveness, settings, heartbeat_interval_s=0.05)
        job = await queue.enqueue("test.sleep", {"seconds": 0.5})

        task = await _start(runtime)
        try:
            await wait_for_status(queue, job.id, JobStatus.RUNNING.value)
            beats.clear()
            await asyncio.sleep(0.3)
            assert len(beats) >= 3
            await wait_for_status(queue, job.id, JobStatus.COMPLETED.value)
        finally:
            await _shutdown(runtime, task)

    @pytest.mark.asyncio
    async def test_declared_dead_worker_re_registers(
        self, queue, liveness, settings, clock
    ):
        runtime = WorkerRuntime(
            queue, liveness, settings, worker_id="revived", heartbeat_interval_s=0.3
        )
        task = await _start(runtime)
        try:
            # Declared dead before the first heartbeat fires
            clock.advance(minutes=10)
            await liveness.cleanup_dead_workers()
            assert (await queue.store.get_worker("revived")).status == "dead"

            for _ in range(150):
                worker = await queue.store.get_worker("revived")
                if worker.status == WorkerStatus.ACTIVE.value:
                    break
                await asyncio.sleep(0.02)
            assert worker.status == WorkerStatus.ACTIVE.value
        finally:
            await _shutdown(runtime, task)

    @pytest.mark.asyncio
    async def test_poll_backs_off_on_store_errors(self, runtime, monkeypatch):
        calls = []

        async def unreachable(worker_id, job_types=None):
            calls.append(time.monotonic())
            raise OSError("connection refused")

        monkeypatch.setattr(runtime.queue, "claim_next", unreachable)

        task = await _start(runtime)
        await asyncio.sleep(0.35)
        assert not task.done()
        await _shutdown(runtime, task)

        # job_poll_error_backoff_s is 0.1 in the test settings
        assert 1 <= len(calls) <= 5

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_jobs(
        self, runtime, queue, wait_for_status
    ):
        job = await queue.enqueue("test.sleep", {"seconds": 0.3})

        task = await _start(runtime)
        await wait_for_status(queue, job.id, JobStatus.RUNNING.value)
        await _shutdown(runtime, task)

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.COMPLETED.value
        assert runtime.active_jobs == {}

    @pytest.mark.asyncio
    async def test_stop_releases_jobs_past_the_grace_period(
        self, runtime, queue, wait_for_status
    ):
        job = await queue.enqueue("test.sleep", {"seconds": 3})

        task = await _start(runtime)
        await wait_for_status(queue, job.id, JobStatus.RUNNING.value)
        await runtime.stop(grace_s=0.1)
        await asyncio.wait_for(task, timeout=5)

        stored = await queue.get_job(job.id)
        assert stored.status == JobStatus.PENDING.value
        assert stored.claimed_by is None
        assert stored.attempts == 1
        assert (await queue.claim_next("other-worker")).id == job.id

    @pytest.mark.asyncio
    async def test_concurrency_limits_in_flight_jobs(
        self, queue, liveness, settings, wait_for_status
    ):
        runtime = WorkerRuntime(queue, liveness, settings, concurrency=2)
        jobs = [await queue.enqueue("test.sleep", {"seconds": 0.3}) for _ in range(3)]

        task = await _start(runtime)
        try:
            await wait_for_status(queue, jobs[1].id, JobStatus.RUNNING.value)
            page = await queue.get_jobs()
            running = [j for j in page.items if j.status == JobStatus.RUNNING]
            assert len(running) <= 2
            await wait_for_status(queue, jobs[2].id, JobStatus.COMPLETED.value)
        finally:
            await _shutdown(runtime, task)

    @pytest.mark.asyncio
    async def test_status_snapshot(self, runtime):
        snapshot = runtime.status()
        assert snapshot == {
            "worker_id": "test-worker",
            "running": False,
            "active_jobs": 0,
            "concurrency": 1,
            "job_types": [],
        }

    @pytest.mark.asyncio
    async def test_start_twice_is_rejected(self, runtime):
        task = await _start(runtime)
        try:
            with pytest.raises(RuntimeError):
                await runtime.start()
        finally:
            await _shutdown(runtime, task)
