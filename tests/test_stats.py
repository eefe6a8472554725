"""Tests for queue statistics"""

import pytest


async def _run_one(queue, clock, job_type, seconds, succeed=True, options=None):
    job = await queue.enqueue(job_type, {}, options)
    await queue.claim_next("w1")
    clock.advance(seconds=seconds)
    if succeed:
        await queue.report_success(job.id, "w1")
    else:
        await queue.report_failure(job.id, "w1", "boom")
    return job


@pytest.mark.asyncio
async def test_empty_store_stats(stats):
    result = await stats.get_stats()

    assert result.queue.total == 0
    assert result.job_types == []
    assert result.recent_activity == []
    assert result.workers.active == 0
    assert result.performance.avg_processing_time_seconds == 0.0
    assert result.errors == []


@pytest.mark.asyncio
async def test_stats_sections(stats, queue, liveness, clock):
    await liveness.register_worker("w1")
    await _run_one(queue, clock, "test.noop", 2)
    await _run_one(queue, clock, "test.noop", 4)
    await _run_one(queue, clock, "test.fail", 1, succeed=False, options={"max_retries": 0})
    await queue.enqueue("system.echo", {})
    await liveness.heartbeat("w1")

    result = await stats.get_stats()

    assert result.queue.pending == 1
    assert result.queue.completed == 2
    assert result.queue.failed == 1
    assert result.queue.running == 0
    assert result.queue.total == 4

    assert [(t.type, t.count) for t in result.job_types] == [
        ("test.noop", 2),
        ("system.echo", 1),
        ("test.fail", 1),
    ]

    activity = {(a.status.value, a.type): a.count for a in result.recent_activity}
    assert activity[("completed", "test.noop")] == 2
    assert activity[("failed", "test.fail")] == 1

    assert result.workers.active == 1
    assert result.workers.total_processed == 3
    assert result.workers.total_succeeded == 2
    assert result.workers.total_failed == 1

    assert result.performance.avg_processing_time_seconds == 3.0
    assert result.errors == []


@pytest.mark.asyncio
async def test_recent_activity_window(stats, queue, clock):
    await _run_one(queue, clock, "test.noop", 1)
    clock.advance(hours=25)

    result = await stats.get_stats()

    assert result.recent_activity == []
    assert result.queue.completed == 1


@pytest.mark.asyncio
async def test_failed_section_degrades_alone(stats, queue, monkeypatch):
    await queue.enqueue("test.noop", {})

    async def broken():
        raise RuntimeError("group by exploded")

    monkeypatch.setattr(queue.store, "count_by_type", broken)

    result = await stats.get_stats()

    assert result.job_types == []
    assert result.errors == ["job_types"]
    assert result.queue.pending == 1
    assert result.queue.total == 1
    assert result.workers.active == 0


@pytest.mark.asyncio
async def test_every_section_can_fail(stats, queue, monkeypatch):
    async def broken(*args, **kwargs):
        raise ConnectionError("store unreachable")

    for name in (
        "count_by_status",
        "count_by_type",
        "count_by_status_and_type",
        "worker_totals",
        "recent_durations",
    ):
        monkeypatch.setattr(queue.store, name, broken)

    result = await stats.get_stats()

    assert result.queue.total == 0
    assert result.workers.total_processed == 0
    assert result.errors == [
        "queue",
        "job_types",
        "recent_activity",
        "workers",
        "performance",
    ]
