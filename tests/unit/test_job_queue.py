"""Tests for the background job queue."""

import asyncio
import logging

import pytest

from anonvideo.errors import MalformedInputError
from anonvideo.models.delivery import JobPriority, QueueJobStatus, QueueJobType
from anonvideo.services.delivery import BackgroundJobQueue

PRELOAD = QueueJobType.VIDEO_PRELOADING
CLEANUP = QueueJobType.CACHE_OPTIMIZATION


def _queue(settings, handler, memory_probe=lambda: 0.2, **overrides) -> BackgroundJobQueue:
    return BackgroundJobQueue(
        settings.model_copy(update=overrides),
        handlers={PRELOAD: handler, CLEANUP: handler},
        memory_probe=memory_probe,
    )


def test_priority_order(settings):
    ran = []

    async def handler(job):
        ran.append(job.payload["name"])

    async def scenario():
        queue = _queue(settings, handler, queue_max_workers=1)
        await queue.init()
        await queue.pause()
        for name, priority in [("low", "low"), ("n1", "normal"), ("high", "high"), ("n2", "normal")]:
            await queue.enqueue_job(PRELOAD, {"name": name}, priority)
        await queue.resume()
        await queue.join()
        await queue.shutdown()

    asyncio.run(scenario())
    assert ran == ["high", "n1", "n2", "low"]


def test_worker_pool_bounds_concurrency(settings):
    active = {"now": 0, "peak": 0}
    samples = []

    async def scenario():
        queue = _queue(settings, None, queue_max_workers=2)

        async def handler(job):
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
            samples.append(queue.get_queue_stats())
            await asyncio.sleep(0.01)
            active["now"] -= 1

        queue.register_handler(PRELOAD, handler)
        await queue.init()
        for i in range(6):
            await queue.enqueue_job(PRELOAD, {"i": i})
        await queue.join()
        stats = queue.get_queue_stats()
        await queue.shutdown()
        return stats

    stats = asyncio.run(scenario())

    assert active["peak"] == 2
    assert all(s.processing <= s.processing_capacity == 2 for s in samples)
    completed = [s.completed for s in samples]
    assert completed == sorted(completed)
    assert stats.completed == 6
    assert stats.pending == 0 and stats.processing == 0


def test_retry_then_success(settings):
    attempts = []

    async def handler(job):
        attempts.append(job.retry_count)
        if len(attempts) < 3:
            raise RuntimeError("transient")

    async def scenario():
        queue = _queue(settings, handler)
        await queue.init()
        job_id = await queue.enqueue_job(PRELOAD)
        await queue.join()
        await queue.shutdown()
        return queue.get_job(job_id), queue.get_queue_stats()

    job, stats = asyncio.run(scenario())

    assert attempts == [0, 1, 2]
    assert job.status == QueueJobStatus.COMPLETED
    assert job.retry_count == 2
    assert job.error is None
    assert stats.completed == 1 and stats.failed == 0


def test_retries_exhausted(settings):
    calls = []

    async def handler(job):
        calls.append(job.id)
        raise RuntimeError("still broken")

    async def scenario():
        queue = _queue(settings, handler, queue_max_retries=2)
        await queue.init()
        job_id = await queue.enqueue_job(PRELOAD)
        await queue.join()
        await queue.shutdown()
        return queue.get_job(job_id)

    job = asyncio.run(scenario())

    assert len(calls) == 3
    assert job.status == QueueJobStatus.FAILED
    assert job.retry_count == 2
    assert job.error == "still broken"


def test_non_retryable_failure_is_terminal_and_logged(settings, caplog):
    caplog.set_level(logging.ERROR, logger="anonvideo.services.delivery.job_queue")
    calls = []

    async def handler(job):
        calls.append(job.id)
        raise MalformedInputError("unsupported container")

    async def scenario():
        queue = _queue(settings, handler)
        await queue.init()
        job_id = await queue.enqueue_job(PRELOAD)
        await queue.join()
        await queue.shutdown()
        return queue.get_job(job_id), queue.get_queue_stats()

    job, stats = asyncio.run(scenario())

    assert len(calls) == 1
    assert job.status == QueueJobStatus.FAILED
    assert job.retry_count == 0
    assert stats.failed == 1
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    assert job.id in errors[0].getMessage()


def test_full_queue_drops_lowest_priority(settings):
    async def handler(job):
        pass

    async def scenario():
        queue = _queue(settings, handler, queue_limit=2)
        await queue.init()
        await queue.pause()
        high = await queue.enqueue_job(PRELOAD, priority=JobPriority.HIGH)
        low = await queue.enqueue_job(PRELOAD, priority=JobPriority.LOW)
        normal = await queue.enqueue_job(PRELOAD, priority=JobPriority.NORMAL)
        stats = queue.get_queue_stats()
        statuses = {name: queue.get_job(i).status for name, i in [("high", high), ("low", low), ("normal", normal)]}
        await queue.shutdown()
        return stats, statuses

    stats, statuses = asyncio.run(scenario())

    assert stats.pending == 2
    assert statuses["low"] == QueueJobStatus.CANCELLED
    assert statuses["high"] == QueueJobStatus.QUEUED
    assert statuses["normal"] == QueueJobStatus.QUEUED


@pytest.mark.parametrize("incoming", [JobPriority.LOW, JobPriority.HIGH])
def test_full_queue_never_evicts_for_equal_or_lower_priority(settings, incoming):
    async def handler(job):
        pass

    async def scenario():
        queue = _queue(settings, handler, queue_limit=1)
        await queue.init()
        await queue.pause()
        high = await queue.enqueue_job(PRELOAD, priority=JobPriority.HIGH)
        rejected = await queue.enqueue_job(PRELOAD, priority=incoming)
        result = (queue.get_queue_stats().pending, queue.get_job(high).status, queue.get_job(rejected).status)
        await queue.shutdown()
        return result

    pending, high_status, rejected_status = asyncio.run(scenario())

    assert pending == 1
    assert high_status == QueueJobStatus.QUEUED
    assert rejected_status == QueueJobStatus.CANCELLED


def test_zero_queue_limit_rejects_without_error(settings):
    ran = []

    async def handler(job):
        ran.append(job.id)

    async def scenario():
        queue = _queue(settings, handler, queue_limit=0)
        await queue.init()
        job_id = await queue.enqueue_job(PRELOAD, priority=JobPriority.HIGH)
        await queue.join()
        status = queue.get_job(job_id).status
        await queue.shutdown()
        return status

    assert asyncio.run(scenario()) == QueueJobStatus.CANCELLED
    assert ran == []


def test_cancel_only_pending_jobs(settings):
    ran = []

    async def scenario():
        gate = asyncio.Event()
        running = asyncio.Event()

        async def handler(job):
            ran.append(job.id)
            running.set()
            await gate.wait()

        queue = _queue(settings, handler, queue_max_workers=1)
        await queue.init()
        first = await queue.enqueue_job(PRELOAD)
        second = await queue.enqueue_job(PRELOAD)
        await running.wait()

        results = (queue.cancel_job(first), queue.cancel_job(second), queue.cancel_job("missing"))
        gate.set()
        await queue.join()
        await queue.shutdown()
        return first, second, results, queue

    first, second, results, queue = asyncio.run(scenario())

    assert results == (False, True, False)
    assert ran == [first]
    assert queue.get_job(second).status == QueueJobStatus.CANCELLED
    assert queue.get_job(first).status == QueueJobStatus.COMPLETED


def test_unknown_job_type_rejected(settings):
    queue = BackgroundJobQueue(settings, handlers={PRELOAD: None})

    with pytest.raises(ValueError):
        asyncio.run(queue.enqueue_job(QueueJobType.QUALITY_VARIANT_GENERATION))


def test_enqueue_batch(settings):
    seen = []

    async def handler(job):
        seen.append(job.type)

    async def scenario():
        queue = _queue(settings, handler)
        await queue.init()
        ids = await queue.enqueue_batch([
            {"type": "video_preloading", "payload": {"uris": []}},
            {"type": "cache_optimization", "priority": "high"},
        ])
        await queue.join()
        await queue.shutdown()
        return ids

    ids = asyncio.run(scenario())
    assert len(ids) == 2
    assert sorted(seen) == sorted([PRELOAD, CLEANUP])


def test_memory_pressure_pauses_queue(settings):
    pressure = {"value": 0.95}
    ran = []

    async def handler(job):
        ran.append(job.id)

    async def scenario():
        queue = _queue(
            settings,
            handler,
            memory_probe=lambda: pressure["value"],
            memory_poll_interval=0.01,
        )
        await queue.init()
        await asyncio.sleep(0.05)
        paused = queue.is_paused
        await queue.enqueue_job(PRELOAD)
        await asyncio.sleep(0.05)
        ran_while_paused = list(ran)

        pressure["value"] = 0.75  # below threshold but within hysteresis
        await asyncio.sleep(0.05)
        still_paused = queue.is_paused

        pressure["value"] = 0.5
        await queue.join()
        await queue.shutdown()
        return paused, ran_while_paused, still_paused

    paused, ran_while_paused, still_paused = asyncio.run(scenario())

    assert paused
    assert ran_while_paused == []
    assert still_paused
    assert len(ran) == 1
