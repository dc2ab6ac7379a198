"""
Background job queue.

Priority queue of long-running work (cache optimization, quality variant
generation, preloading) drained by a fixed pool of asyncio workers,
independent of any processing job.

Job states:
    queued -> running -> completed
                      -> queued (retryable failure, after backoff)
                      -> failed (terminal, logged at ERROR)
    queued -> cancelled
"""

import asyncio
import itertools
import logging
import uuid
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable

from anonvideo.config import Settings
from anonvideo.errors import VideoCoreError, is_retryable
from anonvideo.models.delivery import (
    JobPriority,
    QueueJob,
    QueueJobStatus,
    QueueJobType,
    QueueStats,
)

from .device import memory_pressure

logger = logging.getLogger(__name__)

# Signature: (job) -> result
JobHandler = Callable[[QueueJob], Awaitable[Any]]


class BackgroundJobQueue:
    """
    Priority job queue with a bounded worker pool.

    - Higher priority runs first; equal priorities run in enqueue order.
    - At most ``max_workers`` jobs run at once and a job is never run
      concurrently with itself.
    - Retryable failures are re-queued after ``retry_backoff * 2**retry_count``
      seconds until ``max_retries`` is reached.
    - While memory pressure stays above the threshold the queue pauses.

    Example:
        queue = BackgroundJobQueue(settings, handlers)
        await queue.init()
        job_id = await queue.enqueue_job(QueueJobType.VIDEO_PRELOADING, {"uris": [...]})
        stats = queue.get_queue_stats()
        await queue.shutdown()
    """

    def __init__(
        self,
        settings: Settings,
        handlers: dict[QueueJobType, JobHandler] | None = None,
        memory_probe: Callable[[], float] = memory_pressure,
    ):
        """
        Initialize job queue.

        Args:
            settings: Application settings (workers, retries, limits)
            handlers: Handler per job type
            memory_probe: Returns used/total memory ratio
        """
        self.max_workers = max(1, settings.queue_max_workers)
        self.max_retries = settings.queue_max_retries
        self.retry_backoff = settings.queue_retry_backoff
        self.queue_limit = settings.queue_limit
        self.memory_threshold = settings.memory_pressure_threshold
        self.memory_poll_interval = settings.memory_poll_interval
        self.memory_probe = memory_probe
        self.handlers: dict[QueueJobType, JobHandler] = dict(handlers or {})

        self._jobs: dict[str, QueueJob] = {}
        self._pending: dict[str, tuple[int, int]] = {}  # job_id -> (-rank, sequence)
        self._running: set[str] = set()
        self._history: deque[QueueJob] = deque(maxlen=settings.queue_history_limit)
        self._sequence = itertools.count()
        self._completed = 0
        self._failed = 0

        self._wakeup = asyncio.Condition()
        self._paused = False
        self._memory_paused = False
        self._workers: list[asyncio.Task] = []
        self._timers: set[asyncio.Task] = set()
        self._monitor: asyncio.Task | None = None

    # ═══════════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════════════════

    async def init(self) -> None:
        """Start workers and the memory pressure monitor."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"queue-worker-{i}")
            for i in range(self.max_workers)
        ]
        if self.memory_poll_interval > 0:
            self._monitor = asyncio.create_task(self._monitor_memory(), name="queue-memory-monitor")
        logger.info(f"Background queue started with {self.max_workers} workers")

    async def shutdown(self) -> None:
        """Cancel workers, retry timers and the monitor."""
        tasks = [*self._workers, *self._timers]
        if self._monitor is not None:
            tasks.append(self._monitor)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._timers.clear()
        self._monitor = None
        logger.info("Background queue stopped")

    def register_handler(self, job_type: QueueJobType, handler: JobHandler) -> None:
        self.handlers[QueueJobType(job_type)] = handler

    # ═══════════════════════════════════════════════════════════════════════════
    # Public API
    # ═══════════════════════════════════════════════════════════════════════════

    async def enqueue_job(
        self,
        job_type: QueueJobType,
        payload: dict[str, Any] | None = None,
        priority: JobPriority = JobPriority.NORMAL,
    ) -> str:
        """
        Add a job to the queue.

        When the queue is full the lowest-priority pending job is
        cancelled to make room, but only for a job that outranks it.
        Otherwise the new job itself is recorded as cancelled.

        Args:
            job_type: Kind of work
            payload: Handler-specific data
            priority: low, normal or high

        Returns:
            Job id

        Raises:
            ValueError: If no handler is registered for the type
        """
        job_type = QueueJobType(job_type)
        if job_type not in self.handlers:
            raise ValueError(f"No handler registered for {job_type.value}")

        job = QueueJob(
            id=str(uuid.uuid4())[:8],
            type=job_type,
            priority=JobPriority(priority),
            payload=payload or {},
            max_retries=self.max_retries,
        )

        if len(self._pending) >= self.queue_limit and not self._make_room(job):
            job.status = QueueJobStatus.CANCELLED
            job.finished_at = datetime.now()
            self._history.append(job)
            logger.warning(f"Queue full ({self.queue_limit}), rejected {job.priority.value} job {job.id}")
            return job.id

        self._jobs[job.id] = job
        await self._push(job)

        logger.debug(f"Enqueued {job.type.value} job {job.id} ({job.priority.value})")
        return job.id

    async def enqueue_batch(self, jobs: list[dict[str, Any]]) -> list[str]:
        """Enqueue several ``{"type", "payload", "priority"}`` jobs."""
        return [
            await self.enqueue_job(
                j["type"], j.get("payload"), j.get("priority", JobPriority.NORMAL)
            )
            for j in jobs
        ]

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a queued job. Running jobs cannot be cancelled."""
        if job_id not in self._pending:
            return False
        del self._pending[job_id]
        job = self._jobs.pop(job_id)
        job.status = QueueJobStatus.CANCELLED
        job.finished_at = datetime.now()
        self._history.append(job)
        logger.info(f"Cancelled job {job_id}")
        return True

    def get_job(self, job_id: str) -> QueueJob | None:
        """Live or historical job by id."""
        job = self._jobs.get(job_id)
        if job is not None:
            return job
        return next((j for j in self._history if j.id == job_id), None)

    def get_queue_stats(self) -> QueueStats:
        """Pending/processing/completed counters."""
        return QueueStats(
            pending=len(self._pending),
            processing=len(self._running),
            completed=self._completed,
            failed=self._failed,
            queue_size=self.queue_limit,
            processing_capacity=self.max_workers,
            paused=self.is_paused,
        )

    @property
    def is_paused(self) -> bool:
        return self._paused or self._memory_paused

    async def pause(self) -> None:
        """Stop starting new jobs (running jobs finish)."""
        self._paused = True
        logger.info("Background queue paused")

    async def resume(self) -> None:
        self._paused = False
        async with self._wakeup:
            self._wakeup.notify_all()
        logger.info("Background queue resumed")

    async def join(self) -> None:
        """Wait until nothing is pending, running or waiting for a retry."""
        while self._pending or self._running or self._timers:
            await asyncio.sleep(0.01)

    # ═══════════════════════════════════════════════════════════════════════════
    # Workers
    # ═══════════════════════════════════════════════════════════════════════════

    async def _worker(self, index: int) -> None:
        while True:
            async with self._wakeup:
                await self._wakeup.wait_for(lambda: bool(self._pending) and not self.is_paused)
                job_id = min(self._pending, key=self._pending.__getitem__)
                del self._pending[job_id]
                self._running.add(job_id)

            job = self._jobs[job_id]
            try:
                await self._run_job(job)
            finally:
                self._running.discard(job_id)

    async def _run_job(self, job: QueueJob) -> None:
        job.status = QueueJobStatus.RUNNING
        job.started_at = datetime.now()
        handler = self.handlers[job.type]

        try:
            await handler(job)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._handle_failure(job, e)
            return

        job.status = QueueJobStatus.COMPLETED
        job.finished_at = datetime.now()
        job.error = None
        self._completed += 1
        self._archive(job)
        logger.debug(f"Job {job.id} ({job.type.value}) completed")

    def _handle_failure(self, job: QueueJob, error: Exception) -> None:
        job.error = str(error)
        retryable = is_retryable(error) or not isinstance(error, VideoCoreError)

        if retryable and job.retry_count < job.max_retries:
            delay = self.retry_backoff * 2 ** job.retry_count
            job.retry_count += 1
            job.status = QueueJobStatus.QUEUED
            logger.warning(
                f"Job {job.id} ({job.type.value}) failed, retry {job.retry_count}/"
                f"{job.max_retries} in {delay:.1f}s: {error}"
            )
            timer = asyncio.create_task(self._requeue_after(job, delay))
            self._timers.add(timer)
            timer.add_done_callback(self._timers.discard)
            return

        job.status = QueueJobStatus.FAILED
        job.finished_at = datetime.now()
        self._failed += 1
        self._archive(job)
        logger.error(
            f"Job {job.id} ({job.type.value}) failed permanently after "
            f"{job.retry_count} retries: {error}"
        )

    async def _requeue_after(self, job: QueueJob, delay: float) -> None:
        await asyncio.sleep(delay)
        if job.id in self._jobs:
            await self._push(job)

    async def _push(self, job: QueueJob) -> None:
        async with self._wakeup:
            self._pending[job.id] = (-job.priority.rank, next(self._sequence))
            self._wakeup.notify()

    def _archive(self, job: QueueJob) -> None:
        self._jobs.pop(job.id, None)
        self._history.append(job)

    def _make_room(self, job: QueueJob) -> bool:
        """Cancel the lowest-priority pending job if ``job`` outranks it."""
        if not self._pending:
            return False
        # Highest key = lowest priority, newest within it
        victim = max(self._pending, key=self._pending.__getitem__)
        if -self._pending[victim][0] >= job.priority.rank:
            return False
        logger.warning(f"Queue full ({self.queue_limit}), dropping job {victim}")
        self.cancel_job(victim)
        return True

    async def _monitor_memory(self) -> None:
        while True:
            await asyncio.sleep(self.memory_poll_interval)
            try:
                ratio = self.memory_probe()
            except Exception as e:
                logger.warning(f"Memory probe failed: {e}")
                continue

            if ratio > self.memory_threshold and not self._memory_paused:
                logger.warning(f"Memory pressure {ratio:.2f}, pausing background queue")
                self._memory_paused = True
            elif self._memory_paused and ratio < self.memory_threshold - 0.1:
                logger.info(f"Memory pressure {ratio:.2f}, resuming background queue")
                self._memory_paused = False
                async with self._wakeup:
                    self._wakeup.notify_all()
