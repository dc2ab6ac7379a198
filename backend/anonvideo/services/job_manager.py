"""
Job manager for anonymization jobs.

Tracks API-submitted jobs and broadcasts their progress to WebSocket
subscribers.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from pathlib import Path

from anonvideo.models.schemas import (
    JobStatus,
    ProcessedVideoArtifact,
    ProcessingJob,
    ProcessingOptions,
    ProgressEvent,
)

logger = logging.getLogger(__name__)


class JobManager:
    """
    Manager for processing jobs with WebSocket broadcasting.

    Stores jobs in memory. A source path has at most one active job;
    ``find_active`` lets the API return it instead of creating a duplicate.

    Example:
        manager = JobManager()
        job = manager.create_job(Path("recordings/clip.mp4"), options)
        queue = manager.subscribe(job.job_id)
        await manager.update_progress(job.job_id, event)
    """

    def __init__(self):
        """Initialize job manager with empty stores."""
        self._jobs: dict[str, ProcessingJob] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def create_job(self, source_path: Path, options: ProcessingOptions) -> ProcessingJob:
        """
        Create a new processing job.

        Args:
            source_path: Path to the source video
            options: Requested options

        Returns:
            Created ProcessingJob with unique ID
        """
        job_id = str(uuid.uuid4())[:8]

        job = ProcessingJob(
            job_id=job_id,
            source_path=source_path,
            options=options,
            status=JobStatus.PENDING,
        )

        self._jobs[job_id] = job
        self._subscribers[job_id] = []

        logger.info(f"Created job {job_id} for {source_path.name}")
        return job

    def get_job(self, job_id: str) -> ProcessingJob | None:
        return self._jobs.get(job_id)

    def list_jobs(self) -> list[ProcessingJob]:
        return list(self._jobs.values())

    def find_active(self, source_path: Path) -> ProcessingJob | None:
        """Pending or running job for a source, if any."""
        source_path = Path(source_path)
        return next(
            (j for j in self._jobs.values() if j.source_path == source_path and not j.is_terminal),
            None,
        )

    async def update_progress(self, job_id: str, event: ProgressEvent) -> None:
        """
        Update job progress and broadcast to subscribers.

        Args:
            job_id: Job identifier
            event: Progress event from the orchestrator
        """
        job = self._jobs.get(job_id)
        if not job:
            logger.warning(f"Job {job_id} not found for progress update")
            return
        if job.is_terminal:
            return

        job.status = JobStatus.RUNNING
        job.progress = event.percent
        job.stage = event.stage
        job.status_message = event.message

        await self._broadcast(job_id, {
            "status": job.status.value,
            "progress": event.percent,
            "stage": event.stage.value,
            "message": event.message,
            "timestamp": event.timestamp.isoformat(),
        })

    async def complete_job(self, job_id: str, result: ProcessedVideoArtifact) -> None:
        """Mark job as succeeded with its artifact."""
        job = self._jobs.get(job_id)
        if not job:
            logger.warning(f"Job {job_id} not found for completion")
            return
        if job.is_terminal:
            return

        job.status = JobStatus.SUCCEEDED
        job.progress = 100
        job.status_message = "Degraded result" if result.degraded else "Completed"
        job.completed_at = datetime.now()
        job.result = result

        await self._broadcast(job_id, {
            "status": JobStatus.SUCCEEDED.value,
            "progress": 100,
            "stage": job.stage.value if job.stage else None,
            "message": job.status_message,
            "timestamp": datetime.now().isoformat(),
            "result": result.model_dump(mode="json"),
        })

        logger.info(f"Job {job_id} completed: {result.uri}")

    async def fail_job(self, job_id: str, error: str, retryable: bool = False) -> None:
        """Mark job as failed with error."""
        job = self._jobs.get(job_id)
        if not job:
            logger.warning(f"Job {job_id} not found for failure")
            return
        if job.is_terminal:
            return

        job.status = JobStatus.FAILED
        job.error = error
        job.retryable = retryable
        job.status_message = error
        job.completed_at = datetime.now()

        await self._broadcast(job_id, {
            "status": JobStatus.FAILED.value,
            "progress": job.progress,
            "stage": job.stage.value if job.stage else None,
            "message": error,
            "timestamp": datetime.now().isoformat(),
            "error": error,
            "retryable": retryable,
        })

        logger.error(f"Job {job_id} failed: {error}")

    def subscribe(self, job_id: str) -> asyncio.Queue:
        """
        Subscribe to job progress updates.

        Returns:
            Queue that will receive progress messages
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(job_id, []).append(queue)
        logger.debug(f"Client subscribed to job {job_id}")
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue) -> None:
        if job_id in self._subscribers:
            try:
                self._subscribers[job_id].remove(queue)
                logger.debug(f"Client unsubscribed from job {job_id}")
            except ValueError:
                pass

    async def _broadcast(self, job_id: str, message: dict) -> None:
        for queue in self._subscribers.get(job_id, []):
            try:
                await queue.put(message)
            except Exception as e:
                logger.warning(f"Failed to broadcast to subscriber: {e}")
