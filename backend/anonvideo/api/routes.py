"""
HTTP API routes for the anonymization pipeline.

Provides endpoints for:
- Starting processing jobs (single-flight per source)
- Querying and abandoning jobs
- Generating captions for a video
"""

import logging
from pathlib import Path

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from anonvideo.errors import JobAbandonedError, ProcessingError, VideoCoreError
from anonvideo.models.schemas import (
    CaptionData,
    CaptionRequest,
    ProcessingJob,
    ProcessingOptions,
    ProcessingStage,
    ProcessRequest,
    ProgressEvent,
)
from anonvideo.services.container import ServiceContainer

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["pipeline"])


def get_container(request: Request) -> ServiceContainer:
    """Services created by the application lifespan."""
    return request.app.state.container


def processing_error_response(error: ProcessingError) -> JSONResponse:
    """503 for retryable failures, 422 otherwise."""
    return JSONResponse(
        status_code=503 if error.retryable else 422,
        content={
            "stage": error.stage.value,
            "message": error.message,
            "retryable": error.retryable,
        },
    )


async def run_processing(
    container: ServiceContainer,
    job_id: str,
    source_path: Path,
    options: ProcessingOptions,
) -> None:
    """
    Background task running one job through the orchestrator.

    Args:
        container: Application services
        job_id: Job identifier for progress updates
        source_path: Source video
        options: Requested options
    """
    jobs = container.jobs
    job = jobs.get_job(job_id)
    if job is None or job.is_terminal:
        return

    async def progress_callback(event: ProgressEvent) -> None:
        """Forward progress to job manager."""
        await jobs.update_progress(job_id, event)

    try:
        artifact = await container.orchestrator.process(
            source_path,
            options,
            on_progress=progress_callback,
        )
        await jobs.complete_job(job_id, artifact)

    except JobAbandonedError as e:
        await jobs.fail_job(job_id, e.message, retryable=True)
    except ProcessingError as e:
        await jobs.fail_job(job_id, f"[{e.stage.value}] {e.message}", retryable=e.retryable)
    except Exception as e:
        logger.exception(f"Processing error for job {job_id}")
        await jobs.fail_job(job_id, str(e))


@router.post("/process", response_model=ProcessingJob)
async def start_processing(
    request: ProcessRequest,
    background_tasks: BackgroundTasks,
    container: ServiceContainer = Depends(get_container),
) -> ProcessingJob:
    """
    Start processing a recording.

    Returns the active job instead of creating a new one when the same
    source is already being processed. Use WebSocket /ws/{job_id} to
    receive real-time progress updates.

    Raises:
        404: Source file not found
    """
    source_path = Path(request.source_path).expanduser().resolve()

    if not source_path.is_file():
        raise HTTPException(
            status_code=404,
            detail=f"Video file not found: {request.source_path}",
        )

    active = container.jobs.find_active(source_path)
    if active is not None:
        logger.info(f"Returning active job {active.job_id} for {source_path.name}")
        return active

    job = container.jobs.create_job(source_path, request.options)
    background_tasks.add_task(run_processing, container, job.job_id, source_path, request.options)

    logger.info(f"Started processing job {job.job_id}: {source_path.name}")
    return job


@router.get("/jobs/{job_id}", response_model=ProcessingJob)
async def get_job_status(
    job_id: str,
    container: ServiceContainer = Depends(get_container),
) -> ProcessingJob:
    job = container.jobs.get_job(job_id)

    if not job:
        raise HTTPException(
            status_code=404,
            detail=f"Job not found: {job_id}",
        )

    return job


@router.get("/jobs", response_model=list[ProcessingJob])
async def list_jobs(container: ServiceContainer = Depends(get_container)) -> list[ProcessingJob]:
    return container.jobs.list_jobs()


@router.delete("/jobs/{job_id}")
async def abandon_job(
    job_id: str,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """
    Abandon a running job.

    The in-flight work is not killed; its result is discarded. The job
    is failed (retryable) right away, so a new request for the same
    source starts a fresh job.

    Raises:
        404: Job not found
        409: Job already finished
    """
    job = container.jobs.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    if job.is_terminal:
        raise HTTPException(status_code=409, detail=f"Job already {job.status.value}")

    if not container.orchestrator.abandon(job.source_path):
        logger.info(f"Abandoning job {job_id} before it started")
    await container.jobs.fail_job(job_id, f"Job for {job.source_path} was abandoned", retryable=True)
    return {"job_id": job_id, "abandoned": True}


@router.post("/captions", response_model=CaptionData)
async def generate_captions(
    request: CaptionRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Generate captions for a video, served from the sidecar when fresh.

    Raises:
        404: Video not found
        422/503: Transcription failed (503 when retrying may help)
    """
    video_path = Path(request.video_path).expanduser()
    if not video_path.is_file():
        raise HTTPException(status_code=404, detail=f"Video file not found: {request.video_path}")

    try:
        return await container.caption_service.generate_captions_for_video(
            video_path, force_regenerate=request.force_regenerate
        )
    except VideoCoreError as e:
        logger.warning(f"Caption generation failed for {video_path.name}: {e}")
        return processing_error_response(ProcessingError(ProcessingStage.TRANSCRIPTION, e))
