"""
Adaptive delivery API routes.

Provides endpoints for:
- GET /api/network - Measure the current network condition
- GET /api/quality - Tier for the current (or a given) bandwidth
- GET /api/cache/stats, POST /api/cache/cleanup - Cache telemetry and cleanup
- POST /api/queue/jobs, GET /api/queue/stats, DELETE /api/queue/jobs/{id} - Background queue
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from anonvideo.models.delivery import (
    CacheStats,
    CleanupResult,
    EnqueueRequest,
    NetworkProfile,
    QueueJob,
    QueueStats,
)
from anonvideo.services.container import ServiceContainer

from .routes import get_container

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["delivery"])


@router.get("/network", response_model=NetworkProfile)
async def measure_network(container: ServiceContainer = Depends(get_container)) -> NetworkProfile:
    """Measure and classify the network now."""
    return await container.profiler.measure_network_condition()


@router.get("/quality")
async def select_quality(
    bandwidth: float | None = Query(None, ge=0, description="Bandwidth in Mbps"),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """
    Tier for a bandwidth on this device.

    Uses the last measured profile when no bandwidth is given.
    """
    selector = container.selector
    if bandwidth is None:
        tier = selector.select_for_profile(container.profiler.current_profile)
    else:
        tier = selector.select_quality(bandwidth)

    return {
        "tier": tier.value,
        "quality": tier.quality.value,
        "device_tier": selector.device.tier.value,
        "device_score": selector.device.score,
        "encoder": selector.encoder_settings(tier),
    }


@router.get("/cache/stats", response_model=CacheStats)
async def cache_stats(container: ServiceContainer = Depends(get_container)) -> CacheStats:
    return container.cache.get_device_aware_cache_stats()


@router.post("/cache/cleanup", response_model=CleanupResult)
async def cache_cleanup(container: ServiceContainer = Depends(get_container)) -> CleanupResult:
    return await container.cache.force_cleanup()


@router.post("/queue/jobs")
async def enqueue_job(
    request: EnqueueRequest,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """
    Enqueue background work.

    Raises:
        400: No handler for the job type
    """
    try:
        job_id = await container.queue.enqueue_job(request.type, request.payload, request.priority)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"job_id": job_id}


@router.get("/queue/jobs/{job_id}", response_model=QueueJob)
async def get_queue_job(job_id: str, container: ServiceContainer = Depends(get_container)) -> QueueJob:
    job = container.queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Queue job not found: {job_id}")
    return job


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats(container: ServiceContainer = Depends(get_container)) -> QueueStats:
    return container.queue.get_queue_stats()


@router.delete("/queue/jobs/{job_id}")
async def cancel_queue_job(job_id: str, container: ServiceContainer = Depends(get_container)) -> dict:
    """
    Cancel a queued job.

    Raises:
        409: Job is running, finished or unknown
    """
    if not container.queue.cancel_job(job_id):
        raise HTTPException(status_code=409, detail=f"Job {job_id} is not pending")
    return {"job_id": job_id, "cancelled": True}
