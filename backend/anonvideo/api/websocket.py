"""
WebSocket handler for real-time progress updates.

Provides live streaming of job processing progress.
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from anonvideo.models.schemas import JobStatus

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

HEARTBEAT_INTERVAL = 30.0


@router.websocket("/ws/{job_id}")
async def job_progress_websocket(websocket: WebSocket, job_id: str) -> None:
    """
    WebSocket endpoint for real-time job progress updates.

    Messages are JSON objects with status, progress, stage, message and
    timestamp. The connection closes when the job succeeds or fails.

    Example client (Python):
        async with websockets.connect(f"ws://localhost:8801/ws/{job_id}") as ws:
            async for message in ws:
                data = json.loads(message)
                print(f"{data['status']}: {data['progress']}% - {data['message']}")
    """
    job_manager = websocket.app.state.container.jobs

    job = job_manager.get_job(job_id)
    if not job:
        await websocket.close(code=4004, reason=f"Job not found: {job_id}")
        return

    await websocket.accept()
    logger.info(f"WebSocket connected for job {job_id}")

    # Subscribe before sending the snapshot so no update is lost in between
    queue = job_manager.subscribe(job_id)

    try:
        await websocket.send_json({
            "status": job.status.value,
            "progress": job.progress,
            "stage": job.stage.value if job.stage else None,
            "message": job.status_message or "Connected",
            "timestamp": job.created_at.isoformat(),
            "result": job.result.model_dump(mode="json") if job.result else None,
            "error": job.error,
        })

        if job.is_terminal:
            await websocket.close()
            return

        while True:
            try:
                message = await asyncio.wait_for(queue.get(), timeout=HEARTBEAT_INTERVAL)
                await websocket.send_json(message)

                if message.get("status") in (JobStatus.SUCCEEDED.value, JobStatus.FAILED.value):
                    await websocket.close()
                    break

            except asyncio.TimeoutError:
                # Keep the connection alive
                await websocket.send_json({"type": "heartbeat"})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for job {job_id}")
    except RuntimeError as e:
        logger.error(f"WebSocket error for job {job_id}: {e}")
    finally:
        job_manager.unsubscribe(job_id, queue)
        logger.info(f"WebSocket closed for job {job_id}")
