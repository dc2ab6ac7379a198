"""
FastAPI application for video anonymization and adaptive delivery.

Provides HTTP API for processing jobs with WebSocket progress updates.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from anonvideo.api import delivery_routes, routes, websocket
from anonvideo.config import get_settings
from anonvideo.logging_config import setup_logging
from anonvideo.models.schemas import EngineKind
from anonvideo.services.container import ServiceContainer

# Configure logging before anything else
settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Builds and starts the service container, stops it on shutdown.
    """
    logger.info("Starting Video Anonymization API")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Output directory: {settings.output_dir}")
    logger.info(f"Cache directory: {settings.cache_dir}")

    container = ServiceContainer.from_settings(settings)
    await container.start()
    app.state.container = container

    yield

    logger.info("Shutting down Video Anonymization API")
    await container.shutdown()


app = FastAPI(
    title="Video Anonymization API",
    description="Face blur, voice change, captions and adaptive delivery for recorded videos",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes.router)
app.include_router(delivery_routes.router)
app.include_router(websocket.router)


@app.get("/health")
async def health_check() -> dict:
    return {"status": "ok"}


@app.get("/health/engines")
async def engines_health(request: Request) -> dict:
    """
    Check engine availability.

    Returns:
        Availability of the local (ffmpeg) and remote engines
    """
    container: ServiceContainer = request.app.state.container
    availability = await asyncio.to_thread(container.orchestrator.strategy.detect)

    remote_reachable = None
    remote = container.orchestrator.engines.get(EngineKind.REMOTE)
    if remote is not None:
        remote_reachable = await remote.check_health()

    return {
        "local": availability[EngineKind.LOCAL].available,
        "remote": availability[EngineKind.REMOTE].available,
        "remote_reachable": remote_reachable,
        "remote_url": settings.remote_engine_url,
        "degraded_fallback_enabled": settings.degraded_fallback_enabled,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "anonvideo.main:app",
        host="0.0.0.0",
        port=8801,
        reload=True,
    )
