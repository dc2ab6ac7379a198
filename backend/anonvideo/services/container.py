"""
Service wiring.

Every long-lived service is constructed explicitly here and handed to
its consumers. The API lifespan owns one container; tests build their
own with fakes.
"""

import logging
from dataclasses import dataclass

from anonvideo.config import Settings, load_delivery_config
from anonvideo.models.schemas import EngineKind
from anonvideo.services.delivery import (
    BackgroundJobQueue,
    CacheManager,
    NetworkProfiler,
    QualitySelector,
    VariantGenerator,
    get_device_profile,
    memory_pressure,
)
from anonvideo.services.engines import LocalEngine, RemoteEngine, VideoEngine
from anonvideo.services.face_detector import OpenCVFaceDetector
from anonvideo.services.job_manager import JobManager
from anonvideo.services.pipeline import ProcessingOrchestrator, ProcessingStrategy
from anonvideo.services.providers import create_provider
from anonvideo.services.stages import FaceAnonymizationStage
from anonvideo.services.transcriber import CaptionService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Explicitly constructed services with a start/shutdown lifecycle.

    Example:
        container = ServiceContainer.from_settings(settings)
        await container.start()
        artifact = await container.orchestrator.process(path, options)
        await container.shutdown()
    """

    settings: Settings
    orchestrator: ProcessingOrchestrator
    caption_service: CaptionService
    profiler: NetworkProfiler
    selector: QualitySelector
    cache: CacheManager
    queue: BackgroundJobQueue
    jobs: JobManager

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        delivery = load_delivery_config(settings)
        quality_matrix = delivery.get("quality_matrix", {})

        caption_service = CaptionService(create_provider(settings), settings)
        engines: dict[EngineKind, VideoEngine] = {
            EngineKind.LOCAL: LocalEngine(
                settings,
                FaceAnonymizationStage(OpenCVFaceDetector(), settings),
                caption_service,
                quality_matrix,
            ),
        }
        if settings.remote_engine_url:
            engines[EngineKind.REMOTE] = RemoteEngine.from_settings(settings)

        profiler = NetworkProfiler(settings, delivery.get("connection_estimates"))
        selector = QualitySelector(get_device_profile(), quality_matrix, memory_probe=memory_pressure)
        profiler.add_listener(selector.on_network_change)
        cache = CacheManager(settings)
        queue = BackgroundJobQueue(settings, VariantGenerator(settings, cache, selector).handlers())

        orchestrator = ProcessingOrchestrator(
            settings,
            engines=engines,
            strategy=ProcessingStrategy(settings),
            quality_selector=selector,
            network_profiler=profiler,
        )

        return cls(
            settings=settings,
            orchestrator=orchestrator,
            caption_service=caption_service,
            profiler=profiler,
            selector=selector,
            cache=cache,
            queue=queue,
            jobs=JobManager(),
        )

    async def start(self) -> None:
        """Start cache, queue and network profiler."""
        await self.cache.init()
        await self.queue.init()
        await self.profiler.start()
        logger.info(f"Services started (engines: {[k.value for k in self.orchestrator.engines]})")

    async def shutdown(self) -> None:
        """Stop background work and release clients."""
        await self.profiler.close()
        await self.queue.shutdown()
        await self.cache.shutdown()
        await self.orchestrator.close()
        logger.info("Services stopped")
