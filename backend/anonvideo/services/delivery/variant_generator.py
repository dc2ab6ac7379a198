"""
Background job handlers for the delivery subsystem.

Quality variants are lower-resolution renditions of an already
processed artifact. They are produced off the critical path by the
background queue and stored through the cache manager.
"""

import asyncio
import logging
import tempfile
from pathlib import Path

from anonvideo.config import Settings
from anonvideo.errors import MalformedInputError
from anonvideo.models.delivery import CachePriority, QualityTier, QueueJob, QueueJobType
from anonvideo.utils.media_utils import run_ffmpeg

from .cache_manager import CacheManager
from .job_queue import JobHandler
from .quality_selector import QualitySelector, variant_uri

logger = logging.getLogger(__name__)


class VariantGenerator:
    """
    Handlers for the three background job types.

    Payloads:
    - quality_variant_generation: ``{"uri": str, "tier": "1080p"}``
      (tier is the artifact's own tier; every lower tier is rendered)
      or ``{"uri": str, "tiers": ["360p", ...]}``
    - cache_optimization: ``{}``
    - video_preloading: ``{"uris": [str, ...], "priority": "normal"}``

    Example:
        generator = VariantGenerator(settings, cache, selector)
        queue = BackgroundJobQueue(settings, generator.handlers())
    """

    def __init__(
        self,
        settings: Settings,
        cache: CacheManager,
        selector: QualitySelector,
    ):
        self.settings = settings
        self.cache = cache
        self.selector = selector

    def handlers(self) -> dict[QueueJobType, JobHandler]:
        return {
            QueueJobType.QUALITY_VARIANT_GENERATION: self.generate_variants,
            QueueJobType.CACHE_OPTIMIZATION: self.optimize_cache,
            QueueJobType.VIDEO_PRELOADING: self.preload,
        }

    async def generate_variants(self, job: QueueJob) -> list[str]:
        """
        Render and cache lower-tier variants of an artifact.

        Returns:
            URIs of the cached variants

        Raises:
            MalformedInputError: If the payload has no uri
        """
        uri = job.payload.get("uri")
        if not uri:
            raise MalformedInputError("Variant job payload needs a 'uri'")

        if "tiers" in job.payload:
            tiers = [QualityTier(t) for t in job.payload["tiers"]]
        else:
            tiers = self.selector.lower_tiers(QualityTier(job.payload.get("tier", "1080p")))

        source = Path(uri)
        if not source.exists():
            source = await self.cache.cache_video(uri, CachePriority.LOW)

        created = []
        self.settings.temp_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.settings.temp_dir) as temp_dir:
            for tier in tiers:
                target_uri = variant_uri(uri, tier)
                if await self.cache.get_cached_video(target_uri) is not None:
                    continue
                output = Path(temp_dir) / f"variant_{tier.height}.mp4"
                await asyncio.to_thread(
                    run_ffmpeg, self._variant_command(source, output, tier), self.settings.ffmpeg_timeout
                )
                await self.cache.store_artifact(target_uri, output, CachePriority.NORMAL)
                created.append(target_uri)

        logger.info(f"Generated {len(created)} variants for {Path(uri).name}")
        return created

    async def optimize_cache(self, job: QueueJob) -> None:
        await self.cache.force_cleanup()

    async def preload(self, job: QueueJob) -> int:
        uris = list(job.payload.get("uris", []))
        priority = CachePriority(job.payload.get("priority", CachePriority.NORMAL))
        return len(await self.cache.preload_videos(uris, priority))

    def _variant_command(self, source: Path, output: Path, tier: QualityTier) -> list[str]:
        encoder = self.selector.encoder_settings(tier)
        cmd = [
            "ffmpeg",
            "-i", str(source),
            "-vf", f"scale=-2:{encoder['height']}",
            "-c:v", "libx264",
            "-preset", "fast",
        ]
        if "crf" in encoder:
            cmd += ["-crf", str(encoder["crf"])]
        if "video_bitrate_kbps" in encoder:
            rate = encoder["video_bitrate_kbps"]
            cmd += ["-maxrate", f"{rate}k", "-bufsize", f"{rate * 2}k"]
        cmd += ["-c:a", "aac", "-b:a", "128k", "-movflags", "+faststart", "-y", str(output)]
        return cmd
