"""
Fallback object factory for processing jobs.

Creates minimal valid results when every engine failed, so the caller
still receives an artifact instead of losing the recording.
"""

import logging
from pathlib import Path

from anonvideo.config import Settings
from anonvideo.models.schemas import (
    TRANSCRIPTION_UNAVAILABLE,
    ProcessedVideoArtifact,
    ProcessingOptions,
)
from anonvideo.utils.media_utils import MediaInfo, estimate_duration_from_size

logger = logging.getLogger(__name__)


class FallbackFactory:
    """
    Factory for degraded results.

    The degraded artifact points at the unmodified source. Face blur and
    voice change flags mirror what was requested and ``degraded`` is set,
    so clients can tell the recording was not transformed.

    Example:
        factory = FallbackFactory(settings)
        artifact = factory.create_degraded_artifact(source, options, info)
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def create_degraded_artifact(
        self,
        source: Path,
        options: ProcessingOptions,
        info: MediaInfo | None = None,
    ) -> ProcessedVideoArtifact:
        """
        Artifact built from the unmodified source.

        Args:
            source: Source video path
            options: Resolved processing options
            info: Probed media info (duration estimated from size if None)

        Returns:
            ProcessedVideoArtifact with degraded=True
        """
        source = Path(source)
        duration = info.duration if info else estimate_duration_from_size(source)

        logger.info(f"Creating degraded artifact for: {source.name}")

        return ProcessedVideoArtifact(
            uri=str(source),
            width=info.width if info else 0,
            height=info.height if info else 0,
            duration=duration,
            size=source.stat().st_size,
            transcription=TRANSCRIPTION_UNAVAILABLE,
            thumbnail_uri=None,
            face_blur_applied=bool(options.enable_face_blur),
            voice_change_applied=bool(options.enable_voice_change),
            captions_applied=False,
            engine=None,
            degraded=True,
        )

