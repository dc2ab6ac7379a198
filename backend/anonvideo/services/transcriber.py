"""
Caption generation service.

Transcribes a video through the configured provider, groups words into
caption segments and persists the result as a sidecar file next to the
video so repeat requests skip the provider entirely.
"""

import asyncio
import logging
import tempfile
import time
from pathlib import Path

from anonvideo.config import Settings
from anonvideo.models.schemas import CaptionData, CaptionSegment, CaptionWord
from anonvideo.services.audio_extractor import AudioExtractor
from anonvideo.services.providers import TranscriptionProvider
from anonvideo.utils.media_utils import get_media_duration

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".captions.json"
MIN_WORDS_PER_SEGMENT = 6
MAX_WORDS_PER_SEGMENT = 10


def sidecar_path(video_path: Path) -> Path:
    """Caption sidecar location: the video extension replaced by .captions.json."""
    video_path = Path(video_path)
    return video_path.with_name(video_path.stem + SIDECAR_SUFFIX)


def segment_words(
    words: list[CaptionWord],
    words_per_segment: int = 8,
) -> list[CaptionSegment]:
    """
    Group words into fixed-size caption segments.

    Segment timing comes from the first and last word of the window.
    Order is preserved, so segments are chronological.

    Args:
        words: Ordered recognized words
        words_per_segment: Window size, clamped to 6-10

    Returns:
        List of completed CaptionSegment
    """
    size = max(MIN_WORDS_PER_SEGMENT, min(MAX_WORDS_PER_SEGMENT, words_per_segment))
    segments = []

    for index, start in enumerate(range(0, len(words), size), start=1):
        window = words[start : start + size]
        segments.append(
            CaptionSegment(
                id=f"segment_{index}",
                text=" ".join(w.word for w in window),
                words=window,
                start_time=window[0].start_time,
                end_time=window[-1].end_time,
                is_complete=True,
            )
        )

    return segments


class CaptionService:
    """
    Caption generation with sidecar caching.

    A sidecar is fresh when it exists and is not older than the video.

    Example:
        service = CaptionService(provider, settings)
        captions = await service.generate_captions_for_video(Path("clip.mp4"))
        again = await service.generate_captions_for_video(Path("clip.mp4"))  # from sidecar
    """

    def __init__(
        self,
        provider: TranscriptionProvider,
        settings: Settings,
        extractor: AudioExtractor | None = None,
    ):
        """
        Initialize caption service.

        Args:
            provider: Transcription provider
            settings: Application settings
            extractor: Audio extractor (created from settings if None)
        """
        self.provider = provider
        self.settings = settings
        self.extractor = extractor or AudioExtractor(settings)

    def load_sidecar(self, video_path: Path) -> CaptionData | None:
        """
        Load cached captions if the sidecar is present and fresh.

        Args:
            video_path: Source video path

        Returns:
            CaptionData or None on miss, stale or unreadable sidecar
        """
        path = sidecar_path(video_path)
        if not path.exists():
            return None

        if Path(video_path).exists() and path.stat().st_mtime < Path(video_path).stat().st_mtime:
            logger.debug(f"Caption sidecar is stale: {path.name}")
            return None

        try:
            return CaptionData.model_validate_json(path.read_text(encoding="utf-8"))
        except ValueError as e:
            logger.warning(f"Ignoring unreadable caption sidecar {path.name}: {e}")
            return None

    def save_sidecar(self, video_path: Path, captions: CaptionData) -> Path:
        """Write captions next to the video."""
        path = sidecar_path(video_path)
        path.write_text(captions.model_dump_json(indent=2), encoding="utf-8")
        logger.debug(f"Caption sidecar written: {path}")
        return path

    async def generate_captions_for_video(
        self,
        video_uri: str | Path,
        force_regenerate: bool = False,
    ) -> CaptionData:
        """
        Produce captions for a video, using the sidecar when possible.

        Args:
            video_uri: Path to the source video
            force_regenerate: Ignore an existing sidecar

        Returns:
            CaptionData (identical on repeat calls without force_regenerate)

        Raises:
            VideoCoreError: If audio extraction or transcription fails
        """
        video_path = Path(video_uri)

        if not force_regenerate:
            cached = self.load_sidecar(video_path)
            if cached is not None:
                logger.info(f"Captions served from sidecar: {video_path.name}")
                return cached

        start_time = time.time()
        duration = await asyncio.to_thread(get_media_duration, video_path)

        self.settings.temp_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=self.settings.temp_dir) as temp_dir:
            audio_path = await self.extractor.extract(video_path, output_dir=Path(temp_dir))
            transcript = await self.provider.transcribe(audio_path, duration=duration)

        segments = segment_words(transcript.words, self.provider.words_per_segment)
        captions = CaptionData(
            segments=segments,
            duration=duration or transcript.duration,
            language=transcript.language,
        )

        self.save_sidecar(video_path, captions)
        # Return the persisted form so later sidecar reads compare equal
        cached = self.load_sidecar(video_path)

        logger.info(
            f"Captions generated for {video_path.name}: {len(segments)} segments "
            f"via {transcript.provider} in {time.time() - start_time:.1f}s"
        )
        return cached or captions
