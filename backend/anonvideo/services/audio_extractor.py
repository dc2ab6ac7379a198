"""
Audio extraction service using ffmpeg.

Demuxes the audio track from a video for transcription without
re-encoding it.
"""

import asyncio
import logging
from pathlib import Path

from anonvideo.config import Settings
from anonvideo.errors import MalformedInputError, ProviderError
from anonvideo.utils.media_utils import run_ffmpeg

logger = logging.getLogger(__name__)


class AudioExtractor:
    """
    Extracts the audio stream from video files using ffmpeg.

    The stream is copied into a Matroska audio container, which accepts
    any source codec, so no transcoding happens.

    Example:
        extractor = AudioExtractor(settings)
        audio_path = await extractor.extract(video_path)
    """

    def __init__(self, settings: Settings):
        """
        Initialize audio extractor.

        Args:
            settings: Application settings
        """
        self.settings = settings

    async def extract(
        self,
        video_path: Path,
        output_dir: Path | None = None,
    ) -> Path:
        """
        Extract audio from video file.

        Args:
            video_path: Path to input video file
            output_dir: Output directory (default: settings.temp_dir)

        Returns:
            Path to extracted audio file (.mka)

        Raises:
            MalformedInputError: If video file doesn't exist
            ProviderError: If ffmpeg fails
        """
        video_path = Path(video_path)

        if not video_path.exists():
            raise MalformedInputError(f"Video file not found: {video_path}")

        if output_dir is None:
            output_dir = self.settings.temp_dir

        output_dir.mkdir(parents=True, exist_ok=True)
        audio_path = output_dir / f"{video_path.stem}_audio.mka"

        logger.info(f"Extracting audio: {video_path.name} -> {audio_path.name}")

        cmd = [
            "ffmpeg",
            "-i", str(video_path),
            "-vn",           # No video
            "-c:a", "copy",  # Demux only
            "-y",
            str(audio_path),
        ]
        await asyncio.to_thread(run_ffmpeg, cmd, self.settings.ffmpeg_timeout)

        if not audio_path.exists():
            raise ProviderError("Audio extraction failed: output file not created", provider="ffmpeg")

        return audio_path
