"""
Media utilities for video/audio file handling.

Provides common functions for media file operations:
- ffmpeg invocation with timeout and error mapping
- Duration and frame size detection via ffprobe
- Thumbnail extraction
- Size-based duration estimation as fallback
"""

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from anonvideo.errors import OperationTimeoutError, ProviderError

logger = logging.getLogger(__name__)

# Supported media extensions
AUDIO_EXTENSIONS = frozenset({".mp3", ".wav", ".m4a", ".flac", ".aac", ".ogg", ".mka"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".mkv", ".avi", ".mov", ".webm", ".m4v"})


@dataclass
class MediaInfo:
    """
    Basic media properties reported by ffprobe.

    Attributes:
        duration: Duration in seconds
        width: Frame width in pixels (0 for audio-only files)
        height: Frame height in pixels (0 for audio-only files)
        has_audio: Whether an audio stream is present
        sample_rate: Audio sample rate in Hz (44100 when unknown)
    """

    duration: float
    width: int = 0
    height: int = 0
    has_audio: bool = True
    sample_rate: int = 44100


def is_audio_file(file_path: Path) -> bool:
    """Check if file is an audio file by extension."""
    return file_path.suffix.lower() in AUDIO_EXTENSIONS


def is_video_file(file_path: Path) -> bool:
    """Check if file is a video file by extension.

    Args:
        file_path: Path to media file

    Returns:
        True if file has video extension
    """
    return file_path.suffix.lower() in VIDEO_EXTENSIONS


def ffmpeg_available() -> bool:
    """True if both ffmpeg and ffprobe are on PATH."""
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def run_ffmpeg(cmd: list[str], timeout: float) -> None:
    """
    Run an ffmpeg command synchronously.

    Intended to be called through asyncio.to_thread.

    Args:
        cmd: Full command line (starting with "ffmpeg")
        timeout: Timeout in seconds

    Raises:
        OperationTimeoutError: If ffmpeg exceeds the timeout
        ProviderError: If ffmpeg returns non-zero exit code
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise OperationTimeoutError(f"ffmpeg timed out after {timeout:.0f}s", cause=e) from e

    if result.returncode != 0:
        logger.error(f"ffmpeg failed: {result.stderr[-500:]}")
        raise ProviderError(
            f"ffmpeg error (code {result.returncode})",
            provider="ffmpeg",
        )


def probe_media(media_path: Path) -> MediaInfo | None:
    """Get duration and frame size using ffprobe.

    Args:
        media_path: Path to media file

    Returns:
        MediaInfo, or None if ffprobe fails
    """
    try:
        result = subprocess.run(
            [
                "ffprobe",
                "-v",
                "quiet",
                "-print_format",
                "json",
                "-show_entries",
                "format=duration:stream=codec_type,width,height,sample_rate",
                str(media_path),
            ],
            capture_output=True,
            text=True,
            timeout=30,
        )
        if result.returncode != 0 or not result.stdout.strip():
            return None

        data = json.loads(result.stdout)
        streams = data.get("streams", [])
        video = next((s for s in streams if s.get("codec_type") == "video"), {})
        audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
        return MediaInfo(
            duration=float(data.get("format", {}).get("duration", 0.0)),
            width=int(video.get("width", 0)),
            height=int(video.get("height", 0)),
            has_audio=audio is not None,
            sample_rate=int((audio or {}).get("sample_rate") or 44100),
        )
    except (OSError, ValueError, subprocess.TimeoutExpired) as e:
        logger.warning(f"ffprobe failed for {media_path.name}: {e}")

    return None


def get_media_duration(media_path: Path) -> float | None:
    """Get media duration in seconds, or None if ffprobe fails."""
    info = probe_media(media_path)
    return info.duration if info else None


def extract_thumbnail(video_path: Path, output_path: Path, timeout: float = 60) -> Path:
    """
    Extract a representative 320px-wide thumbnail.

    Uses ffmpeg's thumbnail filter to pick a characteristic frame.

    Args:
        video_path: Input video
        output_path: Output JPEG path
        timeout: Timeout in seconds

    Returns:
        Path to the thumbnail

    Raises:
        ProviderError: If ffmpeg fails or produces no file
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    run_ffmpeg(
        [
            "ffmpeg",
            "-i", str(video_path),
            "-vf", "thumbnail,scale=320:-1",
            "-frames:v", "1",
            "-y",
            str(output_path),
        ],
        timeout=timeout,
    )
    if not output_path.exists():
        raise ProviderError("Thumbnail was not created", provider="ffmpeg")
    return output_path


def estimate_duration_from_size(file_path: Path) -> float:
    """Estimate media duration from file size.

    Fallback when ffprobe is unavailable. Uses different rates for audio/video:
    - Video: ~5 MB/min (83333 bytes/sec)
    - Audio: ~1 MB/min (16667 bytes/sec for 128kbps MP3)

    Args:
        file_path: Path to media file

    Returns:
        Estimated duration in seconds
    """
    file_size = file_path.stat().st_size

    if is_audio_file(file_path):
        return file_size / 16667
    return file_size / 83333
