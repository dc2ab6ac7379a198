"""
Utility modules.
"""

from .ffmpeg_text import escape_ffmpeg_text, escape_filter_value
from .media_utils import (
    MediaInfo,
    estimate_duration_from_size,
    extract_thumbnail,
    ffmpeg_available,
    get_media_duration,
    is_audio_file,
    is_video_file,
    probe_media,
    run_ffmpeg,
)

__all__ = [
    "MediaInfo",
    "escape_ffmpeg_text",
    "escape_filter_value",
    "estimate_duration_from_size",
    "extract_thumbnail",
    "ffmpeg_available",
    "get_media_duration",
    "is_audio_file",
    "is_video_file",
    "probe_media",
    "run_ffmpeg",
]
