"""
Caption overlay stage.

Turns caption segments into drawtext filters burned into the video:
bottom-center, white text with a black outline, each segment visible
only between its start and end time.
"""

from anonvideo.models.schemas import CaptionSegment
from anonvideo.utils.ffmpeg_text import escape_ffmpeg_text

from .base import VideoFragment

CAPTION_STYLE = "fontsize=28:fontcolor=white:borderw=2:bordercolor=black"
CAPTION_POSITION = "x=(w-text_w)/2:y=h-th-80"


def drawtext_filter(segment: CaptionSegment) -> str:
    """drawtext filter for one segment."""
    text = escape_ffmpeg_text(segment.text)
    return (
        f"drawtext=text={text}:expansion=none:{CAPTION_STYLE}:{CAPTION_POSITION}:"
        f"enable='between(t,{segment.start_time:.2f},{segment.end_time:.2f})'"
    )


def build_caption_filters(segments: list[CaptionSegment]) -> list[str]:
    """drawtext filters for all non-empty segments, in order."""
    return [drawtext_filter(seg) for seg in segments if seg.text.strip()]


def caption_fragment(segments: list[CaptionSegment]) -> VideoFragment | None:
    """
    Filter graph fragment drawing all captions.

    Returns:
        Fragment chaining every drawtext filter, or None without captions
    """
    filters = build_caption_filters(segments)
    if not filters:
        return None

    chain = ",".join(filters)

    def build(src: str, dst: str) -> str:
        return f"[{src}]{chain}[{dst}]"

    return build
