"""
Transformation stages.

Each stage contributes a fragment to the FilterGraph rendered by the
engine in one transcoding pass:
- face_stage: sampled face detection and region blur
- voice_stage: fixed pitch shift audio filter
- caption_stage: drawtext overlays for caption segments
"""

from .base import FilterGraph, VideoFragment
from .caption_stage import build_caption_filters, caption_fragment
from .face_stage import (
    TOP_HALF_FILTER,
    FaceAnonymizationStage,
    FaceScanResult,
    merge_face_boxes,
    region_blur_fragment,
    top_half_blur_fragment,
)
from .voice_stage import VOICE_RATIOS, build_voice_filter

__all__ = [
    "TOP_HALF_FILTER",
    "VOICE_RATIOS",
    "FaceAnonymizationStage",
    "FaceScanResult",
    "FilterGraph",
    "VideoFragment",
    "build_caption_filters",
    "build_voice_filter",
    "caption_fragment",
    "merge_face_boxes",
    "region_blur_fragment",
    "top_half_blur_fragment",
]
