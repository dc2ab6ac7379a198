"""
Face anonymization stage.

Samples frames at a fixed stride, runs the face detector on each sampled
frame and merges every detection into one padded region that is blurred
for the whole clip. When no face is found anywhere the top half of the
frame is blurred instead.

The stage only describes the blur as a filter graph fragment; rendering
happens later in the single transcoding pass.
"""

import asyncio
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path

from anonvideo.config import Settings
from anonvideo.models.schemas import FaceRegion
from anonvideo.services.face_detector import FaceDetector
from anonvideo.utils.media_utils import MediaInfo, run_ffmpeg

from .base import VideoFragment

logger = logging.getLogger(__name__)

BLUR_FILTER = "gblur=sigma=30:steps=3"

# Policy when no face was detected: blur the upper half for the whole clip
TOP_HALF_FILTER = f"crop=iw:ih/2:0:0,{BLUR_FILTER}"


@dataclass
class FaceScanResult:
    """
    Outcome of a face scan.

    Attributes:
        region: Merged region, or None when no face was detected
        frames_scanned: Number of sampled frames
        faces_detected: Number of boxes across all sampled frames
    """

    region: FaceRegion | None
    frames_scanned: int = 0
    faces_detected: int = 0

    @property
    def used_fallback(self) -> bool:
        return self.region is None


def merge_face_boxes(
    boxes: list[FaceRegion],
    padding: int = 20,
    frame_width: int = 0,
    frame_height: int = 0,
) -> FaceRegion | None:
    """
    Merge face boxes into one padded bounding rectangle.

    The origin is the minimum of all box origins minus ``padding`` (not
    below 0); the extent is the maximum of all box extents plus
    ``padding``, clamped to the frame when its size is known.

    Args:
        boxes: Detections from any number of frames
        padding: Pixels added on every side
        frame_width: Frame width for clamping (0 = unknown)
        frame_height: Frame height for clamping (0 = unknown)

    Returns:
        Merged FaceRegion, or None for an empty input
    """
    if not boxes:
        return None

    min_x = max(0, min(b.x for b in boxes) - padding)
    min_y = max(0, min(b.y for b in boxes) - padding)
    max_x = max(b.right for b in boxes) + padding
    max_y = max(b.bottom for b in boxes) + padding

    if frame_width > 0:
        max_x = min(max_x, frame_width)
    if frame_height > 0:
        max_y = min(max_y, frame_height)

    return FaceRegion(x=min_x, y=min_y, w=max(0, max_x - min_x), h=max(0, max_y - min_y))


def region_blur_fragment(region: FaceRegion) -> VideoFragment:
    """Fragment that blurs ``region`` and overlays it back in place."""

    def build(src: str, dst: str) -> str:
        return (
            f"[{src}]split[{dst}base][{dst}roi];"
            f"[{dst}roi]crop={region.w}:{region.h}:{region.x}:{region.y},{BLUR_FILTER}[{dst}blur];"
            f"[{dst}base][{dst}blur]overlay={region.x}:{region.y}[{dst}]"
        )

    return build


def top_half_blur_fragment() -> VideoFragment:
    """Fragment that blurs the upper half of every frame."""

    def build(src: str, dst: str) -> str:
        return (
            f"[{src}]split[{dst}base][{dst}roi];"
            f"[{dst}roi]{TOP_HALF_FILTER}[{dst}blur];"
            f"[{dst}base][{dst}blur]overlay=0:0[{dst}]"
        )

    return build


class FaceAnonymizationStage:
    """
    Detects faces on sampled frames and describes the blur.

    Frame images live in a temporary directory under ``settings.temp_dir``;
    each frame is deleted right after detection and the directory is
    removed whether the scan succeeds or fails.

    Example:
        stage = FaceAnonymizationStage(OpenCVFaceDetector(), settings)
        scan = await stage.scan(video_path, media_info)
        graph.add_video(stage.build_fragment(scan))
    """

    def __init__(self, detector: FaceDetector, settings: Settings):
        """
        Initialize face stage.

        Args:
            detector: Face detector for still frames
            settings: Application settings (stride, padding, temp dir)
        """
        self.detector = detector
        self.settings = settings
        self.stride = max(1, settings.face_sample_stride)
        self.padding = settings.face_box_padding

    async def scan(self, video_path: Path, info: MediaInfo | None = None) -> FaceScanResult:
        """
        Run detection over sampled frames.

        Args:
            video_path: Source video
            info: Probed media info used to clamp the region to the frame

        Returns:
            FaceScanResult with the merged region (None if no faces)

        Raises:
            ProviderError: If frame extraction fails
        """
        video_path = Path(video_path)
        self.settings.temp_dir.mkdir(parents=True, exist_ok=True)

        boxes: list[FaceRegion] = []
        frames = 0

        with tempfile.TemporaryDirectory(prefix="frames_", dir=self.settings.temp_dir) as temp_dir:
            frames_dir = Path(temp_dir)
            await asyncio.to_thread(self._extract_frames, video_path, frames_dir)

            for frame_path in sorted(frames_dir.glob("*.jpg")):
                frames += 1
                try:
                    found = await asyncio.to_thread(self.detector.detect, frame_path)
                    boxes.extend(found)
                except Exception as e:
                    logger.warning(f"Face detection failed for frame {frame_path.name}: {e}")
                finally:
                    frame_path.unlink(missing_ok=True)

        region = merge_face_boxes(
            boxes,
            padding=self.padding,
            frame_width=info.width if info else 0,
            frame_height=info.height if info else 0,
        )

        if region is None:
            logger.info(f"No faces in {frames} sampled frames of {video_path.name}, blurring top half")
        else:
            logger.info(
                f"Faces in {video_path.name}: {len(boxes)} boxes over {frames} frames, "
                f"region {region.w}x{region.h}+{region.x}+{region.y}"
            )

        return FaceScanResult(region=region, frames_scanned=frames, faces_detected=len(boxes))

    def build_fragment(self, scan: FaceScanResult) -> VideoFragment:
        """Blur fragment for a scan result, with the top-half fallback."""
        if scan.region is None or scan.region.w == 0 or scan.region.h == 0:
            return top_half_blur_fragment()
        return region_blur_fragment(scan.region)

    def _extract_frames(self, video_path: Path, frames_dir: Path) -> None:
        """Write every Nth frame as JPEG into ``frames_dir``."""
        cmd = [
            "ffmpeg",
            "-i", str(video_path),
            "-vf", f"select=not(mod(n\\,{self.stride}))",
            "-fps_mode", "vfr",
            "-q:v", "2",
            "-y",
            str(frames_dir / "%04d.jpg"),
        ]
        run_ffmpeg(cmd, self.settings.ffmpeg_timeout)
