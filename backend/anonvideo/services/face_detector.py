"""
Face detection on still frames.

Wraps OpenCV's bundled Haar cascade behind a small protocol so the face
stage can run with any detector (tests inject a fake one).
"""

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

import cv2

from anonvideo.models.schemas import FaceRegion

logger = logging.getLogger(__name__)

DEFAULT_CASCADE = "haarcascade_frontalface_default.xml"


@runtime_checkable
class FaceDetector(Protocol):
    """Detects faces in a single image file."""

    def detect(self, image_path: Path) -> list[FaceRegion]:
        """Return face boxes in image pixel coordinates."""
        ...


class OpenCVFaceDetector:
    """
    Haar cascade face detector.

    Attributes:
        scale_factor: Image pyramid step
        min_neighbors: Detections required to keep a candidate
        min_size: Smallest face in pixels
    """

    def __init__(
        self,
        cascade_path: Path | None = None,
        scale_factor: float = 1.1,
        min_neighbors: int = 5,
        min_size: int = 30,
    ):
        path = cascade_path or Path(cv2.data.haarcascades) / DEFAULT_CASCADE
        self.classifier = cv2.CascadeClassifier(str(path))
        if self.classifier.empty():
            raise RuntimeError(f"Failed to load face cascade: {path}")
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = min_size

    def detect(self, image_path: Path) -> list[FaceRegion]:
        image = cv2.imread(str(image_path))
        if image is None:
            logger.warning(f"Could not read frame: {image_path.name}")
            return []

        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        boxes = self.classifier.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=(self.min_size, self.min_size),
        )
        return [FaceRegion(x=int(x), y=int(y), w=int(w), h=int(h)) for (x, y, w, h) in boxes]
