"""
Progress management for processing jobs.

A ProgressStream is the single typed event stream of one job: the
orchestrator publishes into it, any number of consumers (job manager,
WebSocket, tests) subscribe. A ProgressReporter maps per-stage progress
onto the overall percentage bands of the pipeline.
"""

import logging
from typing import Awaitable, Callable

from anonvideo.models.schemas import ProcessingStage, ProgressEvent

logger = logging.getLogger(__name__)

# Type alias for progress listeners
# Signature: (event) -> None
ProgressCallback = Callable[[ProgressEvent], Awaitable[None]]


class ProgressStream:
    """
    Monotonic progress event stream of one job.

    Published percentages never decrease: a lower value (for example a
    remote retry restarting its own count) is raised to the last one.

    Example:
        stream = ProgressStream(source="clip.mp4")
        stream.subscribe(print_event)
        await stream.publish(ProcessingStage.PREPARE, 5, "Preparing")
    """

    def __init__(self, source: str | None = None):
        self.source = source
        self.last_event: ProgressEvent | None = None
        self._listeners: list[ProgressCallback] = []

    @property
    def percent(self) -> float:
        return self.last_event.percent if self.last_event else 0.0

    def subscribe(self, listener: ProgressCallback) -> None:
        """Add a listener for future events."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: ProgressCallback) -> None:
        """Remove a listener (no-op if not subscribed)."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    async def publish(
        self,
        stage: ProcessingStage,
        percent: float,
        message: str,
    ) -> ProgressEvent:
        """
        Publish an event to every listener.

        Args:
            stage: Current stage
            percent: Overall progress (0-100)
            message: Human-readable status message

        Returns:
            The published event (after monotonic clamping)
        """
        percent = min(100.0, max(float(percent), self.percent))
        event = ProgressEvent(
            percent=round(percent, 1),
            stage=stage,
            message=message,
            source=self.source,
        )
        self.last_event = event

        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                # Never fail due to listener error
                logger.warning(f"Progress listener error: {e}")

        return event


class ProgressReporter:
    """
    Maps stage progress onto overall progress bands.

    Bands:
    - prepare: 0-5%
    - face scan: 15-30%
    - transcription: 30-50%
    - render (filter application): 50-85%
    - finalize (thumbnail, duration): 85-100%

    Example:
        reporter = ProgressReporter(stream)
        await reporter.report(ProcessingStage.TRANSCRIPTION, 50, "Transcribing")
        # publishes 40.0
    """

    STAGE_RANGES = {
        ProcessingStage.PREPARE: (0, 5),
        ProcessingStage.FACE_SCAN: (15, 30),
        ProcessingStage.TRANSCRIPTION: (30, 50),
        ProcessingStage.RENDER: (50, 85),
        ProcessingStage.FINALIZE: (85, 100),
    }

    def __init__(self, stream: ProgressStream):
        self.stream = stream
        self.stage = ProcessingStage.PREPARE

    def calculate_overall_progress(
        self,
        stage: ProcessingStage,
        stage_progress: float = 100,
    ) -> float:
        """
        Calculate overall progress percentage.

        Args:
            stage: Current processing stage
            stage_progress: Progress within the stage (0-100)

        Returns:
            Overall progress (0-100)
        """
        start, end = self.STAGE_RANGES[stage]
        stage_progress = min(100.0, max(0.0, stage_progress))
        return start + (end - start) * stage_progress / 100

    async def report(
        self,
        stage: ProcessingStage,
        stage_progress: float,
        message: str,
    ) -> ProgressEvent:
        """Record the current stage and publish its overall progress."""
        self.stage = stage
        overall = self.calculate_overall_progress(stage, stage_progress)
        return await self.stream.publish(stage, overall, message)
