"""
Base protocol for transcoding engines.

An engine turns a source recording plus resolved ProcessingOptions into a
ProcessedVideoArtifact. The local engine runs every stage on this host
with ffmpeg; the remote engine delegates to the processing service.
"""

from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from anonvideo.models.schemas import EngineKind, ProcessedVideoArtifact, ProcessingOptions

if TYPE_CHECKING:
    from anonvideo.services.pipeline.progress_manager import ProgressReporter


@runtime_checkable
class VideoEngine(Protocol):
    """
    Protocol for transcoding engines.

    Example:
        async def run(engine: VideoEngine, source: Path) -> str:
            artifact = await engine.process(source, options, reporter)
            return artifact.uri
    """

    kind: EngineKind

    async def process(
        self,
        source: Path,
        options: ProcessingOptions,
        reporter: "ProgressReporter",
    ) -> ProcessedVideoArtifact:
        """
        Produce the processed artifact.

        Args:
            source: Source video path
            options: Options with every field resolved
            reporter: Stage progress reporter

        Returns:
            ProcessedVideoArtifact

        Raises:
            VideoCoreError: If processing fails
        """
        ...

    async def close(self) -> None:
        """Release engine resources."""
        ...
