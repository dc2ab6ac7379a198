"""
Base protocol for speech-to-text providers.

Defines the interface that transcription providers implement, allowing
interchangeable use of the cloud speech API and the simulated provider.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from anonvideo.models.schemas import CaptionWord


@dataclass
class Transcript:
    """
    Provider-neutral transcription result.

    Attributes:
        text: Full transcript text
        words: Ordered words with confidence and timing in seconds
        language: Language code
        duration: Audio duration in seconds (0 if unknown)
        provider: Provider name that produced the transcript
    """

    text: str
    words: list[CaptionWord] = field(default_factory=list)
    language: str = "en"
    duration: float = 0.0
    provider: str = ""


@runtime_checkable
class TranscriptionProvider(Protocol):
    """
    Protocol for transcription providers.

    ``words_per_segment`` is the caption window size the provider's
    word timing supports.

    Example:
        async def caption(provider: TranscriptionProvider, audio: Path) -> str:
            transcript = await provider.transcribe(audio)
            return transcript.text
    """

    name: str
    words_per_segment: int

    async def transcribe(
        self,
        audio_path: Path,
        duration: float | None = None,
    ) -> Transcript:
        """
        Transcribe an audio file.

        Args:
            audio_path: Path to the demuxed audio track
            duration: Known media duration in seconds, if any

        Returns:
            Transcript with word-level timing

        Raises:
            VideoCoreError: If transcription fails
        """
        ...

    async def close(self) -> None:
        """Release provider resources."""
        ...
