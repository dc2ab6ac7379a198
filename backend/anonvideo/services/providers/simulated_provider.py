"""
Simulated transcription provider.

Stands in when no cloud speech API is configured so the caption path
still produces well-formed, deterministic output.
"""

import logging
import random
from pathlib import Path

from anonvideo.models.schemas import CaptionWord

from .base import Transcript

logger = logging.getLogger(__name__)

WORD_DURATION = 0.6  # seconds per simulated word
MAX_WORDS = 240

_PHRASES = [
    "this recording has been processed for privacy",
    "speaker identity is protected in this video",
    "captions are generated automatically",
]


class SimulatedTranscriptionProvider:
    """
    Deterministic placeholder transcription.

    Words are spaced 600 ms apart across the media duration with
    confidence in [0.85, 0.95]. The same source always yields the
    same transcript.
    """

    name = "simulated"
    words_per_segment = 6

    def __init__(self, language: str = "en"):
        self.language = language

    async def transcribe(
        self,
        audio_path: Path,
        duration: float | None = None,
    ) -> Transcript:
        audio_path = Path(audio_path)
        total = duration if duration and duration > 0 else 10.0
        count = max(1, min(MAX_WORDS, int(total / WORD_DURATION)))

        vocabulary = " ".join(_PHRASES).split()
        rng = random.Random(audio_path.stem)

        words = []
        for i in range(count):
            start = round(i * WORD_DURATION, 3)
            words.append(
                CaptionWord(
                    word=vocabulary[i % len(vocabulary)],
                    confidence=round(rng.uniform(0.85, 0.95), 3),
                    start_time=start,
                    end_time=round(start + WORD_DURATION, 3),
                )
            )

        logger.info(f"Simulated transcript for {audio_path.name}: {count} words")
        return Transcript(
            text=" ".join(w.word for w in words),
            words=words,
            language=self.language,
            duration=total,
            provider=self.name,
        )

    async def close(self) -> None:
        pass
