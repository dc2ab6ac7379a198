"""Tests for caption segmentation and the sidecar cache."""

import asyncio
import os
from pathlib import Path

import pytest

from anonvideo.errors import TranscriptionTimeoutError
from anonvideo.models.schemas import CaptionWord
from anonvideo.services.providers import SimulatedTranscriptionProvider, Transcript
from anonvideo.services.transcriber import CaptionService, segment_words, sidecar_path


def _words(count: int, step: float = 0.5) -> list[CaptionWord]:
    return [
        CaptionWord(word=f"w{i}", confidence=0.9, start_time=i * step, end_time=i * step + 0.4)
        for i in range(count)
    ]


class FakeExtractor:
    async def extract(self, video_path: Path, output_dir: Path | None = None) -> Path:
        audio = output_dir / f"{Path(video_path).stem}_audio.mka"
        audio.write_bytes(b"audio")
        return audio


class CountingProvider:
    name = "counting"
    words_per_segment = 8

    def __init__(self, words: list[CaptionWord] | None = None, error: Exception | None = None):
        self.words = words if words is not None else _words(20)
        self.error = error
        self.calls = 0

    async def transcribe(self, audio_path: Path, duration: float | None = None) -> Transcript:
        self.calls += 1
        if self.error:
            raise self.error
        return Transcript(text="", words=self.words, language="en", duration=10.0, provider=self.name)

    async def close(self) -> None:
        pass


class TestSegmentWords:
    def test_windows_of_eight(self):
        segments = segment_words(_words(20), 8)
        assert [len(s.words) for s in segments] == [8, 8, 4]
        assert [s.id for s in segments] == ["segment_1", "segment_2", "segment_3"]

    def test_timing_from_first_and_last_word(self):
        words = _words(12)
        segments = segment_words(words, 6)
        assert segments[0].start_time == words[0].start_time
        assert segments[0].end_time == words[5].end_time
        assert segments[1].start_time == words[6].start_time
        assert all(s.is_complete for s in segments)

    def test_window_clamped_to_six_to_ten(self):
        assert len(segment_words(_words(30), 2)[0].words) == 6
        assert len(segment_words(_words(30), 50)[0].words) == 10

    def test_chronological_order(self):
        segments = segment_words(_words(25), 7)
        starts = [s.start_time for s in segments]
        assert starts == sorted(starts)
        assert " ".join(s.text for s in segments) == " ".join(f"w{i}" for i in range(25))

    def test_no_words(self):
        assert segment_words([], 8) == []


class TestCaptionService:
    def test_sidecar_path(self):
        assert sidecar_path(Path("/v/clip.mp4")) == Path("/v/clip.captions.json")

    def test_second_call_served_from_sidecar(self, settings, source_video, fake_ffmpeg):
        provider = CountingProvider()
        service = CaptionService(provider, settings, extractor=FakeExtractor())

        first = asyncio.run(service.generate_captions_for_video(source_video))
        raw_first = sidecar_path(source_video).read_bytes()
        second = asyncio.run(service.generate_captions_for_video(source_video))

        assert provider.calls == 1
        assert second == first
        assert second.model_dump_json() == first.model_dump_json()
        assert sidecar_path(source_video).read_bytes() == raw_first

    def test_force_regenerate_calls_provider(self, settings, source_video, fake_ffmpeg):
        provider = CountingProvider()
        service = CaptionService(provider, settings, extractor=FakeExtractor())

        asyncio.run(service.generate_captions_for_video(source_video))
        asyncio.run(service.generate_captions_for_video(source_video, force_regenerate=True))

        assert provider.calls == 2

    def test_stale_sidecar_ignored(self, settings, source_video, fake_ffmpeg):
        provider = CountingProvider()
        service = CaptionService(provider, settings, extractor=FakeExtractor())
        asyncio.run(service.generate_captions_for_video(source_video))

        sidecar = sidecar_path(source_video)
        old = source_video.stat().st_mtime - 100
        os.utime(sidecar, (old, old))

        asyncio.run(service.generate_captions_for_video(source_video))
        assert provider.calls == 2

    def test_provider_timeout_propagates(self, settings, source_video, fake_ffmpeg):
        provider = CountingProvider(error=TranscriptionTimeoutError("exhausted"))
        service = CaptionService(provider, settings, extractor=FakeExtractor())

        with pytest.raises(TranscriptionTimeoutError):
            asyncio.run(service.generate_captions_for_video(source_video))
        assert not sidecar_path(source_video).exists()

    def test_simulated_provider_is_deterministic(self, settings, source_video, fake_ffmpeg):
        service = CaptionService(SimulatedTranscriptionProvider(), settings, extractor=FakeExtractor())

        captions = asyncio.run(service.generate_captions_for_video(source_video))

        assert captions.duration == pytest.approx(10.0)
        assert all(len(s.words) == 6 for s in captions.segments[:-1])
        assert all(0.85 <= w.confidence <= 0.95 for s in captions.segments for w in s.words)
        again = asyncio.run(
            service.generate_captions_for_video(source_video, force_regenerate=True)
        )
        assert again.segments == captions.segments
