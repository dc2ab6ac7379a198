"""
Shared fixtures.

External processes are faked by patching ``subprocess.run``: ffprobe
answers with configurable stream info and ffmpeg "renders" by writing
its output file (or a few JPEG frames for frame extraction).
"""

import json
import subprocess
from pathlib import Path

import pytest

from anonvideo.config import Settings
from anonvideo.models.schemas import CaptionWord, FaceRegion
from anonvideo.services.engines import LocalEngine
from anonvideo.services.providers import Transcript
from anonvideo.services.stages import FaceAnonymizationStage
from anonvideo.services.transcriber import CaptionService


class FakeFFmpeg:
    """Stand-in for ffmpeg/ffprobe invocations."""

    def __init__(
        self,
        duration: float = 10.0,
        width: int = 1280,
        height: int = 720,
        has_audio: bool = True,
        frames: int = 3,
        fail_render: bool = False,
    ):
        self.duration = duration
        self.width = width
        self.height = height
        self.has_audio = has_audio
        self.frames = frames
        self.fail_render = fail_render
        self.calls: list[list[str]] = []

    @property
    def ffmpeg_calls(self) -> list[list[str]]:
        return [c for c in self.calls if c[0] == "ffmpeg"]

    def render_calls(self) -> list[list[str]]:
        return [c for c in self.ffmpeg_calls if "libx264" in c]

    def __call__(self, cmd, capture_output=True, text=True, timeout=None, **kwargs):
        self.calls.append(list(cmd))

        if cmd[0] == "ffprobe":
            if not Path(cmd[-1]).exists():
                return subprocess.CompletedProcess(cmd, 1, "", "No such file")
            streams = [{"codec_type": "video", "width": self.width, "height": self.height}]
            if self.has_audio:
                streams.append({"codec_type": "audio", "sample_rate": "48000"})
            payload = {"format": {"duration": str(self.duration)}, "streams": streams}
            return subprocess.CompletedProcess(cmd, 0, json.dumps(payload), "")

        output = cmd[-1]
        if "%04d" in output:
            for i in range(1, self.frames + 1):
                Path(output.replace("%04d", f"{i:04d}")).write_bytes(b"jpeg")
            return subprocess.CompletedProcess(cmd, 0, "", "")

        if self.fail_render and "libx264" in cmd:
            return subprocess.CompletedProcess(cmd, 1, "", "Encoder failed")

        Path(output).write_bytes(b"rendered-media")
        return subprocess.CompletedProcess(cmd, 0, "", "")


class FakeDetector:
    """Returns the next box list for each frame (empty once exhausted)."""

    def __init__(self, per_frame: list[list[FaceRegion]] | None = None):
        self.per_frame = list(per_frame or [])
        self.seen: list[Path] = []

    def detect(self, image_path: Path) -> list[FaceRegion]:
        self.seen.append(Path(image_path))
        return self.per_frame.pop(0) if self.per_frame else []


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated under tmp_path with background timers disabled."""
    return Settings(
        _env_file=None,
        data_root=tmp_path,
        temp_dir=tmp_path / "temp",
        output_dir=tmp_path / "processed",
        cache_dir=tmp_path / "cache",
        remote_engine_url=None,
        speech_api_key=None,
        memory_poll_interval=0,
        network_test_urls=["https://probe.test/a", "https://probe.test/b"],
        queue_retry_backoff=0.01,
        cache_max_size_bytes=1000,
        cache_max_entries=10,
    )


@pytest.fixture
def fake_ffmpeg(monkeypatch) -> FakeFFmpeg:
    fake = FakeFFmpeg()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


@pytest.fixture
def source_video(tmp_path: Path) -> Path:
    path = tmp_path / "recordings" / "clip.mp4"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"\x00" * 4096)
    return path


@pytest.fixture
def ffmpeg_factory(monkeypatch):
    """Install a FakeFFmpeg built with custom media properties."""

    def install(**kwargs) -> FakeFFmpeg:
        fake = FakeFFmpeg(**kwargs)
        monkeypatch.setattr(subprocess, "run", fake)
        return fake

    return install


@pytest.fixture
def detector_factory():
    return FakeDetector


class ScriptedProvider:
    """Transcription provider returning fixed words (or raising)."""

    name = "scripted"
    words_per_segment = 6

    def __init__(self, words: list[CaptionWord] | None = None, error: Exception | None = None):
        if words is None:
            words = [
                CaptionWord(word=f"word{i}", confidence=0.9, start_time=i * 0.5, end_time=i * 0.5 + 0.4)
                for i in range(9)
            ]
        self.words = words
        self.error = error
        self.calls = 0

    async def transcribe(self, audio_path: Path, duration: float | None = None) -> Transcript:
        self.calls += 1
        if self.error is not None:
            raise self.error
        text = " ".join(w.word for w in self.words)
        return Transcript(text=text, words=self.words, duration=duration or 0.0, provider=self.name)

    async def close(self) -> None:
        pass


@pytest.fixture
def local_engine_factory(settings):
    """Build a LocalEngine around a FakeDetector and a ScriptedProvider."""

    def build(faces: list[list[FaceRegion]] | None = None, provider=None) -> LocalEngine:
        stage = FaceAnonymizationStage(FakeDetector(faces), settings)
        captions = CaptionService(provider or ScriptedProvider(), settings)
        return LocalEngine(settings, stage, captions)

    return build


@pytest.fixture
def provider_factory():
    return ScriptedProvider
