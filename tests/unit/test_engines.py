"""Tests for the local ffmpeg engine and the remote engine client."""

import asyncio
import json
from pathlib import Path

import httpx
import pytest
from tenacity import wait_none

from anonvideo.errors import (
    MalformedInputError,
    NetworkError,
    PermissionDeniedError,
    ProviderError,
    TranscriptionTimeoutError,
)
from anonvideo.models.schemas import (
    TRANSCRIPTION_UNAVAILABLE,
    EngineKind,
    FaceRegion,
    ProcessingOptions,
)
from anonvideo.services.engines import RemoteEngine
from anonvideo.services.pipeline import ProgressReporter, ProgressStream
from anonvideo.services.stages import top_half_blur_fragment

FACES = [[FaceRegion(x=500, y=100, w=120, h=140)], [], []]


def _options(settings, **values) -> ProcessingOptions:
    return ProcessingOptions(**values).with_defaults(settings)


def _filter_graph(call: list[str]) -> str:
    return call[call.index("-filter_complex") + 1] if "-filter_complex" in call else ""


def _process(engine, source, options):
    reporter = ProgressReporter(ProgressStream())
    return asyncio.run(engine.process(source, options, reporter))


class TestLocalEngine:
    def test_everything_disabled(self, settings, source_video, fake_ffmpeg, local_engine_factory):
        engine = local_engine_factory(FACES)
        options = _options(
            settings,
            enable_face_blur=False,
            enable_voice_change=False,
            enable_transcription=False,
        )

        artifact = _process(engine, source_video, options)

        [render] = fake_ffmpeg.render_calls()
        assert "gblur" not in " ".join(render)
        assert "asetrate" not in " ".join(render)
        assert not artifact.face_blur_applied
        assert not artifact.voice_change_applied
        assert not artifact.captions_applied
        assert artifact.transcription == TRANSCRIPTION_UNAVAILABLE
        assert artifact.engine == EngineKind.LOCAL

    @pytest.mark.parametrize("quality", ["low", "medium", "high"])
    @pytest.mark.parametrize("transcription", [True, False])
    def test_disabled_blur_and_voice_for_any_quality(
        self, settings, source_video, fake_ffmpeg, local_engine_factory, quality, transcription
    ):
        engine = local_engine_factory(FACES)
        options = _options(
            settings,
            enable_face_blur=False,
            enable_voice_change=False,
            enable_transcription=transcription,
            quality=quality,
        )

        artifact = _process(engine, source_video, options)

        [render] = fake_ffmpeg.render_calls()
        assert "gblur" not in " ".join(render)
        assert "asetrate" not in " ".join(render)
        assert not artifact.face_blur_applied
        assert not artifact.voice_change_applied
        assert artifact.captions_applied == transcription

    def test_all_transformations(self, settings, source_video, fake_ffmpeg, local_engine_factory):
        engine = local_engine_factory(FACES)

        artifact = _process(engine, source_video, _options(settings))

        graph = _filter_graph(fake_ffmpeg.render_calls()[0])
        assert "crop=160:180:480:80,gblur=sigma=30:steps=3" in graph
        assert "[0:a]asetrate=48000*0.89,aresample=48000,atempo=1.12[aout]" in graph
        assert graph.count("drawtext=") == 2
        assert artifact.face_blur_applied
        assert artifact.voice_change_applied
        assert artifact.captions_applied
        assert artifact.transcription.startswith("word0 word1")
        assert artifact.duration == pytest.approx(10.0)
        assert (artifact.width, artifact.height) == (1280, 720)
        assert artifact.thumbnail_uri.endswith("_thumb.jpg")

    def test_no_faces_blurs_top_half(self, settings, source_video, fake_ffmpeg, local_engine_factory):
        engine = local_engine_factory([])
        options = _options(settings, enable_voice_change=False, enable_transcription=False)

        artifact = _process(engine, source_video, options)

        assert _filter_graph(fake_ffmpeg.render_calls()[0]) == top_half_blur_fragment()("0:v", "v1")
        assert artifact.face_blur_applied

    def test_transcription_failure_drops_captions(
        self, settings, source_video, fake_ffmpeg, local_engine_factory, provider_factory
    ):
        provider = provider_factory(error=TranscriptionTimeoutError("poll budget exhausted"))
        engine = local_engine_factory(FACES, provider)

        artifact = _process(engine, source_video, _options(settings))

        assert artifact.transcription == TRANSCRIPTION_UNAVAILABLE
        assert not artifact.captions_applied
        assert artifact.face_blur_applied and artifact.voice_change_applied
        assert "drawtext" not in _filter_graph(fake_ffmpeg.render_calls()[0])

    def test_silent_video_skips_voice_change(self, settings, source_video, ffmpeg_factory, local_engine_factory):
        ffmpeg = ffmpeg_factory(has_audio=False)
        engine = local_engine_factory(FACES)

        artifact = _process(engine, source_video, _options(settings))

        assert not artifact.voice_change_applied
        assert not artifact.captions_applied
        assert "aout" not in _filter_graph(ffmpeg.render_calls()[0])

    def test_low_quality_downscales(self, settings, source_video, fake_ffmpeg, local_engine_factory):
        engine = local_engine_factory(FACES)
        options = _options(
            settings,
            quality="low",
            enable_face_blur=False,
            enable_voice_change=False,
            enable_transcription=False,
        )

        _process(engine, source_video, options)

        render = fake_ffmpeg.render_calls()[0]
        assert _filter_graph(render) == "[0:v]scale=-2:360[v1]"
        assert render[render.index("-crf") + 1] == "28"

    def test_render_failure_leaves_no_output(self, settings, source_video, ffmpeg_factory, local_engine_factory):
        ffmpeg_factory(fail_render=True)
        engine = local_engine_factory(FACES)

        with pytest.raises(ProviderError):
            _process(engine, source_video, _options(settings))
        assert list(settings.output_dir.glob("*.mp4")) == []

    def test_same_file_name_in_different_folders(self, settings, tmp_path, fake_ffmpeg, local_engine_factory):
        engine = local_engine_factory(FACES)
        options = _options(settings, enable_transcription=False)
        sources = []
        for owner in ["alice", "bob"]:
            (tmp_path / owner).mkdir()
            source = tmp_path / owner / "clip.mp4"
            source.write_bytes(owner.encode() * 64)
            sources.append(source)

        first, second = (_process(engine, source, options) for source in sources)

        assert first.uri != second.uri
        assert Path(first.uri).exists() and Path(second.uri).exists()
        assert first.thumbnail_uri != second.thumbnail_uri

    def test_reprocessing_supersedes_instead_of_overwriting(
        self, settings, source_video, fake_ffmpeg, local_engine_factory
    ):
        engine = local_engine_factory(FACES)
        options = _options(settings, enable_transcription=False)

        first = _process(engine, source_video, options)
        second = _process(engine, source_video, options)

        assert first.uri != second.uri
        assert Path(first.uri).exists()
        assert list(settings.output_dir.glob(".*.part.mp4")) == []

    def test_unreadable_source(self, settings, tmp_path, fake_ffmpeg, local_engine_factory):
        engine = local_engine_factory()

        with pytest.raises(MalformedInputError):
            _process(engine, tmp_path / "missing.mp4", _options(settings))


REMOTE_URL = "https://engine.test"


def _remote(handler, api_key=None) -> RemoteEngine:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteEngine(REMOTE_URL, api_key=api_key, http_client=client)


def _service(artifact: dict, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path == "/upload":
            return httpx.Response(200, json={"upload_id": "u-1"})
        if request.url.path == "/process-video":
            return httpx.Response(200, json=artifact)
        return httpx.Response(200, json={"status": "ok"})

    return handler


class TestRemoteEngine:
    def test_upload_and_process(self, settings, source_video):
        seen = []
        engine = _remote(
            _service(
                {
                    "uri": "https://cdn.test/out.mp4",
                    "width": 1280,
                    "height": 720,
                    "duration": 10,
                    "size": 2048,
                    "transcription": "hello there",
                    "faceBlurApplied": True,
                    "voiceChangeApplied": True,
                    "captionsApplied": True,
                },
                seen,
            ),
            api_key="secret",
        )

        artifact = _process(engine, source_video, _options(settings, voice_effect="light"))

        assert artifact.uri == "https://cdn.test/out.mp4"
        assert artifact.duration == 10.0
        assert artifact.engine == EngineKind.REMOTE
        assert artifact.captions_applied
        body = json.loads(seen[1].content)
        assert body["upload_id"] == "u-1"
        assert body["options"]["enableFaceBlur"] is True
        assert body["options"]["voiceEffect"] == "light"
        assert seen[0].headers["authorization"] == "Bearer secret"

    def test_missing_fields_default(self, settings, source_video):
        engine = _remote(_service({"url": "https://cdn.test/out.mp4"}))

        artifact = _process(engine, source_video, _options(settings, enable_voice_change=False))

        assert artifact.transcription == TRANSCRIPTION_UNAVAILABLE
        assert artifact.face_blur_applied
        assert not artifact.voice_change_applied
        assert not artifact.captions_applied

    def test_no_output_uri(self, settings, source_video):
        engine = _remote(_service({"duration": 10}))

        with pytest.raises(ProviderError):
            _process(engine, source_video, _options(settings))

    def test_upload_without_id(self, settings, source_video):
        def handler(request):
            return httpx.Response(200, json={"stored": True})

        with pytest.raises(ProviderError) as exc_info:
            _process(_remote(handler), source_video, _options(settings))
        assert exc_info.value.provider == "remote-engine"

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>gateway</html>"),
            httpx.Response(200, json=["https://cdn.test/out.mp4"]),
            httpx.Response(200, json={"uri": "https://cdn.test/out.mp4", "width": "wide"}),
        ],
    )
    def test_malformed_process_response(self, settings, source_video, response):
        def handler(request):
            if request.url.path == "/upload":
                return httpx.Response(200, json={"upload_id": "u-1"})
            return response

        with pytest.raises(ProviderError):
            _process(_remote(handler), source_video, _options(settings))

    @pytest.mark.parametrize(
        "status,error",
        [(401, PermissionDeniedError), (403, PermissionDeniedError), (415, MalformedInputError), (502, ProviderError)],
    )
    def test_status_mapping(self, settings, source_video, status, error):
        engine = _remote(lambda request: httpx.Response(status, text="nope"))

        with pytest.raises(error):
            _process(engine, source_video, _options(settings))

    def test_server_errors_are_retryable(self, settings, source_video):
        engine = _remote(lambda request: httpx.Response(503, text="busy"))

        with pytest.raises(ProviderError) as exc_info:
            _process(engine, source_video, _options(settings))
        assert exc_info.value.retryable

    def test_unreachable(self, settings, source_video, monkeypatch):
        monkeypatch.setattr(RemoteEngine.upload.retry, "wait", wait_none())
        attempts = []

        def handler(request):
            attempts.append(request)
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkError):
            _process(_remote(handler), source_video, _options(settings))
        assert len(attempts) == 3

    def test_missing_source(self, settings, tmp_path):
        engine = _remote(_service({"uri": "x"}))

        with pytest.raises(MalformedInputError):
            _process(engine, tmp_path / "missing.mp4", _options(settings))

    def test_health(self):
        assert asyncio.run(_remote(_service({})).check_health())

        def down(request):
            raise httpx.ConnectError("refused", request=request)

        assert not asyncio.run(_remote(down).check_health())
