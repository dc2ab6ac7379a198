"""Tests for the artifact cache."""

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from anonvideo.errors import MalformedInputError, NetworkError, ProviderError
from anonvideo.models.delivery import CachePriority
from anonvideo.services.delivery import CacheManager


def _file(tmp_path: Path, name: str, size: int) -> Path:
    path = tmp_path / "sources" / name
    path.parent.mkdir(exist_ok=True)
    path.write_bytes(b"v" * size)
    return path


def _run(coro):
    return asyncio.run(coro)


@pytest.fixture
def cache(settings):
    manager = CacheManager(settings, memory_probe=lambda: 0.2)
    _run(manager.init())
    return manager


class TestLookup:
    def test_local_file_cached_and_hit(self, cache, tmp_path):
        source = _file(tmp_path, "a.mp4", 100)

        path = _run(cache.cache_video(str(source)))
        hit = _run(cache.get_cached_video(str(source)))

        assert hit == path
        assert path.read_bytes() == source.read_bytes()
        assert path.parent == cache.cache_dir
        assert cache.hit_rate == pytest.approx(0.5)

    def test_miss_counts_towards_hit_rate(self, cache):
        assert _run(cache.get_cached_video("https://cdn.test/none.mp4")) is None
        assert cache.total_requests == 1
        assert cache.hit_rate == 0.0

    def test_vanished_file_is_a_miss(self, cache, tmp_path):
        source = _file(tmp_path, "a.mp4", 100)
        path = _run(cache.cache_video(str(source)))
        path.unlink()

        assert _run(cache.get_cached_video(str(source))) is None
        assert cache.entries() == []

    def test_missing_local_source(self, cache, tmp_path):
        with pytest.raises(MalformedInputError):
            _run(cache.cache_video(str(tmp_path / "nope.mp4")))

    def test_oversized_file_rejected(self, cache, tmp_path):
        source = _file(tmp_path, "huge.mp4", 5000)

        with pytest.raises(MalformedInputError):
            _run(cache.cache_video(str(source)))
        assert cache.entries() == []
        assert list(cache.cache_dir.glob("*.mp4")) == []

    def test_store_artifact_moves_file(self, cache, tmp_path):
        produced = _file(tmp_path, "variant.mp4", 50)

        entry = _run(cache.store_artifact("clip_720.mp4", produced))

        assert not produced.exists()
        assert Path(entry.local_path).exists()
        assert entry.size == 50
        assert _run(cache.get_cached_video("clip_720.mp4")) == Path(entry.local_path)


class TestDownload:
    def _cache(self, settings, handler) -> CacheManager:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        manager = CacheManager(settings, http_client=client, memory_probe=lambda: 0.2)
        _run(manager.init())
        return manager

    def test_download(self, settings):
        cache = self._cache(settings, lambda request: httpx.Response(200, content=b"m" * 64))

        path = _run(cache.cache_video("https://cdn.test/v/clip.mp4?sig=1"))

        assert path.suffix == ".mp4"
        assert path.stat().st_size == 64
        assert not list(cache.cache_dir.glob("*.part"))

    def test_http_error(self, settings):
        cache = self._cache(settings, lambda request: httpx.Response(404))

        with pytest.raises(ProviderError) as exc_info:
            _run(cache.cache_video("https://cdn.test/missing.mp4"))
        assert not exc_info.value.retryable
        assert cache.entries() == []

    def test_transport_error(self, settings):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        cache = self._cache(settings, handler)
        with pytest.raises(NetworkError):
            _run(cache.cache_video("https://cdn.test/clip.mp4"))

    def test_preload_skips_failures(self, settings):
        def handler(request):
            if "bad" in request.url.path:
                return httpx.Response(500)
            return httpx.Response(200, content=b"m" * 10)

        cache = self._cache(settings, handler)
        uris = [f"https://cdn.test/{name}.mp4" for name in ["a", "bad", "b", "c"]]

        paths = _run(cache.preload_videos(uris))

        assert len(paths) == 3
        assert len(cache.entries()) == 3


class TestEviction:
    def test_size_limit_evicts_normal_before_high(self, cache, tmp_path):
        keep = _file(tmp_path, "keep.mp4", 400)
        drop = _file(tmp_path, "drop.mp4", 400)
        new = _file(tmp_path, "new.mp4", 400)

        _run(cache.cache_video(str(keep), CachePriority.HIGH))
        _run(cache.cache_video(str(drop)))
        _run(cache.cache_video(str(new)))

        uris = {e.uri for e in cache.entries()}
        assert uris == {str(keep), str(new)}
        assert cache.total_size <= cache.max_size

    def test_entry_limit(self, cache, tmp_path):
        cache.max_entries = 2
        for name in ["a", "b", "c"]:
            _run(cache.cache_video(str(_file(tmp_path, f"{name}.mp4", 10))))

        assert len(cache.entries()) == 2

    def test_total_size_never_exceeds_limit(self, cache, tmp_path):
        for i in range(8):
            _run(cache.cache_video(str(_file(tmp_path, f"{i}.mp4", 150 + i * 20))))
            assert cache.total_size <= cache.max_size

    def test_force_cleanup(self, cache, tmp_path):
        first = _run(cache.cache_video(str(_file(tmp_path, "a.mp4", 450))))
        _run(cache.cache_video(str(_file(tmp_path, "b.mp4", 450))))

        result = _run(cache.force_cleanup())

        assert result.removed_count == 1
        assert result.freed_space == 450
        assert not first.exists()

    def test_force_cleanup_drops_missing_files(self, cache, tmp_path):
        path = _run(cache.cache_video(str(_file(tmp_path, "a.mp4", 100))))
        path.unlink()

        result = _run(cache.force_cleanup())

        assert result.removed_count == 1
        assert cache.entries() == []

    def test_memory_pressure_shrinks_cache(self, settings, tmp_path):
        pressure = {"value": 0.5}
        cache = CacheManager(settings, memory_probe=lambda: pressure["value"])
        _run(cache.init())
        for name in ["a", "b"]:
            _run(cache.cache_video(str(_file(tmp_path, f"{name}.mp4", 300))))

        assert not _run(cache.check_memory_pressure())
        assert cache.total_size == 600

        pressure["value"] = 0.95
        assert _run(cache.check_memory_pressure())
        assert cache.total_size <= cache.max_size * 0.5

    def test_clear_cache(self, cache, tmp_path):
        path = _run(cache.cache_video(str(_file(tmp_path, "a.mp4", 10))))
        _run(cache.clear_cache())
        assert not path.exists()
        assert cache.get_device_aware_cache_stats().count == 0


class TestPersistence:
    def test_index_reloaded(self, settings, cache, tmp_path):
        source = _file(tmp_path, "a.mp4", 120)
        _run(cache.cache_video(str(source), CachePriority.HIGH))
        _run(cache.shutdown())

        reopened = CacheManager(settings, memory_probe=lambda: 0.2)
        _run(reopened.init())

        [entry] = reopened.entries()
        assert entry.uri == str(source)
        assert entry.priority == CachePriority.HIGH
        assert reopened.total_size == 120

    def test_corrupt_index_ignored(self, settings):
        settings.cache_dir.mkdir(parents=True)
        (settings.cache_dir / "index.json").write_text("{not json")

        cache = CacheManager(settings, memory_probe=lambda: 0.2)
        _run(cache.init())

        assert cache.entries() == []

    def test_invalid_index_entry_skipped(self, settings, cache, tmp_path):
        source = _file(tmp_path, "a.mp4", 120)
        _run(cache.cache_video(str(source)))
        _run(cache.shutdown())
        index_path = settings.cache_dir / "index.json"
        index = json.loads(index_path.read_text())
        index["broken"] = {"uri": "https://cdn.test/b.mp4", "size": "huge"}
        index["not-an-object"] = ["x"]
        index_path.write_text(json.dumps(index))

        reopened = CacheManager(settings, memory_probe=lambda: 0.2)
        _run(reopened.init())

        assert [e.uri for e in reopened.entries()] == [str(source)]

    def test_non_object_index_ignored(self, settings):
        settings.cache_dir.mkdir(parents=True)
        (settings.cache_dir / "index.json").write_text("[1, 2, 3]")

        cache = CacheManager(settings, memory_probe=lambda: 0.2)
        _run(cache.init())

        assert cache.entries() == []

    def test_stats(self, cache, tmp_path):
        _run(cache.cache_video(str(_file(tmp_path, "a.mp4", 70))))
        stats = cache.get_device_aware_cache_stats()
        assert stats.size == 70
        assert stats.count == 1
        assert stats.max_size == 1000
        assert stats.memory_pressure == 0.2
