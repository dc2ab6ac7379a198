"""Tests for the background job handlers."""

import asyncio

import pytest

from anonvideo.config import load_delivery_config
from anonvideo.errors import MalformedInputError
from anonvideo.models.delivery import QueueJob, QueueJobStatus, QueueJobType, QualityTier
from anonvideo.services.delivery import (
    BackgroundJobQueue,
    CacheManager,
    QualitySelector,
    VariantGenerator,
    build_device_profile,
    variant_uri,
)


@pytest.fixture
def generator(settings):
    cache = CacheManager(settings, memory_probe=lambda: 0.1)
    selector = QualitySelector(build_device_profile(8 * 1024 ** 3), load_delivery_config(settings)["quality_matrix"])
    return VariantGenerator(settings, cache, selector)


def _job(payload: dict) -> QueueJob:
    return QueueJob(id="job-1", type=QueueJobType.QUALITY_VARIANT_GENERATION, payload=payload)


def test_lower_tiers_rendered_and_cached(generator, source_video, fake_ffmpeg):
    uri = str(source_video)

    created = asyncio.run(generator.generate_variants(_job({"uri": uri, "tier": "1080p"})))

    assert created == [variant_uri(uri, QualityTier.P720), variant_uri(uri, QualityTier.P360)]
    renders = fake_ffmpeg.render_calls()
    assert [c[c.index("-vf") + 1] for c in renders] == ["scale=-2:720", "scale=-2:360"]
    assert renders[0][renders[0].index("-maxrate") + 1] == "2500k"
    assert renders[1][renders[1].index("-crf") + 1] == "28"
    assert {e.uri for e in generator.cache.entries()} == set(created)


def test_existing_variants_skipped(generator, source_video, fake_ffmpeg):
    job = _job({"uri": str(source_video), "tiers": ["360p"]})

    asyncio.run(generator.generate_variants(job))
    again = asyncio.run(generator.generate_variants(job))

    assert again == []
    assert len(fake_ffmpeg.render_calls()) == 1


def test_payload_needs_uri(generator):
    with pytest.raises(MalformedInputError):
        asyncio.run(generator.generate_variants(_job({})))


def test_handlers_through_queue(settings, generator, source_video, fake_ffmpeg, tmp_path):
    small = tmp_path / "small.mp4"
    small.write_bytes(b"v" * 100)
    queue = BackgroundJobQueue(settings, generator.handlers(), memory_probe=lambda: 0.1)

    async def scenario():
        await queue.init()
        variant_job = await queue.enqueue_job(
            QueueJobType.QUALITY_VARIANT_GENERATION, {"uri": str(source_video), "tier": "720p"}
        )
        bad_job = await queue.enqueue_job(QueueJobType.QUALITY_VARIANT_GENERATION, {})
        preload_job = await queue.enqueue_job(QueueJobType.VIDEO_PRELOADING, {"uris": [str(small)]})
        await queue.join()
        await queue.shutdown()
        return [queue.get_job(i).status for i in (variant_job, bad_job, preload_job)]

    statuses = asyncio.run(scenario())

    assert statuses == [QueueJobStatus.COMPLETED, QueueJobStatus.FAILED, QueueJobStatus.COMPLETED]
    assert str(small) in {e.uri for e in generator.cache.entries()}
