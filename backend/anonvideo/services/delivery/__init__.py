"""
Adaptive delivery subsystem.

This package contains:
- network_profiler: bandwidth/latency measurement and quality classification
- quality_selector: resolution tier selection and up/downgrade rules
- device: device tier, score and memory pressure
- cache_manager: on-device artifact cache
- job_queue: priority background job queue
- variant_generator: background job handlers

Example:
    from anonvideo.services.delivery import CacheManager, BackgroundJobQueue

    cache = CacheManager(settings)
    await cache.init()
    queue = BackgroundJobQueue(settings, VariantGenerator(settings, cache, selector).handlers())
    await queue.init()
"""

from .cache_manager import CacheManager, cache_key
from .device import DeviceProfile, build_device_profile, get_device_profile, memory_pressure
from .job_queue import BackgroundJobQueue, JobHandler
from .network_profiler import NetworkProfiler, calculate_stability, classify_network
from .quality_selector import (
    QualitySelector,
    calculate_quality_score,
    memory_tier_limit,
    select_quality,
    variant_uri,
)
from .variant_generator import VariantGenerator

__all__ = [
    "BackgroundJobQueue",
    "CacheManager",
    "DeviceProfile",
    "JobHandler",
    "NetworkProfiler",
    "QualitySelector",
    "VariantGenerator",
    "build_device_profile",
    "cache_key",
    "calculate_quality_score",
    "calculate_stability",
    "classify_network",
    "get_device_profile",
    "memory_pressure",
    "memory_tier_limit",
    "select_quality",
    "variant_uri",
]
