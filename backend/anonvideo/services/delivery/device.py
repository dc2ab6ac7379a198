"""
Device capability detection.

The device tier and score come from total memory and are computed once
per process; memory pressure is sampled on demand.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache

import psutil

from anonvideo.models.delivery import DeviceTier

logger = logging.getLogger(__name__)

GB = 1024 ** 3


@dataclass(frozen=True)
class DeviceProfile:
    """
    Static device capabilities.

    Attributes:
        tier: Performance tier (low/mid/high)
        score: Device score 0-100 used by the quality selector
        total_memory: Total memory in bytes
    """

    tier: DeviceTier
    score: float
    total_memory: int


def classify_device_tier(total_memory: int) -> DeviceTier:
    """>= 6 GB is high, >= 4 GB is mid, anything else low."""
    gb = total_memory / GB
    if gb >= 6:
        return DeviceTier.HIGH
    if gb >= 4:
        return DeviceTier.MID
    return DeviceTier.LOW


def calculate_device_score(total_memory: int) -> float:
    """Memory-based score: 8 GB or more scores 100."""
    return min(100.0, (total_memory / GB) / 8 * 100)


def build_device_profile(total_memory: int) -> DeviceProfile:
    return DeviceProfile(
        tier=classify_device_tier(total_memory),
        score=round(calculate_device_score(total_memory), 1),
        total_memory=total_memory,
    )


@lru_cache
def get_device_profile() -> DeviceProfile:
    """Device profile of this host, computed once."""
    profile = build_device_profile(psutil.virtual_memory().total)
    logger.info(
        f"Device tier: {profile.tier.value} (score {profile.score}, "
        f"{profile.total_memory / GB:.1f} GB)"
    )
    return profile


def memory_pressure() -> float:
    """Used / total memory ratio (0-1)."""
    vm = psutil.virtual_memory()
    if vm.total <= 0:
        return 0.0
    return (vm.total - vm.available) / vm.total
