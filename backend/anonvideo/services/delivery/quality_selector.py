"""
Quality tier selection.

Maps measured bandwidth and the device score to a resolution tier and
decides automatic upgrades and downgrades as network quality changes.
"""

import logging
from typing import Callable

from anonvideo.models.delivery import NetworkProfile, NetworkQuality, QualityTier

from .device import DeviceProfile

logger = logging.getLogger(__name__)

TIER_ORDER = [QualityTier.P360, QualityTier.P720, QualityTier.P1080]

# Bandwidth that earns the full network half of the score
REFERENCE_BANDWIDTH_MBPS = 20.0

HIGH_TIER_SCORE = 70
MID_TIER_SCORE = 40

# Memory pressure above this caps the tier; stability below this steps it down
MEMORY_PRESSURE_LIMIT = 0.5
MIN_STABLE_SELECTION = 0.5


def calculate_quality_score(bandwidth_mbps: float, device_score: float) -> float:
    """score = 0.5 * (bandwidth / 20 Mbps) + 0.5 * (device score / 100), in percent."""
    bandwidth_mbps = max(0.0, bandwidth_mbps)
    device_score = max(0.0, device_score)
    return (bandwidth_mbps / REFERENCE_BANDWIDTH_MBPS) * 50 + (device_score / 100) * 50


def select_quality(bandwidth_mbps: float, device_score: float) -> QualityTier:
    """
    Select a tier from bandwidth and device score.

    Args:
        bandwidth_mbps: Measured bandwidth
        device_score: Device score 0-100

    Returns:
        1080p for score >= 70, 720p for >= 40, otherwise 360p
    """
    score = calculate_quality_score(bandwidth_mbps, device_score)
    if score >= HIGH_TIER_SCORE:
        return QualityTier.P1080
    if score >= MID_TIER_SCORE:
        return QualityTier.P720
    return QualityTier.P360


def memory_tier_limit(pressure: float) -> QualityTier:
    """Highest tier affordable at a memory pressure ratio."""
    if pressure > 0.8:
        return QualityTier.P360
    if pressure > 0.6:
        return QualityTier.P720
    return QualityTier.P1080


def variant_uri(base_uri: str, tier: QualityTier) -> str:
    """Variant naming: ``clip.mp4`` -> ``clip_720.mp4``."""
    head, sep, name = base_uri.rpartition("/")
    stem = name.rsplit(".", 1)[0] if "." in name else name
    return f"{head}{sep}{stem}_{tier.height}.mp4"


class QualitySelector:
    """
    Device-aware tier selection with adaptive up/downgrade rules.

    ``current_tier`` follows network quality transitions once
    ``on_network_change`` is registered as a profiler listener.

    Example:
        selector = QualitySelector(get_device_profile(), quality_matrix, memory_probe=memory_pressure)
        profiler.add_listener(selector.on_network_change)
        tier = selector.current_tier
    """

    def __init__(
        self,
        device: DeviceProfile,
        quality_matrix: dict | None = None,
        memory_probe: Callable[[], float] | None = None,
    ):
        """
        Initialize quality selector.

        Args:
            device: Static device profile
            quality_matrix: Per-tier encoder settings from delivery.yaml
            memory_probe: Returns used/total memory; no memory cap if None
        """
        self.device = device
        self.quality_matrix = quality_matrix or {}
        self.memory_probe = memory_probe
        self.current_tier: QualityTier | None = None

    def select_quality(self, bandwidth_mbps: float) -> QualityTier:
        """Tier for a bandwidth on this device."""
        return select_quality(bandwidth_mbps, self.device.score)

    def select_for_profile(self, profile: NetworkProfile | None) -> QualityTier:
        """
        Tier for a network profile.

        Lowest tier when disconnected or unknown. Above 50% memory
        pressure the tier is capped by ``memory_tier_limit`` (one step down
        when already within it), and an unstable network costs one more step.
        """
        if profile is None or not profile.is_connected:
            return QualityTier.P360
        tier = self.select_quality(profile.bandwidth_mbps)

        pressure = self.memory_probe() if self.memory_probe is not None else 0.0
        if pressure > MEMORY_PRESSURE_LIMIT:
            limit = memory_tier_limit(pressure)
            if TIER_ORDER.index(tier) > TIER_ORDER.index(limit):
                tier = limit
            else:
                tier = self.fallback_tier(tier)

        if profile.stability < MIN_STABLE_SELECTION:
            tier = self.fallback_tier(tier)
        return tier

    def preferred_tier(self, profile: NetworkProfile | None) -> QualityTier:
        """Tier tracked through network transitions, or a fresh selection."""
        if self.current_tier is not None:
            return self.current_tier
        return self.select_for_profile(profile)

    async def on_network_change(self, profile: NetworkProfile, previous: NetworkProfile | None) -> None:
        """Profiler listener: keep ``current_tier`` in step with the network."""
        if self.current_tier is None or not profile.is_connected:
            new_tier = self.select_for_profile(profile)
        else:
            new_tier = self.adapt(profile, self.current_tier)
        if new_tier != self.current_tier:
            logger.info(
                f"Delivery tier {self.current_tier.value if self.current_tier else 'unset'} -> "
                f"{new_tier.value} ({profile.quality.value} network)"
            )
        self.current_tier = new_tier

    def can_upgrade_quality(self, profile: NetworkProfile, current: QualityTier) -> bool:
        """Excellent and stable networks allow stepping up."""
        return (
            profile.quality == NetworkQuality.EXCELLENT
            and current != QualityTier.P1080
            and profile.stability > 0.8
        )

    def should_downgrade_quality(self, profile: NetworkProfile, current: QualityTier) -> bool:
        """Poor or unstable networks force stepping down."""
        return (
            profile.quality == NetworkQuality.POOR and current != QualityTier.P360
        ) or profile.stability < 0.3

    def fallback_tier(self, tier: QualityTier) -> QualityTier:
        """One tier down (360p stays 360p)."""
        index = TIER_ORDER.index(tier)
        return TIER_ORDER[max(0, index - 1)]

    def upgrade_tier(self, tier: QualityTier) -> QualityTier:
        """One tier up (1080p stays 1080p)."""
        index = TIER_ORDER.index(tier)
        return TIER_ORDER[min(len(TIER_ORDER) - 1, index + 1)]

    def adapt(self, profile: NetworkProfile, current: QualityTier) -> QualityTier:
        """
        Next tier after a network quality transition.

        Upgrades never exceed what the bandwidth/device score allows.
        """
        if self.should_downgrade_quality(profile, current):
            new_tier = self.fallback_tier(current)
        elif self.can_upgrade_quality(profile, current):
            new_tier = min(
                self.upgrade_tier(current),
                self.select_for_profile(profile),
                key=TIER_ORDER.index,
            )
            new_tier = max(new_tier, current, key=TIER_ORDER.index)
        else:
            return current

        if new_tier != current:
            logger.info(f"Quality {current.value} -> {new_tier.value} ({profile.quality.value} network)")
        return new_tier

    def lower_tiers(self, tier: QualityTier) -> list[QualityTier]:
        """Tiers below ``tier``, highest first."""
        return list(reversed(TIER_ORDER[: TIER_ORDER.index(tier)]))

    def encoder_settings(self, tier: QualityTier) -> dict:
        """Width, height, bitrate and CRF for a tier."""
        defaults = {"width": tier.height * 16 // 9, "height": tier.height}
        return {**defaults, **self.quality_matrix.get(tier.value, {})}
