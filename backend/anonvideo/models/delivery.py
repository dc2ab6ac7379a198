"""
Pydantic models for the adaptive delivery subsystem.

Covers network profiling, quality tiers, the on-device cache and
the background job queue.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .schemas import Quality


class NetworkQuality(str, Enum):
    """Four-level connection quality classification."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class QualityTier(str, Enum):
    """Target output resolution tier."""
    P360 = "360p"
    P720 = "720p"
    P1080 = "1080p"

    @property
    def height(self) -> int:
        return int(self.value[:-1])

    @property
    def quality(self) -> Quality:
        """Encoding quality preset used for this tier."""
        return _TIER_QUALITY[self]

    @classmethod
    def for_quality(cls, quality: Quality) -> "QualityTier":
        """Resolution tier rendered for an encoding quality preset."""
        return {q: t for t, q in _TIER_QUALITY.items()}[Quality(quality)]


_TIER_QUALITY = {
    QualityTier.P360: Quality.LOW,
    QualityTier.P720: Quality.MEDIUM,
    QualityTier.P1080: Quality.HIGH,
}


class DeviceTier(str, Enum):
    """Device performance tier derived from total memory."""
    LOW = "low"
    MID = "mid"
    HIGH = "high"


class NetworkProfile(BaseModel):
    """Snapshot of measured network conditions. Never persisted."""

    quality: NetworkQuality
    bandwidth_mbps: float
    latency_ms: float
    stability: float = 1.0
    connection_type: str = "unknown"
    is_connected: bool = True
    measured_at: datetime = Field(default_factory=datetime.now)


class CachePriority(str, Enum):
    """Eviction priority of a cache entry."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 0, "normal": 1, "high": 2}[self.value]


class CacheEntry(BaseModel):
    """Cached file for an artifact URI. Owned by the cache manager."""

    uri: str
    local_path: str
    size: int
    last_access: float
    created_at: float
    access_count: int = 1
    priority: CachePriority = CachePriority.NORMAL


class CacheStats(BaseModel):
    """Cache telemetry."""

    size: int
    count: int
    hit_rate: float
    max_size: int = 0
    memory_pressure: float = 0.0


class CleanupResult(BaseModel):
    """Outcome of a forced cache cleanup."""

    removed_count: int
    freed_space: int


class QueueJobType(str, Enum):
    """Kinds of background work."""
    CACHE_OPTIMIZATION = "cache_optimization"
    QUALITY_VARIANT_GENERATION = "quality_variant_generation"
    VIDEO_PRELOADING = "video_preloading"


class JobPriority(str, Enum):
    """Queue priority; higher runs first."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 0, "normal": 1, "high": 2}[self.value]


class QueueJobStatus(str, Enum):
    """Background job lifecycle state."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class QueueJob(BaseModel):
    """Unit of background work."""

    id: str
    type: QueueJobType
    priority: JobPriority = JobPriority.NORMAL
    payload: dict[str, Any] = Field(default_factory=dict)
    status: QueueJobStatus = QueueJobStatus.QUEUED
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None


class QueueStats(BaseModel):
    """Queue counters for observability."""

    pending: int
    processing: int
    completed: int
    failed: int
    queue_size: int
    processing_capacity: int
    paused: bool = False


class EnqueueRequest(BaseModel):
    """HTTP request to enqueue background work."""

    type: QueueJobType
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: JobPriority = JobPriority.NORMAL
