"""
Data models for the anonymization and delivery pipeline.
"""

from .delivery import (
    CacheEntry,
    CachePriority,
    CacheStats,
    CleanupResult,
    DeviceTier,
    EnqueueRequest,
    JobPriority,
    NetworkProfile,
    NetworkQuality,
    QualityTier,
    QueueJob,
    QueueJobStatus,
    QueueJobType,
    QueueStats,
)
from .schemas import (
    TRANSCRIPTION_UNAVAILABLE,
    CaptionData,
    CaptionRequest,
    CaptionSegment,
    CaptionWord,
    EngineKind,
    FaceRegion,
    JobStatus,
    ProcessedVideoArtifact,
    ProcessingJob,
    ProcessingMode,
    ProcessingOptions,
    ProcessingStage,
    ProcessRequest,
    ProgressEvent,
    Quality,
    VoiceEffect,
)

__all__ = [
    "TRANSCRIPTION_UNAVAILABLE",
    "CacheEntry",
    "CachePriority",
    "CacheStats",
    "CaptionData",
    "CaptionRequest",
    "CaptionSegment",
    "CaptionWord",
    "CleanupResult",
    "DeviceTier",
    "EngineKind",
    "EnqueueRequest",
    "FaceRegion",
    "JobPriority",
    "JobStatus",
    "NetworkProfile",
    "NetworkQuality",
    "ProcessRequest",
    "ProcessedVideoArtifact",
    "ProcessingJob",
    "ProcessingMode",
    "ProcessingOptions",
    "ProcessingStage",
    "ProgressEvent",
    "Quality",
    "QualityTier",
    "QueueJob",
    "QueueJobStatus",
    "QueueJobType",
    "QueueStats",
    "VoiceEffect",
]
