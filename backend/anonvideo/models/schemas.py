"""
Pydantic models for the anonymization pipeline.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from anonvideo.config import Settings

# Transcription text used whenever speech-to-text could not produce a result
TRANSCRIPTION_UNAVAILABLE = "Transcription not available"


class ProcessingStage(str, Enum):
    """Stage of the processing pipeline (used for progress and errors)."""
    PREPARE = "prepare"
    FACE_SCAN = "face_scan"
    TRANSCRIPTION = "transcription"
    RENDER = "render"
    FINALIZE = "finalize"


class JobStatus(str, Enum):
    """Status of a processing job."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Quality(str, Enum):
    """Encoding quality preset."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class VoiceEffect(str, Enum):
    """Voice pitch transformation."""
    DEEP = "deep"
    LIGHT = "light"


class ProcessingMode(str, Enum):
    """Where processing runs.

    - local: on this host via ffmpeg (remote if ffmpeg is missing)
    - server: always via the remote processing service
    - hybrid: local first, one remote retry on local failure
    """
    LOCAL = "local"
    SERVER = "server"
    HYBRID = "hybrid"


class EngineKind(str, Enum):
    """Transcoding engine implementation."""
    LOCAL = "local"
    REMOTE = "remote"


class ProcessingOptions(BaseModel):
    """Options for one processing request.

    Accepts camelCase keys (``enableFaceBlur``) as well as field names.
    Unknown keys are rejected. Unset options stay None until
    ``with_defaults`` fills them from settings.
    """

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    enable_face_blur: bool | None = None
    enable_voice_change: bool | None = None
    enable_transcription: bool | None = None
    quality: Quality | None = None
    voice_effect: VoiceEffect | None = None
    mode: ProcessingMode | None = None

    def with_defaults(
        self,
        settings: "Settings",
        quality: Quality | None = None,
    ) -> "ProcessingOptions":
        """Return a copy with every unset option filled in.

        Args:
            settings: Source of engine defaults
            quality: Preferred quality when unset (e.g. from the quality selector)
        """
        return ProcessingOptions(
            enable_face_blur=_pick(self.enable_face_blur, settings.default_enable_face_blur),
            enable_voice_change=_pick(self.enable_voice_change, settings.default_enable_voice_change),
            enable_transcription=_pick(
                self.enable_transcription, settings.default_enable_transcription
            ),
            quality=self.quality or quality or Quality(settings.default_quality),
            voice_effect=self.voice_effect or VoiceEffect(settings.default_voice_effect),
            mode=self.mode or ProcessingMode(settings.default_mode),
        )

    def cache_key(self) -> str:
        """Stable string of the options that affect the output."""
        data = self.model_dump(mode="json", exclude={"mode"})
        return ",".join(f"{k}={data[k]}" for k in sorted(data))


def _pick(value: bool | None, default: bool) -> bool:
    return default if value is None else value


class FaceRegion(BaseModel):
    """Rectangle in source-frame pixel coordinates."""

    model_config = ConfigDict(frozen=True)

    x: int = Field(ge=0)
    y: int = Field(ge=0)
    w: int = Field(ge=0)
    h: int = Field(ge=0)

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def bottom(self) -> int:
        return self.y + self.h

    def contains(self, other: "FaceRegion") -> bool:
        """True if ``other`` lies fully inside this region."""
        return (
            self.x <= other.x
            and self.y <= other.y
            and self.right >= other.right
            and self.bottom >= other.bottom
        )


class CaptionWord(BaseModel):
    """Single recognized word with timing in seconds."""

    model_config = ConfigDict(frozen=True)

    word: str
    confidence: float = Field(ge=0.0, le=1.0)
    start_time: float
    end_time: float


class CaptionSegment(BaseModel):
    """Group of consecutive words shown as one caption."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    words: list[CaptionWord]
    start_time: float
    end_time: float
    is_complete: bool = True


class CaptionData(BaseModel):
    """Caption sidecar content for one video."""

    segments: list[CaptionSegment]
    duration: float
    language: str

    @computed_field
    @property
    def full_text(self) -> str:
        """Transcript text of all segments."""
        return " ".join(seg.text for seg in self.segments)


class ProcessedVideoArtifact(BaseModel):
    """Finalized output of a processing job. Read-only once created."""

    model_config = ConfigDict(frozen=True)

    uri: str
    width: int = 0
    height: int = 0
    duration: float = 0.0
    size: int = 0
    transcription: str = TRANSCRIPTION_UNAVAILABLE
    thumbnail_uri: str | None = None
    face_blur_applied: bool = False
    voice_change_applied: bool = False
    captions_applied: bool = False
    engine: EngineKind | None = None
    degraded: bool = False
    created_at: datetime = Field(default_factory=datetime.now)


class ProgressEvent(BaseModel):
    """Progress update published by the orchestrator."""

    percent: float
    stage: ProcessingStage
    message: str
    source: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


class ProcessingJob(BaseModel):
    """Processing job tracked by the job manager."""

    job_id: str
    source_path: Path
    options: ProcessingOptions
    status: JobStatus = JobStatus.PENDING
    progress: float = 0
    stage: ProcessingStage | None = None
    status_message: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None
    result: ProcessedVideoArtifact | None = None
    error: str | None = None
    retryable: bool | None = None

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """True once the job succeeded or failed."""
        return self.status in (JobStatus.SUCCEEDED, JobStatus.FAILED)


class ProcessRequest(BaseModel):
    """Request to start processing."""

    source_path: str
    options: ProcessingOptions = Field(default_factory=ProcessingOptions)


class CaptionRequest(BaseModel):
    """Request to generate captions for a video."""

    video_path: str
    force_regenerate: bool = False
