"""
Error taxonomy for the anonymization pipeline.

Every failure raised by stages, engines and providers is one of the
VideoCoreError subclasses below. The orchestrator wraps whatever escapes a
job into a ProcessingError that names the failing stage and tells the caller
whether a retry can help.
"""

import asyncio
import subprocess

import httpx

from anonvideo.models.schemas import ProcessingStage


class VideoCoreError(Exception):
    """
    Base exception for pipeline errors.

    Attributes:
        message: Error description
        cause: Underlying exception if available
        retryable: Whether repeating the operation may succeed
    """

    retryable: bool = False

    def __init__(self, message: str, cause: Exception | None = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


class PermissionDeniedError(VideoCoreError):
    """Raised when the source or an output location cannot be accessed."""


class EngineUnavailableError(VideoCoreError):
    """Raised when no usable transcoding engine is present."""


class NetworkError(VideoCoreError):
    """Raised when a remote service cannot be reached."""

    retryable = True


class OperationTimeoutError(VideoCoreError):
    """Raised when a bounded operation runs out of time or attempts."""

    retryable = True


class TranscriptionTimeoutError(OperationTimeoutError):
    """Raised when transcription polling exhausts its attempt budget."""


class MalformedInputError(VideoCoreError):
    """Raised when the source media or request payload is unusable."""


class ProviderError(VideoCoreError):
    """
    Raised when an upstream transcription or transcoding service fails.

    Attributes:
        provider: Provider name (speech, remote-engine, ffmpeg)
        status_code: HTTP status code if available
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        retryable: bool = False,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        return " | ".join(parts)


class ProcessingError(Exception):
    """
    Terminal job error with context.

    Attributes:
        stage: Processing stage where the error occurred
        cause: Original exception (if any)
        retryable: Whether the caller may retry the job
    """

    def __init__(
        self,
        stage: ProcessingStage,
        cause: Exception | None = None,
        retryable: bool | None = None,
        message: str | None = None,
    ):
        self.stage = stage
        self.cause = cause
        self.retryable = is_retryable(cause) if retryable is None else retryable
        self.message = message or (str(cause) if cause else "processing failed")
        super().__init__(f"[{stage.value}] {self.message}")


class JobAbandonedError(ProcessingError):
    """Raised to waiters of a job that was abandoned or superseded."""

    def __init__(self, stage: ProcessingStage, source: str):
        super().__init__(
            stage,
            retryable=True,
            message=f"Job for {source} was abandoned",
        )


def is_retryable(exc: BaseException | None) -> bool:
    """
    Classify an exception as retryable.

    Network and timeout failures are retryable; malformed input and
    permission problems are not.

    Args:
        exc: Exception to classify (None is not retryable)

    Returns:
        True if repeating the operation may succeed
    """
    if exc is None:
        return False
    if isinstance(exc, (VideoCoreError, ProcessingError)):
        return exc.retryable
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, subprocess.TimeoutExpired)):
        return True
    return False


def translate_os_error(exc: OSError, path: object) -> VideoCoreError:
    """Map filesystem errors onto the pipeline taxonomy."""
    if isinstance(exc, PermissionError):
        return PermissionDeniedError(f"Permission denied: {path}", cause=exc)
    if isinstance(exc, FileNotFoundError):
        return MalformedInputError(f"Source not found: {path}", cause=exc)
    return MalformedInputError(f"Cannot read {path}: {exc}", cause=exc)
