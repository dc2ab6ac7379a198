"""
Remote transcoding engine.

Async HTTP client for the processing service: the source is uploaded,
then processed server-side with the same options the local engine
understands. The service returns the finished artifact description.
"""

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from anonvideo.config import Settings
from anonvideo.errors import (
    EngineUnavailableError,
    MalformedInputError,
    NetworkError,
    OperationTimeoutError,
    PermissionDeniedError,
    ProviderError,
)
from anonvideo.models.schemas import (
    TRANSCRIPTION_UNAVAILABLE,
    EngineKind,
    ProcessedVideoArtifact,
    ProcessingOptions,
    ProcessingStage,
)

if TYPE_CHECKING:
    from anonvideo.services.pipeline.progress_manager import ProgressReporter

logger = logging.getLogger(__name__)

# Retry configuration for transient errors
RETRY_DECORATOR = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)

PROVIDER_NAME = "remote-engine"


class RemoteEngine:
    """
    Client for the remote processing service.

    Endpoints:
    - POST /upload (multipart "video") -> {"upload_id": ...}
    - POST /process-video {"upload_id", "options"} -> artifact fields

    Example:
        async with RemoteEngine.from_settings(settings) as engine:
            artifact = await engine.process(source, options, reporter)
    """

    kind = EngineKind.REMOTE

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 600.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize remote engine.

        Args:
            base_url: Processing service URL
            api_key: Optional bearer token
            timeout: Request timeout in seconds
            http_client: Optional preconfigured client (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)
        if api_key:
            self.http_client.headers["authorization"] = f"Bearer {api_key}"

    @classmethod
    def from_settings(cls, settings: Settings) -> "RemoteEngine":
        """
        Create RemoteEngine from application settings.

        Raises:
            EngineUnavailableError: If no service URL is configured
        """
        if not settings.remote_engine_url:
            raise EngineUnavailableError("REMOTE_ENGINE_URL is not set")
        return cls(
            base_url=settings.remote_engine_url,
            api_key=settings.remote_engine_api_key,
            timeout=settings.remote_timeout,
        )

    async def __aenter__(self) -> "RemoteEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    async def check_health(self) -> bool:
        """True if the service answers its health endpoint."""
        try:
            response = await self.http_client.get(f"{self.base_url}/health", timeout=5.0)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Remote engine health check failed: {e}")
            return False

    async def process(
        self,
        source: Path,
        options: ProcessingOptions,
        reporter: "ProgressReporter",
    ) -> ProcessedVideoArtifact:
        """
        Upload the source and process it on the service.

        Raises:
            MalformedInputError: If the source is missing or rejected
            NetworkError: If the service cannot be reached
            OperationTimeoutError: If a request times out
            ProviderError: If the service fails or answers with a malformed payload
        """
        source = Path(source)
        if not source.exists():
            raise MalformedInputError(f"Video file not found: {source}")

        try:
            await reporter.report(ProcessingStage.FACE_SCAN, 0, "Uploading video for processing...")
            upload_id = await self.upload(source)

            await reporter.report(
                ProcessingStage.RENDER, 0, "Applying face blur, voice modifications, and captions..."
            )
            data = await self.process_upload(upload_id, options)

            await reporter.report(ProcessingStage.FINALIZE, 0, "Finalizing...")
            return self._to_artifact(data, options)
        except httpx.TimeoutException as e:
            raise OperationTimeoutError("Remote engine request timed out", cause=e) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Remote engine unreachable: {e}", cause=e) from e
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProviderError(
                f"Malformed remote engine response: {e!r}", provider=PROVIDER_NAME, cause=e
            ) from e

    @RETRY_DECORATOR
    async def upload(self, source: Path) -> str:
        """Upload the source file and return the service upload id."""
        content = await asyncio.to_thread(source.read_bytes)
        size_mb = len(content) / 1024 / 1024
        logger.info(f"Uploading to remote engine: {source.name} ({size_mb:.1f} MB)")

        response = await self.http_client.post(
            f"{self.base_url}/upload",
            files={"video": (source.name, content, "video/mp4")},
        )
        self._raise_for_status(response)
        return response.json()["upload_id"]

    @RETRY_DECORATOR
    async def process_upload(self, upload_id: str, options: ProcessingOptions) -> dict:
        """Request processing of an uploaded file."""
        response = await self.http_client.post(
            f"{self.base_url}/process-video",
            json={
                "upload_id": upload_id,
                "options": options.model_dump(mode="json", by_alias=True),
            },
        )
        self._raise_for_status(response)
        return response.json()

    def _to_artifact(self, data: dict, options: ProcessingOptions) -> ProcessedVideoArtifact:
        uri = data.get("uri") or data.get("url")
        if not uri:
            raise ProviderError("Remote engine returned no output URI", provider=PROVIDER_NAME)

        return ProcessedVideoArtifact(
            uri=uri,
            width=int(data.get("width") or 0),
            height=int(data.get("height") or 0),
            duration=float(data.get("duration") or 0.0),
            size=int(data.get("size") or 0),
            transcription=data.get("transcription") or TRANSCRIPTION_UNAVAILABLE,
            thumbnail_uri=data.get("thumbnailUri") or data.get("thumbnail_uri"),
            face_blur_applied=bool(data.get("faceBlurApplied", options.enable_face_blur)),
            voice_change_applied=bool(data.get("voiceChangeApplied", options.enable_voice_change)),
            captions_applied=bool(data.get("captionsApplied", False)),
            engine=self.kind,
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        """Map HTTP error statuses onto the error taxonomy."""
        code = response.status_code
        if code < 400:
            return
        body = response.text[:200]
        if code in (401, 403):
            raise PermissionDeniedError(f"Remote engine rejected credentials ({code})")
        if code in (400, 413, 415, 422):
            raise MalformedInputError(f"Remote engine rejected input ({code}): {body}")
        raise ProviderError(
            f"Remote engine error: {body}",
            provider=PROVIDER_NAME,
            status_code=code,
            retryable=code >= 500 or code == 429,
        )
