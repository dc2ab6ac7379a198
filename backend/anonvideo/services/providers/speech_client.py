"""
Cloud speech-to-text client implementation.

Async HTTP client for an AssemblyAI-compatible transcription API:
upload audio, submit a transcript request, then poll until the
request reaches a terminal state.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from anonvideo.config import Settings
from anonvideo.errors import (
    MalformedInputError,
    NetworkError,
    OperationTimeoutError,
    PermissionDeniedError,
    ProviderError,
    TranscriptionTimeoutError,
)
from anonvideo.models.schemas import CaptionWord

from .base import Transcript

logger = logging.getLogger(__name__)

# Retry configuration for transient errors
RETRY_DECORATOR = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=30),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)

PROVIDER_NAME = "speech"


class CloudSpeechClient:
    """
    Async HTTP client for the cloud transcription API.

    Polling is bounded: after ``max_poll_attempts`` non-terminal answers
    TranscriptionTimeoutError is raised instead of waiting forever.

    Example:
        async with CloudSpeechClient.from_settings(settings) as client:
            transcript = await client.transcribe(audio_path)
    """

    name = PROVIDER_NAME
    words_per_segment = 8

    def __init__(
        self,
        api_url: str,
        api_key: str,
        language: str = "en",
        poll_interval: float = 5.0,
        max_poll_attempts: int = 60,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize speech client.

        Args:
            api_url: Base URL of the transcription API
            api_key: API key sent in the authorization header
            language: Language code for transcription
            poll_interval: Seconds between status polls
            max_poll_attempts: Poll attempts before giving up
            http_client: Optional preconfigured client (tests)
            sleep: Coroutine used to wait between polls
        """
        self.api_url = api_url.rstrip("/")
        self.language = language
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self._sleep = sleep
        self.http_client = http_client or httpx.AsyncClient(timeout=60.0)
        self.http_client.headers["authorization"] = api_key

    @classmethod
    def from_settings(cls, settings: Settings) -> "CloudSpeechClient":
        """
        Create CloudSpeechClient from application settings.

        Raises:
            ValueError: If no API key is configured
        """
        if not settings.speech_api_key:
            raise ValueError("SPEECH_API_KEY is not set")
        return cls(
            api_url=settings.speech_api_url,
            api_key=settings.speech_api_key,
            language=settings.speech_language,
            poll_interval=settings.speech_poll_interval,
            max_poll_attempts=settings.speech_max_poll_attempts,
        )

    async def __aenter__(self) -> "CloudSpeechClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.http_client.aclose()

    async def transcribe(
        self,
        audio_path: Path,
        duration: float | None = None,
    ) -> Transcript:
        """
        Upload, submit and poll until the transcript is ready.

        Args:
            audio_path: Path to audio file
            duration: Known media duration (used when the API omits it)

        Returns:
            Transcript with word timings in seconds

        Raises:
            TranscriptionTimeoutError: If polling exhausts max attempts
            ProviderError: If the API reports an error or answers with a malformed payload
            NetworkError: If the API cannot be reached
        """
        audio_path = Path(audio_path)
        if not audio_path.exists():
            raise MalformedInputError(f"Audio file not found: {audio_path}")

        try:
            upload_url = await self.upload(audio_path)
            transcript_id = await self.submit(upload_url)
            data = await self.poll(transcript_id)
            return self._to_transcript(data, duration)
        except httpx.TimeoutException as e:
            raise OperationTimeoutError("Speech API request timed out", cause=e) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Speech API unreachable: {e}", cause=e) from e
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProviderError(
                f"Malformed speech API response: {e!r}", provider=PROVIDER_NAME, cause=e
            ) from e

    @RETRY_DECORATOR
    async def upload(self, audio_path: Path) -> str:
        """Upload raw audio and return the provider-side URL."""
        content = await asyncio.to_thread(audio_path.read_bytes)
        size_mb = len(content) / 1024 / 1024
        logger.info(f"Uploading audio: {audio_path.name} ({size_mb:.1f} MB)")

        response = await self.http_client.post(f"{self.api_url}/upload", content=content)
        self._raise_for_status(response)
        return response.json()["upload_url"]

    @RETRY_DECORATOR
    async def submit(self, upload_url: str) -> str:
        """Submit a transcript request and return its id."""
        response = await self.http_client.post(
            f"{self.api_url}/transcript",
            json={"audio_url": upload_url, "language_code": self.language},
        )
        self._raise_for_status(response)
        transcript_id = response.json()["id"]
        logger.debug(f"Transcript requested: {transcript_id}")
        return transcript_id

    async def poll(self, transcript_id: str) -> dict:
        """
        Poll transcript status until completed, error or attempt budget exhausted.

        Args:
            transcript_id: Id returned by submit()

        Returns:
            Completed transcript payload
        """
        for attempt in range(1, self.max_poll_attempts + 1):
            response = await self.http_client.get(f"{self.api_url}/transcript/{transcript_id}")
            self._raise_for_status(response)
            data = response.json()
            status = data.get("status")

            if status == "completed":
                logger.info(f"Transcript {transcript_id} completed after {attempt} polls")
                return data
            if status == "error":
                raise ProviderError(
                    f"Transcription failed: {data.get('error', 'unknown error')}",
                    provider=PROVIDER_NAME,
                )

            logger.debug(f"Transcript {transcript_id} status={status} (poll {attempt})")
            if attempt < self.max_poll_attempts:
                await self._sleep(self.poll_interval)

        raise TranscriptionTimeoutError(
            f"Transcription timed out after {self.max_poll_attempts} polls"
        )

    def _to_transcript(self, data: dict, duration: float | None) -> Transcript:
        words = [
            CaptionWord(
                word=w["text"],
                confidence=min(1.0, max(0.0, float(w.get("confidence", 0.0)))),
                start_time=w["start"] / 1000,
                end_time=w["end"] / 1000,
            )
            for w in data.get("words") or []
        ]
        audio_duration = data.get("audio_duration") or duration or (
            words[-1].end_time if words else 0.0
        )
        return Transcript(
            text=data.get("text") or " ".join(w.word for w in words),
            words=words,
            language=data.get("language_code") or self.language,
            duration=float(audio_duration),
            provider=PROVIDER_NAME,
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        """Map HTTP error statuses onto the error taxonomy."""
        code = response.status_code
        if code < 400:
            return
        body = response.text[:200]
        if code in (401, 403):
            raise PermissionDeniedError(f"Speech API rejected credentials ({code})")
        raise ProviderError(
            f"Speech API error: {body}",
            provider=PROVIDER_NAME,
            status_code=code,
            retryable=code >= 500 or code == 429,
        )
