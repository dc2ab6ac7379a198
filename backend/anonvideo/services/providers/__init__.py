"""
Speech-to-text providers.

Example:
    from anonvideo.services.providers import create_provider

    provider = create_provider(settings)
    transcript = await provider.transcribe(audio_path, duration=12.5)
"""

import logging

from anonvideo.config import Settings

from .base import Transcript, TranscriptionProvider
from .simulated_provider import SimulatedTranscriptionProvider
from .speech_client import CloudSpeechClient

logger = logging.getLogger(__name__)


def create_provider(settings: Settings) -> TranscriptionProvider:
    """Cloud provider when an API key is configured, simulated otherwise."""
    if settings.speech_api_key:
        return CloudSpeechClient.from_settings(settings)
    logger.info("No speech API key configured, using simulated transcription")
    return SimulatedTranscriptionProvider(language=settings.speech_language)


__all__ = [
    "CloudSpeechClient",
    "SimulatedTranscriptionProvider",
    "Transcript",
    "TranscriptionProvider",
    "create_provider",
]
