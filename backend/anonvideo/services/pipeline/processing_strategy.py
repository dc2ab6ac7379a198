"""
Processing strategy for selecting between local and remote engines.

Detects which engines are usable once per job and turns the requested
processing mode into an ordered list of engines to attempt.
"""

import logging
from dataclasses import dataclass

from anonvideo.config import Settings
from anonvideo.models.schemas import EngineKind, ProcessingMode
from anonvideo.utils.media_utils import ffmpeg_available

logger = logging.getLogger(__name__)


@dataclass
class EngineInfo:
    """
    Information about a transcoding engine.

    Attributes:
        kind: Engine kind (local/remote)
        name: Human-readable name
        available: Whether the engine can be used
    """

    kind: EngineKind
    name: str
    available: bool = False


class ProcessingStrategy:
    """
    Strategy for selecting engines based on mode and availability.

    Mode rules:
    - server: remote only
    - local: local, or remote when ffmpeg is missing
    - hybrid: local first, then one remote attempt

    Example:
        strategy = ProcessingStrategy(settings)
        availability = strategy.detect()
        for kind in strategy.plan(ProcessingMode.HYBRID, availability):
            ...
    """

    def __init__(self, settings: Settings):
        """
        Initialize processing strategy.

        Args:
            settings: Application settings
        """
        self.settings = settings

    def detect(self) -> dict[EngineKind, EngineInfo]:
        """
        Check availability of both engines.

        The local engine needs ffmpeg and ffprobe on PATH; the remote
        engine needs a configured service URL.

        Returns:
            Dict mapping engine kind to availability info
        """
        local = ffmpeg_available()
        remote = bool(self.settings.remote_engine_url)
        logger.debug(f"Engine availability: local={local}, remote={remote}")

        return {
            EngineKind.LOCAL: EngineInfo(EngineKind.LOCAL, "ffmpeg", local),
            EngineKind.REMOTE: EngineInfo(EngineKind.REMOTE, "Processing service", remote),
        }

    def plan(
        self,
        mode: ProcessingMode,
        availability: dict[EngineKind, EngineInfo],
    ) -> list[EngineKind]:
        """
        Ordered engines to attempt for a mode.

        Args:
            mode: Requested processing mode
            availability: Result of detect()

        Returns:
            Engine kinds in attempt order (empty if none is usable)
        """
        local = availability[EngineKind.LOCAL].available
        remote = availability[EngineKind.REMOTE].available

        if mode == ProcessingMode.SERVER:
            order = [EngineKind.REMOTE]
        elif mode == ProcessingMode.LOCAL:
            order = [EngineKind.LOCAL] if local else [EngineKind.REMOTE]
        else:
            order = [EngineKind.LOCAL, EngineKind.REMOTE]

        return [kind for kind in order if availability[kind].available]
