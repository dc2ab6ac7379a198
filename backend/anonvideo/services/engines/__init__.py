"""
Transcoding engines.

Example:
    from anonvideo.services.engines import LocalEngine, RemoteEngine

    engine = RemoteEngine.from_settings(settings)
    artifact = await engine.process(source, options, reporter)
"""

from .base import VideoEngine
from .local_engine import LocalEngine, RenderPlan
from .remote_engine import RemoteEngine

__all__ = [
    "LocalEngine",
    "RemoteEngine",
    "RenderPlan",
    "VideoEngine",
]
