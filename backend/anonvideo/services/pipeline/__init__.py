"""
Pipeline module for video anonymization.

This package contains the decomposed pipeline components:
- orchestrator: job coordination, single-flight and the fallback chain
- progress_manager: progress event stream and stage bands
- fallback_factory: degraded artifact creation
- processing_strategy: engine detection and ordering (local/remote)

Example:
    from anonvideo.services.pipeline import ProcessingOrchestrator

    orchestrator = ProcessingOrchestrator(settings, engines=engines)
    artifact = await orchestrator.process(video_path, options)
"""

from .fallback_factory import FallbackFactory
from .orchestrator import ProcessingOrchestrator
from .processing_strategy import EngineInfo, ProcessingStrategy
from .progress_manager import ProgressCallback, ProgressReporter, ProgressStream

__all__ = [
    # Main orchestrator
    "ProcessingOrchestrator",
    # Supporting classes
    "FallbackFactory",
    "ProgressCallback",
    "ProgressReporter",
    "ProgressStream",
    # Engine selection
    "EngineInfo",
    "ProcessingStrategy",
]
