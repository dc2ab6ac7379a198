"""
Processing orchestrator for recorded videos.

Coordinates engine selection, the local/remote fallback chain, degraded
results and progress reporting for one source video at a time.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from anonvideo.config import Settings, get_settings
from anonvideo.errors import (
    EngineUnavailableError,
    JobAbandonedError,
    MalformedInputError,
    PermissionDeniedError,
    ProcessingError,
    VideoCoreError,
    translate_os_error,
)
from anonvideo.logging_config import bind_job
from anonvideo.models.schemas import (
    EngineKind,
    ProcessedVideoArtifact,
    ProcessingOptions,
    ProcessingStage,
    Quality,
)
from anonvideo.services.delivery.network_profiler import NetworkProfiler
from anonvideo.services.delivery.quality_selector import QualitySelector
from anonvideo.services.engines import VideoEngine
from anonvideo.utils.media_utils import probe_media

from .fallback_factory import FallbackFactory
from .processing_strategy import ProcessingStrategy
from .progress_manager import ProgressCallback, ProgressReporter, ProgressStream

logger = logging.getLogger(__name__)


@dataclass
class _InflightJob:
    """Running job for one source: generation token, task and its event stream."""

    token: int
    task: asyncio.Task
    stream: ProgressStream


class ProcessingOrchestrator:
    """
    Orchestrator for anonymization jobs.

    Guarantees:
    - At most one in-flight job per source path. A second request for
      the same source attaches to the running job's progress stream and
      receives the same artifact.
    - At most ``max_concurrent_jobs`` jobs for different sources run at once.
    - Progress published to listeners never decreases and ends at 100.
    - The caller gets an artifact (possibly degraded) or a ProcessingError
      naming the failing stage and whether a retry may help.

    Example:
        orchestrator = ProcessingOrchestrator(settings, engines={...})
        artifact = await orchestrator.process(
            Path("recordings/clip.mp4"),
            ProcessingOptions(enable_face_blur=True, quality="medium"),
            on_progress=print_event,
        )
    """

    def __init__(
        self,
        settings: Settings | None = None,
        engines: dict[EngineKind, VideoEngine] | None = None,
        strategy: ProcessingStrategy | None = None,
        fallback_factory: FallbackFactory | None = None,
        quality_selector: QualitySelector | None = None,
        network_profiler: NetworkProfiler | None = None,
    ):
        """
        Initialize processing orchestrator.

        Args:
            settings: Application settings (uses defaults if None)
            engines: Engine implementation per kind
            strategy: Engine availability and ordering
            fallback_factory: Degraded artifact factory
            quality_selector: Chooses quality when options leave it unset
            network_profiler: Source of the current network profile
        """
        self.settings = settings or get_settings()
        self.engines = dict(engines or {})
        self.strategy = strategy or ProcessingStrategy(self.settings)
        self.fallback_factory = fallback_factory or FallbackFactory(self.settings)
        self.quality_selector = quality_selector
        self.network_profiler = network_profiler

        self._semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_jobs))
        self._inflight: dict[str, _InflightJob] = {}
        self._generations: dict[str, int] = {}
        self._tokens = itertools.count(1)
        self._listeners: list[ProgressCallback] = []

    # ═══════════════════════════════════════════════════════════════════════════
    # Public API
    # ═══════════════════════════════════════════════════════════════════════════

    def add_listener(self, listener: ProgressCallback) -> None:
        """Subscribe to the progress events of every job started afterwards."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ProgressCallback) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def is_processing(self, source: str | Path) -> bool:
        return self._key(source) in self._inflight

    def stream_for(self, source: str | Path) -> ProgressStream | None:
        """Progress stream of the in-flight job for a source, if any."""
        job = self._inflight.get(self._key(source))
        return job.stream if job else None

    async def process(
        self,
        source: str | Path,
        options: ProcessingOptions | dict[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ProcessedVideoArtifact:
        """
        Anonymize a recording.

        Args:
            source: Path to the source video
            options: Processing options (unknown keys are rejected)
            on_progress: Optional async listener for this job's events

        Returns:
            ProcessedVideoArtifact

        Raises:
            ProcessingError: Terminal failure with stage and retryable flag
            JobAbandonedError: The job was abandoned while running
        """
        options = self._parse_options(options)
        key = self._key(source)

        job = self._inflight.get(key)
        if job is not None:
            logger.info(f"Attaching to in-flight job for {Path(key).name}")
            return await self._attach(job, on_progress)

        token = next(self._tokens)
        self._generations[key] = token
        stream = ProgressStream(source=key)
        for listener in self._listeners:
            stream.subscribe(listener)

        task = asyncio.create_task(
            self._run(Path(key), options, ProgressReporter(stream), token),
            name=f"process-{Path(key).name}",
        )
        job = _InflightJob(token=token, task=task, stream=stream)
        self._inflight[key] = job
        task.add_done_callback(lambda _t: self._release(key, job))

        return await self._attach(job, on_progress)

    def abandon(self, source: str | Path) -> bool:
        """
        Abandon the in-flight job for a source.

        The running work is not killed; its result is discarded and
        waiters receive JobAbandonedError. A new request for the same
        source starts a fresh job.

        Returns:
            True if there was an in-flight job
        """
        key = self._key(source)
        job = self._inflight.pop(key, None)
        if job is None:
            return False
        # The running task sees its token gone and discards its result
        self._generations.pop(key, None)
        logger.info(f"Abandoned job for {Path(key).name}")
        return True

    async def close(self) -> None:
        """Close every engine."""
        for engine in self.engines.values():
            await engine.close()

    # ═══════════════════════════════════════════════════════════════════════════
    # Job execution
    # ═══════════════════════════════════════════════════════════════════════════

    async def _run(
        self,
        source: Path,
        options: ProcessingOptions,
        reporter: ProgressReporter,
        token: int,
    ) -> ProcessedVideoArtifact:
        key = str(source)
        async with self._semaphore:
            with bind_job(source.name):
                try:
                    artifact = await self._execute(source, options, reporter)
                except ProcessingError:
                    raise
                except VideoCoreError as e:
                    raise ProcessingError(reporter.stage, e) from e
                except Exception as e:
                    logger.exception(f"Unexpected failure processing {source.name}")
                    raise ProcessingError(reporter.stage, e) from e

                if self._generations.get(key) != token:
                    logger.info(f"Discarding result of abandoned job for {source.name}")
                    raise JobAbandonedError(reporter.stage, key)

                await reporter.report(ProcessingStage.FINALIZE, 100, "Processing complete")
                return artifact

    async def _execute(
        self,
        source: Path,
        options: ProcessingOptions,
        reporter: ProgressReporter,
    ) -> ProcessedVideoArtifact:
        await reporter.report(ProcessingStage.PREPARE, 0, f"Preparing {source.name}...")
        self._check_source(source)

        resolved = options.with_defaults(self.settings, quality=self._preferred_quality())
        availability = await asyncio.to_thread(self.strategy.detect)
        plan = [
            kind for kind in self.strategy.plan(resolved.mode, availability)
            if kind in self.engines
        ]
        logger.info(
            f"Processing {source.name}: mode={resolved.mode.value}, "
            f"quality={resolved.quality.value}, engines={[k.value for k in plan]}"
        )
        await reporter.report(ProcessingStage.PREPARE, 100, "Engines selected")

        if not plan:
            error = EngineUnavailableError("Neither local nor remote engine is available")
            raise ProcessingError(ProcessingStage.PREPARE, error, retryable=False)

        last_error: ProcessingError | None = None
        for kind in plan:
            try:
                artifact = await self.engines[kind].process(source, resolved, reporter)
            except (MalformedInputError, PermissionDeniedError) as e:
                raise ProcessingError(reporter.stage, e, retryable=False) from e
            except OSError as e:
                last_error = ProcessingError(reporter.stage, translate_os_error(e, source))
            except VideoCoreError as e:
                last_error = ProcessingError(reporter.stage, e)
            else:
                logger.info(f"Processed {source.name} with {kind.value} engine")
                return artifact

            logger.warning(f"{kind.value} engine failed for {source.name}: {last_error}")

        if not self.settings.degraded_fallback_enabled:
            raise last_error

        logger.warning(f"All engines failed for {source.name}, returning degraded artifact")
        await reporter.report(ProcessingStage.FINALIZE, 0, "Using unprocessed recording...")
        info = await asyncio.to_thread(probe_media, source)
        return self.fallback_factory.create_degraded_artifact(source, resolved, info)

    # ═══════════════════════════════════════════════════════════════════════════
    # Helpers
    # ═══════════════════════════════════════════════════════════════════════════

    async def _attach(
        self,
        job: _InflightJob,
        on_progress: ProgressCallback | None,
    ) -> ProcessedVideoArtifact:
        if on_progress is not None:
            if job.stream.last_event is not None:
                await on_progress(job.stream.last_event)
            job.stream.subscribe(on_progress)
        try:
            # Shielded: one caller going away must not cancel the shared job
            return await asyncio.shield(job.task)
        finally:
            if on_progress is not None:
                job.stream.unsubscribe(on_progress)

    def _release(self, key: str, job: _InflightJob) -> None:
        if self._inflight.get(key) is job:
            del self._inflight[key]
        if self._generations.get(key) == job.token:
            del self._generations[key]
        # Retrieve the exception so unobserved failures are not reported as lost
        if not job.task.cancelled():
            job.task.exception()

    def _preferred_quality(self) -> Quality | None:
        if self.quality_selector is None or self.network_profiler is None:
            return None
        tier = self.quality_selector.preferred_tier(self.network_profiler.current_profile)
        return tier.quality

    @staticmethod
    def _parse_options(options: ProcessingOptions | dict[str, Any] | None) -> ProcessingOptions:
        if options is None:
            return ProcessingOptions()
        if isinstance(options, ProcessingOptions):
            return options
        try:
            return ProcessingOptions.model_validate(options)
        except ValidationError as e:
            error = MalformedInputError(f"Invalid processing options: {e}", cause=e)
            raise ProcessingError(ProcessingStage.PREPARE, error, retryable=False) from e

    @staticmethod
    def _check_source(source: Path) -> None:
        try:
            if not source.is_file():
                raise MalformedInputError(f"Video file not found: {source}")
            with open(source, "rb"):
                pass
        except OSError as e:
            raise ProcessingError(
                ProcessingStage.PREPARE, translate_os_error(e, source), retryable=False
            ) from e
        except MalformedInputError as e:
            raise ProcessingError(ProcessingStage.PREPARE, e, retryable=False) from e

    @staticmethod
    def _key(source: str | Path) -> str:
        return str(Path(source).expanduser().resolve())
