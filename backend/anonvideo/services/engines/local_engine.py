"""
Local transcoding engine using ffmpeg.

Runs every stage on this host: face scan, transcription, voice and
caption filters, then one ffmpeg pass with the combined filter graph,
followed by thumbnail and duration extraction.
"""

import asyncio
import hashlib
import logging
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from anonvideo.config import Settings, load_delivery_config
from anonvideo.errors import MalformedInputError, ProviderError, VideoCoreError
from anonvideo.models.delivery import QualityTier
from anonvideo.models.schemas import (
    TRANSCRIPTION_UNAVAILABLE,
    CaptionData,
    EngineKind,
    ProcessedVideoArtifact,
    ProcessingOptions,
    ProcessingStage,
)
from anonvideo.services.stages import (
    FaceAnonymizationStage,
    FaceScanResult,
    FilterGraph,
    build_voice_filter,
    caption_fragment,
)
from anonvideo.services.transcriber import CaptionService
from anonvideo.utils.media_utils import MediaInfo, extract_thumbnail, probe_media, run_ffmpeg

if TYPE_CHECKING:
    from anonvideo.services.pipeline.progress_manager import ProgressReporter

logger = logging.getLogger(__name__)

DEFAULT_CRF = {"low": 28, "medium": 23, "high": 18}


def output_name(source: Path) -> str:
    """
    File name for a new rendering of a source.

    Keyed on the resolved source path, so equally named recordings from
    different folders never collide, plus a per-render token, so a
    reprocessed recording gets a new artifact instead of overwriting one.
    """
    digest = hashlib.sha256(str(Path(source).resolve()).encode()).hexdigest()[:10]
    return f"{Path(source).stem}_{digest}_{uuid.uuid4().hex[:8]}_processed.mp4"


@dataclass
class RenderPlan:
    """
    Everything the single transcoding pass needs.

    Attributes:
        graph: Combined filter graph
        info: Probed source media info
        transcription: Transcript text (sentinel when unavailable)
        captions: Caption data burned into the video, if any
        face_scan: Face scan result when face blur was requested
        face_blur_applied: Whether a blur fragment is in the graph
        voice_change_applied: Whether a pitch filter is in the graph
    """

    graph: FilterGraph
    info: MediaInfo
    transcription: str = TRANSCRIPTION_UNAVAILABLE
    captions: CaptionData | None = None
    face_scan: FaceScanResult | None = None
    face_blur_applied: bool = False
    voice_change_applied: bool = False
    warnings: list[str] = field(default_factory=list)


class LocalEngine:
    """
    On-host engine driving ffmpeg.

    Example:
        engine = LocalEngine(settings, face_stage, caption_service)
        artifact = await engine.process(source, options, reporter)
    """

    kind = EngineKind.LOCAL

    def __init__(
        self,
        settings: Settings,
        face_stage: FaceAnonymizationStage,
        caption_service: CaptionService,
        quality_matrix: dict | None = None,
    ):
        """
        Initialize local engine.

        Args:
            settings: Application settings
            face_stage: Face anonymization stage
            caption_service: Caption generation service
            quality_matrix: Per-tier encoder settings (delivery.yaml if None)
        """
        self.settings = settings
        self.face_stage = face_stage
        self.caption_service = caption_service
        if quality_matrix is None:
            quality_matrix = load_delivery_config(settings).get("quality_matrix", {})
        self.quality_matrix = quality_matrix

    async def process(
        self,
        source: Path,
        options: ProcessingOptions,
        reporter: "ProgressReporter",
    ) -> ProcessedVideoArtifact:
        source = Path(source)
        info = await asyncio.to_thread(probe_media, source)
        if info is None or info.width == 0:
            raise MalformedInputError(f"Not a readable video: {source.name}")

        plan = await self.prepare(source, options, info, reporter)
        output = await self.render(source, plan, options, reporter)
        return await self.finalize(output, plan, reporter)

    async def prepare(
        self,
        source: Path,
        options: ProcessingOptions,
        info: MediaInfo,
        reporter: "ProgressReporter",
    ) -> RenderPlan:
        """
        Run the analysis stages and assemble the filter graph.

        Face scan failures fall back to the top-half blur and
        transcription failures drop captions; neither aborts the job.

        Args:
            source: Source video
            options: Resolved processing options
            info: Probed source info
            reporter: Progress reporter

        Returns:
            RenderPlan for render()
        """
        plan = RenderPlan(graph=FilterGraph(), info=info)

        if options.enable_face_blur:
            await reporter.report(ProcessingStage.FACE_SCAN, 0, "Detecting faces for anonymization...")
            try:
                plan.face_scan = await self.face_stage.scan(source, info)
            except VideoCoreError as e:
                logger.warning(f"Face scan failed for {source.name}, blurring top half: {e}")
                plan.face_scan = FaceScanResult(region=None)
                plan.warnings.append(f"face scan failed: {e}")

            plan.graph.add_video(self.face_stage.build_fragment(plan.face_scan))
            plan.face_blur_applied = True
            await reporter.report(ProcessingStage.FACE_SCAN, 100, "Face regions resolved")

        if options.enable_transcription:
            await reporter.report(ProcessingStage.TRANSCRIPTION, 0, "Generating speech transcription...")
            if info.has_audio:
                try:
                    captions = await self.caption_service.generate_captions_for_video(source)
                    if captions.segments:
                        plan.captions = captions
                        plan.transcription = captions.full_text
                except VideoCoreError as e:
                    logger.warning(f"Transcription unavailable for {source.name}: {e}")
                    plan.warnings.append(f"transcription failed: {e}")
            await reporter.report(ProcessingStage.TRANSCRIPTION, 100, "Transcription step finished")

        if options.enable_voice_change and info.has_audio:
            plan.graph.set_audio(build_voice_filter(options.voice_effect, info.sample_rate))
            plan.voice_change_applied = True

        if plan.captions is not None:
            fragment = caption_fragment(plan.captions.segments)
            if fragment is not None:
                plan.graph.add_video(fragment)

        tier = QualityTier.for_quality(options.quality)
        if info.height > tier.height:
            plan.graph.add_video(lambda src, dst: f"[{src}]scale=-2:{tier.height}[{dst}]")

        return plan

    async def render(
        self,
        source: Path,
        plan: RenderPlan,
        options: ProcessingOptions,
        reporter: "ProgressReporter",
    ) -> Path:
        """
        Encode the output with the combined filter graph.

        Writes to a private partial file that is renamed only after ffmpeg
        succeeds, so a failed render never leaves a truncated output and
        concurrent renders never share a file.

        Returns:
            Path to the rendered MP4
        """
        output_dir = self.settings.output_dir
        output_dir.mkdir(parents=True, exist_ok=True)
        output = output_dir / output_name(source)
        with tempfile.NamedTemporaryFile(
            dir=output_dir, prefix=f".{output.stem}_", suffix=".part.mp4", delete=False
        ) as f:
            partial = Path(f.name)

        await reporter.report(
            ProcessingStage.RENDER, 0, "Applying face blur, voice modifications, and captions..."
        )

        cmd = [
            "ffmpeg",
            "-i", str(source),
            *plan.graph.to_ffmpeg_args(),
            "-c:v", "libx264",
            "-preset", "fast",
            "-crf", str(self._crf(options)),
            "-c:a", "aac",
            "-b:a", "128k",
            "-movflags", "+faststart",
            "-y",
            str(partial),
        ]

        try:
            await asyncio.to_thread(run_ffmpeg, cmd, self.settings.ffmpeg_timeout)
            if not partial.exists() or partial.stat().st_size == 0:
                raise ProviderError("Render produced no output", provider="ffmpeg")
            partial.replace(output)
        finally:
            partial.unlink(missing_ok=True)

        await reporter.report(ProcessingStage.RENDER, 100, "Filters applied")
        logger.info(f"Rendered {source.name} -> {output.name}")
        return output

    async def finalize(
        self,
        output: Path,
        plan: RenderPlan,
        reporter: "ProgressReporter",
    ) -> ProcessedVideoArtifact:
        """Extract thumbnail and duration and build the artifact."""
        await reporter.report(ProcessingStage.FINALIZE, 0, "Creating thumbnail...")

        thumbnail_path = output.with_name(f"{output.stem}_thumb.jpg")
        thumbnail_uri = None
        try:
            await asyncio.to_thread(extract_thumbnail, output, thumbnail_path)
            thumbnail_uri = str(thumbnail_path)
        except VideoCoreError as e:
            logger.warning(f"Thumbnail extraction failed for {output.name}: {e}")

        await reporter.report(ProcessingStage.FINALIZE, 60, "Finalizing...")
        info = await asyncio.to_thread(probe_media, output)
        if info is None:
            raise ProviderError(f"Rendered output is unreadable: {output.name}", provider="ffmpeg")

        return ProcessedVideoArtifact(
            uri=str(output),
            width=info.width,
            height=info.height,
            duration=info.duration,
            size=output.stat().st_size,
            transcription=plan.transcription,
            thumbnail_uri=thumbnail_uri,
            face_blur_applied=plan.face_blur_applied,
            voice_change_applied=plan.voice_change_applied,
            captions_applied=plan.captions is not None,
            engine=self.kind,
        )

    def _crf(self, options: ProcessingOptions) -> int:
        tier = QualityTier.for_quality(options.quality)
        preset = self.quality_matrix.get(tier.value, {})
        return int(preset.get("crf", DEFAULT_CRF[options.quality.value]))

    async def close(self) -> None:
        await self.caption_service.provider.close()
