"""High-level export API: resolve a composition and render it to a file."""

import asyncio
import logging
from pathlib import Path

from framecast.composition import Composition
from framecast.render.encoding_session import VideoEncoderService
from framecast.render.frame_ready import FrameReadyNotifier
from framecast.render.frame_sequencer import PillowSurface
from framecast.render.orchestrator import FrameProgressCallback, RenderOrchestrator, RenderStats
from framecast.render.timeline_resolver import TimelineResolver
from framecast.schemas.render import EncodingConfig, RenderConfig, RenderQuality

logger = logging.getLogger(__name__)


class VideoExporter:
    """
    Fluent builder around TimelineResolver and RenderOrchestrator.

    Example:
        path = await (
            VideoExporter(composition)
            .with_quality("high")
            .with_file_name("intro.mp4")
            .render()
        )
    """

    def __init__(
        self,
        composition: Composition,
        encoder_service: VideoEncoderService | None = None,
        resolver: TimelineResolver | None = None,
    ):
        self.composition = composition
        self._encoder_service = encoder_service
        self._resolver = resolver or TimelineResolver()
        self._quality: RenderQuality | None = None
        self._encoding: EncodingConfig | None = None
        self._file_name: str | None = None
        self._on_progress = None
        self._on_frame_progress: FrameProgressCallback | None = None
        self._notifier: FrameReadyNotifier | None = None
        self.last_stats: RenderStats | None = None

    def with_quality(self, quality: RenderQuality) -> "VideoExporter":
        self._quality = quality
        return self

    def with_encoding(self, encoding: EncodingConfig) -> "VideoExporter":
        self._encoding = encoding
        return self

    def with_file_name(self, file_name: str) -> "VideoExporter":
        self._file_name = file_name
        return self

    def with_progress(self, callback) -> "VideoExporter":
        """Called with overall progress in [0, 1] after each captured frame."""
        self._on_progress = callback
        return self

    def with_frame_progress(self, callback: FrameProgressCallback) -> "VideoExporter":
        """Called with (frames_done, total) after each captured frame."""
        self._on_frame_progress = callback
        return self

    def with_notifier(self, notifier: FrameReadyNotifier) -> "VideoExporter":
        self._notifier = notifier
        return self

    def build_config(self) -> RenderConfig:
        encoding = self._encoding or self.composition.encoding
        if self._quality is not None:
            encoding = encoding.model_copy(update={"quality": self._quality})
        return self._resolver.resolve(self.composition, encoding=encoding).config

    async def render(self) -> str:
        """Render the composition and return the output path."""
        config = self.build_config()
        orchestrator = RenderOrchestrator(encoder_service=self._encoder_service)
        try:
            return await orchestrator.execute(
                config,
                PillowSurface(self.composition),
                frame_ready_notifier=self._notifier,
                progress_callback=self._report_progress,
                output_file_name=self._file_name,
            )
        finally:
            self.last_stats = orchestrator.last_stats

    async def render_to_bytes(self) -> bytes:
        """Render and return the encoded file contents."""
        path = await self.render()
        return await asyncio.to_thread(Path(path).read_bytes)

    def _report_progress(self, done: int, total: int) -> None:
        if self._on_frame_progress is not None:
            self._on_frame_progress(done, total)
        if self._on_progress is not None and total > 0:
            self._on_progress(done / total)
