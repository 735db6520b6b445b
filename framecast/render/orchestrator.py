"""
Render orchestration.

Drives the per-frame loop and the encoder writer:
- Producer: advance frame -> rasterize -> wait for side-channel work ->
  capture -> enqueue (may suspend on a full pipeline)
- Consumer: dequeue -> write to the encoding session -> release the slot

Frames are captured, enqueued and written strictly in index order. Any
failure cancels the encoding session and propagates; there is no partial
result and no retry.
"""

import asyncio
import logging
import time
import warnings
from collections.abc import Callable
from dataclasses import dataclass, replace

from framecast.config import Settings, get_settings
from framecast.exceptions import ConfigurationError, TimeoutWarning
from framecast.render.encoding_session import EncodingSession, VideoEncoderService
from framecast.render.frame_pipeline import FramePipeline
from framecast.render.frame_ready import FrameReadyNotifier
from framecast.render.frame_sequencer import FrameSequencer, RenderSurface, calculate_pixel_ratio
from framecast.schemas.render import FrameFormat, RenderConfig

logger = logging.getLogger(__name__)

FrameUpdateCallback = Callable[[int], None]
FrameProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class RenderContext:
    """Per-render state threaded through the loop instead of a global frame."""

    config: RenderConfig
    pixel_ratio: float
    frame_format: FrameFormat
    buffer_size: int
    frame: int = 0

    @property
    def total_frames(self) -> int:
        return self.config.timeline.duration_in_frames

    def at(self, frame: int) -> "RenderContext":
        return replace(self, frame=frame)


@dataclass
class RenderStats:
    """Timing of the last render. Observability only."""

    total_frames: int = 0
    frames_captured: int = 0
    frames_timed_out: int = 0
    capture_ms: float = 0.0
    total_ms: float = 0.0
    slowest_frame: int | None = None
    slowest_frame_ms: float = 0.0
    output_path: str | None = None

    @property
    def average_frame_ms(self) -> float:
        if not self.frames_captured:
            return 0.0
        return self.capture_ms / self.frames_captured

    def record_frame(self, frame: int, elapsed_ms: float) -> None:
        self.frames_captured += 1
        if self.slowest_frame is None or elapsed_ms > self.slowest_frame_ms:
            self.slowest_frame = frame
            self.slowest_frame_ms = elapsed_ms


class RenderOrchestrator:
    """Runs one render: capture loop, frame pipeline and encoding session."""

    def __init__(
        self,
        encoder_service: VideoEncoderService | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings
        self._encoder_service = encoder_service or VideoEncoderService(settings=settings)
        self.last_stats: RenderStats | None = None

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    async def execute(
        self,
        config: RenderConfig,
        surface: RenderSurface,
        frame_ready_notifier: FrameReadyNotifier | None = None,
        on_frame_update: FrameUpdateCallback | None = None,
        progress_callback: FrameProgressCallback | None = None,
        output_file_name: str | None = None,
        frame_ready_timeout: float | None = None,
    ) -> str:
        """
        Render every frame of `config` and return the encoded file path.

        Args:
            config: Resolved render config (audio sync already resolved)
            surface: Surface that rasterizes the composition per frame
            frame_ready_notifier: Side-channel work to await before each capture
            on_frame_update: Called with the frame index before rasterization
            progress_callback: Called with (frames_done, total) after each enqueue
            output_file_name: Output file name, defaults to Settings value
            frame_ready_timeout: Seconds to wait on the notifier per frame

        Returns:
            Path of the finished output file

        Raises:
            ConfigurationError: Config still carries unresolved sync references
            CaptureError: Surface detached or unsized
            EncodingProcessError: Encoder failed or was unavailable
        """
        if config.has_unresolved_sync:
            raise ConfigurationError(
                "RenderConfig has unresolved audio sync; resolve it with TimelineResolver first",
                field_name="audio_tracks",
            )

        settings = self.settings
        timeout = frame_ready_timeout if frame_ready_timeout is not None else settings.frame_ready_timeout_s
        timeline = config.timeline
        sequencer = FrameSequencer(surface)

        pixel_ratio = calculate_pixel_ratio(surface, timeline, strict=settings.strict_aspect_ratio)
        context = RenderContext(
            config=config,
            pixel_ratio=pixel_ratio,
            frame_format=config.encoding.frame_format,
            buffer_size=settings.pipeline_buffer_size,
        )
        stats = RenderStats(total_frames=context.total_frames)
        self.last_stats = stats

        session = await self._encoder_service.start_encoding(
            config,
            output_file_name or settings.default_output_file_name,
        )

        total_start = time.perf_counter()
        pipeline = FramePipeline(max_buffer_size=context.buffer_size)
        writer = asyncio.create_task(self._write_frames(pipeline, session))
        writer.add_done_callback(lambda task: self._on_writer_done(task, pipeline))

        logger.info(
            f"[RENDER] Starting frame capture: frames={context.total_frames}, "
            f"format={context.frame_format}, pixelRatio={pixel_ratio:.3f}, "
            f"buffer={context.buffer_size}, size={timeline.width}x{timeline.height}@{timeline.fps}fps"
        )

        try:
            for frame in timeline.frame_range:
                frame_context = context.at(frame)
                frame_start = time.perf_counter()

                if on_frame_update is not None:
                    on_frame_update(frame_context.frame)
                await sequencer.rasterize(frame_context.frame)

                if frame_ready_notifier is not None:
                    ready = await frame_ready_notifier.wait_for_all_frames_with_timeout(timeout)
                    if not ready:
                        stats.frames_timed_out += 1
                        message = f"Frame {frame}: timeout waiting for pending operations after {timeout}s"
                        logger.warning(f"[RENDER] {message}")
                        warnings.warn(message, TimeoutWarning, stacklevel=2)

                data = await sequencer.capture_frame_raw_exact(
                    frame_context.pixel_ratio,
                    timeline.width,
                    timeline.height,
                    frame_format=frame_context.frame_format,
                    frame=frame,
                )
                await pipeline.add_frame(data)

                elapsed_ms = (time.perf_counter() - frame_start) * 1000
                stats.record_frame(frame, elapsed_ms)
                if settings.log_frame_timings:
                    logger.debug(
                        f"[RENDER] Frame {frame + 1}/{context.total_frames} captured "
                        f"({len(data)} bytes, {elapsed_ms:.1f}ms, buffer: {pipeline.buffered_frames})"
                    )
                if progress_callback is not None:
                    progress_callback(frame + 1, context.total_frames)

            pipeline.close()
            await writer

            stats.capture_ms = (time.perf_counter() - total_start) * 1000
            logger.info(
                f"[RENDER] All frames captured: total={stats.capture_ms:.0f}ms, "
                f"average={stats.average_frame_ms:.1f}ms/frame, "
                f"slowest=frame {stats.slowest_frame} ({stats.slowest_frame_ms:.1f}ms)"
            )

            logger.debug("[RENDER] Closing encoder session, waiting for FFmpeg to finish")
            await session.close()
            output_path = await session.completed
        except BaseException as e:
            logger.error(f"[RENDER] Render failed at frame {stats.frames_captured}: {e!r}; cancelling encoder")
            pipeline.close()
            writer_error = await self._stop_writer(writer)
            await session.cancel()
            if writer_error is not None and writer_error is not e:
                raise writer_error from e
            raise

        stats.total_ms = (time.perf_counter() - total_start) * 1000
        stats.output_path = output_path
        logger.info(f"[RENDER] Encoding complete: {output_path} (capture + encoding {stats.total_ms:.0f}ms)")
        return output_path

    @staticmethod
    async def _write_frames(pipeline: FramePipeline, session: EncodingSession) -> None:
        async for data in pipeline.frames:
            await session.sink.write(data)
            pipeline.frame_consumed()

    @staticmethod
    def _on_writer_done(task: asyncio.Task, pipeline: FramePipeline) -> None:
        # A dead writer would leave the producer suspended on a full buffer
        if not task.cancelled() and task.exception() is not None:
            pipeline.close()

    @staticmethod
    async def _stop_writer(writer: asyncio.Task) -> BaseException | None:
        """Stop the writer task and return the exception it failed with, if any."""
        if not writer.done():
            writer.cancel()
        try:
            await writer
        except asyncio.CancelledError:
            return None
        except Exception as e:
            return e
        return None
