"""
Streaming encode sessions around an external FFmpeg process.

Frames are written to the encoder's stdin as they are captured. stdout and
stderr are drained continuously so the encoder never blocks on a full OS
pipe; stderr is kept (bounded) for error reports and parsed for progress.

Session states:
- STARTING: process being spawned
- STREAMING: accepting frames
- COMPLETED: process exited 0 after close()
- FAILED: nonzero exit, I/O failure or cancel(); the process is terminated
"""

import asyncio
import logging
import re
import shutil
import tempfile
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path

from framecast.config import Settings, get_settings
from framecast.exceptions import EncoderNotFoundError, EncodingProcessError, PipelineError
from framecast.render.command_builder import FilterGraphBuilder, build_encoder_command
from framecast.schemas.render import RenderConfig
from framecast.utils.media_info import check_ffmpeg_available

logger = logging.getLogger(__name__)

ProcessFactory = Callable[[list[str]], Awaitable[asyncio.subprocess.Process]]
ProgressCallback = Callable[[float], None]

FRAME_PATTERN = re.compile(r"frame=\s*(\d+)")
STDERR_TAIL_BYTES = 64 * 1024
READ_CHUNK_SIZE = 64 * 1024


class SessionState(Enum):
    """Encoding session lifecycle state."""

    STARTING = "starting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


async def spawn_process(command: list[str]) -> asyncio.subprocess.Process:
    """Default process factory: run the command with all three pipes attached."""
    return await asyncio.create_subprocess_exec(
        *command,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )


def _retrieve_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


class FrameSink:
    """Byte sink feeding the encoder's stdin, one call per frame, in capture order."""

    def __init__(self, session: "EncodingSession"):
        self._session = session

    async def write(self, data: bytes) -> None:
        """
        Write one frame.

        Raises:
            PipelineError: Sink is closed, or a raw frame has the wrong size
            EncodingProcessError: Encoder failed or its stdin broke
        """
        session = self._session
        if session.is_closed:
            raise PipelineError("Cannot write frames after close()")
        if session.state is SessionState.FAILED:
            raise session.failure or EncodingProcessError("Encoding session failed", command=session.command)
        if session.frame_bytes is not None and len(data) != session.frame_bytes:
            raise PipelineError(
                f"Raw frame must be exactly {session.frame_bytes} bytes, got {len(data)}"
            )

        stdin = session.process.stdin
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            error = EncodingProcessError(
                f"Encoder stdin closed unexpectedly: {e}",
                stderr=session.stderr_output,
                command=session.command,
            )
            session.fail(error)
            raise error from e

        session.frames_written += 1
        session.report_written()


class EncodingSession:
    """One external encode invocation.

    completed resolves to the output path once the process exits with code 0
    after close(), and is rejected on a nonzero exit, I/O failure or cancel().
    It settles exactly once.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: list[str],
        output_path: str,
        total_frames: int = 0,
        frame_bytes: int | None = None,
        owned_dir: str | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.process = process
        self.command = command
        self.output_path = output_path
        self.total_frames = total_frames
        self.frame_bytes = frame_bytes
        self.frames_written = 0
        self.progress = 0.0
        self.failure: EncodingProcessError | None = None

        self._owned_dir = owned_dir
        self._on_progress = on_progress
        self._state = SessionState.STARTING
        self._closed = False
        self._cancelled = False
        self._stderr: deque[bytes] = deque()
        self._stderr_size = 0

        self.completed: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self.completed.add_done_callback(_retrieve_exception)
        self.sink = FrameSink(self)

        self._stdout_task = asyncio.create_task(self._drain_stdout())
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        self._watcher = asyncio.create_task(self._watch_exit())
        self._set_state(SessionState.STREAMING)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def stderr_output(self) -> str:
        return b"".join(self._stderr).decode("utf-8", errors="replace")

    async def close(self) -> None:
        """Signal end-of-input. Must follow the last frame; completed settles later."""
        if self._closed:
            return
        self._closed = True
        stdin = self.process.stdin
        if stdin is None or stdin.is_closing():
            return
        stdin.close()
        try:
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError) as e:
            # The exit watcher reports the failure through `completed`
            logger.debug(f"[ENCODE] stdin already broken on close: {e}")
        logger.debug(f"[ENCODE] Input closed after {self.frames_written} frames")

    async def cancel(self) -> None:
        """Terminate the process and discard the output. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        self._closed = True

        if self._state is SessionState.COMPLETED:
            logger.debug("[ENCODE] cancel() after successful completion, nothing to do")
            return

        logger.info(f"[ENCODE] Cancelling encode of {self.output_path}")
        self.fail(EncodingProcessError("Encoding cancelled", command=self.command))

        stdin = self.process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()
        if self.process.returncode is None:
            self.process.kill()
        await self.process.wait()
        await self._watcher

        self._remove_output()

    def fail(self, error: EncodingProcessError) -> None:
        """Move to FAILED and reject `completed`; a live process is killed."""
        if self.failure is None:
            self.failure = error
        self._set_state(SessionState.FAILED)
        if not self.completed.done():
            self.completed.set_exception(error)
        if self.process.returncode is None:
            self.process.kill()

    def report_written(self) -> None:
        if self.total_frames > 0:
            self._report_progress(min(self.frames_written / self.total_frames, 0.99))

    def _report_progress(self, value: float) -> None:
        if value <= self.progress:
            return
        self.progress = value
        if self._on_progress is not None:
            self._on_progress(value)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.debug(f"[ENCODE] Session {self._state.value} -> {state.value}")
        self._state = state

    async def _drain_stdout(self) -> None:
        stream = self.process.stdout
        if stream is None:
            return
        while await stream.read(READ_CHUNK_SIZE):
            pass

    async def _drain_stderr(self) -> None:
        stream = self.process.stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self._stderr.append(chunk)
            self._stderr_size += len(chunk)
            while self._stderr_size > STDERR_TAIL_BYTES and len(self._stderr) > 1:
                self._stderr_size -= len(self._stderr.popleft())
            self._parse_progress(chunk.decode("utf-8", errors="replace"))

    def _parse_progress(self, text: str) -> None:
        # FFmpeg status lines look like: frame=  123 fps=30 ...
        matches = FRAME_PATTERN.findall(text)
        if matches and self.total_frames > 0:
            self._report_progress(min(int(matches[-1]) / self.total_frames, 0.99))

    async def _watch_exit(self) -> None:
        await asyncio.gather(self._stdout_task, self._stderr_task)
        returncode = await self.process.wait()

        if self.completed.done():
            return
        if returncode == 0:
            self._set_state(SessionState.COMPLETED)
            self._report_progress(1.0)
            self.completed.set_result(self.output_path)
            logger.debug(f"[ENCODE] Encoder finished: {self.output_path}")
            return

        stderr = self.stderr_output
        logger.error(f"[ENCODE] Encoder exited with code {returncode}: {stderr[-2000:]}")
        self.fail(
            EncodingProcessError(
                "FFmpeg encoding failed",
                exit_code=returncode,
                stderr=stderr,
                command=self.command,
            )
        )

    def _remove_output(self) -> None:
        if self._owned_dir is not None:
            shutil.rmtree(self._owned_dir, ignore_errors=True)
            return
        Path(self.output_path).unlink(missing_ok=True)


class VideoEncoderService:
    """Starts encoding sessions backed by FFmpeg (or an injected process factory)."""

    def __init__(
        self,
        ffmpeg_path: str | None = None,
        output_dir: str | None = None,
        process_factory: ProcessFactory | None = None,
        settings: Settings | None = None,
        filter_builder: FilterGraphBuilder | None = None,
    ):
        self._settings = settings
        self._ffmpeg_path = ffmpeg_path
        self._output_dir = output_dir
        self._process_factory = process_factory
        self._filter_builder = filter_builder or FilterGraphBuilder()

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    @property
    def ffmpeg_path(self) -> str:
        return self._ffmpeg_path or self.settings.ffmpeg_path

    async def is_available(self) -> bool:
        return await asyncio.to_thread(check_ffmpeg_available, self.ffmpeg_path)

    async def start_encoding(
        self,
        config: RenderConfig,
        output_file_name: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> EncodingSession:
        """
        Spawn the encoder for a resolved config.

        Args:
            config: Resolved render config
            output_file_name: File name inside the output directory
            on_progress: Called with encode progress in [0, 1]

        Returns:
            A session in STREAMING state

        Raises:
            EncoderNotFoundError: FFmpeg is not installed
        """
        settings = self.settings
        if self._process_factory is None and not await self.is_available():
            raise EncoderNotFoundError(self.ffmpeg_path)

        owned_dir = None
        output_dir = self._output_dir or settings.output_dir
        if not output_dir:
            output_dir = owned_dir = tempfile.mkdtemp(prefix="framecast_")
        Path(output_dir).mkdir(parents=True, exist_ok=True)

        output_path = str(Path(output_dir) / (output_file_name or settings.default_output_file_name))
        Path(output_path).unlink(missing_ok=True)

        command = build_encoder_command(
            config,
            output_path,
            ffmpeg_path=self.ffmpeg_path,
            settings=settings,
            filter_builder=self._filter_builder,
        )
        logger.debug(f"[ENCODE] Command: {' '.join(command)}")

        factory = self._process_factory or spawn_process
        try:
            process = await factory(command)
        except FileNotFoundError as e:
            if owned_dir is not None:
                shutil.rmtree(owned_dir, ignore_errors=True)
            raise EncoderNotFoundError(self.ffmpeg_path) from e

        timeline = config.timeline
        frame_bytes = timeline.frame_bytes if config.encoding.frame_format == "rawRgba" else None
        return EncodingSession(
            process=process,
            command=command,
            output_path=output_path,
            total_frames=timeline.duration_in_frames,
            frame_bytes=frame_bytes,
            owned_dir=owned_dir,
            on_progress=on_progress,
        )
