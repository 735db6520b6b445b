"""
Pytest fixtures for framecast tests.

Encoder tests run tests/fake_encoder.py with the current interpreter through
VideoEncoderService's process_factory hook, so they need no FFmpeg install.

CI/CD Note:
Tests that need a real FFmpeg binary are marked with @pytest.mark.requires_ffmpeg
Run `pytest -m "not requires_ffmpeg"` to skip these tests in CI.
"""

import asyncio
import os
import shutil
import sys
import tempfile
from pathlib import Path

import pytest

from framecast.composition import Composition, Scene
from framecast.config import Settings, get_settings
from framecast.render.encoding_session import VideoEncoderService
from framecast.schemas.render import RenderConfig, TimelineConfig

FAKE_ENCODER = Path(__file__).parent / "fake_encoder.py"


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring an FFmpeg binary on PATH (skipped in CI)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip requires_ffmpeg tests when no FFmpeg binary is on PATH."""
    if shutil.which("ffmpeg") is not None:
        return
    skip = pytest.mark.skip(reason="FFmpeg not available on PATH")
    for item in items:
        if "requires_ffmpeg" in item.keywords:
            item.add_marker(skip)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached; make env changes in one test invisible to the next."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="framecast_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(ffmpeg_path="ffmpeg", log_frame_timings=True)


def make_fake_process_factory(**env_overrides: str):
    """Process factory running fake_encoder.py with the FFmpeg arguments."""
    env = {**os.environ, **env_overrides}

    async def factory(command: list[str]) -> asyncio.subprocess.Process:
        return await asyncio.create_subprocess_exec(
            sys.executable,
            str(FAKE_ENCODER),
            *command[1:],
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )

    return factory


@pytest.fixture
def fake_process_factory():
    return make_fake_process_factory


@pytest.fixture
def fake_encoder_service(temp_output_dir, test_settings):
    """Build a VideoEncoderService backed by the fake encoder.

    Usage: fake_encoder_service(FAKE_ENCODER_EXIT_CODE="3")
    """

    def _make(**env_overrides: str) -> VideoEncoderService:
        return VideoEncoderService(
            output_dir=str(temp_output_dir),
            process_factory=make_fake_process_factory(**env_overrides),
            settings=test_settings,
        )

    return _make


@pytest.fixture
def tiny_config() -> RenderConfig:
    """30fps, 3 frames, 4x4 pixels: 64 bytes per raw frame."""
    return RenderConfig(timeline=TimelineConfig(fps=30, duration_in_frames=3, width=4, height=4))


@pytest.fixture
def tiny_composition() -> Composition:
    """Three frames, each filled with a distinct red value (frame * 10)."""

    def paint(image, ctx):
        image.paste((ctx.frame * 10, 0, 0, 255), (0, 0, image.width, image.height))

    return Composition(
        fps=30,
        width=4,
        height=4,
        scenes=[Scene(name="only", duration_in_frames=3, painter=paint)],
    )


class RecordingSink:
    def __init__(self):
        self.writes: list[bytes] = []
        self.closed = False

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise AssertionError("write after close")
        self.writes.append(bytes(data))


class RecordingSession:
    """In-memory stand-in for EncodingSession."""

    def __init__(self, output_path: str, fail_on_write: int | None = None, exit_error: Exception | None = None):
        self.output_path = output_path
        self.sink = RecordingSink()
        self.completed = asyncio.get_running_loop().create_future()
        self.cancel_calls = 0
        self.close_calls = 0
        self._fail_on_write = fail_on_write
        self._exit_error = exit_error
        if fail_on_write is not None:
            original_write = self.sink.write

            async def failing_write(data: bytes) -> None:
                if len(self.sink.writes) == self._fail_on_write:
                    raise OSError("broken encoder pipe")
                await original_write(data)

            self.sink.write = failing_write

    async def close(self) -> None:
        self.close_calls += 1
        self.sink.closed = True
        if not self.completed.done():
            if self._exit_error is not None:
                self.completed.set_exception(self._exit_error)
            else:
                self.completed.set_result(self.output_path)

    async def cancel(self) -> None:
        self.cancel_calls += 1
        self.sink.closed = True
        if not self.completed.done():
            self.completed.cancel()


class RecordingEncoderService:
    """Encoder service handing out RecordingSessions."""

    def __init__(self, **session_kwargs):
        self.session_kwargs = session_kwargs
        self.sessions: list[RecordingSession] = []

    async def start_encoding(self, config, output_file_name=None, on_progress=None):
        session = RecordingSession(f"/tmp/{output_file_name or 'output.mp4'}", **self.session_kwargs)
        self.sessions.append(session)
        return session


@pytest.fixture
def recording_encoder():
    return RecordingEncoderService
