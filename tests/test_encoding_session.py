"""Tests for EncodingSession lifecycle against the fake encoder process."""

import asyncio
from pathlib import Path

import pytest

from framecast.exceptions import EncoderNotFoundError, EncodingProcessError, PipelineError
from framecast.render.encoding_session import SessionState, VideoEncoderService
from framecast.schemas.render import EncodingConfig, RenderConfig, TimelineConfig


def _frame(value: int, size: int = 64) -> bytes:
    return bytes([value]) * size


class TestSessionLifecycle:
    """Tests for start -> write -> close -> completed."""

    @pytest.mark.asyncio
    async def test_frames_reach_output_in_order(self, fake_encoder_service, tiny_config):
        session = await fake_encoder_service().start_encoding(tiny_config, "out.mp4")
        assert session.state is SessionState.STREAMING

        for i in range(3):
            await session.sink.write(_frame(i))
        await session.close()
        path = await asyncio.wait_for(session.completed, timeout=10)

        assert path == session.output_path
        assert Path(path).name == "out.mp4"
        assert Path(path).read_bytes() == _frame(0) + _frame(1) + _frame(2)
        assert session.state is SessionState.COMPLETED
        assert session.frames_written == 3
        assert session.progress == 1.0

    @pytest.mark.asyncio
    async def test_progress_callback(self, temp_output_dir, test_settings, tiny_config, fake_process_factory):
        reported: list[float] = []
        service = VideoEncoderService(
            output_dir=str(temp_output_dir),
            process_factory=fake_process_factory(),
            settings=test_settings,
        )
        session = await service.start_encoding(tiny_config, "out.mp4", on_progress=reported.append)
        for i in range(3):
            await session.sink.write(_frame(i))
        await session.close()
        await asyncio.wait_for(session.completed, timeout=10)

        assert reported == sorted(reported)
        assert reported[-1] == 1.0
        assert all(0.0 < p <= 1.0 for p in reported)

    @pytest.mark.asyncio
    async def test_nonzero_exit_rejects_completed(self, fake_encoder_service, tiny_config):
        session = await fake_encoder_service(FAKE_ENCODER_EXIT_CODE="3").start_encoding(tiny_config, "out.mp4")
        await session.sink.write(_frame(0))
        await session.close()

        with pytest.raises(EncodingProcessError) as exc_info:
            await asyncio.wait_for(session.completed, timeout=10)

        assert exc_info.value.exit_code == 3
        assert "simulated encoder failure" in exc_info.value.stderr
        assert "exit code: 3" in str(exc_info.value)
        assert session.state is SessionState.FAILED

    @pytest.mark.asyncio
    async def test_zero_frame_session(self, fake_encoder_service):
        config = RenderConfig(timeline=TimelineConfig(fps=30, duration_in_frames=0, width=4, height=4))
        session = await fake_encoder_service().start_encoding(config, "empty.mp4")
        await session.close()
        path = await asyncio.wait_for(session.completed, timeout=10)
        assert Path(path).exists()


class TestSinkContract:
    """Tests for FrameSink write validation."""

    @pytest.mark.asyncio
    async def test_write_after_close_raises(self, fake_encoder_service, tiny_config):
        session = await fake_encoder_service().start_encoding(tiny_config, "out.mp4")
        await session.close()

        with pytest.raises(PipelineError):
            await session.sink.write(_frame(0))
        await asyncio.wait_for(session.completed, timeout=10)

    @pytest.mark.asyncio
    async def test_wrong_raw_frame_size_raises(self, fake_encoder_service, tiny_config):
        session = await fake_encoder_service().start_encoding(tiny_config, "out.mp4")
        try:
            with pytest.raises(PipelineError):
                await session.sink.write(b"\x00" * 63)
        finally:
            await session.cancel()

    @pytest.mark.asyncio
    async def test_png_frames_are_not_size_checked(self, fake_encoder_service):
        config = RenderConfig(
            timeline=TimelineConfig(fps=30, duration_in_frames=1, width=4, height=4),
            encoding=EncodingConfig(frame_format="png"),
        )
        session = await fake_encoder_service().start_encoding(config, "out.mp4")
        assert session.frame_bytes is None
        await session.sink.write(b"\x89PNG fake")
        await session.close()
        await asyncio.wait_for(session.completed, timeout=10)

    @pytest.mark.asyncio
    async def test_write_to_failed_encoder_raises(self, fake_encoder_service, tiny_config):
        session = await fake_encoder_service(FAKE_ENCODER_FAIL_EARLY="1").start_encoding(tiny_config, "out.mp4")
        with pytest.raises(EncodingProcessError):
            await asyncio.wait_for(session.completed, timeout=10)
        with pytest.raises(EncodingProcessError):
            await session.sink.write(_frame(0))


class TestCancel:
    """Tests for EncodingSession.cancel()."""

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, fake_encoder_service, tiny_config):
        session = await fake_encoder_service().start_encoding(tiny_config, "out.mp4")
        await session.sink.write(_frame(0))

        await session.cancel()
        await session.cancel()

        assert session.state is SessionState.FAILED
        assert session.process.returncode is not None
        with pytest.raises(EncodingProcessError, match="cancelled"):
            await session.completed
        assert not Path(session.output_path).exists()

    @pytest.mark.asyncio
    async def test_cancel_after_close(self, fake_encoder_service, tiny_config):
        session = await fake_encoder_service(FAKE_ENCODER_LINGER="5").start_encoding(tiny_config, "out.mp4")
        await session.sink.write(_frame(0))
        await session.close()

        await asyncio.wait_for(session.cancel(), timeout=10)
        await session.cancel()

        assert session.state is SessionState.FAILED
        assert not Path(session.output_path).exists()

    @pytest.mark.asyncio
    async def test_cancel_after_completion_keeps_output(self, fake_encoder_service, tiny_config):
        session = await fake_encoder_service().start_encoding(tiny_config, "out.mp4")
        await session.close()
        path = await asyncio.wait_for(session.completed, timeout=10)

        await session.cancel()

        assert session.state is SessionState.COMPLETED
        assert Path(path).exists()

    @pytest.mark.asyncio
    async def test_cancel_removes_owned_temp_dir(self, test_settings, tiny_config, fake_process_factory):
        service = VideoEncoderService(process_factory=fake_process_factory(), settings=test_settings)
        session = await service.start_encoding(tiny_config, "out.mp4")
        output_dir = Path(session.output_path).parent
        assert output_dir.name.startswith("framecast_")

        await session.cancel()

        assert not output_dir.exists()


class TestVideoEncoderService:
    """Tests for encoder availability handling."""

    @pytest.mark.asyncio
    async def test_missing_ffmpeg_raises(self, temp_output_dir, tiny_config):
        service = VideoEncoderService(ffmpeg_path="/nonexistent/ffmpeg-binary", output_dir=str(temp_output_dir))
        with pytest.raises(EncoderNotFoundError) as exc_info:
            await service.start_encoding(tiny_config, "out.mp4")
        assert "brew install ffmpeg" in str(exc_info.value)
        assert exc_info.value.code == "ENCODER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_factory_file_not_found_maps_to_encoder_not_found(self, temp_output_dir, tiny_config):
        async def factory(command):
            raise FileNotFoundError(command[0])

        service = VideoEncoderService(output_dir=str(temp_output_dir), process_factory=factory)
        with pytest.raises(EncoderNotFoundError):
            await service.start_encoding(tiny_config, "out.mp4")

    @pytest.mark.asyncio
    @pytest.mark.requires_ffmpeg
    async def test_real_ffmpeg_encode(self, temp_output_dir, tiny_config):
        service = VideoEncoderService(output_dir=str(temp_output_dir))
        session = await service.start_encoding(tiny_config, "real.mp4")
        for i in range(3):
            await session.sink.write(_frame(i * 40))
        await session.close()
        path = await asyncio.wait_for(session.completed, timeout=60)
        assert Path(path).stat().st_size > 0
