"""Custom exceptions for framecast.

Every render failure surfaces as one of these kinds. The render call either
returns a valid output path or raises a FramecastError subclass; there is no
partial-success result and no automatic retry.
"""

from typing import Any


class FramecastError(Exception):
    """Base exception for all framecast errors.

    Provides a machine-readable code alongside the message so callers can
    log or serialize failures without string matching.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for logs or API responses."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(FramecastError):
    """Missing or malformed root composition / render configuration."""

    code = "CONFIGURATION_ERROR"
    message = "Invalid render configuration"

    def __init__(
        self,
        message: str | None = None,
        *,
        field_name: str | None = None,
        invalid_value: Any = None,
    ):
        details: dict[str, Any] = {}
        if field_name is not None:
            details["field_name"] = field_name
        if invalid_value is not None:
            details["invalid_value"] = invalid_value
        self.field_name = field_name
        self.invalid_value = invalid_value
        super().__init__(message, details=details)


# =============================================================================
# Capture Errors
# =============================================================================


class CaptureError(FramecastError):
    """Render surface is detached, unsized or otherwise not capturable."""

    code = "CAPTURE_ERROR"
    message = "Frame capture failed"

    def __init__(self, message: str | None = None, *, frame: int | None = None):
        self.frame = frame
        details = {"frame": frame} if frame is not None else None
        if message and frame is not None:
            message = f"{message} (frame {frame})"
        super().__init__(message, details=details)


# =============================================================================
# Pipeline Errors
# =============================================================================


class PipelineError(FramecastError):
    """Frame pipeline or sink used incorrectly (e.g. add_frame after close)."""

    code = "PIPELINE_ERROR"
    message = "Frame pipeline misuse"


# =============================================================================
# Encoding Errors
# =============================================================================


class EncodingProcessError(FramecastError):
    """External encoder exited with a nonzero code or failed on I/O."""

    code = "ENCODING_PROCESS_ERROR"
    message = "Encoding process failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        exit_code: int | None = None,
        stderr: str | None = None,
        command: list[str] | None = None,
    ):
        self.exit_code = exit_code
        self.stderr = stderr
        self.command = command
        details: dict[str, Any] = {}
        if exit_code is not None:
            details["exit_code"] = exit_code
        if stderr:
            # Keep the tail only, FFmpeg banners are long
            details["stderr"] = stderr[-2000:]
        if command:
            details["command"] = " ".join(command)
        super().__init__(message, details=details)

    def __str__(self) -> str:
        text = self.message
        if self.exit_code is not None:
            text += f" (exit code: {self.exit_code})"
        return text


class EncoderNotFoundError(EncodingProcessError):
    """FFmpeg executable is not installed or not on PATH."""

    code = "ENCODER_NOT_FOUND"
    message = "FFmpeg executable not found"

    INSTALL_HINT = (
        "FFmpeg must be installed and available in your system PATH "
        "(or set FRAMECAST_FFMPEG_PATH).\n"
        "  Linux:   sudo apt install ffmpeg\n"
        "  macOS:   brew install ffmpeg\n"
        "  Windows: download from https://ffmpeg.org/download.html and add to PATH"
    )

    def __init__(self, ffmpeg_path: str):
        self.ffmpeg_path = ffmpeg_path
        super().__init__(f"FFmpeg executable not found: {ffmpeg_path}\n\n{self.INSTALL_HINT}")


# =============================================================================
# Warnings
# =============================================================================


class TimeoutWarning(RuntimeWarning):
    """Side-channel frame-ready wait timed out; the frame was captured anyway."""
