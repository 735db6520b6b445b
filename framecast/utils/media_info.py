"""Media file information utilities using FFprobe."""

import json
import subprocess
from dataclasses import dataclass

from framecast.config import get_settings


def _get_settings():
    """Get settings lazily to avoid import issues in tests."""
    return get_settings()


@dataclass
class MediaInfo:
    """Media file information."""

    duration_ms: int | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    has_video: bool = False
    has_audio: bool = False


def _run_ffprobe(file_path: str, *args, ffprobe_path: str | None = None) -> dict:
    """Run ffprobe and return parsed JSON."""
    cmd = [
        ffprobe_path or _get_settings().ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}") from e


def _parse_frame_rate(raw: str) -> float | None:
    if "/" not in raw:
        try:
            return float(raw)
        except ValueError:
            return None
    num, den = raw.split("/", 1)
    if int(den) <= 0:
        return None
    return int(num) / int(den)


def get_media_info(file_path: str, ffprobe_path: str | None = None) -> MediaInfo:
    """
    Get complete media file information.

    Args:
        file_path: Path to media file
        ffprobe_path: Override for the configured ffprobe executable

    Returns:
        MediaInfo for the first video and first audio stream

    Raises:
        RuntimeError: If ffprobe fails
    """
    data = _run_ffprobe(file_path, "-show_format", "-show_streams", ffprobe_path=ffprobe_path)
    info = MediaInfo()

    format_info = data.get("format", {})
    if "duration" in format_info:
        info.duration_ms = int(float(format_info["duration"]) * 1000)

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")

        if codec_type == "video" and not info.has_video:
            info.has_video = True
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.video_codec = stream.get("codec_name")
            info.fps = _parse_frame_rate(stream.get("r_frame_rate", "0/1"))

        elif codec_type == "audio" and not info.has_audio:
            info.has_audio = True
            info.audio_codec = stream.get("codec_name")

    return info


def get_media_duration(file_path: str, ffprobe_path: str | None = None) -> int:
    """
    Get media file duration in milliseconds.

    Raises:
        RuntimeError: If ffprobe fails or duration not found
    """
    info = get_media_info(file_path, ffprobe_path=ffprobe_path)
    if info.duration_ms is None:
        raise RuntimeError(f"Duration not found in: {file_path}")
    return info.duration_ms


def check_ffmpeg_available(ffmpeg_path: str | None = None) -> bool:
    """Return True if `ffmpeg -version` runs successfully."""
    try:
        result = subprocess.run(
            [ffmpeg_path or _get_settings().ffmpeg_path, "-version"],
            capture_output=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0
