from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FRAMECAST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Output location. Empty string = fresh temp directory per encoding session
    output_dir: str = ""
    default_output_file_name: str = "output.mp4"

    # Frame pipeline
    # 1080p RGBA is ~8 MB per frame, so the default buffer holds ~40 MB
    pipeline_buffer_size: int = 5
    frame_ready_timeout_s: float = 5.0

    # Encoder settings
    video_codec: str = "libx264"
    pixel_format: str = "yuv420p"
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"
    # 0 = let FFmpeg decide
    encoder_threads: int = 0

    # Capture
    # Raise CaptureError instead of warning when surface and target aspect ratios differ
    strict_aspect_ratio: bool = False
    log_frame_timings: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
