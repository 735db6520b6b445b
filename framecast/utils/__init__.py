from framecast.utils.media_info import (
    MediaInfo,
    check_ffmpeg_available,
    get_media_duration,
    get_media_info,
)

__all__ = [
    "MediaInfo",
    "get_media_info",
    "get_media_duration",
    "check_ffmpeg_available",
]
