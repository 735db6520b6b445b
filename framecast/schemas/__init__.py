from framecast.schemas.render import (
    AudioSourceConfig,
    AudioSyncConfig,
    AudioTrackConfig,
    EmbeddedVideoConfig,
    EncodingConfig,
    RenderConfig,
    SequenceConfig,
    SyncAnchorInfo,
    TimelineConfig,
    frames_to_ms,
    ms_to_frames,
)

__all__ = [
    "RenderConfig",
    "TimelineConfig",
    "SequenceConfig",
    "AudioSourceConfig",
    "AudioSyncConfig",
    "AudioTrackConfig",
    "EmbeddedVideoConfig",
    "EncodingConfig",
    "SyncAnchorInfo",
    "frames_to_ms",
    "ms_to_frames",
]
