"""Render configuration schemas.

A RenderConfig is an immutable snapshot built once per render invocation.
Field names serialize in camelCase so configs round-trip with the JSON
render-config format; snake_case names are accepted on input too.
"""

import math
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


AudioSourceType = Literal["asset", "file", "url"]
SyncBehavior = Literal["stop_when_ends", "loop_to_match"]
RenderQuality = Literal["low", "medium", "high", "lossless"]
FrameFormat = Literal["rawRgba", "png"]

# CRF per quality level (libx264 scale: 0 lossless .. 51 worst)
QUALITY_CRF: dict[str, int] = {
    "low": 30,
    "medium": 23,
    "high": 18,
    "lossless": 0,
}

QUALITY_PRESET: dict[str, str] = {
    "low": "veryfast",
    "medium": "medium",
    "high": "slow",
    "lossless": "veryslow",
}


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def frames_to_ms(frames: int, fps: int) -> int:
    """Convert a frame count to milliseconds at the given frame rate."""
    return _round_half_away(frames * 1000 / fps)


def ms_to_frames(ms: int, fps: int) -> int:
    """Convert milliseconds to a frame count at the given frame rate."""
    return _round_half_away(ms * fps / 1000)


class RenderModel(BaseModel):
    """Base for all render config models: frozen, camelCase on the wire."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# =============================================================================
# Timeline
# =============================================================================


class TimelineConfig(RenderModel):
    fps: int = Field(gt=0)
    duration_in_frames: int = Field(ge=0)
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    @property
    def frame_range(self) -> range:
        """Valid frame indices: [0, duration_in_frames)."""
        return range(0, self.duration_in_frames)

    @property
    def frame_bytes(self) -> int:
        """Size of one raw RGBA frame."""
        return self.width * self.height * 4

    @property
    def duration_ms(self) -> int:
        return frames_to_ms(self.duration_in_frames, self.fps)


class SequenceConfig(RenderModel):
    start_frame: int = 0
    duration_in_frames: int = 0
    name: str | None = None
    spatial_props: dict[str, Any] = Field(default_factory=dict)

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.duration_in_frames


# =============================================================================
# Audio
# =============================================================================


class AudioSourceConfig(RenderModel):
    type: AudioSourceType = "file"
    uri: str


class AudioSyncConfig(RenderModel):
    sync_start_with_anchor: str | None = None
    sync_end_with_anchor: str | None = None
    start_offset: int = 0
    end_offset: int = 0
    behavior: SyncBehavior = "stop_when_ends"

    @property
    def has_sync_config(self) -> bool:
        return self.sync_start_with_anchor is not None or self.sync_end_with_anchor is not None


class AudioTrackConfig(RenderModel):
    source: AudioSourceConfig
    start_frame: int = 0
    duration_in_frames: int = 0
    trim_start_frame: int = 0
    trim_end_frame: int | None = None
    volume: float = 1.0
    fade_in_frames: int = 0
    fade_out_frames: int = 0
    loop: bool = False
    sync: AudioSyncConfig | None = None

    def trim_start_ms(self, fps: int) -> int:
        return frames_to_ms(self.trim_start_frame, fps)

    def trim_end_ms(self, fps: int) -> int | None:
        if self.trim_end_frame is None:
            return None
        return frames_to_ms(self.trim_end_frame, fps)


# =============================================================================
# Embedded media
# =============================================================================


class EmbeddedVideoConfig(RenderModel):
    id: str
    video_path: str
    start_frame: int = 0
    duration_in_frames: int = 0
    trim_start_seconds: float = 0.0
    width: int = 0
    height: int = 0
    position_x: float = 0.0
    position_y: float = 0.0
    include_audio: bool = True
    audio_volume: float = 1.0
    audio_fade_in_frames: int = 0
    audio_fade_out_frames: int = 0

    @property
    def end_frame(self) -> int:
        return self.start_frame + self.duration_in_frames

    def start_seconds(self, fps: int) -> float:
        return self.start_frame / fps

    def duration_seconds(self, fps: int) -> float:
        return self.duration_in_frames / fps


# =============================================================================
# Encoding
# =============================================================================


class EncodingConfig(RenderModel):
    quality: RenderQuality = "medium"
    crf_override: int | None = Field(default=None, ge=0, le=63)
    preset_override: str | None = None
    frame_format: FrameFormat = "rawRgba"

    @property
    def crf(self) -> int:
        if self.crf_override is not None:
            return self.crf_override
        return QUALITY_CRF[self.quality]

    @property
    def preset(self) -> str:
        return self.preset_override or QUALITY_PRESET[self.quality]

    @property
    def is_lossless(self) -> bool:
        return self.crf == 0


# =============================================================================
# Sync anchors
# =============================================================================


class SyncAnchorInfo(RenderModel):
    """Resolved timing of a named anchor (offsets already applied)."""

    anchor_id: str
    start_frame: int
    end_frame: int | None = None

    @property
    def duration_in_frames(self) -> int | None:
        if self.end_frame is None:
            return None
        return self.end_frame - self.start_frame


# =============================================================================
# Render config
# =============================================================================


class RenderConfig(RenderModel):
    timeline: TimelineConfig
    sequences: list[SequenceConfig] = Field(default_factory=list)
    audio_tracks: list[AudioTrackConfig] = Field(default_factory=list)
    embedded_videos: list[EmbeddedVideoConfig] = Field(default_factory=list)
    encoding: EncodingConfig = Field(default_factory=EncodingConfig)

    @model_validator(mode="after")
    def _check_unique_video_ids(self) -> "RenderConfig":
        ids = [v.id for v in self.embedded_videos]
        if len(ids) != len(set(ids)):
            raise ValueError("embedded video ids must be unique")
        return self

    @property
    def has_unresolved_sync(self) -> bool:
        return any(t.sync is not None for t in self.audio_tracks)
