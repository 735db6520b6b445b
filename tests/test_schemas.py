"""Tests for render config schemas."""

import pytest
from pydantic import ValidationError

from framecast.schemas.render import (
    AudioSourceConfig,
    AudioTrackConfig,
    EmbeddedVideoConfig,
    EncodingConfig,
    RenderConfig,
    SyncAnchorInfo,
    TimelineConfig,
    frames_to_ms,
    ms_to_frames,
)


class TestTimelineConfig:
    """Tests for TimelineConfig."""

    def test_frame_range_and_bytes(self):
        timeline = TimelineConfig(fps=30, duration_in_frames=3, width=4, height=4)
        assert list(timeline.frame_range) == [0, 1, 2]
        assert timeline.frame_bytes == 64
        assert timeline.duration_ms == 100

    def test_rejects_non_positive_fps(self):
        with pytest.raises(ValidationError):
            TimelineConfig(fps=0, duration_in_frames=3, width=4, height=4)

    def test_rejects_negative_duration(self):
        with pytest.raises(ValidationError):
            TimelineConfig(fps=30, duration_in_frames=-1, width=4, height=4)

    def test_is_frozen(self):
        timeline = TimelineConfig(fps=30, duration_in_frames=3, width=4, height=4)
        with pytest.raises(ValidationError):
            timeline.fps = 60


class TestEncodingConfig:
    """Tests for EncodingConfig quality resolution."""

    @pytest.mark.parametrize(
        "quality,crf,preset",
        [("low", 30, "veryfast"), ("medium", 23, "medium"), ("high", 18, "slow"), ("lossless", 0, "veryslow")],
    )
    def test_quality_table(self, quality, crf, preset):
        encoding = EncodingConfig(quality=quality)
        assert encoding.crf == crf
        assert encoding.preset == preset

    def test_overrides_win(self):
        encoding = EncodingConfig(quality="low", crf_override=12, preset_override="fast")
        assert encoding.crf == 12
        assert encoding.preset == "fast"
        assert not encoding.is_lossless

    def test_defaults(self):
        encoding = EncodingConfig()
        assert encoding.quality == "medium"
        assert encoding.frame_format == "rawRgba"


class TestRenderConfigSerialization:
    """Tests for the camelCase wire format."""

    def test_parses_camel_case_json(self):
        config = RenderConfig.model_validate(
            {
                "timeline": {"fps": 30, "durationInFrames": 90, "width": 1920, "height": 1080},
                "audioTracks": [
                    {
                        "source": {"type": "asset", "uri": "assets/bgm.mp3"},
                        "startFrame": 0,
                        "durationInFrames": 90,
                        "trimEndFrame": 60,
                        "sync": {"syncStartWithAnchor": "intro", "behavior": "loop_to_match"},
                    }
                ],
                "encoding": {"quality": "high", "frameFormat": "png"},
            }
        )
        assert config.timeline.duration_in_frames == 90
        assert config.audio_tracks[0].trim_end_frame == 60
        assert config.audio_tracks[0].sync.sync_start_with_anchor == "intro"
        assert config.audio_tracks[0].sync.behavior == "loop_to_match"
        assert config.encoding.frame_format == "png"
        assert config.has_unresolved_sync

    def test_dumps_camel_case(self):
        config = RenderConfig(timeline=TimelineConfig(fps=24, duration_in_frames=48, width=640, height=360))
        data = config.to_json_dict()
        assert data["timeline"]["durationInFrames"] == 48
        assert data["audioTracks"] == []
        assert data["encoding"]["frameFormat"] == "rawRgba"

    def test_rejects_duplicate_embedded_video_ids(self):
        timeline = TimelineConfig(fps=30, duration_in_frames=10, width=4, height=4)
        videos = [EmbeddedVideoConfig(id="v", video_path="/a.mp4"), EmbeddedVideoConfig(id="v", video_path="/b.mp4")]
        with pytest.raises(ValidationError):
            RenderConfig(timeline=timeline, embedded_videos=videos)


class TestConversions:
    """Tests for frame/millisecond helpers."""

    def test_frames_to_ms(self):
        assert frames_to_ms(30, 30) == 1000
        assert frames_to_ms(1, 30) == 33
        assert frames_to_ms(1, 24) == 42

    def test_ms_to_frames(self):
        assert ms_to_frames(1000, 30) == 30
        assert ms_to_frames(2500, 24) == 60

    def test_track_trim_ms(self):
        track = AudioTrackConfig(source=AudioSourceConfig(uri="/a.mp3"), trim_start_frame=15, trim_end_frame=45)
        assert track.trim_start_ms(30) == 500
        assert track.trim_end_ms(30) == 1500
        assert AudioTrackConfig(source=AudioSourceConfig(uri="/a.mp3")).trim_end_ms(30) is None

    def test_anchor_duration(self):
        assert SyncAnchorInfo(anchor_id="a", start_frame=10, end_frame=40).duration_in_frames == 30
        assert SyncAnchorInfo(anchor_id="a", start_frame=10).duration_in_frames is None
