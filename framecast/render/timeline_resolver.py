"""
Build the immutable RenderConfig for one render invocation.

The resolver walks the composition's declarations once:
1. Collect sync anchors (offsets applied, ids must be unique)
2. Flatten sequences and audio tracks to absolute frames
3. Recover embedded videos from scene declarations, active or not
4. Resolve audio sync against the collected anchors
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from pydantic import ValidationError

from framecast.composition import Composition, SyncAnchorSpec
from framecast.exceptions import ConfigurationError
from framecast.render.sync_resolver import resolve_tracks
from framecast.schemas.render import (
    AudioTrackConfig,
    EmbeddedVideoConfig,
    EncodingConfig,
    RenderConfig,
    SequenceConfig,
    SyncAnchorInfo,
    TimelineConfig,
    ms_to_frames,
)
from framecast.utils.media_info import get_media_duration

logger = logging.getLogger(__name__)

DurationProbe = Callable[[str], int]


@dataclass(frozen=True)
class ResolvedTimeline:
    """Resolved render config plus the read-only anchor map it was resolved against."""

    config: RenderConfig
    anchors: Mapping[str, SyncAnchorInfo]


class TimelineResolver:
    """Extracts a RenderConfig and anchor map from a Composition."""

    def __init__(self, duration_probe: DurationProbe | None = None):
        # Returns media duration in milliseconds
        self._duration_probe = duration_probe or get_media_duration

    def resolve(
        self,
        composition: Composition | None,
        encoding: EncodingConfig | None = None,
    ) -> ResolvedTimeline:
        """
        Resolve a composition into a render config.

        Args:
            composition: Root composition description
            encoding: Overrides the composition's own encoding settings

        Returns:
            ResolvedTimeline with sync-resolved audio tracks

        Raises:
            ConfigurationError: No root composition, or invalid timeline values
        """
        if composition is None:
            raise ConfigurationError(
                "No root composition found. Pass a Composition to render.",
                field_name="composition",
            )
        if not isinstance(composition, Composition):
            raise ConfigurationError(
                f"Expected a Composition, got {type(composition).__name__}",
                field_name="composition",
                invalid_value=type(composition).__name__,
            )

        try:
            timeline = TimelineConfig(
                fps=composition.fps,
                duration_in_frames=composition.duration_in_frames,
                width=composition.width,
                height=composition.height,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid timeline: {e}", field_name="timeline") from e

        anchors = self.collect_anchors(composition)
        sequences = self._collect_sequences(composition)
        audio_tracks = self._collect_audio_tracks(composition)
        embedded_videos = self.extract_embedded_videos(composition)

        if anchors:
            logger.debug(f"[TIMELINE] Collected {len(anchors)} sync anchors: {', '.join(anchors)}")
        resolved_tracks = resolve_tracks(audio_tracks, anchors)

        try:
            config = RenderConfig(
                timeline=timeline,
                sequences=sequences,
                audio_tracks=resolved_tracks,
                embedded_videos=embedded_videos,
                encoding=encoding or composition.encoding,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid render config: {e}") from e

        logger.debug(
            f"[TIMELINE] Final RenderConfig: {timeline.width}x{timeline.height} @ {timeline.fps}fps, "
            f"frames={timeline.duration_in_frames}, sequences={len(sequences)}, "
            f"audioTracks={len(resolved_tracks)}, embeddedVideos={len(embedded_videos)}"
        )
        for i, video in enumerate(embedded_videos):
            logger.debug(
                f"[TIMELINE]   [{i}] {video.video_path} startFrame={video.start_frame}, "
                f"duration={video.duration_in_frames}, includeAudio={video.include_audio}"
            )

        return ResolvedTimeline(config=config, anchors=MappingProxyType(dict(anchors)))

    def collect_anchors(self, composition: Composition) -> dict[str, SyncAnchorInfo]:
        """Collect every declared anchor with offsets applied; a repeated id replaces the earlier one."""
        anchors: dict[str, SyncAnchorInfo] = {}

        def _add(spec: SyncAnchorSpec, base: int) -> None:
            if spec.anchor_id in anchors:
                logger.warning(
                    f"[TIMELINE] Sync anchor '{spec.anchor_id}' declared more than once; "
                    f"using the last declaration"
                )
            end_frame = None
            if spec.end_frame is not None:
                end_frame = base + spec.end_frame + spec.end_offset
            anchors[spec.anchor_id] = SyncAnchorInfo(
                anchor_id=spec.anchor_id,
                start_frame=base + spec.start_frame + spec.start_offset,
                end_frame=end_frame,
            )

        for spec in composition.sync_anchors:
            _add(spec, 0)
        for scene_start, scene in composition.scene_starts():
            for spec in scene.sync_anchors:
                _add(spec, scene_start)
        return anchors

    def extract_embedded_videos(self, composition: Composition) -> list[EmbeddedVideoConfig]:
        """Recover embedded videos from scene declarations.

        Works from the static declaration, so videos in scenes that are not
        active at the current frame are included.
        """
        videos: list[EmbeddedVideoConfig] = []
        fps = composition.fps

        for scene_start, scene in composition.scene_starts():
            for spec in scene.embedded_videos:
                remaining = max(scene.duration_in_frames - spec.start_frame, 0)
                duration = spec.duration_in_frames
                if duration is None:
                    duration = self._probe_duration_frames(spec.video_path, fps, spec.trim_start_seconds)
                    duration = remaining if duration is None else min(duration, remaining)

                videos.append(
                    EmbeddedVideoConfig(
                        id=spec.id or f"video_{len(videos)}",
                        video_path=spec.video_path,
                        start_frame=scene_start + spec.start_frame,
                        duration_in_frames=duration,
                        trim_start_seconds=spec.trim_start_seconds,
                        width=spec.width or composition.width,
                        height=spec.height or composition.height,
                        position_x=spec.position_x,
                        position_y=spec.position_y,
                        include_audio=spec.include_audio,
                        audio_volume=spec.audio_volume,
                        audio_fade_in_frames=spec.audio_fade_in_frames,
                        audio_fade_out_frames=spec.audio_fade_out_frames,
                    )
                )

        logger.debug(f"[TIMELINE] Extracted {len(videos)} embedded videos from {len(composition.scenes)} scenes")
        return videos

    def _probe_duration_frames(self, video_path: str, fps: int, trim_start_seconds: float) -> int | None:
        try:
            duration_ms = self._duration_probe(video_path)
        except (RuntimeError, OSError) as e:
            logger.warning(f"[TIMELINE] Could not probe {video_path}: {e}; using scene length")
            return None
        usable_ms = max(duration_ms - int(trim_start_seconds * 1000), 0)
        return ms_to_frames(usable_ms, fps)

    @staticmethod
    def _collect_sequences(composition: Composition) -> list[SequenceConfig]:
        sequences = list(composition.sequences)
        for scene_start, scene in composition.scene_starts():
            for seq in scene.sequences:
                sequences.append(seq.model_copy(update={"start_frame": scene_start + seq.start_frame}))
        return sequences

    @staticmethod
    def _collect_audio_tracks(composition: Composition) -> list[AudioTrackConfig]:
        tracks = list(composition.audio_tracks)
        for scene_start, scene in composition.scene_starts():
            for track in scene.audio_tracks:
                tracks.append(track.model_copy(update={"start_frame": scene_start + track.start_frame}))
        return tracks
