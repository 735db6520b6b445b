"""Resolve audio track timing against named sync anchors.

Resolution is a soft operation: a track referencing an anchor that does not
exist keeps its original start/duration, and no exception is raised. Every
resolved track comes back with `sync` cleared so it is never re-evaluated.
"""

import logging
from collections.abc import Iterable, Mapping

from framecast.schemas.render import AudioTrackConfig, SyncAnchorInfo

logger = logging.getLogger(__name__)


def resolve_track(
    track: AudioTrackConfig,
    anchors: Mapping[str, SyncAnchorInfo],
) -> AudioTrackConfig:
    """Resolve one track's start/duration from its sync anchors.

    Args:
        track: Audio track, possibly carrying a sync config
        anchors: Collected anchors keyed by anchor id

    Returns:
        The track itself when it has no sync config, otherwise a copy with
        resolved start_frame / duration_in_frames / loop and sync=None.
    """
    sync = track.sync
    if sync is None:
        return track
    if not sync.has_sync_config:
        return track.model_copy(update={"sync": None})

    start_frame = track.start_frame
    duration = track.duration_in_frames
    loop = track.loop

    if sync.sync_start_with_anchor is not None:
        anchor = anchors.get(sync.sync_start_with_anchor)
        if anchor is not None:
            start_frame = anchor.start_frame + sync.start_offset
        else:
            logger.warning(
                f"[SYNC] Unknown start anchor '{sync.sync_start_with_anchor}' "
                f"for {track.source.uri}; keeping startFrame={start_frame}"
            )

    if sync.sync_end_with_anchor is not None:
        anchor = anchors.get(sync.sync_end_with_anchor)
        if anchor is None:
            logger.warning(
                f"[SYNC] Unknown end anchor '{sync.sync_end_with_anchor}' "
                f"for {track.source.uri}; keeping durationInFrames={duration}"
            )
        elif anchor.end_frame is None:
            logger.warning(
                f"[SYNC] Anchor '{anchor.anchor_id}' has no end frame; "
                f"keeping durationInFrames={duration}"
            )
        else:
            end_frame = anchor.end_frame + sync.end_offset
            duration = end_frame - start_frame
            if sync.behavior == "loop_to_match":
                loop = True

    logger.debug(
        f"[SYNC] {track.source.uri}: start={sync.sync_start_with_anchor or 'none'}, "
        f"end={sync.sync_end_with_anchor or 'none'} -> "
        f"startFrame={start_frame}, durationInFrames={duration}, loop={loop}"
    )

    return track.model_copy(
        update={
            "start_frame": start_frame,
            "duration_in_frames": duration,
            "loop": loop,
            "sync": None,
        }
    )


def resolve_tracks(
    tracks: Iterable[AudioTrackConfig],
    anchors: Mapping[str, SyncAnchorInfo],
) -> list[AudioTrackConfig]:
    """Resolve every track; order is preserved."""
    return [resolve_track(track, anchors) for track in tracks]
