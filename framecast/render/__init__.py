from framecast.render.command_builder import FilterGraph, FilterGraphBuilder, build_encoder_command
from framecast.render.encoding_session import (
    EncodingSession,
    FrameSink,
    SessionState,
    VideoEncoderService,
)
from framecast.render.exporter import VideoExporter
from framecast.render.frame_pipeline import FramePipeline
from framecast.render.frame_ready import FrameReadyNotifier
from framecast.render.frame_sequencer import (
    FrameSequencer,
    PillowSurface,
    RenderSurface,
    calculate_pixel_ratio,
)
from framecast.render.orchestrator import RenderContext, RenderOrchestrator, RenderStats
from framecast.render.sync_resolver import resolve_track, resolve_tracks
from framecast.render.timeline_resolver import ResolvedTimeline, TimelineResolver

__all__ = [
    "TimelineResolver",
    "ResolvedTimeline",
    "resolve_track",
    "resolve_tracks",
    "FrameSequencer",
    "RenderSurface",
    "PillowSurface",
    "calculate_pixel_ratio",
    "FramePipeline",
    "FrameReadyNotifier",
    "EncodingSession",
    "FrameSink",
    "SessionState",
    "VideoEncoderService",
    "FilterGraph",
    "FilterGraphBuilder",
    "build_encoder_command",
    "RenderOrchestrator",
    "RenderContext",
    "RenderStats",
    "VideoExporter",
]
