"""Frame capture and streaming-encode engine for frame-indexed compositions."""

from framecast.composition import Composition, EmbeddedVideoSpec, FrameContext, Scene, SyncAnchorSpec
from framecast.render import RenderOrchestrator, TimelineResolver, VideoExporter

__version__ = "0.1.0"

__all__ = [
    "Composition",
    "Scene",
    "SyncAnchorSpec",
    "EmbeddedVideoSpec",
    "FrameContext",
    "TimelineResolver",
    "RenderOrchestrator",
    "VideoExporter",
]
