"""
Declarative composition model.

A Composition describes a video as a sequence of scenes plus timeline-level
declarations (sequences, audio tracks, sync anchors, embedded videos). The
timeline resolver reads these typed accessors directly; nothing here keeps
instantiated render state, so media declared inside a scene that is not
active at a given frame is still discoverable.

Rasterization:
- Composition.render() paints the active scene for a FrameContext onto a
  fresh RGBA canvas (Pillow).
- Scene painters may be plain functions (run in a worker thread) or
  coroutine functions (awaited directly).
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Union

from PIL import Image

from framecast.schemas.render import AudioTrackConfig, EncodingConfig, SequenceConfig

RGBA = tuple[int, int, int, int]


@dataclass(frozen=True)
class FrameContext:
    """Explicit per-frame state handed to painters instead of a global frame."""

    frame: int
    fps: int
    width: int
    height: int
    scene_name: str | None = None
    scene_frame: int = 0
    scene_duration: int = 0

    @property
    def seconds(self) -> float:
        return self.frame / self.fps

    @property
    def scene_progress(self) -> float:
        """0.0 at the first frame of the scene, 1.0 at its last frame."""
        if self.scene_duration <= 1:
            return 0.0
        return self.scene_frame / (self.scene_duration - 1)


Painter = Callable[[Image.Image, FrameContext], Union[None, Awaitable[None]]]


@dataclass
class SyncAnchorSpec:
    """Named timing reference declared in the composition.

    Offsets are applied when the anchor is collected, so the resolved
    SyncAnchorInfo carries final frame numbers.
    """

    anchor_id: str
    start_frame: int
    end_frame: int | None = None
    start_offset: int = 0
    end_offset: int = 0


@dataclass
class EmbeddedVideoSpec:
    """Video clip declared inside a scene.

    duration_in_frames=None means "use the media's own duration" and is
    filled in by probing the file when the timeline is resolved. A size of 0
    means full composition size.
    """

    video_path: str
    start_frame: int = 0
    duration_in_frames: int | None = None
    trim_start_seconds: float = 0.0
    width: int = 0
    height: int = 0
    position_x: float = 0.0
    position_y: float = 0.0
    include_audio: bool = True
    audio_volume: float = 1.0
    audio_fade_in_frames: int = 0
    audio_fade_out_frames: int = 0
    id: str | None = None


@dataclass
class Scene:
    """A time-gated block of the composition; frames in nested declarations are scene-local."""

    name: str
    duration_in_frames: int
    painter: Painter | None = None
    background: RGBA | None = None
    sequences: list[SequenceConfig] = field(default_factory=list)
    audio_tracks: list[AudioTrackConfig] = field(default_factory=list)
    sync_anchors: list[SyncAnchorSpec] = field(default_factory=list)
    embedded_videos: list[EmbeddedVideoSpec] = field(default_factory=list)


@dataclass
class Composition:
    """Root description of a video."""

    fps: int
    width: int
    height: int
    scenes: list[Scene] = field(default_factory=list)
    sequences: list[SequenceConfig] = field(default_factory=list)
    audio_tracks: list[AudioTrackConfig] = field(default_factory=list)
    sync_anchors: list[SyncAnchorSpec] = field(default_factory=list)
    encoding: EncodingConfig = field(default_factory=EncodingConfig)
    background: RGBA = (0, 0, 0, 255)
    duration_override: int | None = None

    @property
    def duration_in_frames(self) -> int:
        if self.duration_override is not None:
            return self.duration_override
        return sum(scene.duration_in_frames for scene in self.scenes)

    def scene_starts(self) -> list[tuple[int, Scene]]:
        """Absolute start frame of every scene, in timeline order."""
        starts: list[tuple[int, Scene]] = []
        cursor = 0
        for scene in self.scenes:
            starts.append((cursor, scene))
            cursor += scene.duration_in_frames
        return starts

    def scene_at(self, frame: int) -> tuple[int, Scene] | None:
        for start, scene in self.scene_starts():
            if start <= frame < start + scene.duration_in_frames:
                return start, scene
        return None

    def context_for(self, frame: int) -> FrameContext:
        located = self.scene_at(frame)
        if located is None:
            return FrameContext(frame=frame, fps=self.fps, width=self.width, height=self.height)
        start, scene = located
        return FrameContext(
            frame=frame,
            fps=self.fps,
            width=self.width,
            height=self.height,
            scene_name=scene.name,
            scene_frame=frame - start,
            scene_duration=scene.duration_in_frames,
        )

    async def render(self, context: FrameContext) -> Image.Image:
        """Rasterize the scene active at context.frame."""
        located = self.scene_at(context.frame)
        scene = located[1] if located else None
        background = scene.background if scene and scene.background else self.background
        image = Image.new("RGBA", (self.width, self.height), background)

        if scene is None or scene.painter is None:
            return image

        if inspect.iscoroutinefunction(scene.painter):
            await scene.painter(image, context)
        else:
            # Pillow drawing is CPU bound; keep the event loop free for the encoder writer
            result = await asyncio.to_thread(scene.painter, image, context)
            if inspect.isawaitable(result):
                await result
        return image
