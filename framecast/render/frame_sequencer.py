"""
Frame capture at exact output dimensions.

A render surface rasterizes the composition for one frame and hands back a
Pillow image at the requested pixel ratio. The sequencer turns that image
into the bytes the encoder expects:
- rawRgba: interleaved RGBA, row-major, top-to-bottom, width*height*4 bytes
- png: one encoded PNG image per frame
"""

import asyncio
import io
import logging
from typing import Protocol, runtime_checkable

from PIL import Image

from framecast.composition import Composition
from framecast.exceptions import CaptureError
from framecast.schemas.render import FrameFormat, TimelineConfig

logger = logging.getLogger(__name__)

# Width/height ratios further apart than this count as an aspect mismatch
ASPECT_RATIO_TOLERANCE = 0.01


@runtime_checkable
class RenderSurface(Protocol):
    """Capture boundary for a rasterizable scene."""

    @property
    def size(self) -> tuple[int, int] | None:
        """Logical surface size, or None when the surface is detached."""
        ...

    async def rasterize(self, frame: int) -> None:
        """Evaluate scene state for `frame` and complete its rasterization pass."""
        ...

    async def to_image(self, pixel_ratio: float) -> Image.Image:
        """Return the last rasterized frame scaled by pixel_ratio."""
        ...


class PillowSurface:
    """RenderSurface backed by Composition.render().

    The logical size defaults to the composition size. A different logical
    size simulates a surface laid out smaller or larger than the output,
    which is what the pixel ratio compensates for.
    """

    def __init__(
        self,
        composition: Composition,
        logical_width: int | None = None,
        logical_height: int | None = None,
    ):
        self.composition = composition
        self._logical_size = (
            logical_width if logical_width is not None else composition.width,
            logical_height if logical_height is not None else composition.height,
        )
        self._image: Image.Image | None = None
        self._frame: int | None = None
        self._detached = False

    @property
    def size(self) -> tuple[int, int] | None:
        if self._detached:
            return None
        return self._logical_size

    @property
    def current_frame(self) -> int | None:
        return self._frame

    def detach(self) -> None:
        self._detached = True
        self._image = None

    async def rasterize(self, frame: int) -> None:
        if self._detached:
            raise CaptureError("Render surface is detached", frame=frame)
        context = self.composition.context_for(frame)
        self._image = await self.composition.render(context)
        self._frame = frame

    async def to_image(self, pixel_ratio: float) -> Image.Image:
        if self._detached or self._image is None:
            raise CaptureError("Render surface has no rasterized frame", frame=self._frame)
        width = round(self._logical_size[0] * pixel_ratio)
        height = round(self._logical_size[1] * pixel_ratio)
        if self._image.size == (width, height):
            return self._image
        return await asyncio.to_thread(self._image.resize, (width, height), Image.Resampling.BILINEAR)


def calculate_pixel_ratio(
    surface: RenderSurface,
    timeline: TimelineConfig,
    strict: bool = False,
) -> float:
    """
    Compute the capture pixel ratio once per render.

    Args:
        surface: Surface whose logical size is measured
        timeline: Target output dimensions
        strict: Raise instead of warning on an aspect-ratio mismatch

    Returns:
        target width / surface width, or 1.0 when the surface has no size

    Raises:
        CaptureError: strict is set and the aspect ratios differ
    """
    size = surface.size
    if size is None or size[0] <= 0 or size[1] <= 0:
        logger.warning("[CAPTURE] Could not measure render surface, using pixelRatio=1.0")
        return 1.0

    surface_width, surface_height = size
    width_ratio = timeline.width / surface_width
    height_ratio = timeline.height / surface_height

    if abs(width_ratio - height_ratio) > ASPECT_RATIO_TOLERANCE:
        message = (
            f"Aspect ratio mismatch: surface {surface_width}x{surface_height}, "
            f"target {timeline.width}x{timeline.height} "
            f"(widthRatio={width_ratio:.3f}, heightRatio={height_ratio:.3f})"
        )
        if strict:
            raise CaptureError(message)
        logger.warning(f"[CAPTURE] {message}; frames will be stretched to the target size")

    logger.debug(
        f"[CAPTURE] Surface {surface_width}x{surface_height} -> "
        f"target {timeline.width}x{timeline.height}, pixelRatio={width_ratio:.3f}"
    )
    return width_ratio


def _encode_image(image: Image.Image, width: int, height: int, frame_format: FrameFormat) -> bytes:
    if image.size != (width, height):
        image = image.resize((width, height), Image.Resampling.BILINEAR)
    if image.mode != "RGBA":
        image = image.convert("RGBA")

    if frame_format == "png":
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()
    return image.tobytes("raw", "RGBA")


class FrameSequencer:
    """Rasterizes and captures frames from a RenderSurface."""

    def __init__(self, surface: RenderSurface):
        self.surface = surface

    async def rasterize(self, frame: int) -> None:
        await self.surface.rasterize(frame)

    async def capture_frame_raw_exact(
        self,
        pixel_ratio: float,
        target_width: int,
        target_height: int,
        frame_format: FrameFormat = "rawRgba",
        frame: int | None = None,
    ) -> bytes:
        """
        Capture the currently rasterized frame at exactly target_width x target_height.

        Raises:
            CaptureError: Surface is detached or has zero size
        """
        size = self.surface.size
        if size is None:
            raise CaptureError("Render surface is detached", frame=frame)
        if size[0] <= 0 or size[1] <= 0:
            raise CaptureError(f"Render surface has zero size {size[0]}x{size[1]}", frame=frame)

        image = await self.surface.to_image(pixel_ratio)
        data = await asyncio.to_thread(_encode_image, image, target_width, target_height, frame_format)

        if frame_format == "rawRgba" and len(data) != target_width * target_height * 4:
            raise CaptureError(
                f"Captured {len(data)} bytes, expected {target_width * target_height * 4}",
                frame=frame,
            )
        return data
