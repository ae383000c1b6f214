"""
Watermark Renderer
==================
Composites a text watermark onto one image: bytes in, bytes out.

Technical Notes:
- Output dimensions always equal the input dimensions
- Font size is responsive only on wide images (width > 1500px); the jump
  at exactly 1500px is intentional and must not be smoothed
- A fixed drop shadow keeps the text legible on any background
- Placements are independent: each one translates to its anchor, rotates,
  draws and restores, so transforms never accumulate
"""

import logging
import math
from typing import Callable, List, Optional, Tuple

from batchmark import config
from batchmark.core.errors import SurfaceUnavailable
from batchmark.core.models import PositionTag, WatermarkSpec
from batchmark.core.surface import PillowSurface, RenderSurface, TextStyle

logger = logging.getLogger(__name__)

# Images wider than this get a font size proportional to their short side
RESPONSIVE_WIDTH_THRESHOLD = 1500
RESPONSIVE_REFERENCE_SIZE = 1000

MARGIN_RATIO = 0.08

SHADOW_BLUR_RATIO = 0.15
SHADOW_OFFSET_RATIO = 0.05
SHADOW_COLOR = (0, 0, 0, 153)  # 60% opaque black

# Tile grid step, as multiples of the text width and height
TILE_STEP_X_RATIO = 2.5
TILE_STEP_Y_RATIO = 4.0

SurfaceFactory = Callable[[], RenderSurface]


def effective_font_size(font_size: float, width: int, height: int) -> float:
    """
    Font size actually used on a width x height image.

    Examples:
        >>> effective_font_size(48, 3000, 2000)
        96.0
        >>> effective_font_size(48, 1500, 1000)
        48
    """
    if width > RESPONSIVE_WIDTH_THRESHOLD:
        scale = min(width, height) / RESPONSIVE_REFERENCE_SIZE
        return font_size * scale
    return font_size


def placement_anchors(
        tag: PositionTag,
        width: int,
        height: int,
        text_width: float,
        text_height: float
) -> List[Tuple[float, float]]:
    """
    Anchor points (text centers) for one position tag.

    Tile anchors start at (-width, -height) and cover [-W, 2W) x [-H, 2H) so
    the grid still reaches every edge once rotated.
    """
    margin = MARGIN_RATIO * min(width, height)

    if tag is PositionTag.TILE:
        step_x = TILE_STEP_X_RATIO * text_width
        step_y = TILE_STEP_Y_RATIO * text_height
        if step_x <= 0 or step_y <= 0:
            return []

        anchors = []
        x = -width
        while x < width * 2:
            y = -height
            while y < height * 2:
                anchors.append((x, y))
                y += step_y
            x += step_x
        return anchors

    if tag is PositionTag.TOP_BOTTOM:
        return [(width / 2, margin), (width / 2, height - margin)]

    if tag is PositionTag.CENTER:
        return [(width / 2, height / 2)]

    left_x = margin + text_width / 2
    right_x = width - margin - text_width / 2
    corners = {
        PositionTag.TOP_LEFT: (left_x, margin),
        PositionTag.TOP_RIGHT: (right_x, margin),
        PositionTag.BOTTOM_LEFT: (left_x, height - margin),
        PositionTag.BOTTOM_RIGHT: (right_x, height - margin),
    }
    return [corners[tag]]


class WatermarkRenderer:
    """
    Applies a WatermarkSpec to encoded image bytes.

    Rendering is deterministic: identical bytes and spec always produce
    identical output bytes. A fresh surface is created for every call.
    """

    def __init__(
            self,
            surface_factory: Optional[SurfaceFactory] = None,
            quality: int = config.ENCODE_QUALITY
    ):
        """
        Initialize the renderer.

        Args:
            surface_factory: Callable returning a new RenderSurface.
                             Defaults to PillowSurface.
            quality: Encoder quality for lossy formats (92-95).
        """
        self._surface_factory = surface_factory or PillowSurface
        self._quality = max(92, min(95, quality))

    def _new_surface(self) -> RenderSurface:
        try:
            surface = self._surface_factory()
        except Exception as e:
            raise SurfaceUnavailable(f"Cannot create drawing surface: {e}") from e
        if surface is None:
            raise SurfaceUnavailable("Surface factory returned no surface")
        return surface

    @staticmethod
    def text_style(spec: WatermarkSpec, font_size: float) -> TextStyle:
        return TextStyle(
            font_family=spec.font_family,
            font_size=font_size,
            fill=spec.rgba,
            alpha=spec.opacity,
            shadow_blur=SHADOW_BLUR_RATIO * font_size,
            shadow_offset=SHADOW_OFFSET_RATIO * font_size,
            shadow_color=SHADOW_COLOR,
        )

    def render(self, image_bytes: bytes, spec: WatermarkSpec, mime_type: Optional[str] = None) -> bytes:
        """
        Render the watermark onto an image.

        Args:
            image_bytes: Encoded source image.
            spec: Watermark parameters.
            mime_type: Output MIME type. Defaults to the source's own type.

        Returns:
            Encoded output image with the same dimensions as the source.

        Raises:
            DecodeError: If the source cannot be decoded.
            SurfaceUnavailable: If no drawing surface can be created.
            EncodeError: If the output cannot be encoded.
        """
        surface = self._new_surface()
        width, height = surface.decode(image_bytes)

        # fillText draws line breaks as spaces
        text = spec.text.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")

        if text:
            font_size = effective_font_size(spec.font_size, width, height)
            style = self.text_style(spec, font_size)
            text_width = surface.measure_text(text, style)
            text_height = font_size
            radians = math.radians(spec.rotation_degrees)

            for tag in spec.positions:
                for x, y in placement_anchors(tag, width, height, text_width, text_height):
                    with surface.transformed(x, y, radians):
                        surface.fill_text(text, style)

        return surface.encode(mime_type or surface.source_mime_type, self._quality)
