"""
Render Surface
==============
Abstract 2D drawing capability used by the watermark renderer, plus the
Pillow implementation.

Technical Notes:
- Transforms follow canvas semantics: translate/rotate post-multiply the
  current matrix, save()/restore() push and pop it
- Text is drawn at the local origin of the current transform, centered
  horizontally and vertically (Pillow anchor "mm")
- Each glyph run is rendered on its own transparent sprite, rotated with
  expand=True to prevent clipping, then alpha-composited onto the buffer
- The drop shadow offset is applied in image space, after rotation
"""

import io
import logging
import math
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from PIL import Image, ImageDraw, ImageFilter, ImageFont, ImageOps, UnidentifiedImageError

from batchmark import config
from batchmark.core.errors import DecodeError, EncodeError, SurfaceUnavailable

logger = logging.getLogger(__name__)

Matrix = Tuple[float, float, float, float, float, float]
IDENTITY: Matrix = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)

# Formats that take a quality setting; all others are written losslessly
LOSSY_FORMATS = {"JPEG", "WEBP"}

# Formats that cannot carry an alpha channel
OPAQUE_FORMATS = {"JPEG"}

MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/x-png": "image/png",
    "image/x-ms-bmp": "image/bmp",
    "image/x-bmp": "image/bmp",
    "image/x-windows-bmp": "image/bmp",
    "image/tif": "image/tiff",
    "image/x-tiff": "image/tiff",
    "image/x-webp": "image/webp",
}

SUBTYPE_ALIASES = {"jpg": "jpeg", "pjpeg": "jpeg", "tif": "tiff"}


def mime_family(mime_type: str) -> str:
    """
    Vendor-neutral subtype of an image MIME type.

    Examples:
        >>> mime_family("image/x-ms-bmp")
        'bmp'
        >>> mime_family("image/tif")
        'tiff'
    """
    subtype = mime_type.lower().partition("/")[2].split(";")[0].strip()
    for prefix in ("x-ms-", "x-windows-", "x-"):
        if subtype.startswith(prefix):
            subtype = subtype[len(prefix):]
            break
    return SUBTYPE_ALIASES.get(subtype, subtype)


# Bold font files tried for the generic CSS families
GENERIC_FONT_FILES = {
    "sans-serif": ["DejaVuSans-Bold.ttf", "LiberationSans-Bold.ttf", "arialbd.ttf", "Arial Bold.ttf"],
    "serif": ["DejaVuSerif-Bold.ttf", "LiberationSerif-Bold.ttf", "timesbd.ttf", "Times New Roman Bold.ttf"],
    "monospace": ["DejaVuSansMono-Bold.ttf", "LiberationMono-Bold.ttf", "courbd.ttf", "Courier New Bold.ttf"],
}


@dataclass(frozen=True)
class TextStyle:
    """Everything needed to draw one run of text."""
    font_family: str
    font_size: float
    fill: Tuple[int, int, int, int]
    alpha: float = 1.0
    shadow_blur: float = 0.0
    shadow_offset: float = 0.0
    shadow_color: Tuple[int, int, int, int] = (0, 0, 0, 0)


class RenderSurface(ABC):
    """
    A scratch pixel buffer with canvas-like drawing operations.

    Subclasses implement decoding, text measurement, text filling and
    encoding; the transform stack is shared.
    """

    def __init__(self):
        self._matrix: Matrix = IDENTITY
        self._saved: List[Matrix] = []

    # ----- transforms -----

    def save(self):
        self._saved.append(self._matrix)

    def restore(self):
        if self._saved:
            self._matrix = self._saved.pop()

    def translate(self, dx: float, dy: float):
        a, b, c, d, e, f = self._matrix
        self._matrix = (a, b, c, d, e + a * dx + c * dy, f + b * dx + d * dy)

    def rotate(self, radians: float):
        a, b, c, d, e, f = self._matrix
        cos, sin = math.cos(radians), math.sin(radians)
        self._matrix = (
            a * cos + c * sin,
            b * cos + d * sin,
            c * cos - a * sin,
            d * cos - b * sin,
            e,
            f,
        )

    @contextmanager
    def transformed(self, x: float, y: float, radians: float = 0.0) -> Iterator[None]:
        """Translate to (x, y) and rotate; the transform is undone on exit."""
        self.save()
        try:
            self.translate(x, y)
            if radians:
                self.rotate(radians)
            yield
        finally:
            self.restore()

    @property
    def origin(self) -> Tuple[float, float]:
        """Image-space position of the local origin."""
        return self._matrix[4], self._matrix[5]

    @property
    def angle(self) -> float:
        """Rotation of the current transform in radians (clockwise on screen)."""
        return math.atan2(self._matrix[1], self._matrix[0])

    # ----- pixel operations -----

    @property
    @abstractmethod
    def size(self) -> Tuple[int, int]:
        """(width, height) of the decoded buffer."""

    @property
    @abstractmethod
    def source_mime_type(self) -> Optional[str]:
        """MIME type of the decoded source, if known."""

    @abstractmethod
    def decode(self, data: bytes) -> Tuple[int, int]:
        """Load image bytes into the buffer and return its size."""

    @abstractmethod
    def measure_text(self, text: str, style: TextStyle) -> float:
        """Advance width of ``text`` in pixels."""

    @abstractmethod
    def fill_text(self, text: str, style: TextStyle):
        """Draw ``text`` centered on the current local origin."""

    @abstractmethod
    def encode(self, mime_type: Optional[str], quality: int) -> bytes:
        """Serialize the buffer in the given MIME type."""


class PillowSurface(RenderSurface):
    """RenderSurface backed by a Pillow RGBA image."""

    def __init__(self, font_path: Optional[str] = None):
        super().__init__()
        self._font_path = font_path or config.CUSTOM_FONT_PATH or None
        self._cached_fonts: Dict[Tuple[str, float], ImageFont.FreeTypeFont] = {}
        self._sprite_cache: Dict[tuple, Image.Image] = {}
        self._image: Optional[Image.Image] = None
        self._format: Optional[str] = None
        self._has_alpha = False

    # ----- fonts -----

    @staticmethod
    def _font_candidates(family: str) -> List[str]:
        family = family.strip()
        if Path(family).suffix.lower() in {".ttf", ".otf", ".ttc"}:
            return [family]

        generic = GENERIC_FONT_FILES.get(family.lower())
        if generic:
            return list(generic)

        compact = family.replace(" ", "")
        return [
            f"{compact}-Bold.ttf",
            f"{compact}bd.ttf",
            f"{family} Bold.ttf",
            f"{compact}.ttf",
            f"{family}.ttf",
            family,
        ]

    def _get_font(self, family: str, size: float) -> ImageFont.FreeTypeFont:
        """
        Get or create a cached font for the given family and pixel size.

        Lookup order: explicit font file, family candidates resolved by
        Pillow against the system font directories, Pillow's bundled font.
        """
        key = (family, size)
        if key in self._cached_fonts:
            return self._cached_fonts[key]

        candidates = self._font_candidates(family)
        if self._font_path and Path(self._font_path).exists():
            candidates.insert(0, self._font_path)
        candidates.extend(GENERIC_FONT_FILES["sans-serif"])

        font = None
        for candidate in candidates:
            try:
                font = ImageFont.truetype(candidate, size)
                break
            except OSError:
                continue

        if font is None:
            logger.warning("No font file found for %r, using Pillow's default font", family)
            font = ImageFont.load_default(size=size)

        self._cached_fonts[key] = font
        return font

    def _font_for(self, style: TextStyle) -> ImageFont.FreeTypeFont:
        # Fractional sizes are kept so glyphs match the responsive size exactly
        return self._get_font(style.font_family, max(1.0, float(style.font_size)))

    # ----- RenderSurface -----

    @property
    def size(self) -> Tuple[int, int]:
        if self._image is None:
            raise SurfaceUnavailable("No image has been decoded onto the surface")
        return self._image.size

    @property
    def source_mime_type(self) -> Optional[str]:
        if self._format is None:
            return None
        return Image.MIME.get(self._format)

    def decode(self, data: bytes) -> Tuple[int, int]:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            raise DecodeError(f"Cannot decode image: {e}") from e

        self._format = image.format
        self._has_alpha = (
            image.mode in ("RGBA", "LA", "PA", "RGBa", "La")
            or "transparency" in image.info
        )

        # Phone cameras store rotation in EXIF instead of rotating pixels
        image = ImageOps.exif_transpose(image)

        self._image = image.convert("RGBA")
        self._matrix = IDENTITY
        self._saved.clear()
        self._sprite_cache.clear()
        return self._image.size

    def measure_text(self, text: str, style: TextStyle) -> float:
        if not text:
            return 0.0
        return float(self._font_for(style).getlength(text))

    def _render_sprite(self, text: str, style: TextStyle, degrees: float) -> Image.Image:
        """
        Render text, its drop shadow and the global alpha on a transparent
        sprite whose center is the text anchor.
        """
        font = self._font_for(style)
        left, top, right, bottom = font.getbbox(text, anchor="mm")

        pad = math.ceil(style.shadow_blur * 2 + abs(style.shadow_offset)) + 2
        half_w = math.ceil(max(abs(left), abs(right))) + pad
        half_h = math.ceil(max(abs(top), abs(bottom))) + pad
        canvas_size = (half_w * 2, half_h * 2)

        text_layer = Image.new("RGBA", canvas_size, (0, 0, 0, 0))
        ImageDraw.Draw(text_layer).text(
            (half_w, half_h), text, font=font, fill=style.fill, anchor="mm"
        )

        # Rotate the tile (expand=True prevents clipping)
        if degrees % 360:
            text_layer = text_layer.rotate(
                -degrees, resample=Image.Resampling.BICUBIC, expand=True
            )

        sprite = Image.new("RGBA", text_layer.size, (0, 0, 0, 0))

        shadow_alpha = style.shadow_color[3]
        if shadow_alpha and (style.shadow_blur > 0 or style.shadow_offset):
            mask = text_layer.getchannel("A").point(lambda v: v * shadow_alpha // 255)
            shadow = Image.new("RGBA", text_layer.size, style.shadow_color[:3] + (0,))
            shadow.putalpha(mask)
            if style.shadow_blur > 0:
                shadow = shadow.filter(ImageFilter.GaussianBlur(style.shadow_blur / 2))
            offset = round(style.shadow_offset)
            composite_at(sprite, shadow, offset, offset)

        sprite.alpha_composite(text_layer)

        if style.alpha < 1:
            alpha = sprite.getchannel("A").point(lambda v: round(v * style.alpha))
            sprite.putalpha(alpha)

        return sprite

    def fill_text(self, text: str, style: TextStyle):
        if self._image is None:
            raise SurfaceUnavailable("No image has been decoded onto the surface")
        if not text or style.alpha <= 0:
            return

        degrees = round(math.degrees(self.angle), 6)
        cache_key = (text, style, degrees)
        sprite = self._sprite_cache.get(cache_key)
        if sprite is None:
            sprite = self._render_sprite(text, style, degrees)
            self._sprite_cache[cache_key] = sprite

        x, y = self.origin
        composite_at(
            self._image,
            sprite,
            round(x - sprite.width / 2),
            round(y - sprite.height / 2),
        )

    def _format_for(self, mime_type: Optional[str]) -> Optional[str]:
        Image.init()
        if not mime_type:
            return self._format
        mime_type = MIME_ALIASES.get(mime_type.lower(), mime_type.lower())

        if self._format and Image.MIME.get(self._format) == mime_type:
            return self._format
        for fmt, registered in Image.MIME.items():
            if registered == mime_type and fmt in Image.SAVE:
                return fmt

        # Unregistered spelling of the decoded image's own type
        source_mime = Image.MIME.get(self._format) if self._format else None
        if source_mime and mime_family(mime_type) == mime_family(source_mime):
            return self._format
        return None

    def encode(self, mime_type: Optional[str], quality: int) -> bytes:
        if self._image is None:
            raise SurfaceUnavailable("No image has been decoded onto the surface")

        fmt = self._format_for(mime_type)
        if fmt is None or fmt not in Image.SAVE:
            raise EncodeError(f"Cannot encode images as {mime_type or 'unknown type'}")

        image = self._image
        if fmt in OPAQUE_FORMATS or not self._has_alpha:
            image = image.convert("RGB")

        options = {"quality": quality} if fmt in LOSSY_FORMATS else {}
        buffer = io.BytesIO()
        try:
            image.save(buffer, format=fmt, **options)
        except (OSError, ValueError, KeyError) as e:
            raise EncodeError(f"Failed to encode {fmt} output: {e}") from e
        return buffer.getvalue()


def composite_at(base: Image.Image, overlay: Image.Image, x: int, y: int):
    """
    Alpha-composite ``overlay`` onto ``base`` with its top-left corner at
    (x, y), clipping whatever falls outside ``base``.
    """
    src_x, src_y = max(0, -x), max(0, -y)
    dst_x, dst_y = max(0, x), max(0, y)
    if src_x >= overlay.width or src_y >= overlay.height:
        return
    if dst_x >= base.width or dst_y >= base.height:
        return

    width = min(overlay.width - src_x, base.width - dst_x)
    height = min(overlay.height - src_y, base.height - dst_y)
    base.alpha_composite(
        overlay,
        dest=(dst_x, dst_y),
        source=(src_x, src_y, src_x + width, src_y + height),
    )
