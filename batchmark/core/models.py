"""
Data Model
==========
Immutable value types shared by the renderer, the batch pipeline and the UI.

- WatermarkSpec: watermark parameters, replaced wholesale on every edit
- Task: one queued image with its status and output
- BatchStats: aggregate progress, always derived from a task collection
- ImageSource: raw input handed over by the file selection front end
"""

import mimetypes
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from PIL import ImageColor

from batchmark import config
from batchmark.core.resources import DisplayHandle


class PositionTag(str, Enum):
    """Where a watermark placement is anchored."""
    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"
    CENTER = "center"
    TOP_BOTTOM = "top-bottom"
    TILE = "tile"


class TaskStatus(str, Enum):
    """Processing state of a queued image."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# CSS rgb()/rgba() with an explicit alpha: a fraction, a percentage or a 0-255 byte
_CSS_ALPHA_COLOR = re.compile(
    r"^rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d*\.?\d+)(%?)\s*\)$",
    re.IGNORECASE
)


def _normalize_color(color: Union[str, Tuple[int, ...]]) -> str:
    """
    Turn any accepted colour form into a string Pillow can parse.

    Accepts an (r, g, b) or (r, g, b, a) tuple of ints, a CSS ``rgba()``
    string whose alpha is a fraction (up to 1), a percentage or a 0-255
    byte, and anything ``ImageColor`` understands (hex, names, ``hsl()``).

    Raises:
        ValueError: If the colour cannot be parsed.
    """
    if isinstance(color, (tuple, list)):
        channels = list(color)
        if len(channels) not in (3, 4) or not all(
                isinstance(c, int) and not isinstance(c, bool) and 0 <= c <= 255 for c in channels):
            raise ValueError(f"Invalid watermark color: {color!r}")
        return "#" + "".join(f"{c:02x}" for c in channels)

    if not isinstance(color, str):
        raise ValueError(f"Invalid watermark color: {color!r}")

    match = _CSS_ALPHA_COLOR.match(color.strip())
    if match:
        rgb = [int(match.group(i)) for i in (1, 2, 3)]
        alpha = float(match.group(4))
        if match.group(5):
            alpha = alpha / 100 * 255
        elif alpha <= 1:
            alpha = alpha * 255
        elif not alpha.is_integer():
            raise ValueError(f"Invalid watermark color: {color!r}")
        if any(c > 255 for c in rgb) or alpha > 255:
            raise ValueError(f"Invalid watermark color: {color!r}")
        return "#" + "".join(f"{c:02x}" for c in rgb + [round(alpha)])

    try:
        ImageColor.getrgb(color)
    except ValueError as e:
        raise ValueError(f"Invalid watermark color: {color!r}") from e
    return color


def _normalize_positions(positions: Iterable[Union[str, PositionTag]]) -> Tuple[PositionTag, ...]:
    if isinstance(positions, (str, PositionTag)):
        positions = [positions]

    ordered = []
    for position in positions:
        tag = PositionTag(position)
        if tag not in ordered:
            ordered.append(tag)
    return tuple(ordered)


@dataclass(frozen=True)
class WatermarkSpec:
    """
    Full set of watermark parameters applied uniformly to a batch run.

    Positions behave like an ordered set: duplicates are dropped and the
    remaining tags are drawn in insertion order.
    """
    text: str = "© Batchmark"
    font_size: float = 40
    color: Union[str, Tuple[int, ...]] = "#ffffff"
    opacity: float = 0.4
    positions: Tuple[PositionTag, ...] = (PositionTag.TOP_BOTTOM,)
    font_family: str = "sans-serif"
    rotation_degrees: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "positions", _normalize_positions(self.positions))

        if not self.positions:
            raise ValueError("At least one watermark position is required")
        if not self.font_size > 0:
            raise ValueError("Font size must be greater than 0")
        if not 0 <= self.opacity <= 1:
            raise ValueError("Opacity must be between 0 and 1")
        if not -180 <= self.rotation_degrees <= 180:
            raise ValueError("Rotation must be between -180 and 180 degrees")
        object.__setattr__(self, "color", _normalize_color(self.color))

    @property
    def rgba(self) -> Tuple[int, int, int, int]:
        """Fill color as an (r, g, b, a) tuple."""
        return ImageColor.getcolor(self.color, "RGBA")

    def with_changes(self, **changes) -> "WatermarkSpec":
        """Return a new spec with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatermarkSpec":
        """
        Build a spec from a plain dictionary.

        Accepts either a ``positions`` list or a single legacy ``position``
        value, which becomes a one-element position list.
        """
        values = dict(data)
        if "positions" not in values and "position" in values:
            values["positions"] = [values.pop("position")]
        values.pop("position", None)

        known = {name for name in cls.__dataclass_fields__}
        unknown = set(values) - known
        if unknown:
            raise ValueError(f"Unknown watermark settings: {', '.join(sorted(unknown))}")
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "font_size": self.font_size,
            "color": self.color,
            "opacity": self.opacity,
            "positions": [tag.value for tag in self.positions],
            "font_family": self.font_family,
            "rotation_degrees": self.rotation_degrees,
        }


@dataclass(frozen=True)
class ImageSource:
    """An input image as delivered by the selection front end."""
    name: str
    data: bytes
    mime_type: str = ""
    size: Optional[int] = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ImageSource":
        """Read a file from disk, guessing its MIME type from the extension."""
        path = Path(path)
        data = path.read_bytes()
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(name=path.name, data=data, mime_type=mime_type or "", size=len(data))


@dataclass(frozen=True)
class Task:
    """
    One queued image plus its processing status and output.

    ``output_bytes`` is present exactly when the task is COMPLETED.
    """
    id: str
    name: str
    source_bytes: bytes
    size_bytes: int
    mime_type: str = ""
    status: TaskStatus = TaskStatus.PENDING
    display_handle: Optional[DisplayHandle] = field(default=None, compare=False, repr=False)
    output_bytes: Optional[bytes] = field(default=None, repr=False)
    error_message: str = ""
    write_error: str = ""

    def __post_init__(self):
        completed = self.status is TaskStatus.COMPLETED
        if completed != (self.output_bytes is not None):
            raise ValueError(
                f"Task {self.id}: output bytes must be present only when completed "
                f"(status={self.status.value})"
            )

    @property
    def output_name(self) -> str:
        """File name used when the output is archived or written back."""
        return f"{config.OUTPUT_PREFIX}{self.name}"


@dataclass(frozen=True)
class BatchStats:
    """Aggregate progress of a task collection."""
    total: int = 0
    completed: int = 0
    failed: int = 0

    def __post_init__(self):
        if self.completed + self.failed > self.total:
            raise ValueError("completed + failed cannot exceed total")

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> "BatchStats":
        total = completed = failed = 0
        for task in tasks:
            total += 1
            if task.status is TaskStatus.COMPLETED:
                completed += 1
            elif task.status is TaskStatus.FAILED:
                failed += 1
        return cls(total=total, completed=completed, failed=failed)

    @property
    def pending(self) -> int:
        """Tasks not yet finished (pending or processing)."""
        return self.total - self.completed - self.failed

    @property
    def progress(self) -> float:
        """Completed fraction in [0, 1]."""
        return self.completed / self.total if self.total else 0.0
