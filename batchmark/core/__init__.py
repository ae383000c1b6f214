"""
Core Module - Rendering and Batch Logic
=======================================
This module contains no UI dependencies.
"""

from .errors import (
    WatermarkError, DecodeError, SurfaceUnavailable, EncodeError,
    WriteBackError, HandleLifecycleError
)
from .models import BatchStats, ImageSource, PositionTag, Task, TaskStatus, WatermarkSpec
from .pipeline import BatchPipeline, PipelineListener
from .renderer import WatermarkRenderer, effective_font_size, placement_anchors
from .resources import DisplayHandle, ResourceLifecycle
from .surface import PillowSurface, RenderSurface, TextStyle
from .writer import DirectoryWriter, Writer, archive_name, export_archive

__all__ = [
    # Errors
    "WatermarkError",
    "DecodeError",
    "SurfaceUnavailable",
    "EncodeError",
    "WriteBackError",
    "HandleLifecycleError",
    # Model
    "BatchStats",
    "ImageSource",
    "PositionTag",
    "Task",
    "TaskStatus",
    "WatermarkSpec",
    # Rendering
    "WatermarkRenderer",
    "effective_font_size",
    "placement_anchors",
    "PillowSurface",
    "RenderSurface",
    "TextStyle",
    # Pipeline
    "BatchPipeline",
    "PipelineListener",
    "DisplayHandle",
    "ResourceLifecycle",
    # Output
    "Writer",
    "DirectoryWriter",
    "archive_name",
    "export_archive",
]
