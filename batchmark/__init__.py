"""
Batchmark Application Package
=============================
A desktop tool for batch text watermarking.

Modules:
    - core: Rendering, batch pipeline and resource tracking (no UI dependencies)
    - workers: QThread workers for async processing
    - ui: PyQt6 user interface components

Usage:
    from batchmark.core import BatchPipeline, WatermarkSpec, ImageSource
    from batchmark.workers import BatchWorker, PreviewManager
    from batchmark.ui import MainWindow
"""

__version__ = "1.0.0"
__app_name__ = "Batchmark"

# Core exports
from .core import (
    BatchPipeline, BatchStats, ImageSource, PositionTag, Task, TaskStatus,
    WatermarkRenderer, WatermarkSpec
)

__all__ = [
    # Version info
    "__version__",
    "__app_name__",

    # Core
    "BatchPipeline",
    "BatchStats",
    "ImageSource",
    "PositionTag",
    "Task",
    "TaskStatus",
    "WatermarkRenderer",
    "WatermarkSpec",
]
