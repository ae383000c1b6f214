"""
Workers Module - Async Thread Management
========================================
Contains QThread workers for non-blocking watermark operations.

All heavy computations run in separate threads to keep the UI responsive.

Components:
- BatchWorker: Sequential batch rendering with per-task progress
- PreviewWorker: Live preview generation with debounce
"""

from .batch_worker import BatchWorker
from .preview_worker import (
    PreviewWorker, PreviewConfig, PreviewDebouncer, PreviewManager,
    PREVIEW_SLOT, qimage_loader
)

__all__ = [
    # Batch
    "BatchWorker",
    # Preview
    "PreviewWorker",
    "PreviewConfig",
    "PreviewDebouncer",
    "PreviewManager",
    "PREVIEW_SLOT",
    "qimage_loader",
]
