"""
Error Types
===========
Per-image failures derive from WatermarkError and never abort a batch.
HandleLifecycleError signals a resource-tracking bug and is not meant to be caught.
"""


class WatermarkError(Exception):
    """Base class for recoverable, per-image failures."""


class DecodeError(WatermarkError):
    """The source bytes could not be decoded into an image."""


class SurfaceUnavailable(WatermarkError):
    """No drawing surface could be obtained for rendering."""


class EncodeError(WatermarkError):
    """The rendered image could not be serialized."""


class WriteBackError(WatermarkError):
    """Persisting an output to its destination failed."""


class HandleLifecycleError(RuntimeError):
    """A display handle was released twice, used after release, or orphaned."""
