"""
Display Handle Lifecycle
========================
Tracks ephemeral display resources (original, preview and processed images).

Each slot key owns at most one live DisplayHandle. Replacing a slot acquires
the new handle and releases its predecessor immediately after; releasing a
handle twice or reading it after release is a programming error and raises
HandleLifecycleError.

The loader/disposer pair decides what a handle wraps. The default wraps the
bytes in a memoryview; the desktop front end loads a QImage instead.
"""

import logging
import threading
from typing import Any, Callable, Dict, Hashable, List, Optional

from batchmark.core.errors import HandleLifecycleError

logger = logging.getLogger(__name__)

Loader = Callable[[bytes], Any]
Disposer = Callable[[Any], None]


def memoryview_loader(data: bytes) -> memoryview:
    return memoryview(data)


def memoryview_disposer(value: Any) -> None:
    if isinstance(value, memoryview):
        value.release()


class DisplayHandle:
    """
    Owned-once reference to display data.

    The handle can be released exactly once; afterwards ``value`` is no
    longer accessible.
    """

    __slots__ = ("key", "_value", "_disposer", "_released")

    def __init__(self, key: Hashable, value: Any, disposer: Optional[Disposer] = None):
        self.key = key
        self._value = value
        self._disposer = disposer
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @property
    def value(self) -> Any:
        if self._released:
            raise HandleLifecycleError(f"Display handle {self.key!r} used after release")
        return self._value

    def release(self):
        """Dispose of the wrapped resource. Raises on a second call."""
        if self._released:
            raise HandleLifecycleError(f"Display handle {self.key!r} released twice")
        self._released = True
        if self._disposer is not None:
            self._disposer(self._value)
        self._value = None

    def __repr__(self) -> str:
        state = "released" if self._released else "live"
        return f"<DisplayHandle {self.key!r} {state}>"


class ResourceLifecycle:
    """
    Registry guaranteeing exactly one live display handle per slot.

    Thread-safe: the batch worker and the UI thread both touch the registry.
    """

    def __init__(self, loader: Optional[Loader] = None, disposer: Optional[Disposer] = None):
        if loader is None:
            loader = memoryview_loader
            disposer = disposer or memoryview_disposer
        self._loader = loader
        self._disposer = disposer
        self._handles: Dict[Hashable, DisplayHandle] = {}
        self._lock = threading.RLock()

    def _create(self, key: Hashable, data: bytes) -> DisplayHandle:
        return DisplayHandle(key, self._loader(data), self._disposer)

    def acquire(self, key: Hashable, data: bytes) -> DisplayHandle:
        """
        Create the first handle for a slot.

        Raises:
            HandleLifecycleError: If the slot already holds a live handle.
        """
        with self._lock:
            if key in self._handles:
                raise HandleLifecycleError(
                    f"Slot {key!r} already holds a live handle; use replace()"
                )
            handle = self._create(key, data)
            self._handles[key] = handle
            return handle

    def replace(self, key: Hashable, data: bytes) -> DisplayHandle:
        """Install a new handle for a slot, releasing the previous one."""
        with self._lock:
            handle = self._create(key, data)
            previous = self._handles.get(key)
            self._handles[key] = handle
            if previous is not None:
                previous.release()
            return handle

    def release(self, key: Hashable):
        """
        Release the live handle of a slot.

        Raises:
            HandleLifecycleError: If the slot has no live handle.
        """
        with self._lock:
            handle = self._handles.pop(key, None)
            if handle is None:
                raise HandleLifecycleError(f"Slot {key!r} has no live handle")
            handle.release()

    def get(self, key: Hashable) -> Optional[DisplayHandle]:
        with self._lock:
            return self._handles.get(key)

    def keys(self) -> List[Hashable]:
        with self._lock:
            return list(self._handles)

    def clear_all(self) -> int:
        """Release every live handle. Returns how many were released."""
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            handle.release()
        if handles:
            logger.debug("Released %d display handles", len(handles))
        return len(handles)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
