"""
Preview Worker - Debounced Live Preview
=======================================

Re-renders the focused image whenever the focus or the watermark spec
changes, without flooding the CPU while the user drags a slider.

PIPELINE:
---------
request_preview() -> PreviewDebouncer (single-shot timer, last request wins)
                  -> PreviewWorker (QThread, full-resolution render)
                  -> PreviewManager (generation check, preview slot swap)
                  -> preview_updated(DisplayHandle)

LAST-WRITE-WINS:
----------------
Every request bumps a generation counter. A worker result is accepted only
if its generation is still the latest one; superseded results are dropped
when they eventually arrive. Accepted results replace the single preview
slot in the ResourceLifecycle, which releases the previous preview handle
exactly once.

The preview uses the same renderer and parameters as the batch, so what
the user sees is what the batch produces.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Set

from PyQt6.QtCore import QThread, pyqtSignal, QTimer, QObject, QMutex, QMutexLocker
from PyQt6.QtGui import QImage

from batchmark import config
from batchmark.core.models import Task, WatermarkSpec
from batchmark.core.renderer import WatermarkRenderer
from batchmark.core.resources import DisplayHandle, ResourceLifecycle

logger = logging.getLogger(__name__)

PREVIEW_SLOT = "preview"


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class PreviewConfig:
    """One preview request: which image, which spec, which generation."""
    task_id: str
    source_bytes: bytes
    mime_type: str
    spec: WatermarkSpec
    generation: int = 0


def qimage_loader(data: bytes) -> QImage:
    """Display-handle loader for the Qt front end. QImage is thread-safe."""
    image = QImage()
    image.loadFromData(data)
    return image


# =============================================================================
# PREVIEW WORKER
# =============================================================================

class PreviewWorker(QThread):
    """
    Worker thread that renders one preview.

    SIGNALS:
    - preview_ready(int, bytes): (generation, rendered image bytes)
    - preview_error(int, str): (generation, error message)
    """

    preview_ready = pyqtSignal(int, object)
    preview_error = pyqtSignal(int, str)

    def __init__(self, config: PreviewConfig, renderer: Optional[WatermarkRenderer] = None, parent=None):
        super().__init__(parent)
        self.config = config
        self._renderer = renderer or WatermarkRenderer()
        self._is_cancelled = False

    def cancel(self):
        """Request cancellation of this worker."""
        self._is_cancelled = True

    def run(self):
        if self._is_cancelled:
            return

        try:
            data = self._renderer.render(
                self.config.source_bytes,
                self.config.spec,
                self.config.mime_type or None
            )
        except Exception as e:
            if not self._is_cancelled:
                logger.warning("Preview generation failed: %s", e)
                self.preview_error.emit(self.config.generation, f"預覽生成失敗：{e}")
            return

        if self._is_cancelled:
            return
        self.preview_ready.emit(self.config.generation, data)


# =============================================================================
# DEBOUNCER (Prevents Event Storm)
# =============================================================================

class PreviewDebouncer(QObject):
    """
    Debounce helper for preview requests.

    A request arriving within the delay of the previous one replaces it and
    restarts the timer. Only the final request after quiescence fires.
    """

    preview_requested = pyqtSignal(object)

    def __init__(self, delay_ms: int = config.PREVIEW_DEBOUNCE_MS, parent=None):
        super().__init__(parent)
        self._delay_ms = delay_ms
        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self._on_timeout)
        self._pending_config: Optional[PreviewConfig] = None
        self._mutex = QMutex()

    @property
    def delay_ms(self) -> int:
        return self._delay_ms

    @property
    def is_pending(self) -> bool:
        with QMutexLocker(self._mutex):
            return self._pending_config is not None

    def request_preview(self, config: PreviewConfig):
        """Request a preview generation (debounced)."""
        with QMutexLocker(self._mutex):
            self._pending_config = config
            # Reset the timer on each new request
            self._timer.stop()
            self._timer.start(self._delay_ms)

    def cancel(self):
        """Cancel any pending preview request."""
        with QMutexLocker(self._mutex):
            self._timer.stop()
            self._pending_config = None

    def _on_timeout(self):
        """Timer fired - emit the pending request."""
        with QMutexLocker(self._mutex):
            config = self._pending_config
            self._pending_config = None
        if config is not None:
            self.preview_requested.emit(config)


# =============================================================================
# PREVIEW MANAGER (High-Level Controller)
# =============================================================================

class PreviewManager(QObject):
    """
    High-level manager for preview generation.

    RESPONSIBILITIES:
    1. Debounce incoming requests (via PreviewDebouncer)
    2. Cancel superseded workers and ignore their late results
    3. Keep exactly one live preview handle
    4. Forward results to the UI

    USAGE:
        manager = PreviewManager(resources)
        manager.preview_updated.connect(on_preview_ready)
        manager.request_preview(task, spec)
    """

    preview_updated = pyqtSignal(object)  # DisplayHandle
    preview_error = pyqtSignal(str)
    preview_started = pyqtSignal()

    def __init__(
            self,
            resources: Optional[ResourceLifecycle] = None,
            renderer: Optional[WatermarkRenderer] = None,
            debounce_ms: int = config.PREVIEW_DEBOUNCE_MS,
            parent=None
    ):
        super().__init__(parent)
        self._resources = resources if resources is not None else ResourceLifecycle()
        self._renderer = renderer or WatermarkRenderer()

        self._debouncer = PreviewDebouncer(debounce_ms, self)
        self._debouncer.preview_requested.connect(self._start_preview_worker)

        self._generation = 0
        self._current_worker: Optional[PreviewWorker] = None
        # Cancelled workers stay referenced until their thread finishes
        self._retired_workers: Set[PreviewWorker] = set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def preview_handle(self) -> Optional[DisplayHandle]:
        return self._resources.get(PREVIEW_SLOT)

    def request_preview(self, task: Optional[Task], spec: WatermarkSpec):
        """
        Request a preview of ``task`` rendered with ``spec`` (debounced).

        Passing no task cancels pending work and releases the preview.
        """
        if task is None:
            self.cancel()
            self.release_preview()
            return

        self._generation += 1
        self._debouncer.request_preview(PreviewConfig(
            task_id=task.id,
            source_bytes=task.source_bytes,
            mime_type=task.mime_type,
            spec=spec,
            generation=self._generation,
        ))

    def cancel(self):
        """Cancel all pending and in-progress preview work."""
        self._generation += 1
        self._debouncer.cancel()
        self._retire_current_worker()

    def release_preview(self):
        """Release the live preview handle, if any."""
        if PREVIEW_SLOT in self._resources:
            self._resources.release(PREVIEW_SLOT)

    def wait_for_workers(self, timeout_ms: int = 5000):
        """Block until every preview thread has stopped (used on shutdown)."""
        workers = list(self._retired_workers)
        if self._current_worker is not None:
            workers.append(self._current_worker)
        for worker in workers:
            worker.wait(timeout_ms)

    def _retire_current_worker(self):
        worker = self._current_worker
        self._current_worker = None
        if worker is None:
            return

        worker.cancel()
        if worker.isFinished():
            worker.deleteLater()
        else:
            self._retired_workers.add(worker)

    def _start_preview_worker(self, config: PreviewConfig):
        """
        Start a new preview worker.

        Any running worker is cancelled first so at most one preview render
        is current at a time.
        """
        if config.generation != self._generation:
            return

        self._retire_current_worker()
        self.preview_started.emit()

        worker = PreviewWorker(config, self._renderer)
        worker.preview_ready.connect(self._on_preview_ready)
        worker.preview_error.connect(self._on_preview_error)
        worker.finished.connect(lambda w=worker: self._on_worker_finished(w))
        self._current_worker = worker
        worker.start()

    def _on_preview_ready(self, generation: int, data: bytes):
        if generation != self._generation:
            logger.debug("Discarding stale preview (generation %d < %d)", generation, self._generation)
            return

        handle = self._resources.replace(PREVIEW_SLOT, data)
        self.preview_updated.emit(handle)

    def _on_preview_error(self, generation: int, error: str):
        if generation != self._generation:
            return
        self.preview_error.emit(error)

    def _on_worker_finished(self, worker: PreviewWorker):
        """Cleanup worker after completion."""
        if worker is self._current_worker:
            self._current_worker = None
        self._retired_workers.discard(worker)
        worker.deleteLater()
