"""
Test script for worker threads.

Run with: pytest tests/test_workers.py
"""

import io
import os
import sys
import threading
import time
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import numpy as np
import pytest
from PIL import Image

from PyQt6.QtCore import QCoreApplication, QEventLoop, QTimer

from batchmark.core import (
    BatchPipeline, ImageSource, ResourceLifecycle, Task, WatermarkRenderer, WatermarkSpec
)
from batchmark.ui.widgets import handle_to_pixmap
from batchmark.workers import (
    BatchWorker, PreviewConfig, PreviewDebouncer, PreviewManager, PREVIEW_SLOT
)

# Global application instance
_app = None


def get_app():
    """Get or create the Qt application instance."""
    global _app
    if _app is None:
        _app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    return _app


def create_test_image(width: int = 320, height: int = 240) -> bytes:
    """Create a simple gradient test image (PNG bytes)."""
    xs = np.linspace(0, 255, width, dtype=np.float32)
    ys = np.linspace(0, 255, height, dtype=np.float32)
    arr = np.zeros((height, width, 3), dtype=np.uint8)
    arr[..., 0] = xs[np.newaxis, :].astype(np.uint8)
    arr[..., 1] = ys[:, np.newaxis].astype(np.uint8)
    arr[..., 2] = 128

    buffer = io.BytesIO()
    Image.fromarray(arr, mode="RGB").save(buffer, format="PNG")
    return buffer.getvalue()


def make_task(task_id: str = "t1") -> Task:
    data = create_test_image()
    return Task(id=task_id, name=f"{task_id}.png", source_bytes=data, size_bytes=len(data), mime_type="image/png")


def wait_for_signal(signal, timeout_ms: int = 30000):
    """
    Wait for a Qt signal with timeout.

    Returns:
        The value emitted by the signal, or None if timeout.
    """
    get_app()
    loop = QEventLoop()
    result = [None]

    def on_signal(*args):
        result[0] = args[0] if len(args) == 1 else args
        loop.quit()

    signal.connect(on_signal)

    # Setup timeout
    timer = QTimer()
    timer.setSingleShot(True)
    timer.timeout.connect(loop.quit)
    timer.start(timeout_ms)

    loop.exec()
    timer.stop()
    signal.disconnect(on_signal)

    return result[0]


def process_events(ms: int):
    """Run the event loop for ``ms`` milliseconds."""
    get_app()
    loop = QEventLoop()
    QTimer.singleShot(ms, loop.quit)
    loop.exec()


class RecordingRenderer(WatermarkRenderer):
    """Renderer that records which texts it rendered; "SLOW" takes a while."""

    def __init__(self):
        super().__init__()
        self.texts = []
        self._lock = threading.Lock()

    def render(self, image_bytes, spec, mime_type=None):
        with self._lock:
            self.texts.append(spec.text)
        if spec.text == "SLOW":
            time.sleep(0.5)
        return super().render(image_bytes, spec, mime_type)


# =============================================================================
# BatchWorker
# =============================================================================

def test_batch_worker_runs_queue():
    get_app()
    pipeline = BatchPipeline()
    pipeline.add_sources([
        ImageSource(name="a.png", data=create_test_image(), mime_type="image/png"),
        ImageSource(name="broken.png", data=b"garbage", mime_type="image/png"),
        ImageSource(name="c.png", data=create_test_image(200, 100), mime_type="image/png"),
    ])

    worker = BatchWorker(pipeline, WatermarkSpec(text="Worker"))
    updates = []
    stats_log = []
    worker.task_updated.connect(updates.append)
    worker.stats_changed.connect(stats_log.append)

    worker.start()
    stats = wait_for_signal(worker.finished_all)
    worker.wait()

    assert stats is not None, "Worker timed out"
    assert (stats.total, stats.completed, stats.failed) == (3, 2, 1)
    assert updates, "No task updates received"
    assert stats_log[-1] == stats
    assert all(s.completed + s.failed <= s.total for s in stats_log)


def test_batch_worker_with_empty_queue():
    get_app()
    worker = BatchWorker(BatchPipeline())
    errors = []
    worker.error.connect(errors.append)

    worker.start()
    stats = wait_for_signal(worker.finished_all)
    worker.wait()

    assert stats is not None and stats.total == 0
    assert errors == ["No images to process"]


# =============================================================================
# PreviewDebouncer
# =============================================================================

def test_debouncer_emits_only_last_request():
    get_app()
    debouncer = PreviewDebouncer(delay_ms=50)
    emitted = []
    debouncer.preview_requested.connect(emitted.append)

    spec = WatermarkSpec()
    for generation in range(1, 4):
        debouncer.request_preview(PreviewConfig("t", b"", "image/png", spec, generation))
    assert debouncer.is_pending

    process_events(300)

    assert [config.generation for config in emitted] == [3]
    assert not debouncer.is_pending


def test_debouncer_cancel_drops_pending_request():
    get_app()
    debouncer = PreviewDebouncer(delay_ms=50)
    emitted = []
    debouncer.preview_requested.connect(emitted.append)

    debouncer.request_preview(PreviewConfig("t", b"", "image/png", WatermarkSpec(), 1))
    debouncer.cancel()
    process_events(200)

    assert emitted == []


# =============================================================================
# PreviewManager
# =============================================================================

def test_rapid_requests_render_once_with_latest_spec():
    get_app()
    renderer = RecordingRenderer()
    resources = ResourceLifecycle()
    manager = PreviewManager(resources, renderer, debounce_ms=50)
    task = make_task()

    for text in ("A", "AB", "ABC"):
        manager.request_preview(task, WatermarkSpec(text=text))

    handle = wait_for_signal(manager.preview_updated, 10000)
    process_events(300)
    manager.wait_for_workers()

    assert handle is not None, "Preview timed out"
    assert renderer.texts == ["ABC"]
    expected = WatermarkRenderer().render(task.source_bytes, WatermarkSpec(text="ABC"), "image/png")
    assert bytes(handle.value) == expected


def test_superseded_preview_is_ignored():
    get_app()
    renderer = RecordingRenderer()
    resources = ResourceLifecycle()
    manager = PreviewManager(resources, renderer, debounce_ms=20)
    task = make_task()
    updates = []
    manager.preview_updated.connect(updates.append)

    manager.request_preview(task, WatermarkSpec(text="SLOW"))
    wait_for_signal(manager.preview_started, 5000)
    manager.request_preview(task, WatermarkSpec(text="FAST"))

    # Long enough for the slow render to finish and be discarded
    process_events(1500)
    manager.wait_for_workers()
    process_events(100)

    assert "FAST" in renderer.texts
    assert len(updates) == 1
    expected = WatermarkRenderer().render(task.source_bytes, WatermarkSpec(text="FAST"), "image/png")
    assert bytes(resources.get(PREVIEW_SLOT).value) == expected


def test_new_preview_releases_previous_handle():
    get_app()
    resources = ResourceLifecycle()
    manager = PreviewManager(resources, debounce_ms=20)
    task = make_task()

    manager.request_preview(task, WatermarkSpec(text="one"))
    first = wait_for_signal(manager.preview_updated, 10000)
    manager.request_preview(task, WatermarkSpec(text="two"))
    second = wait_for_signal(manager.preview_updated, 10000)
    manager.wait_for_workers()

    assert first is not None and second is not None
    assert first.released
    assert not second.released
    assert resources.keys() == [PREVIEW_SLOT]
    assert manager.preview_handle is second


def test_clearing_focus_releases_preview():
    get_app()
    resources = ResourceLifecycle()
    manager = PreviewManager(resources, debounce_ms=20)

    manager.request_preview(make_task(), WatermarkSpec(text="bye"))
    handle = wait_for_signal(manager.preview_updated, 10000)
    manager.wait_for_workers()

    manager.request_preview(None, WatermarkSpec())

    assert handle is not None and handle.released
    assert PREVIEW_SLOT not in resources
    assert manager.preview_handle is None


def test_render_failure_reports_preview_error():
    get_app()
    manager = PreviewManager(ResourceLifecycle(), debounce_ms=20)
    broken = Task(id="bad", name="bad.png", source_bytes=b"junk", size_bytes=4, mime_type="image/png")

    manager.request_preview(broken, WatermarkSpec())
    error = wait_for_signal(manager.preview_error, 10000)
    manager.wait_for_workers()

    assert error is not None
    assert manager.preview_handle is None


# =============================================================================
# Thumbnails
# =============================================================================

def test_released_handle_gives_no_thumbnail():
    resources = ResourceLifecycle()
    handle = resources.acquire("t1", create_test_image())
    resources.replace("t1", create_test_image(64, 64))

    assert handle.released
    assert handle_to_pixmap(handle) is None
    assert handle_to_pixmap(None) is None


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
