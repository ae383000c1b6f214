"""
Batch Worker - Async Batch Watermarking
=======================================
QThread worker that runs BatchPipeline.run() off the UI thread.

Workflow:
1. Subscribe to the pipeline
2. Run the batch (strictly sequential, one image at a time)
3. Re-emit every task transition and stats update as Qt signals
4. Emit finished signal with the final stats

All signal payloads are immutable snapshots (Task, BatchStats), so the UI
can read them from its own thread without tearing.
"""

import logging
from typing import Optional

from PyQt6.QtCore import QThread, pyqtSignal

from batchmark.core.models import BatchStats, Task, WatermarkSpec
from batchmark.core.pipeline import BatchPipeline, PipelineListener

logger = logging.getLogger(__name__)


class _SignalListener(PipelineListener):
    """Forwards pipeline notifications to the worker's signals."""

    def __init__(self, worker: "BatchWorker"):
        self._worker = worker

    def on_task_changed(self, task: Task):
        self._worker.task_updated.emit(task)

    def on_stats_changed(self, stats: BatchStats):
        self._worker.stats_changed.emit(stats)


class BatchWorker(QThread):
    """
    Worker thread for rendering the whole queue.

    Signals:
        task_updated(Task): Emitted on every task transition
        stats_changed(BatchStats): Emitted after every transition
        finished_all(BatchStats): Emitted when the run is over
        error(str): Emitted on critical errors
    """

    # Signals
    task_updated = pyqtSignal(object)  # Task
    stats_changed = pyqtSignal(object)  # BatchStats
    finished_all = pyqtSignal(object)  # BatchStats
    error = pyqtSignal(str)  # Error message

    def __init__(self, pipeline: BatchPipeline, spec: Optional[WatermarkSpec] = None, parent=None):
        """
        Initialize the batch worker.

        Args:
            pipeline: Pipeline holding the queue to render.
            spec: Spec to start the run with. If None, the pipeline's
                  current spec is used.
            parent: Optional parent QObject.
        """
        super().__init__(parent)
        self.pipeline = pipeline
        self.spec = spec
        self._listener = _SignalListener(self)

    def cancel(self):
        """Request cancellation after the image in flight."""
        self.pipeline.cancel()

    def run(self):
        """
        Main worker execution.

        Per-image failures are handled by the pipeline; only errors that
        abort the run itself reach the error signal.
        """
        stats = self.pipeline.stats
        if stats.total == 0:
            self.error.emit("No images to process")
            self.finished_all.emit(stats)
            return

        self.pipeline.subscribe(self._listener)
        try:
            stats = self.pipeline.run(self.spec)
        except Exception as e:
            logger.exception("Batch run aborted")
            self.error.emit(f"Critical error: {e}")
            stats = self.pipeline.stats
        finally:
            self.pipeline.unsubscribe(self._listener)

        # Emit final results
        self.finished_all.emit(stats)
