"""
Batch Pipeline
==============
Owns the task queue and renders it sequentially.

Workflow of run():
1. Reset every task to PENDING and drop previous outputs
2. For each task, in queue order:
   a. PENDING -> PROCESSING
   b. Render with the spec current at that moment
   c. Success: swap the display handle to the output, -> COMPLETED,
      then write back if a writer is configured
   d. Failure: -> FAILED, keep the previous display handle, continue
3. Notify listeners that the batch finished

The task collection is an immutable tuple that is replaced as a whole on
every transition, so observers always see a consistent snapshot. Stats are
published after each transition.
"""

import logging
import uuid
from dataclasses import replace
from typing import Iterable, List, Optional, Tuple

from batchmark.core.errors import WatermarkError, WriteBackError
from batchmark.core.models import BatchStats, ImageSource, Task, TaskStatus, WatermarkSpec
from batchmark.core.renderer import WatermarkRenderer
from batchmark.core.resources import ResourceLifecycle
from batchmark.core.writer import Writer

logger = logging.getLogger(__name__)


class PipelineListener:
    """Receives pipeline notifications. Override the hooks you need."""

    def on_task_changed(self, task: Task):
        pass

    def on_stats_changed(self, stats: BatchStats):
        pass

    def on_batch_finished(self, stats: BatchStats):
        pass


class BatchPipeline:
    """
    Sequential batch watermarking with per-item failure isolation.

    Usage:
        pipeline = BatchPipeline()
        pipeline.add_sources([ImageSource.from_path(p) for p in paths])
        stats = pipeline.run(WatermarkSpec(text="TEST"))
        for name, data in pipeline.completed_outputs():
            ...
    """

    def __init__(
            self,
            renderer: Optional[WatermarkRenderer] = None,
            resources: Optional[ResourceLifecycle] = None,
            writer: Optional[Writer] = None,
            spec: Optional[WatermarkSpec] = None
    ):
        self._renderer = renderer or WatermarkRenderer()
        self._resources = resources if resources is not None else ResourceLifecycle()
        self._writer = writer
        self._spec = spec or WatermarkSpec()

        self._tasks: Tuple[Task, ...] = ()
        self._listeners: List[PipelineListener] = []
        self._running = False
        self._cancel_requested = False

    # ===== State =====

    @property
    def spec(self) -> WatermarkSpec:
        return self._spec

    @spec.setter
    def spec(self, spec: WatermarkSpec):
        # Tasks that have not started yet pick up the new value
        self._spec = spec

    @property
    def tasks(self) -> Tuple[Task, ...]:
        return self._tasks

    @property
    def stats(self) -> BatchStats:
        return BatchStats.from_tasks(self._tasks)

    @property
    def resources(self) -> ResourceLifecycle:
        return self._resources

    @property
    def writer(self) -> Optional[Writer]:
        return self._writer

    @writer.setter
    def writer(self, writer: Optional[Writer]):
        self._writer = writer

    @property
    def is_running(self) -> bool:
        return self._running

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    # ===== Listeners =====

    def subscribe(self, listener: PipelineListener):
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: PipelineListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish_task(self, task: Task):
        for listener in list(self._listeners):
            listener.on_task_changed(task)

    def _publish_stats(self):
        stats = self.stats
        for listener in list(self._listeners):
            listener.on_stats_changed(stats)

    # ===== Queue management =====

    def add_sources(self, sources: Iterable[ImageSource]) -> List[Task]:
        """
        Enqueue image sources as PENDING tasks.

        Sources whose MIME type is not ``image/*`` are skipped.

        Returns:
            The newly created tasks.
        """
        created = []
        for source in sources:
            if not source.is_image:
                logger.info("Skipping %s: not an image (%s)", source.name, source.mime_type or "unknown type")
                continue

            task_id = uuid.uuid4().hex[:12]
            handle = self._resources.acquire(task_id, source.data)
            created.append(Task(
                id=task_id,
                name=source.name,
                source_bytes=source.data,
                size_bytes=source.size if source.size is not None else len(source.data),
                mime_type=source.mime_type,
                display_handle=handle,
            ))

        if created:
            self._tasks = self._tasks + tuple(created)
            for task in created:
                self._publish_task(task)
            self._publish_stats()
        return created

    def clear(self) -> int:
        """
        Remove every task and release its display handle.

        Returns:
            Number of tasks removed.

        Raises:
            RuntimeError: If a run is in progress.
        """
        if self._running:
            raise RuntimeError("Cannot clear the queue while a batch is running")

        removed = self._tasks
        self._tasks = ()
        for task in removed:
            if task.id in self._resources:
                self._resources.release(task.id)

        if removed:
            self._publish_stats()
        return len(removed)

    # ===== Execution =====

    def _update(self, task_id: str, **changes) -> Task:
        """Replace one task in a new tuple and notify listeners."""
        updated = None
        tasks = []
        for task in self._tasks:
            if task.id == task_id:
                task = updated = replace(task, **changes)
            tasks.append(task)
        if updated is None:
            raise KeyError(task_id)

        self._tasks = tuple(tasks)
        self._publish_task(updated)
        self._publish_stats()
        return updated

    def _reset(self):
        self._tasks = tuple(
            replace(
                task,
                status=TaskStatus.PENDING,
                output_bytes=None,
                error_message="",
                write_error="",
            )
            for task in self._tasks
        )
        for task in self._tasks:
            self._publish_task(task)
        self._publish_stats()

    def _process(self, task_id: str):
        task = self._update(task_id, status=TaskStatus.PROCESSING)
        spec = self._spec

        try:
            output = self._renderer.render(task.source_bytes, spec, task.mime_type or None)
        except WatermarkError as e:
            logger.error("Failed to watermark %s: %s", task.name, e)
            self._update(task_id, status=TaskStatus.FAILED, error_message=str(e))
            return
        except Exception as e:
            logger.exception("Unexpected error while watermarking %s", task.name)
            self._update(task_id, status=TaskStatus.FAILED, error_message=f"Unexpected error: {e}")
            return

        handle = self._resources.replace(task_id, output)
        task = self._update(
            task_id,
            status=TaskStatus.COMPLETED,
            output_bytes=output,
            display_handle=handle,
        )

        if self._writer is not None:
            self._write_back(task, self._writer)

    def _write_back(self, task: Task, writer: Writer) -> str:
        """Persist one completed output. Returns the error message, if any."""
        try:
            writer.write(task.output_name, task.output_bytes)
        except WriteBackError as e:
            # The render succeeded; only persistence failed
            logger.warning("Could not write %s: %s", task.output_name, e)
            self._update(task.id, write_error=str(e))
            return str(e)
        except Exception as e:
            # Writers are pluggable; keep the task COMPLETED whatever they raise
            logger.exception("Unexpected error while writing %s", task.output_name)
            message = f"Unexpected write error: {e}"
            self._update(task.id, write_error=message)
            return message

        if task.write_error:
            self._update(task.id, write_error="")
        return ""

    def run(self, spec: Optional[WatermarkSpec] = None) -> BatchStats:
        """
        Render every queued task, one at a time.

        Args:
            spec: Spec to use. If None, the current ``spec`` is used.
                  Replacing ``spec`` during the run affects the tasks that
                  have not started yet.

        Returns:
            Final batch statistics.

        Raises:
            RuntimeError: If another run is already in progress.
        """
        if self._running:
            raise RuntimeError("A batch run is already in progress")
        if spec is not None:
            self._spec = spec

        self._running = True
        self._cancel_requested = False
        try:
            self._reset()
            task_ids = [task.id for task in self._tasks]
            logger.info("Starting batch of %d images", len(task_ids))

            for task_id in task_ids:
                if self._cancel_requested:
                    logger.info("Batch cancelled, %d images left pending", self.stats.pending)
                    break
                self._process(task_id)
        finally:
            self._running = False

        stats = self.stats
        logger.info(
            "Batch finished: %d completed, %d failed, %d total",
            stats.completed, stats.failed, stats.total
        )
        for listener in list(self._listeners):
            listener.on_batch_finished(stats)
        return stats

    def cancel(self):
        """Stop the current run after the image in flight."""
        if self._running:
            self._cancel_requested = True

    # ===== Outputs =====

    def completed_outputs(self) -> List[Tuple[str, bytes]]:
        """(output name, bytes) for every COMPLETED task, in queue order."""
        return [
            (task.output_name, task.output_bytes)
            for task in self._tasks
            if task.status is TaskStatus.COMPLETED
        ]

    def write_back(self, writer: Writer) -> List[Tuple[str, str]]:
        """
        Write every completed output through ``writer``.

        A failure on one item is logged and does not stop the others.

        Returns:
            (output name, error message) for each failed write.
        """
        failures = []
        for task in self._tasks:
            if task.status is not TaskStatus.COMPLETED:
                continue
            error = self._write_back(task, writer)
            if error:
                failures.append((task.output_name, error))
        return failures
