"""
Test script for the batch pipeline and output writers.

Run with: pytest tests/test_pipeline.py
"""

import io
import sys
import zipfile
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import pytest
from PIL import Image

from batchmark.core import (
    BatchPipeline, DirectoryWriter, ImageSource, PipelineListener, TaskStatus,
    WatermarkRenderer, WatermarkSpec, WriteBackError, Writer, export_archive
)

CORNER_SPEC = WatermarkSpec(text="TEST", opacity=0.5, positions=("top-left", "bottom-right"))


def create_test_image(width: int = 800, height: int = 600, seed: int = 0) -> bytes:
    """Create a gradient test image (PNG bytes); ``seed`` varies the blue channel."""
    xs = np.linspace(0, 255, width, dtype=np.float32)
    ys = np.linspace(0, 255, height, dtype=np.float32)
    arr = np.zeros((height, width, 3), dtype=np.uint8)
    arr[..., 0] = xs[np.newaxis, :].astype(np.uint8)
    arr[..., 1] = ys[:, np.newaxis].astype(np.uint8)
    arr[..., 2] = (40 * seed) % 256

    buffer = io.BytesIO()
    Image.fromarray(arr, mode="RGB").save(buffer, format="PNG")
    return buffer.getvalue()


def image_source(name: str, seed: int = 0, width: int = 800, height: int = 600) -> ImageSource:
    return ImageSource(name=name, data=create_test_image(width, height, seed), mime_type="image/png")


def pixels(data: bytes) -> np.ndarray:
    return np.asarray(Image.open(io.BytesIO(data)).convert("RGB")).astype(np.int16)


class RecordingListener(PipelineListener):
    """Keeps every notification for later assertions."""

    def __init__(self):
        self.tasks = []
        self.stats = []
        self.finished = []

    def on_task_changed(self, task):
        self.tasks.append(task)

    def on_stats_changed(self, stats):
        self.stats.append(stats)

    def on_batch_finished(self, stats):
        self.finished.append(stats)


class MemoryWriter(Writer):
    def __init__(self):
        self.files = {}

    def write(self, name, data):
        self.files[name] = data


class FailingWriter(Writer):
    def write(self, name, data):
        raise WriteBackError(f"disk full while writing {name}")


class ReadOnlyWriter(Writer):
    def write(self, name, data):
        raise PermissionError("read-only volume")


# =============================================================================
# Batch runs
# =============================================================================

def test_all_tasks_complete_with_corner_watermarks():
    pipeline = BatchPipeline()
    pipeline.add_sources([image_source(f"img{i}.png", i) for i in range(3)])

    stats = pipeline.run(CORNER_SPEC)

    assert (stats.total, stats.completed, stats.failed) == (3, 3, 0)
    for task in pipeline.tasks:
        assert task.status is TaskStatus.COMPLETED
        changed = np.abs(pixels(task.output_bytes) - pixels(task.source_bytes)).sum(axis=2) > 0
        assert changed[:150, :400].any()
        assert changed[450:, 400:].any()
        assert not changed[150:450, :].any()
        assert not changed[:150, 400:].any()
        assert not changed[450:, :400].any()


def test_decode_failure_is_isolated():
    pipeline = BatchPipeline()
    pipeline.add_sources([
        image_source("a.png", 1),
        ImageSource(name="broken.png", data=b"not an image at all", mime_type="image/png"),
        image_source("c.png", 2),
    ])

    stats = pipeline.run(CORNER_SPEC)

    assert (stats.completed, stats.failed) == (2, 1)
    statuses = [task.status for task in pipeline.tasks]
    assert statuses == [TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.COMPLETED]

    failed = pipeline.tasks[1]
    assert failed.output_bytes is None
    assert failed.error_message
    # The failed task keeps showing its original image
    assert not failed.display_handle.released


def test_non_image_sources_are_skipped():
    pipeline = BatchPipeline()
    created = pipeline.add_sources([
        image_source("a.png"),
        ImageSource(name="notes.txt", data=b"hello", mime_type="text/plain"),
    ])

    assert [task.name for task in created] == ["a.png"]
    assert pipeline.stats.total == 1


def test_rerun_resets_and_reproduces_outputs():
    pipeline = BatchPipeline()
    pipeline.add_sources([image_source("a.png", 1), image_source("b.png", 2)])
    pipeline.run(CORNER_SPEC)
    first_outputs = [task.output_bytes for task in pipeline.tasks]

    listener = RecordingListener()
    pipeline.subscribe(listener)
    pipeline.run(CORNER_SPEC)

    # Every task goes back to PENDING before anything is processed
    assert [task.status for task in listener.tasks[:2]] == [TaskStatus.PENDING] * 2
    assert all(task.output_bytes is None for task in listener.tasks[:2])
    assert [task.output_bytes for task in pipeline.tasks] == first_outputs


def test_task_transitions_and_stats_invariant():
    pipeline = BatchPipeline()
    pipeline.add_sources([image_source(f"{i}.png", i, 200, 150) for i in range(3)])
    listener = RecordingListener()
    pipeline.subscribe(listener)

    pipeline.run(WatermarkSpec(text="abc"))

    for stats in listener.stats:
        assert stats.completed + stats.failed <= stats.total
    completed = [stats.completed for stats in listener.stats]
    assert completed == sorted(completed)

    by_task = {}
    for task in listener.tasks:
        by_task.setdefault(task.id, []).append(task.status)
    for statuses in by_task.values():
        assert statuses == [TaskStatus.PENDING, TaskStatus.PROCESSING, TaskStatus.COMPLETED]

    assert listener.finished == [pipeline.stats]


def test_spec_change_applies_to_tasks_not_started():
    pipeline = BatchPipeline()
    pipeline.add_sources([image_source("a.png", 1, 300, 200), image_source("b.png", 2, 300, 200)])
    first_spec = WatermarkSpec(text="FIRST", positions=("center",))
    second_spec = WatermarkSpec(text="SECOND", positions=("tile",))

    class SwitchSpec(PipelineListener):
        def on_task_changed(self, task):
            if task.status is TaskStatus.COMPLETED:
                pipeline.spec = second_spec

    pipeline.subscribe(SwitchSpec())
    pipeline.run(first_spec)

    renderer = WatermarkRenderer()
    first, second = pipeline.tasks
    assert first.output_bytes == renderer.render(first.source_bytes, first_spec, "image/png")
    assert second.output_bytes == renderer.render(second.source_bytes, second_spec, "image/png")


def test_completed_task_holds_processed_handle():
    pipeline = BatchPipeline()
    (task,) = pipeline.add_sources([image_source("a.png", 1, 200, 150)])
    original_handle = task.display_handle

    pipeline.run(WatermarkSpec(text="x"))

    done = pipeline.get_task(task.id)
    assert original_handle.released
    assert bytes(done.display_handle.value) == done.output_bytes


def test_cancel_leaves_remaining_tasks_pending():
    pipeline = BatchPipeline()
    pipeline.add_sources([image_source(f"{i}.png", i, 200, 150) for i in range(4)])

    class CancelAfterFirst(PipelineListener):
        def on_task_changed(self, task):
            if task.status is TaskStatus.COMPLETED:
                pipeline.cancel()

    pipeline.subscribe(CancelAfterFirst())
    stats = pipeline.run(WatermarkSpec(text="x"))

    assert (stats.completed, stats.failed, stats.pending) == (1, 0, 3)
    assert not pipeline.is_running


def test_run_while_running_is_rejected():
    pipeline = BatchPipeline()
    pipeline.add_sources([image_source("a.png", 1, 200, 150)])
    errors = []

    class Reenter(PipelineListener):
        def on_task_changed(self, task):
            if task.status is TaskStatus.PROCESSING:
                for attempt in (pipeline.run, pipeline.clear):
                    try:
                        attempt()
                    except RuntimeError as e:
                        errors.append(e)

    pipeline.subscribe(Reenter())
    pipeline.run(WatermarkSpec(text="x"))

    assert len(errors) == 2
    assert pipeline.stats.completed == 1


def test_empty_queue_runs_to_empty_stats():
    stats = BatchPipeline().run()
    assert (stats.total, stats.completed, stats.failed) == (0, 0, 0)


def test_clear_releases_every_handle():
    pipeline = BatchPipeline()
    tasks = pipeline.add_sources([image_source(f"{i}.png", i, 100, 100) for i in range(3)])
    pipeline.run(WatermarkSpec(text="x"))
    handles = [pipeline.get_task(task.id).display_handle for task in tasks]

    assert pipeline.clear() == 3
    assert pipeline.tasks == ()
    assert len(pipeline.resources) == 0
    assert all(handle.released for handle in handles)


# =============================================================================
# Write-back and export
# =============================================================================

def test_writer_receives_prefixed_names():
    writer = MemoryWriter()
    pipeline = BatchPipeline(writer=writer)
    pipeline.add_sources([image_source("photo.png", 1, 200, 150)])
    pipeline.run(WatermarkSpec(text="x"))

    assert list(writer.files) == ["marked_photo.png"]
    assert writer.files["marked_photo.png"] == pipeline.tasks[0].output_bytes


def test_write_failure_keeps_task_completed():
    pipeline = BatchPipeline(writer=FailingWriter())
    pipeline.add_sources([image_source("a.png", 1, 200, 150), image_source("b.png", 2, 200, 150)])

    stats = pipeline.run(WatermarkSpec(text="x"))

    assert stats.completed == 2
    for task in pipeline.tasks:
        assert task.status is TaskStatus.COMPLETED
        assert task.output_bytes is not None
        assert "disk full" in task.write_error


def test_unexpected_writer_error_does_not_abort_batch():
    pipeline = BatchPipeline(writer=ReadOnlyWriter())
    pipeline.add_sources([image_source(f"{i}.png", i, 200, 150) for i in range(3)])

    stats = pipeline.run(WatermarkSpec(text="x"))

    assert (stats.completed, stats.failed, stats.pending) == (3, 0, 0)
    for task in pipeline.tasks:
        assert task.status is TaskStatus.COMPLETED
        assert "read-only volume" in task.write_error

    failures = pipeline.write_back(ReadOnlyWriter())
    assert len(failures) == 3


def test_write_back_reports_failures_and_clears_them_on_success():
    pipeline = BatchPipeline()
    pipeline.add_sources([image_source("a.png", 1, 200, 150)])
    pipeline.run(WatermarkSpec(text="x"))

    failures = pipeline.write_back(FailingWriter())
    assert [name for name, _ in failures] == ["marked_a.png"]
    assert pipeline.tasks[0].write_error

    assert pipeline.write_back(MemoryWriter()) == []
    assert pipeline.tasks[0].write_error == ""


def test_directory_writer(tmp_path):
    writer = DirectoryWriter(tmp_path / "out")
    writer.write("marked_a.png", b"abc")
    # Directory components in names are ignored
    writer.write("../escape.png", b"xyz")

    assert (tmp_path / "out" / "marked_a.png").read_bytes() == b"abc"
    assert (tmp_path / "out" / "escape.png").read_bytes() == b"xyz"
    assert not (tmp_path / "escape.png").exists()


def test_directory_writer_failure_raises_write_back_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_bytes(b"")
    with pytest.raises(WriteBackError):
        DirectoryWriter(blocker).write("a.png", b"abc")


def test_export_archive_contains_completed_outputs(tmp_path):
    pipeline = BatchPipeline()
    pipeline.add_sources([
        image_source("a.png", 1, 200, 150),
        ImageSource(name="bad.png", data=b"junk", mime_type="image/png"),
        image_source("a.png", 2, 200, 150),
    ])
    pipeline.run(WatermarkSpec(text="x"))

    archive = export_archive(pipeline.completed_outputs(), tmp_path)

    assert archive.parent == tmp_path
    assert archive.name.startswith("marked_images_") and archive.suffix == ".zip"
    with zipfile.ZipFile(archive) as zf:
        assert zf.namelist() == ["marked_a.png", "marked_a_1.png"]
        assert zf.read("marked_a.png") == pipeline.tasks[0].output_bytes


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
