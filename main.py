"""
Batchmark - Main Entry Point
============================
A desktop application for batch text watermarking.

Usage:
    python main.py

Architecture:
    - Model: batchmark/core/ (rendering, pipeline, resource lifecycle)
    - View: batchmark/ui/ (PyQt6 interface)
    - Controller: This file (signal/slot connections)

Features:
    - Text watermarks at corners, center, top and bottom, or tiled
    - Sequential batch processing with per-image failure isolation
    - Real-time preview with debounce
    - Export to a folder or a ZIP archive
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

from PyQt6.QtWidgets import QApplication, QFileDialog

from batchmark import __app_name__, __version__, config
from batchmark.core import (
    BatchPipeline, BatchStats, DirectoryWriter, ImageSource, ResourceLifecycle,
    Task, WatermarkError, WatermarkSpec, archive_name, export_archive
)
from batchmark.ui import MainWindow
from batchmark.workers import BatchWorker, PreviewManager, qimage_loader

logger = logging.getLogger(__name__)


class WatermarkController:
    """
    Controller class that connects UI signals to the pipeline and workers.

    Responsibilities:
    - Load dropped or selected files into the queue
    - Run the batch on a worker thread and mirror its progress
    - Keep the live preview in sync with focus and parameters
    - Export finished outputs
    """

    def __init__(self, main_window: MainWindow):
        """
        Initialize the controller.

        Args:
            main_window: The main application window.
        """
        self.window = main_window

        # One registry for queue thumbnails and the preview slot
        self.resources = ResourceLifecycle(loader=qimage_loader)
        self.pipeline = BatchPipeline(resources=self.resources, spec=main_window.spec_form.spec())
        self.preview_manager = PreviewManager(self.resources)

        # Worker reference (to prevent garbage collection)
        self._batch_worker: Optional[BatchWorker] = None

        self._connect_signals()

    def _connect_signals(self):
        """Connect UI signals to controller slots."""
        task_list = self.window.task_list
        task_list.files_added.connect(self._on_files_added)
        task_list.clear_requested.connect(self._on_clear_requested)
        task_list.current_task_changed.connect(self._on_current_task_changed)

        self.window.spec_form.spec_changed.connect(self._on_spec_changed)
        self.window.start_btn.clicked.connect(self._on_start_requested)
        self.window.cancel_btn.clicked.connect(self._on_cancel_requested)
        self.window.export_folder_btn.clicked.connect(self._on_export_folder)
        self.window.export_zip_btn.clicked.connect(self._on_export_archive)

        self.preview_manager.preview_started.connect(self.window.preview_widget.set_loading)
        self.preview_manager.preview_updated.connect(self.window.preview_widget.set_preview)
        self.preview_manager.preview_error.connect(self.window.preview_widget.set_error)

    # ===== Queue =====

    def _on_files_added(self, paths: List[Path]):
        sources = []
        for path in paths:
            try:
                sources.append(ImageSource.from_path(path))
            except OSError as e:
                logger.warning("Cannot read %s: %s", path, e)

        added = self.pipeline.add_sources(sources)
        for task in added:
            self.window.task_list.update_task(task)
        self.window.stats_panel.set_stats(self.pipeline.stats)

        skipped = len(paths) - len(added)
        if skipped:
            self.window.show_message(f"已添加 {len(added)} 張，略過 {skipped} 個非圖片檔案")
        else:
            self.window.show_message(f"已添加 {len(added)} 張圖片")
        self.window.task_list.select_first()

    def _on_clear_requested(self):
        if self.pipeline.is_running:
            self.window.show_warning("無法清空", "批次處理進行中，請先取消或等待完成。")
            return

        self.preview_manager.request_preview(None, self.pipeline.spec)
        removed = self.pipeline.clear()
        self.window.task_list.clear_tasks()
        self.window.preview_widget.clear()
        self.window.stats_panel.set_stats(self.pipeline.stats)
        self.window.set_export_enabled(False)
        self.window.show_message(f"已清空 {removed} 張圖片")

    # ===== Preview =====

    def _current_task(self) -> Optional[Task]:
        task_id = self.window.task_list.current_task_id()
        return self.pipeline.get_task(task_id) if task_id else None

    def _on_current_task_changed(self, task_id: str):
        task = self.pipeline.get_task(task_id) if task_id else None
        if task is None:
            self.window.preview_widget.clear()
        self.preview_manager.request_preview(task, self.pipeline.spec)

    def _on_spec_changed(self, spec: WatermarkSpec):
        # Tasks not yet started in a running batch pick this up too
        self.pipeline.spec = spec
        task = self._current_task()
        if task is not None:
            self.preview_manager.request_preview(task, spec)

    # ===== Batch =====

    def _on_start_requested(self):
        if self._batch_worker is not None and self._batch_worker.isRunning():
            return
        if not self.pipeline.tasks:
            self.window.show_warning("沒有圖片", "請先添加要處理的圖片。")
            return

        self.window.set_processing(True)
        self.window.show_message("開始處理...", 0)

        self._batch_worker = BatchWorker(self.pipeline, self.window.spec_form.spec())
        self._batch_worker.task_updated.connect(self._on_task_updated)
        self._batch_worker.stats_changed.connect(self.window.stats_panel.set_stats)
        self._batch_worker.finished_all.connect(self._on_batch_finished)
        self._batch_worker.error.connect(self._on_batch_error)
        self._batch_worker.finished.connect(self._on_worker_thread_finished)
        self._batch_worker.start()

    def _on_cancel_requested(self):
        """Handle batch cancellation."""
        if self._batch_worker and self._batch_worker.isRunning():
            self._batch_worker.cancel()
            self.window.show_message("正在取消操作...")

    def _on_task_updated(self, task: Task):
        self.window.task_list.update_task(task)
        self.window.show_message(f"處理中: {task.name} ({task.status.value})", 0)

    def _on_batch_finished(self, stats: BatchStats):
        """Handle batch completion."""
        self.window.set_processing(False)
        self.window.stats_panel.set_stats(stats)
        self.window.set_export_enabled(stats.completed > 0)

        if stats.failed == 0 and stats.pending == 0:
            self.window.show_message(f"全部完成！成功處理 {stats.completed} 張圖片", 5000)
        else:
            self.window.show_message(
                f"處理完成：成功 {stats.completed} 張，失敗 {stats.failed} 張，"
                f"未處理 {stats.pending} 張",
                5000
            )

    def _on_worker_thread_finished(self):
        """Cleanup worker once its thread has stopped."""
        if self._batch_worker:
            self._batch_worker.deleteLater()
            self._batch_worker = None

    def _on_batch_error(self, error_message: str):
        """Handle batch error."""
        self.window.show_error("處理錯誤", error_message)

    # ===== Export =====

    def _refresh_tasks(self):
        for task in self.pipeline.tasks:
            self.window.task_list.update_task(task)

    def _on_export_folder(self):
        output_dir = self.window.get_output_directory()
        if not output_dir:
            self.window.show_warning("未選擇資料夾", "請先選擇輸出資料夾。")
            return

        failures = self.pipeline.write_back(DirectoryWriter(output_dir))
        self._refresh_tasks()

        written = self.pipeline.stats.completed - len(failures)
        if failures:
            details = "\n".join(f"• {name}: {error}" for name, error in failures[:5])
            if len(failures) > 5:
                details += f"\n... 還有 {len(failures) - 5} 個"
            self.window.show_warning(
                "部分檔案寫入失敗",
                f"成功寫入 {written} 張，失敗 {len(failures)} 張：\n\n{details}"
            )
        else:
            self.window.show_info("匯出完成", f"已將 {written} 張圖片寫入：\n{output_dir}")

    def _on_export_archive(self):
        outputs = self.pipeline.completed_outputs()
        if not outputs:
            return

        default = str(Path(self.window.get_output_directory() or Path.home()) / archive_name())
        path, _ = QFileDialog.getSaveFileName(self.window, "儲存 ZIP", default, "ZIP 壓縮檔 (*.zip)")
        if not path:
            return

        try:
            destination = export_archive(outputs, path)
        except WatermarkError as e:
            self.window.show_error("匯出失敗", str(e))
            return
        self.window.show_message(f"已匯出 {len(outputs)} 張圖片到 {destination.name}", 5000)

    # ===== Shutdown =====

    def shutdown(self):
        """Stop background work and release every display handle."""
        if self._batch_worker is not None and self._batch_worker.isRunning():
            self._batch_worker.cancel()
            self._batch_worker.wait()
        self.preview_manager.cancel()
        self.preview_manager.wait_for_workers()
        self.resources.clear_all()


def main():
    """Application entry point."""
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    # Create application
    app = QApplication(sys.argv)
    app.setApplicationName(__app_name__)
    app.setApplicationVersion(__version__)
    app.setOrganizationName("Batchmark")

    # Create main window
    window = MainWindow()

    # Create controller (connects signals)
    controller = WatermarkController(window)
    app.aboutToQuit.connect(controller.shutdown)

    # Show window
    window.show()

    # Run event loop
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
