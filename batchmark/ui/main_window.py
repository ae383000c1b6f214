"""
Main Window
===========
佇列在左、預覽在中、參數在右的單視窗佈局。
"""

from pathlib import Path
from typing import Optional

from PyQt6.QtCore import Qt, QTimer
from PyQt6.QtWidgets import (
    QMainWindow, QWidget, QHBoxLayout, QVBoxLayout, QSplitter, QStatusBar,
    QMessageBox, QApplication, QLabel, QPushButton, QGroupBox, QFileDialog
)

from batchmark import __app_name__, __version__
from .widgets import PreviewWidget, SpecForm, StatsPanel, TaskListWidget


class MainWindow(QMainWindow):
    """
    Layout:
    - Left: task queue and batch statistics
    - Center: live preview of the focused image
    - Right: watermark parameters and batch actions
    """

    APP_NAME = __app_name__
    APP_VERSION = __version__

    def __init__(self, parent: Optional[QWidget] = None):
        super().__init__(parent)
        self._output_directory = ""

        self._setup_window()
        self._setup_ui()
        self._setup_statusbar()
        self.set_output_directory(str(Path.home() / "Pictures" / "Watermarked"))

    def _setup_window(self):
        """Setup window properties."""
        self.setWindowTitle(self.APP_NAME)
        self.setMinimumSize(1100, 700)
        self.resize(1360, 820)

        # Center on screen
        screen = QApplication.primaryScreen()
        if screen:
            geo = screen.availableGeometry()
            x = (geo.width() - self.width()) // 2
            y = (geo.height() - self.height()) // 2
            self.move(x, y)

    def _setup_ui(self):
        central = QWidget()
        central.setObjectName("centralContainer")
        self.setCentralWidget(central)

        main_layout = QHBoxLayout(central)
        main_layout.setContentsMargins(12, 12, 12, 12)

        splitter = QSplitter(Qt.Orientation.Horizontal)
        main_layout.addWidget(splitter)

        # === LEFT: queue ===
        left = QWidget()
        left_layout = QVBoxLayout(left)
        left_layout.setContentsMargins(0, 0, 0, 0)
        self.task_list = TaskListWidget()
        left_layout.addWidget(self.task_list, 1)
        self.stats_panel = StatsPanel()
        left_layout.addWidget(self.stats_panel)
        splitter.addWidget(left)

        # === CENTER: preview ===
        self.preview_widget = PreviewWidget()
        splitter.addWidget(self.preview_widget)

        # === RIGHT: parameters and actions ===
        right = QWidget()
        right_layout = QVBoxLayout(right)
        right_layout.setContentsMargins(0, 0, 0, 0)

        spec_group = QGroupBox("水印設定")
        spec_layout = QVBoxLayout(spec_group)
        self.spec_form = SpecForm()
        spec_layout.addWidget(self.spec_form)
        right_layout.addWidget(spec_group)

        output_group = QGroupBox("輸出")
        output_layout = QVBoxLayout(output_group)
        self.output_dir_label = QLabel()
        self.output_dir_label.setWordWrap(True)
        output_layout.addWidget(self.output_dir_label)
        self.btn_choose_dir = QPushButton("📂 選擇輸出資料夾")
        self.btn_choose_dir.clicked.connect(self._choose_output_directory)
        output_layout.addWidget(self.btn_choose_dir)
        right_layout.addWidget(output_group)

        right_layout.addStretch(1)

        self.start_btn = QPushButton("🚀 開始處理")
        self.start_btn.setObjectName("primaryButton")
        self.start_btn.setMinimumHeight(40)
        right_layout.addWidget(self.start_btn)

        self.cancel_btn = QPushButton("取消")
        self.cancel_btn.setEnabled(False)
        right_layout.addWidget(self.cancel_btn)

        self.export_folder_btn = QPushButton("💾 匯出到資料夾")
        self.export_folder_btn.setEnabled(False)
        right_layout.addWidget(self.export_folder_btn)

        self.export_zip_btn = QPushButton("📦 打包下載 ZIP")
        self.export_zip_btn.setEnabled(False)
        right_layout.addWidget(self.export_zip_btn)

        splitter.addWidget(right)
        splitter.setStretchFactor(0, 1)
        splitter.setStretchFactor(1, 3)
        splitter.setStretchFactor(2, 1)

    def _setup_statusbar(self):
        """Setup minimal status bar."""
        self.statusbar = QStatusBar()
        self.statusbar.setObjectName("mainStatusBar")
        self.setStatusBar(self.statusbar)

        self.status_label = QLabel("系統就緒")
        self.status_label.setObjectName("statusLabel")
        self.statusbar.addWidget(self.status_label)

        right_label = QLabel(f"◇ {self.APP_NAME} v{self.APP_VERSION}")
        right_label.setObjectName("statusRightLabel")
        self.statusbar.addPermanentWidget(right_label)

    def _choose_output_directory(self):
        folder = QFileDialog.getExistingDirectory(self, "選擇輸出資料夾", self._output_directory)
        if folder:
            self.set_output_directory(folder)

    # === Public API ===

    def get_output_directory(self) -> str:
        return self._output_directory

    def set_output_directory(self, directory: str):
        self._output_directory = directory
        self.output_dir_label.setText(directory)
        self.output_dir_label.setToolTip(directory)

    def set_processing(self, is_processing: bool):
        """Lock queue edits and batch actions while a run is in progress."""
        self.start_btn.setEnabled(not is_processing)
        self.cancel_btn.setEnabled(is_processing)
        self.task_list.set_editable(not is_processing)
        if is_processing:
            self.export_folder_btn.setEnabled(False)
            self.export_zip_btn.setEnabled(False)

    def set_export_enabled(self, enabled: bool):
        self.export_folder_btn.setEnabled(enabled)
        self.export_zip_btn.setEnabled(enabled)

    def show_message(self, message: str, timeout: int = 3000):
        """Show a message in the status bar."""
        self.status_label.setText(message)
        if timeout > 0:
            QTimer.singleShot(timeout, lambda: self.status_label.setText("系統就緒"))

    def show_error(self, title: str, message: str):
        """Show an error dialog."""
        QMessageBox.critical(self, title, message)

    def show_warning(self, title: str, message: str):
        """Show a warning dialog."""
        QMessageBox.warning(self, title, message)

    def show_info(self, title: str, message: str):
        """Show an info dialog."""
        QMessageBox.information(self, title, message)

