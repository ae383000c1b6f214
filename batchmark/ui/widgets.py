"""
Reusable UI Widgets
===================
Custom widgets used by the main window.

Key Components:
- DragDropLabel: Drag-and-drop file zone
- TaskListWidget: Queue view with thumbnails and per-task status
- PreviewWidget: Live watermark preview display
- StatsPanel: Aggregate progress (total / completed / failed)
- ColorButton: Color picker button
- SpecForm: Watermark parameter editor
"""

from pathlib import Path
from typing import Dict, List, Optional

from PyQt6.QtCore import Qt, pyqtSignal, QSize, QRectF
from PyQt6.QtGui import (
    QDragEnterEvent, QDropEvent, QPixmap, QIcon, QColor, QImage,
    QPainter, QPainterPath, QBrush, QPen, QFont, QLinearGradient
)
from PyQt6.QtWidgets import (
    QLabel, QListWidget, QListWidgetItem, QLineEdit, QComboBox, QCheckBox,
    QWidget, QVBoxLayout, QHBoxLayout, QGridLayout, QPushButton, QSlider,
    QFileDialog, QAbstractItemView, QSizePolicy, QProgressBar, QFormLayout
)

from batchmark import config
from batchmark.core.errors import HandleLifecycleError
from batchmark.core.models import BatchStats, PositionTag, Task, TaskStatus, WatermarkSpec
from batchmark.core.resources import DisplayHandle


def handle_to_pixmap(handle: Optional[DisplayHandle]) -> Optional[QPixmap]:
    """Convert a live display handle (QImage) into a QPixmap for painting."""
    if handle is None:
        return None
    try:
        image = handle.value
    except HandleLifecycleError:
        # The batch thread swapped this handle for the rendered output after
        # the task snapshot was queued. The update carrying the new handle is
        # right behind it, so the stale row just keeps its placeholder.
        return None
    if not isinstance(image, QImage) or image.isNull():
        return None
    return QPixmap.fromImage(image)


class DragDropLabel(QLabel):
    """
    A label that accepts drag-and-drop files and folders.

    Displays a drop zone with visual feedback when files are dragged over.
    Dropped folders are scanned (non-recursively) for supported images.

    Signals:
        files_dropped(list[Path]): Emitted when files are dropped or picked.
    """

    files_dropped = pyqtSignal(list)  # List[Path]

    ACCENT_COLOR = "#00B4D8"
    BORDER_COLOR = "#4B5563"
    TEXT_COLOR = "#B0B8C4"

    def __init__(self, text: str = "點擊或拖放添加圖片", parent: Optional[QWidget] = None):
        super().__init__(parent)

        self._hint_text = text
        self._is_dragging = False

        self.setAcceptDrops(True)
        self.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.setMinimumSize(200, 70)
        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        self.setObjectName("dragDropLabel")
        self.setCursor(Qt.CursorShape.PointingHandCursor)

    @staticmethod
    def _expand(paths: List[Path]) -> List[Path]:
        """Keep supported images; replace folders by the images they contain."""
        found: List[Path] = []
        for path in paths:
            if path.is_dir():
                found.extend(
                    child for child in sorted(path.iterdir())
                    if child.suffix.lower() in config.SUPPORTED_IMAGE_EXTENSIONS
                )
            elif path.suffix.lower() in config.SUPPORTED_IMAGE_EXTENSIONS:
                found.append(path)
        return found

    def paintEvent(self, event):
        """Custom paint for the drop zone."""
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)

        rect = self.rect()
        margin = 4

        path = QPainterPath()
        path.addRoundedRect(QRectF(rect).adjusted(margin, margin, -margin, -margin), 10, 10)

        gradient = QLinearGradient(0, 0, 0, rect.height())
        if self._is_dragging:
            gradient.setColorAt(0, QColor("#1E3A4A"))
            gradient.setColorAt(1, QColor("#152535"))
        else:
            gradient.setColorAt(0, QColor("#2A2D35"))
            gradient.setColorAt(1, QColor("#252830"))
        painter.fillPath(path, QBrush(gradient))

        # Dashed border
        pen = QPen()
        pen.setStyle(Qt.PenStyle.DashLine)
        pen.setWidth(2)
        pen.setDashPattern([6, 4])
        pen.setColor(QColor(self.ACCENT_COLOR if self._is_dragging else self.BORDER_COLOR))
        painter.setPen(pen)
        painter.drawRoundedRect(QRectF(rect).adjusted(margin + 1, margin + 1, -margin - 1, -margin - 1), 9, 9)

        font = QFont()
        font.setPointSize(11)
        font.setWeight(QFont.Weight.Medium)
        painter.setFont(font)

        if self._is_dragging:
            painter.setPen(QColor(self.ACCENT_COLOR))
            hint = "鬆開滑鼠放下圖片 ✨"
        else:
            painter.setPen(QColor(self.TEXT_COLOR))
            hint = self._hint_text
        painter.drawText(QRectF(rect), Qt.AlignmentFlag.AlignCenter, hint)

        painter.end()

    def mousePressEvent(self, event):
        """Handle mouse click to open file dialog."""
        if event.button() == Qt.MouseButton.LeftButton:
            self.open_file_dialog()
        super().mousePressEvent(event)

    def open_file_dialog(self):
        """Open file dialog to select images."""
        formats = " ".join(f"*{fmt}" for fmt in sorted(config.SUPPORTED_IMAGE_EXTENSIONS))
        files, _ = QFileDialog.getOpenFileNames(
            self,
            "選擇圖片",
            "",
            f"圖片檔案 ({formats});;所有檔案 (*.*)"
        )
        if files:
            self.files_dropped.emit([Path(f) for f in files])

    def open_folder_dialog(self):
        """Open folder dialog and emit every supported image inside it."""
        folder = QFileDialog.getExistingDirectory(self, "選擇資料夾")
        if folder:
            paths = self._expand([Path(folder)])
            if paths:
                self.files_dropped.emit(paths)

    def dragEnterEvent(self, event: QDragEnterEvent):
        """Handle drag enter event."""
        if event.mimeData().hasUrls():
            paths = [Path(url.toLocalFile()) for url in event.mimeData().urls() if url.isLocalFile()]
            if self._expand(paths):
                event.acceptProposedAction()
                self._is_dragging = True
                self.update()
                return
        event.ignore()

    def dragLeaveEvent(self, event):
        """Handle drag leave event."""
        self._is_dragging = False
        self.update()
        super().dragLeaveEvent(event)

    def dropEvent(self, event: QDropEvent):
        """Handle drop event."""
        self._is_dragging = False
        self.update()

        paths = self._expand(
            [Path(url.toLocalFile()) for url in event.mimeData().urls() if url.isLocalFile()]
        )
        if paths:
            self.files_dropped.emit(paths)
            event.acceptProposedAction()


class TaskListWidget(QWidget):
    """
    Queue view: one row per task with thumbnail, size and status.

    The widget never owns image data; thumbnails are drawn from the task's
    current display handle.

    Signals:
        files_added(list[Path]): Emitted when the user picks or drops images.
        clear_requested(): Emitted when the clear button is pressed.
        current_task_changed(str): Emitted with the focused task id ("" for none).
    """

    files_added = pyqtSignal(list)  # List[Path]
    clear_requested = pyqtSignal()
    current_task_changed = pyqtSignal(str)

    THUMBNAIL_SIZE = 48

    STATUS_ICONS = {
        TaskStatus.PENDING: "⏸",
        TaskStatus.PROCESSING: "⏳",
        TaskStatus.COMPLETED: "✅",
        TaskStatus.FAILED: "❌",
    }

    def __init__(self, parent: Optional[QWidget] = None):
        super().__init__(parent)

        self._items: Dict[str, QListWidgetItem] = {}
        self._setup_ui()

    def _setup_ui(self):
        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(8)

        self.drop_label = DragDropLabel()
        self.drop_label.setMaximumHeight(90)
        self.drop_label.files_dropped.connect(self.files_added.emit)
        layout.addWidget(self.drop_label)

        self.list_widget = QListWidget()
        self.list_widget.setObjectName("imageList")
        self.list_widget.setSelectionMode(QAbstractItemView.SelectionMode.SingleSelection)
        self.list_widget.setIconSize(QSize(self.THUMBNAIL_SIZE, self.THUMBNAIL_SIZE))
        self.list_widget.setSpacing(3)
        self.list_widget.currentItemChanged.connect(self._on_current_item_changed)
        layout.addWidget(self.list_widget, 1)

        btn_layout = QHBoxLayout()
        btn_layout.setSpacing(6)

        self.btn_add = QPushButton("➕")
        self.btn_add.setFixedSize(34, 34)
        self.btn_add.setToolTip("添加圖片")
        self.btn_add.clicked.connect(self.drop_label.open_file_dialog)
        btn_layout.addWidget(self.btn_add)

        self.btn_folder = QPushButton("📁")
        self.btn_folder.setFixedSize(34, 34)
        self.btn_folder.setToolTip("添加資料夾")
        self.btn_folder.clicked.connect(self.drop_label.open_folder_dialog)
        btn_layout.addWidget(self.btn_folder)

        self.btn_clear = QPushButton("🗑️")
        self.btn_clear.setFixedSize(34, 34)
        self.btn_clear.setToolTip("清空列表")
        self.btn_clear.clicked.connect(self.clear_requested.emit)
        btn_layout.addWidget(self.btn_clear)

        btn_layout.addStretch(1)

        self.count_label = QLabel("0 張")
        self.count_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        btn_layout.addWidget(self.count_label)

        layout.addLayout(btn_layout)

    def _create_thumbnail(self, task: Task) -> QIcon:
        pixmap = handle_to_pixmap(task.display_handle)
        if pixmap is None:
            pixmap = QPixmap(self.THUMBNAIL_SIZE, self.THUMBNAIL_SIZE)
            pixmap.fill(QColor("#353842"))
        else:
            pixmap = pixmap.scaled(
                self.THUMBNAIL_SIZE, self.THUMBNAIL_SIZE,
                Qt.AspectRatioMode.KeepAspectRatio,
                Qt.TransformationMode.SmoothTransformation
            )
        return QIcon(pixmap)

    @classmethod
    def _describe(cls, task: Task) -> str:
        size_mb = task.size_bytes / 1024 / 1024
        text = f"{cls.STATUS_ICONS[task.status]} {task.name}\n{size_mb:.2f} MB"
        if task.status is TaskStatus.FAILED and task.error_message:
            text += f" · {task.error_message}"
        elif task.write_error:
            text += " · 寫入失敗"
        return text

    def update_task(self, task: Task):
        """Insert or refresh the row for ``task``."""
        item = self._items.get(task.id)
        if item is None:
            item = QListWidgetItem()
            item.setData(Qt.ItemDataRole.UserRole, task.id)
            item.setSizeHint(QSize(-1, self.THUMBNAIL_SIZE + 8))
            self._items[task.id] = item
            self.list_widget.addItem(item)

        item.setText(self._describe(task))
        item.setToolTip(task.error_message or task.write_error or task.name)
        item.setIcon(self._create_thumbnail(task))
        self.count_label.setText(f"{len(self._items)} 張")

    def clear_tasks(self):
        self._items.clear()
        self.list_widget.clear()
        self.count_label.setText("0 張")

    def current_task_id(self) -> str:
        item = self.list_widget.currentItem()
        if item is None:
            return ""
        return item.data(Qt.ItemDataRole.UserRole)

    def select_first(self):
        if self.list_widget.count() and self.list_widget.currentItem() is None:
            self.list_widget.setCurrentRow(0)

    def set_editable(self, editable: bool):
        self.drop_label.setEnabled(editable)
        self.btn_add.setEnabled(editable)
        self.btn_folder.setEnabled(editable)
        self.btn_clear.setEnabled(editable)

    def _on_current_item_changed(self, current: Optional[QListWidgetItem], previous):
        task_id = current.data(Qt.ItemDataRole.UserRole) if current is not None else ""
        self.current_task_changed.emit(task_id)


class PreviewWidget(QWidget):
    """
    Widget for displaying the live watermark preview.

    Shows a scaled preview with loading and error states.
    """

    def __init__(self, parent: Optional[QWidget] = None):
        super().__init__(parent)

        self._pixmap: Optional[QPixmap] = None
        self._is_loading = False
        self._error_message: Optional[str] = None

        self.setMinimumSize(300, 200)
        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)

        self.preview_label = QLabel()
        self.preview_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.preview_label.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        self.preview_label.setObjectName("previewLabel")
        layout.addWidget(self.preview_label)

        self._show_placeholder()

    def _show_placeholder(self):
        self.preview_label.setPixmap(QPixmap())
        self.preview_label.setText("📷 請先選擇圖片以預覽效果")

    def set_preview(self, handle: DisplayHandle):
        """Show the image behind a preview handle."""
        # Copy to a pixmap: the handle may be released by the next preview
        self._pixmap = handle_to_pixmap(handle)
        self._is_loading = False
        self._error_message = None
        self._update_display()

    def set_loading(self, is_loading: bool = True):
        self._is_loading = is_loading
        if is_loading and self._pixmap is None:
            self.preview_label.setText("⏳ 正在生成預覽...")

    def set_error(self, message: str):
        self._error_message = message
        self._is_loading = False
        self._pixmap = None
        self.preview_label.setPixmap(QPixmap())
        self.preview_label.setText(f"❌ {message}")

    def clear(self):
        self._pixmap = None
        self._is_loading = False
        self._error_message = None
        self._show_placeholder()

    def _update_display(self):
        if self._pixmap is None or self._pixmap.isNull():
            self._show_placeholder()
            return

        # Scale pixmap to fit widget while maintaining aspect ratio
        scaled = self._pixmap.scaled(
            self.preview_label.size() - QSize(20, 20),
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.SmoothTransformation
        )
        self.preview_label.setPixmap(scaled)

    def resizeEvent(self, event):
        """Handle resize to update preview scaling."""
        super().resizeEvent(event)
        if self._pixmap and not self._error_message:
            self._update_display()


class StatsPanel(QWidget):
    """Queue progress: progress bar plus total / completed / failed counters."""

    def __init__(self, parent: Optional[QWidget] = None):
        super().__init__(parent)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)

        counters = QHBoxLayout()
        self.total_label = QLabel()
        self.completed_label = QLabel()
        self.failed_label = QLabel()
        for label in (self.total_label, self.completed_label, self.failed_label):
            label.setAlignment(Qt.AlignmentFlag.AlignCenter)
            counters.addWidget(label)
        layout.addLayout(counters)

        self.progress_bar = QProgressBar()
        self.progress_bar.setRange(0, 100)
        self.progress_bar.setTextVisible(True)
        layout.addWidget(self.progress_bar)

        self.set_stats(BatchStats())

    def set_stats(self, stats: BatchStats):
        self.total_label.setText(f"佇列 {stats.total}")
        self.completed_label.setText(f"完成 {stats.completed}")
        self.failed_label.setText(f"錯誤 {stats.failed}")
        self.progress_bar.setValue(round(stats.progress * 100))
        self.progress_bar.setFormat(f"已處理 {stats.completed} / {stats.total}")


class ColorButton(QPushButton):
    """
    A button that shows and allows selecting a color.

    Signals:
        color_changed(str): Emitted with the new color as "#rrggbb".
    """

    color_changed = pyqtSignal(str)

    def __init__(self, initial_color: str = "#ffffff", parent: Optional[QWidget] = None):
        super().__init__(parent)

        self._color = initial_color
        self.setFixedHeight(32)
        self.setCursor(Qt.CursorShape.PointingHandCursor)
        self.clicked.connect(self._open_color_dialog)
        self._update_style()

    def _update_style(self):
        color = QColor(self._color)
        luminance = (0.299 * color.red() + 0.587 * color.green() + 0.114 * color.blue()) / 255
        border_color = "#353842" if luminance > 0.5 else "#6B7280"

        self.setText(self._color.upper())
        self.setStyleSheet(f"""
            QPushButton {{
                background-color: {self._color};
                color: {"#1E2025" if luminance > 0.5 else "#FFFFFF"};
                border: 2px solid {border_color};
                border-radius: 6px;
            }}
            QPushButton:hover {{
                border-color: #00B4D8;
            }}
        """)

    def _open_color_dialog(self):
        from PyQt6.QtWidgets import QColorDialog

        color = QColorDialog.getColor(QColor(self._color), self, "選擇水印顏色")
        if color.isValid():
            self._color = color.name()
            self._update_style()
            self.color_changed.emit(self._color)

    def get_color(self) -> str:
        return self._color

    def set_color(self, color: str):
        self._color = color
        self._update_style()


class SpecForm(QWidget):
    """
    Watermark parameter editor.

    Every edit produces a brand-new WatermarkSpec.

    Signals:
        spec_changed(WatermarkSpec): Emitted after each edit.
    """

    spec_changed = pyqtSignal(object)  # WatermarkSpec

    POSITION_LABELS = {
        PositionTag.TOP_LEFT: "左上",
        PositionTag.TOP_RIGHT: "右上",
        PositionTag.BOTTOM_LEFT: "左下",
        PositionTag.BOTTOM_RIGHT: "右下",
        PositionTag.CENTER: "居中",
        PositionTag.TOP_BOTTOM: "頭尾",
        PositionTag.TILE: "平鋪",
    }

    FONT_FAMILIES = ["sans-serif", "serif", "monospace", "Arial", "Verdana", "Georgia"]

    def __init__(self, spec: Optional[WatermarkSpec] = None, parent: Optional[QWidget] = None):
        super().__init__(parent)

        self._spec = spec or WatermarkSpec()
        # Checked tags in the order the user ticked them
        self._position_order: List[PositionTag] = list(self._spec.positions)
        self._updating = False
        self._setup_ui()
        self.set_spec(self._spec)

    def _setup_ui(self):
        layout = QFormLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(10)

        self.text_edit = QLineEdit()
        self.text_edit.setPlaceholderText("請輸入水印文字...")
        self.text_edit.textChanged.connect(self._emit_spec)
        layout.addRow("水印內容", self.text_edit)

        self.size_slider = self._slider(10, 150)
        self.size_label = QLabel()
        layout.addRow(self.size_label, self.size_slider)

        self.opacity_slider = self._slider(0, 100)
        self.opacity_label = QLabel()
        layout.addRow(self.opacity_label, self.opacity_slider)

        self.rotation_slider = self._slider(-180, 180)
        self.rotation_label = QLabel()
        layout.addRow(self.rotation_label, self.rotation_slider)

        self.color_button = ColorButton()
        self.color_button.color_changed.connect(self._emit_spec)
        layout.addRow("顏色", self.color_button)

        self.font_combo = QComboBox()
        self.font_combo.setEditable(True)
        self.font_combo.addItems(self.FONT_FAMILIES)
        self.font_combo.currentTextChanged.connect(self._emit_spec)
        layout.addRow("字體", self.font_combo)

        positions = QWidget()
        grid = QGridLayout(positions)
        grid.setContentsMargins(0, 0, 0, 0)
        self.position_boxes: Dict[PositionTag, QCheckBox] = {}
        for index, (tag, label) in enumerate(self.POSITION_LABELS.items()):
            box = QCheckBox(label)
            box.toggled.connect(lambda checked, t=tag: self._on_position_toggled(t, checked))
            grid.addWidget(box, index // 3, index % 3)
            self.position_boxes[tag] = box
        layout.addRow("位置", positions)

    def _slider(self, minimum: int, maximum: int) -> QSlider:
        slider = QSlider(Qt.Orientation.Horizontal)
        slider.setRange(minimum, maximum)
        slider.valueChanged.connect(self._emit_spec)
        return slider

    def spec(self) -> WatermarkSpec:
        return self._spec

    def set_spec(self, spec: WatermarkSpec):
        """Load a spec into the form without emitting intermediate edits."""
        self._updating = True
        try:
            self.text_edit.setText(spec.text)
            self.size_slider.setValue(round(spec.font_size))
            self.opacity_slider.setValue(round(spec.opacity * 100))
            self.rotation_slider.setValue(round(spec.rotation_degrees))
            # QColor reads 8-digit hex as #AARRGGBB, so only the RGB part is shown
            self.color_button.set_color("#{:02x}{:02x}{:02x}".format(*spec.rgba[:3]))
            self.font_combo.setCurrentText(spec.font_family)
            self._position_order = list(spec.positions)
            for tag, box in self.position_boxes.items():
                box.setChecked(tag in spec.positions)
        finally:
            self._updating = False
        self._spec = spec
        self._update_labels()

    def _update_labels(self):
        self.size_label.setText(f"字號 ({self.size_slider.value()}px)")
        self.opacity_label.setText(f"透明度 ({self.opacity_slider.value()}%)")
        self.rotation_label.setText(f"旋轉 ({self.rotation_slider.value()}°)")

    def _on_position_toggled(self, tag: PositionTag, checked: bool):
        if self._updating:
            return
        if checked and tag not in self._position_order:
            self._position_order.append(tag)
        elif not checked and tag in self._position_order:
            if len(self._position_order) == 1:
                # At least one position must stay selected
                self.position_boxes[tag].setChecked(True)
                return
            self._position_order.remove(tag)
        self._emit_spec()

    def _emit_spec(self, *_):
        if self._updating:
            return
        self._update_labels()
        self._spec = WatermarkSpec(
            text=self.text_edit.text(),
            font_size=self.size_slider.value(),
            color=self.color_button.get_color(),
            opacity=self.opacity_slider.value() / 100,
            positions=tuple(self._position_order),
            font_family=self.font_combo.currentText() or "sans-serif",
            rotation_degrees=self.rotation_slider.value(),
        )
        self.spec_changed.emit(self._spec)
