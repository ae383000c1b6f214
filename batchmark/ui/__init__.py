"""
UI Module - User Interface Components
=====================================
Contains all PyQt6 UI components for the Batchmark application.

Architecture:
- widgets.py: Reusable UI components
- main_window.py: Main application window
"""

from .main_window import MainWindow
from .widgets import (
    ColorButton, DragDropLabel, PreviewWidget, SpecForm, StatsPanel, TaskListWidget
)

__all__ = [
    "ColorButton",
    "DragDropLabel",
    "PreviewWidget",
    "SpecForm",
    "StatsPanel",
    "TaskListWidget",
    "MainWindow",
]
