# video_labeler/widgets/segments_table.py
from __future__ import annotations

from typing import List, Optional

from PyQt5.QtCore import Qt, pyqtSignal
from PyQt5.QtGui import QColor, QBrush
from PyQt5.QtWidgets import (
    QAbstractItemView,
    QMenu,
    QTableWidget,
    QTableWidgetItem,
    QWidget,
)

from ..confidence import READY_THRESHOLD
from ..domain import AnnotationSegment
from ..timeutils import format_time


TABLE_COLUMNS = ["time", "confidence", "scene", "description", "objects", "actions"]

_CONF_OK = QColor("#1f6f3a")
_CONF_LOW = QColor("#8a5a00")


class SegmentsTable(QTableWidget):
    """
    Read-only list of a video's segments.

    Editing happens through the segment editor dialog; this table only
    reports what the user wants to do.

    Signals:
      - segment_selected(row)
      - request_edit(row)
      - request_delete(row)
    """
    segment_selected = pyqtSignal(int)
    request_edit = pyqtSignal(int)
    request_delete = pyqtSignal(int)

    def __init__(self, parent: Optional[QWidget] = None):
        super().__init__(0, len(TABLE_COLUMNS), parent)

        self.setHorizontalHeaderLabels(TABLE_COLUMNS)
        self.horizontalHeader().setStretchLastSection(True)
        self.horizontalHeader().setDefaultSectionSize(120)

        self.setSelectionBehavior(QAbstractItemView.SelectRows)
        self.setSelectionMode(QAbstractItemView.SingleSelection)
        self.setEditTriggers(QAbstractItemView.NoEditTriggers)

        self.setContextMenuPolicy(Qt.CustomContextMenu)
        self.customContextMenuRequested.connect(self._show_context_menu)
        self.itemSelectionChanged.connect(self._on_selection_changed)
        self.cellDoubleClicked.connect(lambda row, _col: self.request_edit.emit(row))

        self._segments: List[AnnotationSegment] = []
        self._updating = False

    # ---------------- Public API ----------------

    def set_segments(self, segments: List[AnnotationSegment]) -> None:
        self._segments = list(segments or [])
        self.refresh()

    def select_segment(self, row: Optional[int]) -> None:
        self._updating = True
        try:
            if row is None or not (0 <= row < self.rowCount()):
                self.clearSelection()
                return
            self.selectRow(row)
            self.scrollToItem(self.item(row, 0))
        finally:
            self._updating = False

    # ---------------- Rendering ----------------

    def refresh(self) -> None:
        self._updating = True
        try:
            self.setRowCount(0)
            for seg in self._segments:
                row = self.rowCount()
                self.insertRow(row)

                conf = seg.confidence_score
                values = [
                    f"{format_time(seg.start_time)} - {format_time(seg.end_time)}",
                    "" if conf is None else f"{conf * 100:.0f}%",
                    seg.scene_classification,
                    (seg.description or "No description").replace("\n", " "),
                    ", ".join(e.label for e in seg.detected_objects),
                    ", ".join(e.label for e in seg.detected_actions),
                ]
                for col, val in enumerate(values):
                    item = QTableWidgetItem(val)
                    item.setToolTip(val)
                    item.setFlags(item.flags() & ~Qt.ItemIsEditable)
                    if col == 1 and conf is not None:
                        item.setForeground(QBrush(_CONF_OK if conf >= READY_THRESHOLD else _CONF_LOW))
                    self.setItem(row, col, item)
        finally:
            self._updating = False

    # ---------------- Interaction ----------------

    def _on_selection_changed(self) -> None:
        if self._updating:
            return
        row = self.currentRow()
        if 0 <= row < len(self._segments):
            self.segment_selected.emit(row)

    def _show_context_menu(self, pos):
        item = self.itemAt(pos)
        if item is None:
            return
        row = item.row()

        menu = QMenu(self)
        edit_action = menu.addAction("Edit segment")
        delete_action = menu.addAction("Delete segment")

        chosen = menu.exec_(self.viewport().mapToGlobal(pos))
        if chosen == edit_action:
            self.request_edit.emit(row)
        elif chosen == delete_action:
            self.request_delete.emit(row)
