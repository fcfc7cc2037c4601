# video_labeler/main_window.py
from __future__ import annotations

from typing import List, Optional

from PyQt5.QtCore import Qt
from PyQt5.QtWidgets import (
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QListWidget,
    QListWidgetItem,
    QMainWindow,
    QMessageBox,
    QPushButton,
    QSplitter,
    QVBoxLayout,
    QWidget,
)

from .domain import STATUS_READY, AppConfig, label_color
from .editing import AnnotationSession
from .persistence import AnnotationRepository
from .timeutils import format_time
from .widgets.annotation_timeline import AnnotationTimeline
from .widgets.segment_editor import SegmentEditorDialog
from .widgets.segments_table import SegmentsTable


_STATUS_TEXT = {
    "ready": "Ready",
    "processing": "Processing",
    "needs_review": "Needs Review",
}


class ReviewWindow(QMainWindow):
    """Browse the annotated videos of one collection and correct their annotations."""

    def __init__(
        self,
        repository: AnnotationRepository,
        collection_id: str,
        config: Optional[AppConfig] = None,
    ):
        super().__init__()
        self.setWindowTitle(f"Video Labeler - {collection_id}")
        self.resize(1500, 900)

        self.repository = repository
        self.collection_id = collection_id
        self.cfg = config
        self.session: Optional[AnnotationSession] = None

        self._build_ui()
        self.reload_items()

    # ---------------- UI ----------------

    def _build_ui(self):
        central = QWidget()
        self.setCentralWidget(central)

        main_layout = QVBoxLayout(central)
        main_layout.setContentsMargins(6, 6, 6, 6)
        main_layout.setSpacing(6)

        top_box = QGroupBox("Collection")
        top_lay = QHBoxLayout(top_box)
        top_lay.setContentsMargins(6, 6, 6, 6)
        self.collection_label = QLabel(self.collection_id)
        self.collection_label.setTextInteractionFlags(Qt.TextSelectableByMouse)
        self.confidence_label = QLabel("No video selected")
        self.btn_reload = QPushButton("Reload")
        self.btn_reload.clicked.connect(self.reload_items)
        top_lay.addWidget(self.collection_label, stretch=1)
        top_lay.addWidget(self.confidence_label, stretch=2)
        top_lay.addWidget(self.btn_reload)
        main_layout.addWidget(top_box)

        split = QSplitter(Qt.Horizontal)
        main_layout.addWidget(split, stretch=1)

        self.items_list = QListWidget()
        self.items_list.currentItemChanged.connect(self._on_item_changed)
        split.addWidget(self.items_list)

        right = QWidget()
        right_lay = QVBoxLayout(right)
        right_lay.setContentsMargins(0, 0, 0, 0)

        self.timeline = AnnotationTimeline()
        self.timeline.segment_selected.connect(self._on_segment_selected)
        self.timeline.seek_requested.connect(self._on_seek)
        right_lay.addWidget(self.timeline, stretch=2)

        self.legend_label = QLabel("")
        self.legend_label.setWordWrap(True)
        self.legend_label.setTextFormat(Qt.RichText)
        right_lay.addWidget(self.legend_label)

        self.table = SegmentsTable()
        self.table.segment_selected.connect(self._on_segment_selected)
        self.table.request_edit.connect(self._edit_segment)
        self.table.request_delete.connect(self._delete_segment)
        right_lay.addWidget(self.table, stretch=3)

        split.addWidget(right)
        split.setStretchFactor(0, 1)
        split.setStretchFactor(1, 4)

    # ---------------- Items ----------------

    def reload_items(self) -> None:
        statuses = self.repository.get_statuses(self.collection_id)
        current = self.session.item_key if self.session else None

        self.items_list.blockSignals(True)
        try:
            self.items_list.clear()
            for key in self.repository.list_items(self.collection_id):
                status = statuses.get(key, "")
                text = key if not status else f"{key}  [{_STATUS_TEXT.get(status, status)}]"
                item = QListWidgetItem(text)
                item.setData(Qt.UserRole, key)
                self.items_list.addItem(item)
                if key == current:
                    self.items_list.setCurrentItem(item)
        finally:
            self.items_list.blockSignals(False)

        if current is not None:
            self.open_item(current)

    def _on_item_changed(self, item: Optional[QListWidgetItem], _prev=None) -> None:
        if item is None:
            return
        self.open_item(str(item.data(Qt.UserRole)))

    def open_item(self, item_key: str) -> None:
        self.session = AnnotationSession.open(self.repository, self.collection_id, item_key)
        self._refresh_views()

    # ---------------- Refresh ----------------

    def _refresh_views(self) -> None:
        if self.session is None:
            self.timeline.set_annotation_set(None)
            self.table.set_segments([])
            self.confidence_label.setText("No video selected")
            self.legend_label.setText("")
            return

        aset = self.session.annotation_set
        duration = aset.video_metadata.get("duration") if aset.video_metadata else None
        try:
            duration = float(duration) if duration is not None else None
        except (TypeError, ValueError):
            duration = None

        self.timeline.set_annotation_set(aset, duration)
        self.timeline.set_selected_segment(self.session.selected_index)
        self.table.set_segments(aset.segments)
        self.table.select_segment(self.session.selected_index)

        readiness = self.session.readiness
        self.confidence_label.setText(
            f"{self.session.item_key}: {len(aset.segments)} segment(s), "
            f"confidence {aset.overall_confidence * 100:.0f}% "
            f"({'Ready' if readiness == STATUS_READY else 'Needs Review'}), "
            f"annotated {aset.annotated_at}"
        )
        self.legend_label.setText(self._legend_html(aset.labels()))

    def _legend_html(self, labels: List[str]) -> str:
        chips = [
            f'<span style="color:{label_color(lbl)}">&#9679;</span> {lbl}'
            for lbl in labels
        ]
        return "&nbsp;&nbsp;".join(chips)

    # ---------------- Selection / seeking ----------------

    def _on_segment_selected(self, index: int) -> None:
        if self.session is None:
            return
        if not (0 <= index < len(self.session.segments)):
            return
        self.session.select(index)
        self.timeline.set_selected_segment(index)
        self.timeline.set_playhead(self.session.segments[index].start_time)
        self.table.select_segment(index)

    def _on_seek(self, seconds: float) -> None:
        self.timeline.set_playhead(seconds)
        self.statusBar().showMessage(f"Seek {format_time(seconds)}", 2000)

    # ---------------- Editing ----------------

    def _edit_segment(self, index: int) -> None:
        if self.session is None or not (0 <= index < len(self.session.segments)):
            return
        self.session.select(index)
        suggestions = self.cfg.labels_for(self.collection_id) if self.cfg else []
        dlg = SegmentEditorDialog(self.session.segments[index], suggestions=suggestions, parent=self)
        if not dlg.exec_():
            return
        if dlg.delete_requested:
            self.session.delete_segment(index)
        else:
            self.session.edit_segment(
                index,
                description=dlg.description(),
                scene_classification=dlg.scene_classification(),
                detected_objects=dlg.detected_objects(),
                detected_actions=dlg.detected_actions(),
            )
        self._after_mutation()

    def _delete_segment(self, index: int) -> None:
        if self.session is None or not (0 <= index < len(self.session.segments)):
            return
        resp = QMessageBox.question(
            self,
            "Delete annotation?",
            "Delete this annotation segment?\n\nThis cannot be undone.",
            QMessageBox.Yes | QMessageBox.No,
            QMessageBox.No,
        )
        if resp != QMessageBox.Yes:
            return
        self.session.delete_segment(index)
        self._after_mutation()

    def _after_mutation(self) -> None:
        if self.session is not None and not self.session.last_persist_ok:
            QMessageBox.warning(
                self,
                "Not saved",
                "The change is shown but could not be saved to the annotation store "
                "(it may be full). It will be lost when the window closes.",
            )
        self._refresh_views()
