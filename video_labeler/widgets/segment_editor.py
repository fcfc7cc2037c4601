# video_labeler/widgets/segment_editor.py
from __future__ import annotations

import copy
from typing import List, Optional

from PyQt5.QtCore import Qt
from PyQt5.QtWidgets import (
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QListWidget,
    QListWidgetItem,
    QMessageBox,
    QPushButton,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from ..domain import (
    ENTITY_KIND_ACTION,
    ENTITY_KIND_OBJECT,
    AnnotationSegment,
    DetectedEntity,
)
from ..editing import make_manual_tag
from ..timeutils import format_time


class SegmentEditorDialog(QDialog):
    """
    Edit one segment's description, scene classification and tags.

    Works on copies; the caller applies the result through AnnotationSession
    when the dialog is accepted. delete_requested is set when the user chose
    Delete instead of Save.
    """

    def __init__(self, segment: AnnotationSegment, suggestions: Optional[List[str]] = None,
                 parent: Optional[QWidget] = None):
        super().__init__(parent)
        self.setWindowTitle("Edit Annotation")
        self.setModal(True)

        self._segment = segment
        self._objects: List[DetectedEntity] = copy.deepcopy(segment.detected_objects)
        self._actions: List[DetectedEntity] = copy.deepcopy(segment.detected_actions)
        self.delete_requested = False

        layout = QVBoxLayout(self)

        title = QLabel(f"{format_time(segment.start_time)} - {format_time(segment.end_time)}")
        title.setTextInteractionFlags(Qt.TextSelectableByMouse)
        layout.addWidget(title)

        layout.addWidget(QLabel("Description:"))
        self.description_edit = QTextEdit()
        self.description_edit.setPlainText(segment.description or "")
        self.description_edit.setPlaceholderText("Describe the scene...")
        self.description_edit.setMinimumSize(520, 140)
        layout.addWidget(self.description_edit)

        layout.addWidget(QLabel("Scene classification:"))
        self.scene_edit = QLineEdit(segment.scene_classification or "")
        layout.addWidget(self.scene_edit)

        lists = QHBoxLayout()
        self.objects_list = QListWidget()
        self.actions_list = QListWidget()
        for caption, widget in (("Objects", self.objects_list), ("Actions", self.actions_list)):
            col = QVBoxLayout()
            col.addWidget(QLabel(caption))
            col.addWidget(widget)
            lists.addLayout(col)
        layout.addLayout(lists)

        add_row = QHBoxLayout()
        self.tag_edit = QLineEdit()
        self.tag_edit.setPlaceholderText("Add a tag... (press Enter)")
        if suggestions:
            self.tag_edit.setToolTip("Labels: " + ", ".join(suggestions))
        self.tag_edit.returnPressed.connect(self._add_tag)
        self.kind_combo = QComboBox()
        self.kind_combo.addItem("Object", ENTITY_KIND_OBJECT)
        self.kind_combo.addItem("Action", ENTITY_KIND_ACTION)
        btn_add = QPushButton("Add")
        btn_add.clicked.connect(self._add_tag)
        btn_remove = QPushButton("Remove selected")
        btn_remove.clicked.connect(self._remove_selected)
        add_row.addWidget(self.tag_edit, 1)
        add_row.addWidget(self.kind_combo)
        add_row.addWidget(btn_add)
        add_row.addWidget(btn_remove)
        layout.addLayout(add_row)

        buttons = QDialogButtonBox(QDialogButtonBox.Save | QDialogButtonBox.Cancel)
        btn_delete = buttons.addButton("Delete", QDialogButtonBox.DestructiveRole)
        buttons.accepted.connect(self.accept)
        buttons.rejected.connect(self.reject)
        btn_delete.clicked.connect(self._confirm_delete)
        layout.addWidget(buttons)

        self._refresh_lists()

    # ---------------- Result ----------------

    def description(self) -> str:
        return self.description_edit.toPlainText().strip()

    def scene_classification(self) -> str:
        return self.scene_edit.text().strip()

    def detected_objects(self) -> List[DetectedEntity]:
        return list(self._objects)

    def detected_actions(self) -> List[DetectedEntity]:
        return list(self._actions)

    # ---------------- Tag editing ----------------

    def _refresh_lists(self) -> None:
        for widget, tags in ((self.objects_list, self._objects), (self.actions_list, self._actions)):
            widget.clear()
            for tag in tags:
                conf = "" if tag.confidence_score is None else f"  {tag.confidence_score * 100:.0f}%"
                item = QListWidgetItem(f"{tag.label}{conf}")
                item.setToolTip(f"{tag.label} ({format_time(tag.start_time)} - {format_time(tag.end_time)})")
                widget.addItem(item)

    def _add_tag(self) -> None:
        text = self.tag_edit.text().strip()
        if not text:
            return
        tag = make_manual_tag(self._segment, text)
        if self.kind_combo.currentData() == ENTITY_KIND_ACTION:
            self._actions.append(tag)
        else:
            self._objects.append(tag)
        self.tag_edit.clear()
        self._refresh_lists()

    def _remove_selected(self) -> None:
        for widget, tags in ((self.objects_list, self._objects), (self.actions_list, self._actions)):
            rows = sorted((widget.row(it) for it in widget.selectedItems()), reverse=True)
            for row in rows:
                if 0 <= row < len(tags):
                    del tags[row]
        self._refresh_lists()

    def _confirm_delete(self) -> None:
        resp = QMessageBox.question(
            self,
            "Delete annotation?",
            "Delete this annotation segment?\n\nThis cannot be undone.",
            QMessageBox.Yes | QMessageBox.No,
            QMessageBox.No,
        )
        if resp != QMessageBox.Yes:
            return
        self.delete_requested = True
        self.accept()
