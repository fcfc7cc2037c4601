# video_labeler/widgets/annotation_timeline.py
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import List, Optional

from PyQt5.QtCore import Qt, QRect, QPoint, pyqtSignal
from PyQt5.QtGui import QColor, QPainter, QPen
from PyQt5.QtWidgets import QScrollArea, QWidget

from ..domain import AnnotationSet, label_color
from ..timeutils import (
    LANE_HEIGHT_PX,
    LaneAssignment,
    compute_lanes_for_set,
    format_time,
    lane_count,
)

_HSL_RE = re.compile(r"hsl\(\s*(\d+)\s*,\s*(\d+)%\s*,\s*(\d+)%\s*\)")


def css_to_qcolor(css: str) -> QColor:
    """"hsl(h, s%, l%)" or "#rgb"/"#rrggbb" -> QColor."""
    m = _HSL_RE.match(css or "")
    if m:
        h, s, l = (int(x) for x in m.groups())
        return QColor.fromHsl(h % 360, round(s * 2.55), round(l * 2.55))
    return QColor(css or "#999")


def segment_band_color(seed: int) -> QColor:
    """Pastel background for scene bands; deterministic per seed."""
    h = int(math.floor(abs(math.sin(seed) * 16777215) % 360))
    return QColor.fromHsl(h, round(70 * 2.55), round(80 * 2.55))


@dataclass
class _HitMarker:
    assignment: LaneAssignment
    rect: QRect


@dataclass
class _HitBand:
    segment_index: int
    rect: QRect


class _AnnotationTimelineCanvas(QWidget):
    segment_selected = pyqtSignal(int)   # index into annotation_set.segments
    seek_requested = pyqtSignal(float)   # seconds

    def __init__(self, parent: Optional[QWidget] = None):
        super().__init__(parent)

        # Data
        self._set: AnnotationSet = AnnotationSet()
        self._assignments: List[LaneAssignment] = []
        self._duration: float = 0.0

        # Styling/layout
        self._pad_x = 10
        self._pad_y = 10
        self._marker_top = 10
        self._marker_h = 10
        self._min_marker_w = 4

        self._playhead: float = 0.0
        self._selected_segment: Optional[int] = None

        self._hit_markers: List[_HitMarker] = []
        self._hit_bands: List[_HitBand] = []

        self.setMouseTracking(True)

    # ---------------- Public API ----------------

    def set_annotation_set(self, annotation_set: Optional[AnnotationSet], duration: Optional[float] = None) -> None:
        self._set = annotation_set if annotation_set is not None else AnnotationSet()
        self._assignments = compute_lanes_for_set(self._set)
        if duration is None:
            duration = self._content_end()
        self._duration = max(0.0, float(duration))
        if self._selected_segment is not None and not (0 <= self._selected_segment < len(self._set.segments)):
            self._selected_segment = None
        self._resize_to_content()
        self.update()

    def set_duration(self, seconds: float) -> None:
        self._duration = max(0.0, float(seconds))
        self.update()

    def set_playhead(self, seconds: float) -> None:
        self._playhead = max(0.0, float(seconds))
        self.update()

    def set_selected_segment(self, index: Optional[int]) -> None:
        self._selected_segment = index
        self.update()

    def lane_assignments(self) -> List[LaneAssignment]:
        return list(self._assignments)

    def duration(self) -> float:
        return self._duration

    # ---------------- Geometry helpers ----------------

    def _content_end(self) -> float:
        ends = [s.end_time for s in self._set.segments]
        ends += [a.item.end for a in self._assignments]
        return max(ends) if ends else 0.0

    def _resize_to_content(self) -> None:
        lanes = max(1, lane_count(self._assignments))
        height = self._pad_y * 2 + self._marker_top * 2 + lanes * LANE_HEIGHT_PX
        self.setMinimumHeight(max(96, height))
        self.setMinimumWidth(600)

    def _sec_to_x(self, sec: float) -> int:
        # zero duration still draws at a width of one second
        dur = self._duration if self._duration > 0 else 1.0
        w = max(1, self.width() - 2 * self._pad_x)
        sec = max(0.0, min(float(sec), dur))
        return self._pad_x + int(round((sec / dur) * w))

    def _x_to_sec(self, x: int) -> float:
        dur = self._duration if self._duration > 0 else 1.0
        w = max(1, self.width() - 2 * self._pad_x)
        rel = (int(x) - self._pad_x) / float(w)
        return max(0.0, min(rel * dur, dur))

    # ---------------- Painting ----------------

    def paintEvent(self, event):
        painter = QPainter(self)
        painter.setRenderHint(QPainter.Antialiasing, True)

        painter.fillRect(self.rect(), QColor("#141414"))
        content = self.rect().adjusted(self._pad_x, self._pad_y, -self._pad_x, -self._pad_y)
        painter.setPen(QPen(QColor("#2b2b2b"), 1))
        painter.drawRect(content)

        self._hit_markers = []
        self._hit_bands = []

        # Grid lines every 5 seconds
        if self._duration > 0:
            painter.setPen(QPen(QColor("#222222"), 1))
            t = 0.0
            while t <= self._duration:
                x = self._sec_to_x(t)
                painter.drawLine(x, content.top(), x, content.bottom())
                t += 5.0

        # Layer 1: scene bands
        for i, seg in enumerate(self._set.segments):
            if self._duration > 0 and seg.start_time > self._duration:
                continue
            x1 = self._sec_to_x(seg.start_time)
            x2 = self._sec_to_x(seg.start_time + max(0.5, seg.duration))
            rect = QRect(x1, content.top(), max(1, x2 - x1), content.height())
            c = segment_band_color(i + len(seg.description or ""))
            c.setAlpha(100 if i == self._selected_segment else 50)
            painter.fillRect(rect, c)
            self._hit_bands.append(_HitBand(segment_index=i, rect=rect))

        # Layer 2: object/action markers, one row per lane
        for a in self._assignments:
            item = a.item
            if self._duration > 0 and item.start > self._duration:
                continue
            x1 = self._sec_to_x(item.start)
            x2 = self._sec_to_x(item.start + max(1.0, item.end - item.start))
            top = content.top() + self._marker_top + a.lane * LANE_HEIGHT_PX
            rect = QRect(x1, top, max(self._min_marker_w, x2 - x1), self._marker_h)

            color = css_to_qcolor(label_color(item.label))
            painter.setPen(Qt.NoPen)
            painter.setBrush(color)
            painter.drawRoundedRect(rect, self._marker_h / 2.0, self._marker_h / 2.0)
            if item.segment_index is not None and item.segment_index == self._selected_segment:
                painter.setPen(QPen(QColor("#ffffff"), 1))
                painter.setBrush(Qt.NoBrush)
                painter.drawRoundedRect(rect, self._marker_h / 2.0, self._marker_h / 2.0)
            self._hit_markers.append(_HitMarker(assignment=a, rect=rect))

        # Playhead
        x = self._sec_to_x(self._playhead)
        painter.setPen(QPen(QColor("#ff2d2d"), 2))
        painter.drawLine(x, self._pad_y, x, self.height() - self._pad_y)

        painter.end()

    # ---------------- Interaction / hit testing ----------------

    def _hit_test_marker(self, pos: QPoint) -> Optional[_HitMarker]:
        # last painted is on top
        for hm in reversed(self._hit_markers):
            if hm.rect.contains(pos):
                return hm
        return None

    def _hit_test_band(self, pos: QPoint) -> Optional[_HitBand]:
        for hb in reversed(self._hit_bands):
            if hb.rect.contains(pos):
                return hb
        return None

    def mousePressEvent(self, event):
        if event.button() != Qt.LeftButton:
            return super().mousePressEvent(event)

        pos = event.pos()
        hm = self._hit_test_marker(pos)
        if hm is not None:
            self.seek_requested.emit(float(hm.assignment.item.start))
            if hm.assignment.item.segment_index is not None:
                self._selected_segment = hm.assignment.item.segment_index
                self.segment_selected.emit(hm.assignment.item.segment_index)
            self.update()
            event.accept()
            return

        hb = self._hit_test_band(pos)
        if hb is not None:
            seg = self._set.segments[hb.segment_index]
            self.seek_requested.emit(float(seg.start_time))
            self._selected_segment = hb.segment_index
            self.segment_selected.emit(hb.segment_index)
            self.update()
            event.accept()
            return

        self.seek_requested.emit(self._x_to_sec(pos.x()))
        event.accept()

    def mouseMoveEvent(self, event):
        hm = self._hit_test_marker(event.pos())
        if hm is not None:
            it = hm.assignment.item
            kind = "Object" if it.kind == "object" else "Action"
            self.setToolTip(f"{kind}: {it.label} ({format_time(it.start)} - {format_time(it.end)})")
            self.setCursor(Qt.PointingHandCursor)
        else:
            hb = self._hit_test_band(event.pos())
            if hb is not None:
                desc = self._set.segments[hb.segment_index].description or ""
                self.setToolTip(f"Scene: {desc[:100]}")
            else:
                self.setToolTip(format_time(self._x_to_sec(event.pos().x())))
            self.setCursor(Qt.CrossCursor)
        return super().mouseMoveEvent(event)


class AnnotationTimeline(QScrollArea):
    """
    Scrollable timeline for one AnnotationSet.

    Scene segments are drawn as background bands; objects and actions are
    drawn as markers stacked on non-overlapping lanes. Clicking a marker or
    band selects its segment and requests a seek to its start.
    """
    segment_selected = pyqtSignal(int)
    seek_requested = pyqtSignal(float)

    def __init__(self, parent: Optional[QWidget] = None):
        super().__init__(parent)

        self.setWidgetResizable(True)
        self.setHorizontalScrollBarPolicy(Qt.ScrollBarAlwaysOff)
        self.setVerticalScrollBarPolicy(Qt.ScrollBarAsNeeded)

        self.canvas = _AnnotationTimelineCanvas(self)
        self.setWidget(self.canvas)

        self.canvas.segment_selected.connect(self.segment_selected.emit)
        self.canvas.seek_requested.connect(self.seek_requested.emit)

    def set_annotation_set(self, annotation_set: Optional[AnnotationSet], duration: Optional[float] = None) -> None:
        self.canvas.set_annotation_set(annotation_set, duration)

    def set_duration(self, seconds: float) -> None:
        self.canvas.set_duration(seconds)

    def set_playhead(self, seconds: float) -> None:
        self.canvas.set_playhead(seconds)

    def set_selected_segment(self, index: Optional[int]) -> None:
        self.canvas.set_selected_segment(index)

    def lane_assignments(self) -> List[LaneAssignment]:
        return self.canvas.lane_assignments()
