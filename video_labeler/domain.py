# video_labeler/domain.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .timeutils import parse_timestamp


# -----------------------------
# Status / readiness values
# -----------------------------

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_READY = "ready"
STATUS_NEEDS_REVIEW = "needs_review"

ENTITY_KIND_OBJECT = "object"
ENTITY_KIND_ACTION = "action"
ENTITY_KINDS = (ENTITY_KIND_OBJECT, ENTITY_KIND_ACTION)

# Manual corrections always outrank model confidence.
MANUAL_CONFIDENCE = 1.0


# -----------------------------
# Small coercion helpers
# -----------------------------

def coerce_confidence(value: Any) -> Optional[float]:
    """
    Best-effort conversion of a model confidence into [0, 1].

    Accepts numbers or numeric strings (optionally with a trailing "%").
    Values in (1, 100] are read as percentages. Anything else -> None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        s = value.strip().rstrip("%").strip()
        if not s:
            return None
        try:
            value = float(s)
        except ValueError:
            return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    if 1.0 < f <= 100.0:
        f = f / 100.0
    return max(0.0, min(f, 1.0))


def coerce_time(value: Any) -> Optional[float]:
    """Seconds from a number or a timecode string; None when the value is absent."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return parse_timestamp(value)


def ordered_interval(start: float, end: float) -> tuple:
    st = max(0.0, float(start))
    et = max(0.0, float(end))
    if et < st:
        st, et = et, st
    return st, et


def _dict_items(value: Any) -> List[Dict]:
    """The dict entries of a stored list; anything that is not a list gives []."""
    if not isinstance(value, list):
        return []
    return [x for x in value if isinstance(x, dict)]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# -----------------------------
# Core Dataclasses
# -----------------------------

@dataclass
class DetectedEntity:
    """
    One detected object or action inside a segment.

    Times are seconds on the video clock. They are expected to overlap the
    parent segment but this is not enforced.
    """
    label: str
    confidence_score: Optional[float] = None
    start_time: float = 0.0
    end_time: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "label": self.label,
            "confidence_score": self.confidence_score,
            "start_time": float(self.start_time),
            "end_time": float(self.end_time),
        }

    @staticmethod
    def from_dict(d: Dict, kind: str = ENTITY_KIND_OBJECT) -> "DetectedEntity":
        label = d.get("label") or d.get(kind) or d.get("name") or ""
        st = coerce_time(d.get("start_time", d.get("start_timestamp")))
        et = coerce_time(d.get("end_time", d.get("end_timestamp")))
        st = st if st is not None else 0.0
        et = et if et is not None else st
        st, et = ordered_interval(st, et)
        return DetectedEntity(
            label=str(label).strip(),
            confidence_score=coerce_confidence(d.get("confidence_score", d.get("confidence"))),
            start_time=st,
            end_time=et,
        )


@dataclass
class AnnotationSegment:
    """
    A single labeled time region of a video.

    start_time <= end_time holds for every segment built by the normalizer
    or by from_dict.
    """
    start_time: float = 0.0
    end_time: float = 0.0
    description: str = ""
    scene_classification: str = ""
    detected_objects: List[DetectedEntity] = field(default_factory=list)
    detected_actions: List[DetectedEntity] = field(default_factory=list)
    confidence_score: Optional[float] = None

    @property
    def duration(self) -> float:
        return max(0.0, self.end_time - self.start_time)

    def entities(self, kind: str) -> List[DetectedEntity]:
        if kind == ENTITY_KIND_OBJECT:
            return self.detected_objects
        if kind == ENTITY_KIND_ACTION:
            return self.detected_actions
        raise ValueError(f"unknown entity kind: {kind!r}")

    def contains(self, t: float) -> bool:
        return self.start_time <= float(t) <= self.end_time

    def to_dict(self) -> Dict:
        return {
            "start_time": float(self.start_time),
            "end_time": float(self.end_time),
            "description": self.description or "",
            "scene_classification": self.scene_classification or "",
            "detected_objects": [e.to_dict() for e in self.detected_objects],
            "detected_actions": [e.to_dict() for e in self.detected_actions],
            "confidence_score": self.confidence_score,
        }

    @staticmethod
    def from_dict(d: Dict) -> "AnnotationSegment":
        st = coerce_time(d.get("start_time", d.get("start_timestamp")))
        et = coerce_time(d.get("end_time", d.get("end_timestamp")))
        st = st if st is not None else 0.0
        et = et if et is not None else st
        st, et = ordered_interval(st, et)
        conf = d.get("confidence_score")
        if conf is None:
            conf = d.get("overall_confidence")
        return AnnotationSegment(
            start_time=st,
            end_time=et,
            description=str(d.get("description") or ""),
            scene_classification=str(d.get("scene_classification") or ""),
            detected_objects=[
                DetectedEntity.from_dict(x, ENTITY_KIND_OBJECT)
                for x in _dict_items(d.get("detected_objects"))
            ],
            detected_actions=[
                DetectedEntity.from_dict(x, ENTITY_KIND_ACTION)
                for x in _dict_items(d.get("detected_actions"))
            ],
            confidence_score=coerce_confidence(conf),
        )


@dataclass
class AnnotationSet:
    """
    Full annotation result for one video.

    segments keep the order produced by the analysis pass; consumers that
    need time order must sort. video_url / video_metadata are pass-through.
    """
    segments: List[AnnotationSegment] = field(default_factory=list)
    overall_confidence: float = 0.0
    annotated_at: str = field(default_factory=utc_now_iso)
    video_url: Optional[str] = None
    video_metadata: Dict = field(default_factory=dict)

    def segments_at(self, t: float) -> List[int]:
        """Indices of segments whose interval contains t (playhead highlighting)."""
        return [i for i, seg in enumerate(self.segments) if seg.contains(t)]

    def labels(self) -> List[str]:
        """Unique entity labels in first-seen order (objects before actions per segment)."""
        seen: Dict[str, None] = {}
        for seg in self.segments:
            for e in seg.detected_objects:
                seen.setdefault(e.label, None)
            for e in seg.detected_actions:
                seen.setdefault(e.label, None)
        return [x for x in seen if x]

    def to_dict(self) -> Dict:
        return {
            "annotations": [s.to_dict() for s in self.segments],
            "overall_confidence": float(self.overall_confidence),
            "annotatedAt": self.annotated_at,
            "video_url": self.video_url,
            "video_metadata": dict(self.video_metadata or {}),
        }

    @staticmethod
    def from_dict(d: Dict) -> "AnnotationSet":
        segs = [AnnotationSegment.from_dict(x) for x in _dict_items(d.get("annotations"))]
        metadata = d.get("video_metadata")
        video_url = d.get("video_url")
        try:
            overall = float(d.get("overall_confidence") or 0.0)
        except (TypeError, ValueError):
            overall = 0.0
        return AnnotationSet(
            segments=segs,
            overall_confidence=overall,
            annotated_at=str(d.get("annotatedAt") or d.get("annotated_at") or utc_now_iso()),
            video_url=video_url if isinstance(video_url, str) else None,
            video_metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )


@dataclass
class VideoItem:
    """
    One video of a collection, as handed to a batch run.

    video_id is the identifier understood by the analysis service.
    video_url / metadata come from the upload side and are copied onto the
    resulting AnnotationSet untouched.
    """
    video_id: str
    filename: str = ""
    video_url: Optional[str] = None
    metadata: Dict = field(default_factory=dict)

    @property
    def item_key(self) -> str:
        return self.filename or self.video_id


# -----------------------------
# Config payload
# -----------------------------

STORE_BACKENDS = ("json", "qsettings")


@dataclass
class AppConfig:
    """
    Stored in <data_root>/config.json
    """
    data_root: str
    store_backend: str = "json"
    store_filename: str = "annotations.json"
    quota_bytes: Optional[int] = None

    # collection id -> ordered label taxonomy
    label_taxonomy: Dict[str, List[str]] = field(default_factory=dict)

    def labels_for(self, collection_id: str) -> List[str]:
        return list(self.label_taxonomy.get(collection_id, []))

    def add_label(self, collection_id: str, label: str) -> None:
        label = (label or "").strip()
        if not label:
            return
        labels = self.label_taxonomy.setdefault(collection_id, [])
        if label not in labels:
            labels.append(label)

    def remove_label(self, collection_id: str, label: str) -> None:
        labels = self.label_taxonomy.get(collection_id)
        if labels and label in labels:
            labels.remove(label)

    def to_dict(self) -> Dict:
        return {
            "data_root": self.data_root,
            "store_backend": self.store_backend,
            "store_filename": self.store_filename,
            "quota_bytes": self.quota_bytes,
            "label_taxonomy": {k: list(v) for k, v in self.label_taxonomy.items()},
            "config_version": 1,
        }

    @staticmethod
    def from_dict(d: Dict) -> "AppConfig":
        backend = str(d.get("store_backend") or "json").lower()
        if backend not in STORE_BACKENDS:
            backend = "json"
        quota = d.get("quota_bytes")
        try:
            quota = int(quota) if quota is not None else None
        except (TypeError, ValueError):
            quota = None
        taxonomy: Dict[str, List[str]] = {}
        raw_taxonomy = d.get("label_taxonomy")
        for k, v in (raw_taxonomy.items() if isinstance(raw_taxonomy, dict) else ()):
            if isinstance(v, list):
                taxonomy[str(k)] = [str(x) for x in v if str(x).strip()]
        return AppConfig(
            data_root=str(d.get("data_root") or ""),
            store_backend=backend,
            store_filename=str(d.get("store_filename") or "annotations.json"),
            quota_bytes=quota,
            label_taxonomy=taxonomy,
        )


# -----------------------------
# Label colors
# -----------------------------

def _to_int32(n: int) -> int:
    n = int(n) & 0xFFFFFFFF
    return n - 0x100000000 if n & 0x80000000 else n


def label_hue(label: str) -> int:
    """Deterministic hue (0..359) from the label text."""
    data = (label or "").encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        code = data[i] | (data[i + 1] << 8)
        h = code + _to_int32(_to_int32(h) << 5) - h
    return abs(h) % 360


def label_color(label: str) -> str:
    """
    Stable CSS-style color for a label, so the same label always renders the
    same across timeline markers, tag chips and the legend.
    """
    if not label:
        return "#999"
    return f"hsl({label_hue(label)}, 70%, 50%)"
