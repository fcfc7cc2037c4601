# video_labeler/editing.py
from __future__ import annotations

import logging
from typing import List, Optional

from .confidence import classify_readiness, refresh_confidence
from .domain import (
    ENTITY_KINDS,
    MANUAL_CONFIDENCE,
    AnnotationSegment,
    AnnotationSet,
    DetectedEntity,
)
from .persistence import AnnotationRepository

logger = logging.getLogger(__name__)


def make_manual_tag(segment: AnnotationSegment, label: str) -> DetectedEntity:
    """A reviewer-added tag: fully trusted, spanning the whole segment."""
    label = (label or "").strip()
    if not label:
        raise ValueError("tag label must not be empty")
    return DetectedEntity(
        label=label,
        confidence_score=MANUAL_CONFIDENCE,
        start_time=segment.start_time,
        end_time=segment.end_time,
    )


class AnnotationSession:
    """
    Reviewer-side editing of one video's AnnotationSet.

    The set is loaded when the session is opened and written back in full
    after every mutation. Any edit marks the touched segment as fully
    trusted (confidence 1.0) and the overall confidence is recomputed.
    Store failures leave the in-memory edit in place and are reported via
    last_persist_ok.
    """

    def __init__(
        self,
        repository: AnnotationRepository,
        collection_id: str,
        item_key: str,
        annotation_set: Optional[AnnotationSet] = None,
    ):
        self.repository = repository
        self.collection_id = collection_id
        self.item_key = item_key
        self.annotation_set = annotation_set if annotation_set is not None else AnnotationSet()
        self.selected_index: Optional[int] = None
        self.last_persist_ok: bool = True

    @classmethod
    def open(cls, repository: AnnotationRepository, collection_id: str, item_key: str) -> "AnnotationSession":
        stored = repository.get(collection_id, item_key)
        return cls(repository, collection_id, item_key, stored)

    # ---------------- Queries ----------------

    @property
    def segments(self) -> List[AnnotationSegment]:
        return self.annotation_set.segments

    @property
    def overall_confidence(self) -> float:
        return self.annotation_set.overall_confidence

    @property
    def readiness(self) -> str:
        return classify_readiness(self.annotation_set.overall_confidence)

    def segment(self, index: int) -> AnnotationSegment:
        if not (0 <= index < len(self.segments)):
            raise IndexError(f"segment index {index} out of range (0..{len(self.segments) - 1})")
        return self.segments[index]

    def select(self, index: Optional[int]) -> None:
        if index is not None:
            self.segment(index)
        self.selected_index = index

    # ---------------- Mutations ----------------

    def edit_segment(
        self,
        index: int,
        description: Optional[str] = None,
        scene_classification: Optional[str] = None,
        detected_objects: Optional[List[DetectedEntity]] = None,
        detected_actions: Optional[List[DetectedEntity]] = None,
    ) -> AnnotationSegment:
        seg = self.segment(index)
        if description is not None:
            seg.description = description
        if scene_classification is not None:
            seg.scene_classification = scene_classification
        if detected_objects is not None:
            seg.detected_objects = list(detected_objects)
        if detected_actions is not None:
            seg.detected_actions = list(detected_actions)
        seg.confidence_score = MANUAL_CONFIDENCE
        self._commit()
        return seg

    def delete_segment(self, index: int) -> AnnotationSegment:
        seg = self.segment(index)
        del self.segments[index]
        if self.selected_index is not None:
            if self.selected_index == index:
                self.selected_index = None
            elif self.selected_index > index:
                self.selected_index -= 1
        self._commit()
        return seg

    def add_tag(self, index: int, label: str, kind: str = "object") -> DetectedEntity:
        if kind not in ENTITY_KINDS:
            raise ValueError(f"unknown tag kind: {kind!r}")
        seg = self.segment(index)
        tag = make_manual_tag(seg, label)
        seg.entities(kind).append(tag)
        seg.confidence_score = MANUAL_CONFIDENCE
        self._commit()
        return tag

    def remove_tag(self, index: int, tag_index: int, kind: str = "object") -> DetectedEntity:
        if kind not in ENTITY_KINDS:
            raise ValueError(f"unknown tag kind: {kind!r}")
        seg = self.segment(index)
        tags = seg.entities(kind)
        if not (0 <= tag_index < len(tags)):
            raise IndexError(f"{kind} index {tag_index} out of range")
        tag = tags.pop(tag_index)
        seg.confidence_score = MANUAL_CONFIDENCE
        self._commit()
        return tag

    def replace(self, annotation_set: AnnotationSet) -> None:
        """Swap in a freshly generated set (re-annotation)."""
        self.annotation_set = annotation_set
        self.selected_index = None
        self._commit()

    def _commit(self) -> None:
        refresh_confidence(self.annotation_set)
        self.last_persist_ok = self.repository.put(self.collection_id, self.item_key, self.annotation_set)
        if not self.last_persist_ok:
            logger.warning(
                "Edit to %s/%s applied in memory but not persisted", self.collection_id, self.item_key
            )
