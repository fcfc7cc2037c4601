# video_labeler/confidence.py
from __future__ import annotations

from typing import Iterable, List, Optional

from .domain import STATUS_NEEDS_REVIEW, STATUS_READY, AnnotationSegment, AnnotationSet


# Fixed policy: at or above this a result is usable without review.
READY_THRESHOLD = 0.7


def collect_scores(segments: Iterable[AnnotationSegment]) -> List[float]:
    out: List[float] = []
    for seg in segments:
        if seg.confidence_score is not None:
            out.append(float(seg.confidence_score))
    return out


def aggregate_confidence(segments: Iterable[AnnotationSegment]) -> float:
    """Mean of the available segment scores; 0 when there are none."""
    scores = collect_scores(segments)
    if not scores:
        return 0.0
    return sum(scores) / len(scores)


def classify_readiness(overall_confidence: Optional[float]) -> str:
    if overall_confidence is not None and overall_confidence >= READY_THRESHOLD:
        return STATUS_READY
    return STATUS_NEEDS_REVIEW


def refresh_confidence(annotation_set: AnnotationSet) -> str:
    """Recompute overall_confidence in place and return the readiness."""
    annotation_set.overall_confidence = aggregate_confidence(annotation_set.segments)
    return classify_readiness(annotation_set.overall_confidence)
