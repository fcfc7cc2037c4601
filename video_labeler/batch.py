# video_labeler/batch.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .confidence import refresh_confidence
from .domain import (
    STATUS_NEEDS_REVIEW,
    STATUS_PROCESSING,
    AnnotationSet,
    VideoItem,
    utc_now_iso,
)
from .errors import AnalysisError
from .normalizer import normalize_response, response_payload
from .persistence import AnnotationRepository

logger = logging.getLogger(__name__)


# -----------------------------
# Requests sent to the analysis service
# -----------------------------

ANNOTATION_PROMPT = """Watch this video and segment it into distinct scenes.

For every scene return:
- start_timestamp and end_timestamp as MM:SS (or HH:MM:SS)
- a short description of what happens
- a scene_classification (e.g. indoor, outdoor, close-up)
- detected_objects: each with label, confidence_score (0-1), start_timestamp, end_timestamp
- detected_actions: each with label, confidence_score (0-1), start_timestamp, end_timestamp
- confidence_score for the scene as a whole (0-1)

Return ONLY a JSON object with a key 'annotations' holding the list of scenes."""

SUGGESTED_CLASSES_PROMPT = """Analyze this video and list 5-10 distinct categories of objects, actions, or events that appear frequently and would be valuable for training a computer vision model.

Focus on:

Key Objects (e.g., specific vehicles, tools, distinct people types)

Key Actions (e.g., movements, interactions, procedural steps)

Critical Events (e.g., anomalies, specific state changes)

Return ONLY a JSON object with a key 'suggested_classes' containing a list of strings. Do not provide explanations."""

_ENTITY_SCHEMA: Dict = {
    "type": "object",
    "properties": {
        "label": {"type": "string"},
        "confidence_score": {"type": "number"},
        "start_timestamp": {"type": "string"},
        "end_timestamp": {"type": "string"},
    },
    "required": ["label", "confidence_score", "start_timestamp", "end_timestamp"],
}

RESPONSE_SCHEMA: Dict = {
    "type": "object",
    "properties": {
        "annotations": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "start_timestamp": {"type": "string"},
                    "end_timestamp": {"type": "string"},
                    "description": {"type": "string"},
                    "scene_classification": {"type": "string"},
                    "detected_objects": {"type": "array", "items": _ENTITY_SCHEMA},
                    "detected_actions": {"type": "array", "items": _ENTITY_SCHEMA},
                    "confidence_score": {"type": "number"},
                },
                "required": [
                    "start_timestamp",
                    "end_timestamp",
                    "description",
                    "scene_classification",
                    "detected_objects",
                    "detected_actions",
                ],
            },
        },
    },
    "required": ["annotations"],
}

# analyze(item_id, prompt, response_schema) -> {"data": str | dict}
Analyzer = Callable[[str, str, Optional[Dict]], Any]
StatusCallback = Callable[[str, str], None]


# -----------------------------
# Tasks
# -----------------------------

class TaskState:
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class AnnotationTask:
    """One item of a batch and how far it got."""
    item: VideoItem
    state: str = TaskState.PENDING
    status: Optional[str] = None        # "ready" | "needs_review" once finished
    segment_count: int = 0
    overall_confidence: float = 0.0
    persisted: bool = False
    error: Optional[str] = None

    @property
    def item_id(self) -> str:
        return self.item.video_id

    @property
    def finished(self) -> bool:
        return self.state in (TaskState.DONE, TaskState.FAILED)


class CancelToken:
    """Checked between items; the item in flight always completes."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


# -----------------------------
# Batch runner
# -----------------------------

class BatchAnnotator:
    """
    Annotates videos strictly one at a time, in input order.

    Each item moves processing -> ready | needs_review and the new status is
    published (statuses map, on_status callback, persisted status map) as
    soon as that item finishes, before the next one starts. A failing item
    is recorded as needs_review and the batch carries on.
    """

    def __init__(
        self,
        analyzer: Analyzer,
        repository: AnnotationRepository,
        collection_id: str,
        prompt: str = ANNOTATION_PROMPT,
        response_schema: Optional[Dict] = RESPONSE_SCHEMA,
        on_status: Optional[StatusCallback] = None,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.analyzer = analyzer
        self.repository = repository
        self.collection_id = collection_id
        self.prompt = prompt
        self.response_schema = response_schema
        self.on_status = on_status
        self.clock = clock
        self.statuses: Dict[str, str] = repository.get_statuses(collection_id)
        # a stored "processing" can only come from an interrupted earlier run
        for key, status in list(self.statuses.items()):
            if status == STATUS_PROCESSING:
                self.statuses[key] = STATUS_NEEDS_REVIEW

    def _set_status(self, item_key: str, status: str) -> None:
        self.statuses[item_key] = status
        self.repository.put_statuses(self.collection_id, self.statuses)
        if self.on_status is not None:
            self.on_status(item_key, status)

    def run(self, items: Iterable[VideoItem], cancel: Optional[CancelToken] = None) -> List[AnnotationTask]:
        tasks = [AnnotationTask(item=it) for it in items]
        logger.info("Annotating %d video(s) in %s", len(tasks), self.collection_id)
        for task in tasks:
            if cancel is not None and cancel.cancelled:
                logger.info("Batch cancelled; %d item(s) left pending",
                            sum(1 for t in tasks if t.state == TaskState.PENDING))
                break
            self.run_task(task)
        return tasks

    def run_task(self, task: AnnotationTask) -> AnnotationTask:
        key = task.item.item_key
        if self.statuses.get(key) == STATUS_PROCESSING:
            task.state = TaskState.FAILED
            task.error = "annotation already in progress"
            logger.warning("Skipping %s: annotation already in progress", key)
            return task

        task.state = TaskState.PROCESSING
        self._set_status(key, STATUS_PROCESSING)
        try:
            annotation_set = self.annotate(task.item)
        except Exception as e:
            err = e if isinstance(e, AnalysisError) else AnalysisError(task.item_id, str(e))
            logger.warning("Annotation failed for %s", key, exc_info=True)
            task.state = TaskState.FAILED
            task.status = STATUS_NEEDS_REVIEW
            task.error = err.message
            self._set_status(key, STATUS_NEEDS_REVIEW)
            return task

        task.segment_count = len(annotation_set.segments)
        task.status = refresh_confidence(annotation_set)
        task.overall_confidence = annotation_set.overall_confidence
        task.persisted = self.repository.put(self.collection_id, key, annotation_set)
        task.state = TaskState.DONE
        logger.info(
            "%s: %d segment(s), confidence %.2f -> %s",
            key, task.segment_count, task.overall_confidence, task.status,
        )
        self._set_status(key, task.status)
        return task

    def annotate(self, item: VideoItem) -> AnnotationSet:
        result = self.analyzer(item.video_id, self.prompt, self.response_schema)
        segments = normalize_response(response_payload(result))
        return AnnotationSet(
            segments=segments,
            annotated_at=self.clock(),
            video_url=item.video_url,
            video_metadata=dict(item.metadata or {}),
        )
