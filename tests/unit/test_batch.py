import json
from typing import Dict, List, Optional

import pytest

from video_labeler.batch import (
    ANNOTATION_PROMPT,
    RESPONSE_SCHEMA,
    AnnotationTask,
    BatchAnnotator,
    CancelToken,
    TaskState,
)
from video_labeler.domain import (
    STATUS_NEEDS_REVIEW,
    STATUS_PROCESSING,
    STATUS_READY,
    VideoItem,
)
from video_labeler.persistence import AnnotationRepository


def _response(confidence: float) -> str:
    return json.dumps({'annotations': [{
        'start_timestamp': '00:00',
        'end_timestamp': '00:05',
        'description': 'scene',
        'scene_classification': 'Indoor',
        'detected_objects': [{'label': 'cup', 'confidence_score': 0.9,
                              'start_timestamp': '00:01', 'end_timestamp': '00:02'}],
        'detected_actions': [],
        'confidence_score': confidence,
    }]})


class FakeAnalyzer:
    def __init__(self, responses: Dict[str, object]):
        self.responses = responses
        self.calls: List[str] = []

    def __call__(self, video_id: str, prompt: str, schema: Optional[Dict]):
        self.calls.append(video_id)
        assert prompt == ANNOTATION_PROMPT
        assert schema == RESPONSE_SCHEMA
        response = self.responses[video_id]
        if isinstance(response, Exception):
            raise response
        return {'data': response}


def _items(*ids: str) -> List[VideoItem]:
    return [VideoItem(video_id=i, filename=f'{i}.mp4', video_url=f'https://example.test/{i}.mp4') for i in ids]


def test_items_run_in_order_and_are_persisted(memory_repository: AnnotationRepository) -> None:
    analyzer = FakeAnalyzer({'a': _response(0.9), 'b': _response(0.3)})
    events = []
    annotator = BatchAnnotator(
        analyzer, memory_repository, 'c1',
        on_status=lambda key, status: events.append((key, status)),
        clock=lambda: '2024-05-01T10:00:00Z',
    )

    tasks = annotator.run(_items('a', 'b'))

    assert analyzer.calls == ['a', 'b']
    assert [t.state for t in tasks] == [TaskState.DONE, TaskState.DONE]
    assert [t.status for t in tasks] == [STATUS_READY, STATUS_NEEDS_REVIEW]
    assert events == [
        ('a.mp4', STATUS_PROCESSING), ('a.mp4', STATUS_READY),
        ('b.mp4', STATUS_PROCESSING), ('b.mp4', STATUS_NEEDS_REVIEW),
    ]

    stored = memory_repository.get('c1', 'a.mp4')
    assert stored.annotated_at == '2024-05-01T10:00:00Z'
    assert stored.video_url == 'https://example.test/a.mp4'
    assert stored.overall_confidence == pytest.approx(0.9)
    assert memory_repository.get_statuses('c1') == {'a.mp4': STATUS_READY, 'b.mp4': STATUS_NEEDS_REVIEW}


def test_failure_is_isolated(memory_repository: AnnotationRepository) -> None:
    analyzer = FakeAnalyzer({'a': _response(0.9), 'b': RuntimeError('service unavailable'), 'c': _response(0.8)})
    annotator = BatchAnnotator(analyzer, memory_repository, 'c1')

    a, b, c = annotator.run(_items('a', 'b', 'c'))

    assert a.state == TaskState.DONE
    assert b.state == TaskState.FAILED
    assert b.status == STATUS_NEEDS_REVIEW
    assert b.error == 'service unavailable'
    assert c.state == TaskState.DONE
    assert memory_repository.get('c1', 'b.mp4') is None
    assert annotator.statuses['b.mp4'] == STATUS_NEEDS_REVIEW


def test_unusable_response_gives_empty_set(memory_repository: AnnotationRepository) -> None:
    annotator = BatchAnnotator(FakeAnalyzer({'a': 'I cannot watch videos.'}), memory_repository, 'c1')

    (task,) = annotator.run(_items('a'))

    assert task.state == TaskState.DONE
    assert task.segment_count == 0
    assert task.status == STATUS_NEEDS_REVIEW
    assert memory_repository.get('c1', 'a.mp4').segments == []


def test_cancel_leaves_remaining_items_pending(memory_repository: AnnotationRepository) -> None:
    cancel = CancelToken()

    def on_status(key: str, status: str) -> None:
        if status != STATUS_PROCESSING:
            cancel.cancel()

    analyzer = FakeAnalyzer({'a': _response(0.9), 'b': _response(0.9), 'c': _response(0.9)})
    annotator = BatchAnnotator(analyzer, memory_repository, 'c1', on_status=on_status)

    tasks = annotator.run(_items('a', 'b', 'c'), cancel=cancel)

    assert analyzer.calls == ['a']
    assert [t.state for t in tasks] == [TaskState.DONE, TaskState.PENDING, TaskState.PENDING]
    assert not tasks[1].finished


def test_item_already_processing_is_rejected(memory_repository: AnnotationRepository) -> None:
    nested: List[AnnotationTask] = []
    items = _items('a')

    def analyzer(video_id: str, prompt: str, schema):
        nested.append(annotator.run_task(AnnotationTask(item=items[0])))
        return _response(0.9)

    annotator = BatchAnnotator(analyzer, memory_repository, 'c1')
    (task,) = annotator.run(items)

    assert task.state == TaskState.DONE
    (rejected,) = nested
    assert rejected.state == TaskState.FAILED
    assert rejected.error == 'annotation already in progress'


def test_stale_processing_status_is_reset(memory_repository: AnnotationRepository) -> None:
    memory_repository.put_statuses('c1', {'a.mp4': STATUS_PROCESSING})

    annotator = BatchAnnotator(FakeAnalyzer({'a': _response(0.9)}), memory_repository, 'c1')
    assert annotator.statuses['a.mp4'] == STATUS_NEEDS_REVIEW

    (task,) = annotator.run(_items('a'))
    assert task.status == STATUS_READY


def test_item_key_falls_back_to_video_id() -> None:
    assert VideoItem(video_id='vid-1').item_key == 'vid-1'
    assert AnnotationTask(item=VideoItem(video_id='vid-1', filename='f.mp4')).item_id == 'vid-1'
