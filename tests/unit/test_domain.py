import pytest

from video_labeler.domain import (
    AnnotationSegment,
    AnnotationSet,
    AppConfig,
    DetectedEntity,
    coerce_confidence,
    label_color,
)


@pytest.mark.parametrize(
    'value, expected',
    [
        (0.42, 0.42),
        (1, 1.0),
        ('0.8', 0.8),
        ('85%', 0.85),
        (92, 0.92),
        (-0.5, 0.0),
        (150, 1.0),
    ],
)
def test_coerce_confidence(value, expected) -> None:
    assert coerce_confidence(value) == pytest.approx(expected)


@pytest.mark.parametrize('value', [None, '', 'high', True, float('nan'), [0.5]])
def test_coerce_confidence_rejects_non_numbers(value) -> None:
    assert coerce_confidence(value) is None


def test_label_color_is_stable_and_matches_hash() -> None:
    assert label_color('a') == 'hsl(97, 70%, 50%)'
    assert label_color('ab') == 'hsl(225, 70%, 50%)'
    assert label_color('person') == label_color('person')
    assert label_color('') == '#999'


def test_segment_from_dict_accepts_timestamp_strings_and_orders_interval() -> None:
    seg = AnnotationSegment.from_dict({
        'start_timestamp': '00:10',
        'end_timestamp': '00:05',
        'description': 'x',
        'overall_confidence': 0.6,
        'detected_objects': [{'label': 'ball', 'confidence': '70%', 'start_timestamp': '00:06'}],
    })

    assert (seg.start_time, seg.end_time) == (5.0, 10.0)
    assert seg.confidence_score == pytest.approx(0.6)
    (ball,) = seg.detected_objects
    assert ball.confidence_score == pytest.approx(0.7)
    assert (ball.start_time, ball.end_time) == (6.0, 6.0)


def test_entity_from_dict_falls_back_to_kind_key() -> None:
    ent = DetectedEntity.from_dict({'action': 'running'}, kind='action')
    assert ent.label == 'running'


def test_segment_entities_rejects_unknown_kind() -> None:
    with pytest.raises(ValueError):
        AnnotationSegment().entities('sound')


def test_segments_at_and_labels() -> None:
    aset = AnnotationSet(segments=[
        AnnotationSegment(0, 10, detected_objects=[DetectedEntity('car')], detected_actions=[DetectedEntity('driving')]),
        AnnotationSegment(8, 20, detected_objects=[DetectedEntity('car'), DetectedEntity('tree')]),
    ])

    assert aset.segments_at(9) == [0, 1]
    assert aset.segments_at(15) == [1]
    assert aset.segments_at(25) == []
    assert aset.labels() == ['car', 'driving', 'tree']


def test_annotation_set_dict_shape() -> None:
    aset = AnnotationSet(
        segments=[AnnotationSegment(1, 2, 'desc', 'Street', confidence_score=0.5)],
        overall_confidence=0.5,
        annotated_at='2024-01-01T00:00:00Z',
        video_url='https://example.test/v.mp4',
        video_metadata={'duration': 30},
    )
    d = aset.to_dict()

    assert set(d) == {'annotations', 'overall_confidence', 'annotatedAt', 'video_url', 'video_metadata'}
    assert AnnotationSet.from_dict(d) == aset


def test_app_config_from_dict_is_tolerant() -> None:
    cfg = AppConfig.from_dict({
        'data_root': '/data',
        'store_backend': 'redis',
        'quota_bytes': 'lots',
        'label_taxonomy': {'c1': ['cat', ' ', 'dog'], 'c2': 'not-a-list'},
    })

    assert cfg.store_backend == 'json'
    assert cfg.quota_bytes is None
    assert cfg.labels_for('c1') == ['cat', 'dog']
    assert cfg.labels_for('c2') == []


def test_app_config_label_editing() -> None:
    cfg = AppConfig(data_root='/data')
    cfg.add_label('c', 'cat')
    cfg.add_label('c', 'cat')
    cfg.add_label('c', '  ')
    cfg.add_label('c', 'dog')
    cfg.remove_label('c', 'cat')

    assert cfg.labels_for('c') == ['dog']
    assert cfg.to_dict()['config_version'] == 1
