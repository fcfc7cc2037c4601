import json

import pytest

from video_labeler.normalizer import (
    Empty,
    Recovered,
    Structured,
    normalize_response,
    parse_response,
    parse_suggested_classes,
    resolve_segment_list,
    response_payload,
    strip_envelope,
)
from video_labeler.timeutils import parse_timestamp


def _projection(segments):
    return [
        (
            s.start_time,
            s.end_time,
            s.description,
            s.scene_classification,
            [(e.label, e.confidence_score, e.start_time, e.end_time) for e in s.detected_objects],
            [(e.label, e.confidence_score, e.start_time, e.end_time) for e in s.detected_actions],
            s.confidence_score,
        )
        for s in segments
    ]


def test_well_formed_json_is_a_lossless_projection(sample_response: dict) -> None:
    outcome = parse_response(json.dumps(sample_response))

    assert isinstance(outcome, Structured)
    raw_segments = sample_response['annotations']
    assert len(outcome.segments) == len(raw_segments)
    for seg, raw in zip(outcome.segments, raw_segments):
        assert seg.start_time == parse_timestamp(raw['start_timestamp'])
        assert seg.end_time == parse_timestamp(raw['end_timestamp'])
        assert seg.description == raw['description']
        assert seg.scene_classification == raw['scene_classification']
        assert seg.confidence_score == pytest.approx(raw['confidence_score'])
        for ents, raw_ents in ((seg.detected_objects, raw['detected_objects']),
                               (seg.detected_actions, raw['detected_actions'])):
            assert [e.label for e in ents] == [r['label'] for r in raw_ents]
            assert [e.start_time for e in ents] == [parse_timestamp(r['start_timestamp']) for r in raw_ents]
            assert [e.end_time for e in ents] == [parse_timestamp(r['end_timestamp']) for r in raw_ents]
            assert [e.confidence_score for e in ents] == [r['confidence_score'] for r in raw_ents]


def test_fenced_and_prose_wrapped_json_match_bare_json(sample_response_text: str) -> None:
    bare = _projection(normalize_response(sample_response_text))
    fenced = _projection(normalize_response(f'```json\n{sample_response_text}\n```'))
    prose = _projection(normalize_response(f'Sure! Here is the analysis:\n\n{sample_response_text}\n\nHope it helps.'))

    assert bare
    assert fenced == bare
    assert prose == bare


def test_dict_input_is_used_directly(sample_response: dict) -> None:
    assert len(normalize_response(sample_response)) == 2


@pytest.mark.parametrize(
    'payload',
    [
        {'segments': [{'description': 'a'}]},
        {'scene': {'description': 'a'}},
        {'scenes': [{'description': 'a'}]},
        [{'description': 'a'}],
        {'description': 'a', 'detected_objects': []},
    ],
)
def test_resolve_segment_list_shapes(payload) -> None:
    segments = resolve_segment_list(payload)
    assert len(segments) == 1
    assert segments[0]['description'] == 'a'


def test_strip_envelope() -> None:
    assert strip_envelope('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_envelope('prose {"a": {"b": 2}} trailing') == '{"a": {"b": 2}}'
    assert strip_envelope('[1, 2]') == '[1, 2]'
    assert strip_envelope('no json here') is None


def test_inverted_segment_and_entity_times_are_ordered() -> None:
    (seg,) = normalize_response({'annotations': [{
        'start_timestamp': '00:30',
        'end_timestamp': '00:10',
        'description': 'x',
        'detected_objects': [{'label': 'cup', 'start_timestamp': '00:25', 'end_timestamp': '00:20'}],
    }]})

    assert (seg.start_time, seg.end_time) == (10.0, 30.0)
    assert (seg.detected_objects[0].start_time, seg.detected_objects[0].end_time) == (20.0, 25.0)


def test_key_aliases_are_resolved() -> None:
    (seg,) = normalize_response({'annotations': [{
        'start': '00:01',
        'end': '00:09',
        'description': 'x',
        'scene_type': 'Beach',
        'objects': [{'object': 'umbrella', 'confidence': 0.6}, 'towel'],
        'actions': [{'name': 'swimming', 'timestamp': '00:04'}],
        'overall_confidence': 0.75,
    }]})

    assert (seg.start_time, seg.end_time) == (1.0, 9.0)
    assert seg.scene_classification == 'Beach'
    assert [o.label for o in seg.detected_objects] == ['umbrella', 'towel']
    assert seg.detected_objects[0].confidence_score == pytest.approx(0.6)
    # untimed entities span the segment
    assert (seg.detected_objects[1].start_time, seg.detected_objects[1].end_time) == (1.0, 9.0)
    assert (seg.detected_actions[0].start_time, seg.detected_actions[0].end_time) == (4.0, 4.0)
    assert seg.confidence_score == pytest.approx(0.75)


def test_fields_recovered_from_description() -> None:
    description = (
        'Two people talk in a cafe.\n\n'
        'Scene Classification: Cafe\n'
        'Detected Objects:\n'
        '- cup (confidence: 0.9, start: 00:02, end: 00:05)\n'
        '- table\n'
        'Detected Actions:\n'
        '- talking (0.8)\n'
        'Overall Confidence: 82%\n'
    )
    (seg,) = normalize_response({'annotations': [{
        'start_timestamp': '00:00', 'end_timestamp': '00:10', 'description': description,
    }]})

    assert seg.description == 'Two people talk in a cafe.'
    assert seg.scene_classification == 'Cafe'
    assert [o.label for o in seg.detected_objects] == ['cup', 'table']
    assert (seg.detected_objects[0].start_time, seg.detected_objects[0].end_time) == (2.0, 5.0)
    assert seg.detected_objects[0].confidence_score == pytest.approx(0.9)
    assert [a.label for a in seg.detected_actions] == ['talking']
    assert seg.detected_actions[0].confidence_score == pytest.approx(0.8)
    assert seg.confidence_score == pytest.approx(0.82)


def test_segment_times_backfilled_from_children() -> None:
    (seg,) = normalize_response({'annotations': [{
        'start_timestamp': '00:00',
        'end_timestamp': '00:00',
        'description': 'x',
        'detected_objects': [
            {'label': 'a', 'start_timestamp': '00:04', 'end_timestamp': '00:06'},
            {'label': 'b', 'start_timestamp': '00:02', 'end_timestamp': '00:03'},
        ],
        'detected_actions': [{'label': 'c', 'start_timestamp': '00:05', 'end_timestamp': '00:09'}],
    }]})

    assert (seg.start_time, seg.end_time) == (2.0, 9.0)


def test_plain_text_answer_is_recovered(plain_text_answer: str) -> None:
    outcome = parse_response(plain_text_answer)

    assert isinstance(outcome, Recovered)
    first, second = outcome.segments
    assert (first.start_time, first.end_time) == (0.0, 10.0)
    assert first.scene_classification == 'Kitchen'
    assert [o.label for o in first.detected_objects] == ['knife', 'onion']
    assert (first.detected_objects[1].start_time, first.detected_objects[1].end_time) == (0.0, 10.0)
    assert first.confidence_score == pytest.approx(0.85)
    assert (second.start_time, second.end_time) == (10.0, 20.0)
    assert second.confidence_score is None


@pytest.mark.parametrize(
    'data',
    [None, '', '   ', 'no structure at all', '}{', '```json\n{broken json\n```', 42, [1, 2], {'foo': 1}],
)
def test_unusable_answers_give_empty(data) -> None:
    assert isinstance(parse_response(data), Empty)
    assert normalize_response(data) == []


def test_normalize_response_never_raises(monkeypatch) -> None:
    def boom(_raw):
        raise RuntimeError('unexpected')

    monkeypatch.setattr('video_labeler.normalizer.build_segment', boom)
    assert normalize_response({'annotations': [{'description': 'x'}]}) == []


def test_response_payload() -> None:
    assert response_payload({'data': 'text'}) == 'text'
    assert response_payload('text') == 'text'


def test_parse_suggested_classes() -> None:
    assert parse_suggested_classes({'suggested_classes': ['cat', ' dog ', '']}) == ['cat', 'dog']
    assert parse_suggested_classes('Here: {"suggested_classes": ["car", "bus"]}') == ['car', 'bus']
    assert parse_suggested_classes('1. car\n2. bus\n- person, bike') == ['car', 'bus', 'person', 'bike']
    assert parse_suggested_classes(None) == []
