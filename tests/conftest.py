import json
import os

import pytest

from video_labeler.persistence import AnnotationRepository, MemoryStore

# Qt widget tests render without a display
os.environ.setdefault('QT_QPA_PLATFORM', 'offscreen')


SAMPLE_RESPONSE = {
    'annotations': [
        {
            'start_timestamp': '00:00',
            'end_timestamp': '00:12',
            'description': 'A chef chops onions on a wooden board.',
            'scene_classification': 'Kitchen',
            'detected_objects': [
                {'label': 'knife', 'confidence_score': 0.95, 'start_timestamp': '00:01', 'end_timestamp': '00:10'},
                {'label': 'onion', 'confidence_score': 0.88, 'start_timestamp': '00:02', 'end_timestamp': '00:09'},
            ],
            'detected_actions': [
                {'label': 'chopping', 'confidence_score': 0.9, 'start_timestamp': '00:02', 'end_timestamp': '00:11'},
            ],
            'confidence_score': 0.9,
        },
        {
            'start_timestamp': '00:12',
            'end_timestamp': '01:05',
            'description': 'The chef plates the dish.',
            'scene_classification': 'Kitchen',
            'detected_objects': [
                {'label': 'plate', 'confidence_score': 0.7, 'start_timestamp': '00:15', 'end_timestamp': '01:00'},
            ],
            'detected_actions': [],
            'confidence_score': 0.5,
        },
    ]
}


@pytest.fixture
def sample_response() -> dict:
    return json.loads(json.dumps(SAMPLE_RESPONSE))


@pytest.fixture
def sample_response_text(sample_response: dict) -> str:
    return json.dumps(sample_response)


@pytest.fixture
def memory_repository() -> AnnotationRepository:
    return AnnotationRepository(MemoryStore())


PLAIN_TEXT_ANSWER = """Here is the analysis of the video.

Start: 00:00 - 00:10
Description: A chef chops onions.
Scene Classification: Kitchen
Detected Objects:
- knife (confidence: 0.9)
- onion
Detected Actions:
- chopping
Confidence: 0.85

Start: 00:10
End: 00:20
A chef plates the dish.
"""


@pytest.fixture
def plain_text_answer() -> str:
    return PLAIN_TEXT_ANSWER
