import json
from pathlib import Path

import pytest

from video_labeler.domain import AnnotationSegment, AnnotationSet, AppConfig, DetectedEntity
from video_labeler.errors import StoreError, StoreQuotaError
from video_labeler.persistence import (
    DATA_ROOT_ENV,
    AnnotationRepository,
    JsonFileStore,
    MemoryStore,
    QSettingsStore,
    annotation_key,
    load_config,
    open_store,
    resolve_config,
    save_config,
)


def _set() -> AnnotationSet:
    return AnnotationSet(
        segments=[
            AnnotationSegment(
                start_time=0, end_time=12, description='A chef chops onions.',
                scene_classification='Kitchen',
                detected_objects=[DetectedEntity('knife', 0.95, 1, 10)],
                detected_actions=[DetectedEntity('chopping', 0.9, 2, 11)],
                confidence_score=0.9,
            ),
        ],
        overall_confidence=0.9,
        annotated_at='2024-05-01T10:00:00Z',
        video_url='https://example.test/clip.mp4',
        video_metadata={'duration': 65},
    )


def test_put_then_get_returns_equal_set(memory_repository: AnnotationRepository) -> None:
    aset = _set()
    assert memory_repository.put('c1', 'clip.mp4', aset) is True

    assert memory_repository.get('c1', 'clip.mp4') == aset
    assert memory_repository.get('c1', 'other.mp4') is None


def test_put_overwrites(memory_repository: AnnotationRepository) -> None:
    memory_repository.put('c1', 'clip.mp4', _set())
    memory_repository.put('c1', 'clip.mp4', AnnotationSet(annotated_at='later'))

    stored = memory_repository.get('c1', 'clip.mp4')
    assert stored.segments == []
    assert stored.annotated_at == 'later'


def test_delete_removes_one_item(memory_repository: AnnotationRepository) -> None:
    memory_repository.put('c1', 'a.mp4', _set())
    memory_repository.put('c1', 'b.mp4', _set())

    memory_repository.delete('c1', 'a.mp4')
    memory_repository.delete('c1', 'missing.mp4')

    assert memory_repository.get('c1', 'a.mp4') is None
    assert memory_repository.list_items('c1') == ['b.mp4']


def test_keys_are_scoped_by_collection(memory_repository: AnnotationRepository) -> None:
    memory_repository.put('c1', 'a.mp4', _set())
    memory_repository.put('c1', 'b.mp4', _set())
    memory_repository.put('c2', 'a.mp4', _set())

    assert annotation_key('c1', 'a.mp4') == 'annotations_c1_a.mp4'
    assert memory_repository.list_items('c1') == ['a.mp4', 'b.mp4']
    assert sorted(memory_repository.load_all('c2')) == ['a.mp4']


def test_undecodable_value_reads_as_absent() -> None:
    store = MemoryStore()
    store.set(annotation_key('c1', 'x'), 'not json')
    store.set(annotation_key('c1', 'y'), '[1, 2]')
    repo = AnnotationRepository(store)

    assert repo.get('c1', 'x') is None
    assert repo.get('c1', 'y') is None


def test_wrong_shape_values_read_as_empty_fields() -> None:
    store = MemoryStore()
    store.set(annotation_key('c1', 'a'), '{"annotations": 5}')
    store.set(annotation_key('c1', 'b'), json.dumps({
        'annotations': [{'start_time': 1, 'end_time': 2, 'detected_objects': 'knife', 'detected_actions': {'x': 1}}],
        'video_metadata': 'abc',
        'video_url': 7,
    }))
    repo = AnnotationRepository(store)

    assert repo.get('c1', 'a').segments == []
    (seg,) = repo.get('c1', 'b').segments
    assert (seg.detected_objects, seg.detected_actions) == ([], [])
    assert repo.get('c1', 'b').video_metadata == {}
    assert repo.get('c1', 'b').video_url is None


def test_collections_sharing_a_prefix_stay_apart(memory_repository: AnnotationRepository) -> None:
    memory_repository.put('cam', 'a.mp4', _set())
    memory_repository.put('cam_2', 'b.mp4', _set())
    memory_repository.put('cam', '2_b.mp4', AnnotationSet(annotated_at='cam'))

    assert memory_repository.list_items('cam') == ['2_b.mp4', 'a.mp4']
    assert memory_repository.list_items('cam_2') == ['b.mp4']
    assert sorted(memory_repository.load_all('cam_2')) == ['b.mp4']
    assert memory_repository.get('cam_2', 'b.mp4') == _set()
    assert memory_repository.get('cam', '2_b.mp4').annotated_at == 'cam'
    assert annotation_key('cam', '2_b.mp4') != annotation_key('cam_2', 'b.mp4')


def test_item_keys_with_separators_round_trip(memory_repository: AnnotationRepository) -> None:
    memory_repository.put('c 1', 'dir/my clip_%.mp4', _set())

    assert memory_repository.list_items('c 1') == ['dir/my clip_%.mp4']
    assert memory_repository.get('c 1', 'dir/my clip_%.mp4') == _set()


def test_quota_error_is_reported_not_raised() -> None:
    store = MemoryStore(quota_bytes=40)
    with pytest.raises(StoreQuotaError):
        store.set('k', 'x' * 100)
    assert store.get('k') is None

    repo = AnnotationRepository(store)
    assert repo.put('c1', 'clip.mp4', _set()) is False
    assert repo.get('c1', 'clip.mp4') is None


def test_store_error_is_reported_not_raised() -> None:
    class BrokenStore(MemoryStore):
        def set(self, key: str, value: str) -> None:
            raise StoreError('disk gone')

    repo = AnnotationRepository(BrokenStore())
    assert repo.put('c1', 'clip.mp4', _set()) is False
    assert repo.put_statuses('c1', {'clip.mp4': 'ready'}) is False


def test_statuses_round_trip(memory_repository: AnnotationRepository) -> None:
    assert memory_repository.get_statuses('c1') == {}
    memory_repository.put_statuses('c1', {'a.mp4': 'ready', 'b.mp4': 'needs_review'})

    assert memory_repository.get_statuses('c1') == {'a.mp4': 'ready', 'b.mp4': 'needs_review'}
    # status map is not listed as an item
    assert memory_repository.list_items('c1') == []


def test_json_file_store_persists_across_instances(tmp_path: Path) -> None:
    path = tmp_path / 'store' / 'annotations.json'
    AnnotationRepository(JsonFileStore(str(path))).put('c1', 'clip.mp4', _set())

    assert json.loads(path.read_text())[annotation_key('c1', 'clip.mp4')]
    assert AnnotationRepository(JsonFileStore(str(path))).get('c1', 'clip.mp4') == _set()


def test_json_file_store_treats_corrupt_file_as_empty(tmp_path: Path) -> None:
    path = tmp_path / 'annotations.json'
    path.write_text('{ nope')
    store = JsonFileStore(str(path))

    assert store.keys() == []
    store.set('k', 'v')
    assert JsonFileStore(str(path)).get('k') == 'v'


def test_json_file_store_quota(tmp_path: Path) -> None:
    store = JsonFileStore(str(tmp_path / 'a.json'), quota_bytes=10)
    store.set('k', 'v')
    with pytest.raises(StoreQuotaError):
        store.set('k2', 'x' * 20)
    assert store.keys() == ['k']


def test_json_file_store_remove(tmp_path: Path) -> None:
    store = JsonFileStore(str(tmp_path / 'a.json'))
    store.set('k', 'v')
    store.remove('k')
    store.remove('missing')
    assert store.get('k') is None


def test_qsettings_store_round_trip(tmp_path: Path) -> None:
    path = str(tmp_path / 'annotations.ini')
    QSettingsStore(path=path).set('greeting', 'hello')

    store = QSettingsStore(path=path)
    assert store.get('greeting') == 'hello'
    assert 'greeting' in store.keys()
    store.remove('greeting')
    assert store.get('greeting') is None


def test_config_save_and_load(tmp_path: Path) -> None:
    cfg = AppConfig(data_root=str(tmp_path), store_backend='json', quota_bytes=5000)
    cfg.add_label('c1', 'knife')
    save_config(cfg)

    loaded = load_config(str(tmp_path))
    assert loaded == cfg


def test_load_config_missing_or_invalid(tmp_path: Path) -> None:
    assert load_config(str(tmp_path)) is None
    (tmp_path / 'config.json').write_text('[')
    assert load_config(str(tmp_path)) is None


def test_load_config_ignores_malformed_taxonomy(tmp_path: Path) -> None:
    (tmp_path / 'config.json').write_text('{"store_backend": "json", "label_taxonomy": ["knife"]}')

    cfg = load_config(str(tmp_path))
    assert cfg.label_taxonomy == {}
    assert cfg.data_root == str(tmp_path)


def test_save_config_requires_data_root() -> None:
    with pytest.raises(ValueError):
        save_config(AppConfig(data_root=''))


def test_resolve_config_uses_environment(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv(DATA_ROOT_ENV, raising=False)
    assert resolve_config(None) is None

    monkeypatch.setenv(DATA_ROOT_ENV, str(tmp_path))
    cfg = resolve_config(None)
    assert cfg.data_root == str(tmp_path)
    assert cfg.store_backend == 'json'


def test_open_store_picks_backend(tmp_path: Path) -> None:
    assert isinstance(open_store(AppConfig(data_root=str(tmp_path))), JsonFileStore)
    assert isinstance(open_store(AppConfig(data_root=str(tmp_path), store_backend='qsettings')), QSettingsStore)
