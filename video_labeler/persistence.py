# video_labeler/persistence.py
from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote, unquote

from PyQt5.QtCore import QSettings

from .domain import AppConfig, AnnotationSet
from .errors import StoreError, StoreQuotaError

logger = logging.getLogger(__name__)


# Filenames (within the data root)
CONFIG_FILENAME = "config.json"

ANNOTATION_KEY_PREFIX = "annotations"
STATUS_KEY_PREFIX = "statuses"


# -----------------------------
# Atomic file helpers
# -----------------------------

def _atomic_write_text(path: str, text: str, encoding: str = "utf-8") -> None:
    d = os.path.dirname(os.path.abspath(path))
    os.makedirs(d, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", dir=d)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def _atomic_write_json(path: str, payload: Dict) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    _atomic_write_text(path, text + "\n")


def _read_json(path: str) -> Dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


# -----------------------------
# Key-value stores
# -----------------------------

class KeyValueStore:
    """
    Minimal string key-value store.

    set() may raise StoreQuotaError when the store is full, or StoreError
    for any other write failure.
    """

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError


def _payload_size(data: Dict[str, str]) -> int:
    return sum(len(k) + len(v) for k, v in data.items())


def _check_quota(data: Dict[str, str], quota_bytes: Optional[int], key: str) -> None:
    if quota_bytes is None:
        return
    size = _payload_size(data)
    if size > quota_bytes:
        raise StoreQuotaError(
            f"writing {key!r} needs {size} bytes, store quota is {quota_bytes}"
        )


class MemoryStore(KeyValueStore):
    """Dict-backed store; nothing survives the process."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self._data: Dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        updated = dict(self._data)
        updated[key] = str(value)
        _check_quota(updated, self.quota_bytes, key)
        self._data = updated

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._data)


class JsonFileStore(KeyValueStore):
    """
    Whole store kept in one JSON object file, rewritten atomically on every set.

    A missing or unreadable file reads as an empty store.
    """

    def __init__(self, path: str, quota_bytes: Optional[int] = None):
        self.path = path
        self.quota_bytes = quota_bytes
        self._data: Optional[Dict[str, str]] = None

    def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data
        data: Dict[str, str] = {}
        if os.path.exists(self.path):
            try:
                raw = _read_json(self.path)
                if isinstance(raw, dict):
                    data = {str(k): str(v) for k, v in raw.items() if isinstance(v, str)}
            except (OSError, ValueError) as e:
                logger.warning("Store file %s unreadable, starting empty: %s", self.path, e)
        self._data = data
        return data

    def _write(self, data: Dict[str, str]) -> None:
        try:
            _atomic_write_json(self.path, data)
        except OSError as e:
            raise StoreError(f"failed writing {self.path}: {e}") from e
        self._data = data

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        updated = dict(self._load())
        updated[key] = str(value)
        _check_quota(updated, self.quota_bytes, key)
        self._write(updated)

    def remove(self, key: str) -> None:
        data = self._load()
        if key not in data:
            return
        updated = dict(data)
        del updated[key]
        self._write(updated)

    def keys(self) -> List[str]:
        return sorted(self._load())


class QSettingsStore(KeyValueStore):
    """
    Store on top of QSettings: the platform settings location for
    (organization, application), or an INI file when path is given.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        organization: str = "video_labeler",
        application: str = "video_labeler",
    ):
        if path:
            self._settings = QSettings(path, QSettings.IniFormat)
        else:
            self._settings = QSettings(organization, application)

    def get(self, key: str) -> Optional[str]:
        value = self._settings.value(key, None)
        if value is None:
            return None
        return str(value)

    def set(self, key: str, value: str) -> None:
        self._settings.setValue(key, str(value))
        self._settings.sync()
        if self._settings.status() != QSettings.NoError:
            raise StoreError(f"QSettings write failed for {key!r} (status {int(self._settings.status())})")

    def remove(self, key: str) -> None:
        self._settings.remove(key)
        self._settings.sync()

    def keys(self) -> List[str]:
        return sorted(str(k) for k in self._settings.allKeys())


# -----------------------------
# Annotation repository
# -----------------------------

def _escape_id(value: str) -> str:
    # "_" joins key parts, so ids never carry a raw one
    return quote(str(value), safe="").replace("_", "%5F")


def _collection_prefix(collection_id: str) -> str:
    return f"{ANNOTATION_KEY_PREFIX}_{_escape_id(collection_id)}_"


def annotation_key(collection_id: str, item_key: str) -> str:
    return _collection_prefix(collection_id) + _escape_id(item_key)


def status_key(collection_id: str) -> str:
    return f"{STATUS_KEY_PREFIX}_{_escape_id(collection_id)}"


class AnnotationRepository:
    """
    AnnotationSet persistence keyed by (collection, item).

    Reads of absent or undecodable values give None. Writes fully overwrite
    and report failure through the return value; a full or broken store
    never raises out of put().
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def get(self, collection_id: str, item_key: str) -> Optional[AnnotationSet]:
        key = annotation_key(collection_id, item_key)
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning("Stored value for %s is not JSON; ignoring it", key)
            return None
        if not isinstance(payload, dict):
            logger.warning("Stored value for %s is not an annotation object; ignoring it", key)
            return None
        return AnnotationSet.from_dict(payload)

    def put(self, collection_id: str, item_key: str, annotation_set: AnnotationSet) -> bool:
        key = annotation_key(collection_id, item_key)
        text = json.dumps(annotation_set.to_dict(), ensure_ascii=False)
        try:
            self.store.set(key, text)
        except StoreQuotaError as e:
            logger.warning("Annotation store is full; %s kept in memory only: %s", key, e)
            return False
        except (StoreError, OSError) as e:
            logger.warning("Failed to persist %s: %s", key, e)
            return False
        return True

    def delete(self, collection_id: str, item_key: str) -> None:
        self.store.remove(annotation_key(collection_id, item_key))

    def list_items(self, collection_id: str) -> List[str]:
        prefix = _collection_prefix(collection_id)
        return [unquote(k[len(prefix):]) for k in self.store.keys() if k.startswith(prefix)]

    def get_statuses(self, collection_id: str) -> Dict[str, str]:
        raw = self.store.get(status_key(collection_id))
        if not raw:
            return {}
        try:
            payload = json.loads(raw)
        except ValueError:
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(k): str(v) for k, v in payload.items()}

    def put_statuses(self, collection_id: str, statuses: Dict[str, str]) -> bool:
        try:
            self.store.set(status_key(collection_id), json.dumps(dict(statuses)))
        except (StoreError, OSError) as e:
            logger.warning("Failed to persist statuses for %s: %s", collection_id, e)
            return False
        return True

    def load_all(self, collection_id: str, item_keys: Optional[Iterable[str]] = None) -> Dict[str, AnnotationSet]:
        keys = list(item_keys) if item_keys is not None else self.list_items(collection_id)
        out: Dict[str, AnnotationSet] = {}
        for k in keys:
            s = self.get(collection_id, k)
            if s is not None:
                out[k] = s
        return out


# -----------------------------
# App config (<data_root>/config.json)
# -----------------------------

def config_path(data_root: str) -> str:
    return os.path.join(data_root, CONFIG_FILENAME)


def load_config(data_root: str) -> Optional[AppConfig]:
    """
    Loads <data_root>/config.json.

    If missing or invalid, returns None (caller should treat as defaults).
    """
    if not data_root:
        return None
    path = config_path(data_root)
    if not os.path.exists(path):
        return None
    try:
        data = _read_json(path)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        return None
    cfg = AppConfig.from_dict(data)
    cfg.data_root = data_root
    return cfg


def save_config(cfg: AppConfig) -> None:
    if not cfg.data_root:
        raise ValueError("AppConfig.data_root is required")
    _atomic_write_json(config_path(cfg.data_root), cfg.to_dict())


def open_store(cfg: AppConfig) -> KeyValueStore:
    if cfg.store_backend == "qsettings":
        return QSettingsStore(path=os.path.join(cfg.data_root, "annotations.ini"))
    return JsonFileStore(os.path.join(cfg.data_root, cfg.store_filename), quota_bytes=cfg.quota_bytes)


DATA_ROOT_ENV = "VIDEO_LABELER_DATA_ROOT"


def resolve_config(data_root: Optional[str] = None) -> Optional[AppConfig]:
    """
    Config for data_root (falling back to $VIDEO_LABELER_DATA_ROOT).

    A data root without config.json gets the defaults. Returns None when no
    data root is known at all.
    """
    root = data_root or os.environ.get(DATA_ROOT_ENV) or ""
    if not root:
        return None
    cfg = load_config(root)
    if cfg is None:
        cfg = AppConfig(data_root=root)
    return cfg
