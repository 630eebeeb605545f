# pharmaqms/storage.py

"""
Key-value persistence for every named collection in the system.

Each collection (deviations, CAPA, the audit ledger, ...) lives under its own
key as one serialized JSON document: an ordered list of records, newest first.
Writes always replace the whole collection.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, MutableMapping, Optional, Tuple

from .errors import StorageFailure

logger = logging.getLogger(__name__)

_KEY_LOCKS: Dict[Tuple[str, str], threading.RLock] = {}
_KEY_LOCKS_GUARD = threading.Lock()


class KeyValueStore(ABC):
    """get/set/remove over named string keys holding serialized JSON."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> Iterator[str]:
        ...

    def namespace(self) -> str:
        """Identifies the backing data; stores over the same data share their locks."""
        return f"{type(self).__name__}:{id(self)}"

    def lock(self, key: str) -> threading.RLock:
        """
        Re-entrant lock for one key. Streamlit sessions are threads of one server
        process, so holding it across read, check and write makes the sequence
        atomic for every session sharing the store.
        """
        with _KEY_LOCKS_GUARD:
            return _KEY_LOCKS.setdefault((self.namespace(), key), threading.RLock())


class MemoryStore(KeyValueStore):
    """
    Dictionary-backed store. An optional quota (total characters across all
    keys) mimics a browser storage limit so callers can exercise the
    StorageFailure path.
    """

    def __init__(self, quota: Optional[int] = None):
        self._data: Dict[str, str] = {}
        self.quota = quota

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageFailure(key, "value must be a serialized string")
        if self.quota is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(value) > self.quota:
                raise StorageFailure(key, f"quota of {self.quota} characters exceeded")
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> Iterator[str]:
        return iter(list(self._data.keys()))


class SessionStateStore(KeyValueStore):
    """
    Store backed by a mutable mapping, normally ``st.session_state``.

    Keys are namespaced so the collections do not collide with widget state.
    Data lives only as long as the browser session.
    """

    PREFIX = "kv::"

    def __init__(self, mapping: MutableMapping):
        self._mapping = mapping

    def namespace(self) -> str:
        return f"session:{id(self._mapping)}"

    def get(self, key: str) -> Optional[str]:
        return self._mapping.get(self.PREFIX + key)

    def set(self, key: str, value: str) -> None:
        self._mapping[self.PREFIX + key] = value

    def remove(self, key: str) -> None:
        namespaced = self.PREFIX + key
        if namespaced in self._mapping:
            del self._mapping[namespaced]

    def keys(self) -> Iterator[str]:
        return iter([k[len(self.PREFIX):] for k in list(self._mapping.keys())
                     if isinstance(k, str) and k.startswith(self.PREFIX)])


class FileStore(KeyValueStore):
    """
    One JSON file per key inside a directory. Writes go to a temporary file
    which is then renamed over the target, so a failed write never leaves a
    half-written collection behind.
    """

    def __init__(self, directory: str):
        self.directory = directory
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise StorageFailure(directory, str(e)) from e

    def namespace(self) -> str:
        return f"file:{os.path.abspath(self.directory)}"

    def _path(self, key: str) -> str:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return os.path.join(self.directory, f"{safe}.json")

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            logger.error(f"Failed reading collection '{key}' from {path}: {e}")
            raise StorageFailure(key, str(e)) from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed writing collection '{key}' to {path}: {e}")
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageFailure(key, str(e)) from e

    def remove(self, key: str) -> None:
        path = self._path(key)
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            raise StorageFailure(key, str(e)) from e

    def keys(self) -> Iterator[str]:
        names = sorted(n for n in os.listdir(self.directory) if n.endswith(".json"))
        return iter([n[:-len(".json")] for n in names])


def load_collection(store: KeyValueStore, key: str, strict: bool = False) -> List[Dict[str, Any]]:
    """
    Reads a collection. A missing value reads as empty. A corrupt value (not
    JSON, or not a list) reads as empty for display, but raises StorageFailure
    when ``strict`` so a write never replaces data it could not read.
    """
    raw = store.get(key)
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        if strict:
            raise StorageFailure(key, f"stored value is not valid JSON: {e}") from e
        logger.error(f"Collection '{key}' is not valid JSON, treating as empty: {e}")
        return []
    if not isinstance(data, list):
        if strict:
            raise StorageFailure(key, "stored value is not a list")
        logger.error(f"Collection '{key}' is not a list, treating as empty")
        return []
    return data


def save_collection(store: KeyValueStore, key: str, items: List[Dict[str, Any]]) -> None:
    store.set(key, json.dumps(items, default=str))


def load_document(store: KeyValueStore, key: str, default: Any = None) -> Any:
    raw = store.get(key)
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


def save_document(store: KeyValueStore, key: str, value: Any) -> None:
    store.set(key, json.dumps(value, default=str))
