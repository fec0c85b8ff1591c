"""
Storage - Key/value contract shared by the mastery ledger and mistake tracker.

Key Structure:
    mastery:{student_id}  -> JSON (versioned mastery document)
    mistakes:{student_id} -> JSON (versioned mistake-pattern document)

Backends only move strings around; decoding, versioning and degradation
rules live in DocumentStore.
"""

import json
import logging
import threading
import zlib
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_LOCK_STRIPES = 64


class StorageError(Exception):
    """Base class for storage failures."""


class StorageUnavailable(StorageError):
    """The backing store cannot be reached from this process."""


class DataCorruption(StorageError):
    """A stored document could not be decoded."""


class KeyValueStore:
    """Minimal read/write/delete contract every backend implements."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str) -> List[str]:
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """Process-local backend, used for tests and single-process deployments."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str) -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class KeyLocks:
    """
    Striped locks so append-then-recompute runs atomically for one student.

    A fixed pool: the same key always maps to the same lock, and memory does
    not grow with the number of students. Unrelated keys may share a stripe.
    """

    def __init__(self, stripes: int = DEFAULT_LOCK_STRIPES):
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]

    def __call__(self, key: str) -> threading.Lock:
        return self._locks[zlib.crc32(key.encode("utf-8")) % len(self._locks)]

    def __len__(self) -> int:
        return len(self._locks)


class DocumentStore:
    """
    Versioned JSON documents on top of a KeyValueStore.

    ``parse`` turns a decoded document into the owner's state object and
    ``dump`` turns it back. Reads never raise: an unreachable backend, an
    undecodable payload or a version mismatch all come back as ``empty``.
    Writes never raise either; failures are logged and dropped.
    """

    def __init__(self, store: KeyValueStore, prefix: str, version: int,
                 empty: Callable[[str], Any], parse: Callable[[dict], Any],
                 dump: Callable[[Any], dict]):
        self.store = store
        self.prefix = prefix
        self.version = version
        self._empty = empty
        self._parse = parse
        self._dump = dump

    def key(self, student_id: str) -> str:
        return f"{self.prefix}:{student_id}"

    def student_ids(self) -> List[str]:
        marker = f"{self.prefix}:"
        try:
            keys = self.store.keys(marker)
        except StorageUnavailable as e:
            logger.warning("Storage unavailable listing %s documents: %s", self.prefix, e)
            return []
        return [k[len(marker):] for k in keys]

    def load(self, student_id: str) -> Any:
        key = self.key(student_id)
        try:
            raw = self.store.get(key)
        except StorageUnavailable as e:
            logger.warning("Storage unavailable reading %s: %s", key, e)
            return self._empty(student_id)
        except DataCorruption as e:
            logger.error("Discarding unreadable document %s: %s", key, e)
            return self._empty(student_id)

        if raw is None:
            return self._empty(student_id)

        try:
            state = self.decode(raw)
        except DataCorruption as e:
            logger.error("Discarding corrupted document %s: %s", key, e)
            return self._empty(student_id)

        if state is None:
            logger.info("Resetting %s: stored version is not %r", key, self.version)
            return self._empty(student_id)
        return state

    def decode(self, raw: str) -> Any:
        """Parse a stored payload; None means it belongs to another schema version."""
        try:
            doc = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise DataCorruption(str(e)) from e
        if not isinstance(doc, dict):
            raise DataCorruption(f"expected an object, got {type(doc).__name__}")
        if doc.get("version") != self.version:
            return None
        try:
            return self._parse(doc)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DataCorruption(f"bad document shape: {e!r}") from e

    def save(self, student_id: str, state: Any) -> bool:
        key = self.key(student_id)
        doc = self._dump(state)
        doc["version"] = self.version
        try:
            self.store.set(key, json.dumps(doc))
        except StorageUnavailable as e:
            logger.warning("Storage unavailable, dropped write to %s: %s", key, e)
            return False
        return True

    def delete(self, student_id: str) -> None:
        key = self.key(student_id)
        try:
            self.store.delete(key)
        except StorageUnavailable as e:
            logger.warning("Storage unavailable, dropped delete of %s: %s", key, e)
