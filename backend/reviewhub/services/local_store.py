"""Device-local storage: the fallback tier of last resort.

Two layers:

- ``DeviceStorage`` is the synchronous, origin-scoped key/value contract
  (get_item / set_item / remove_item) with in-memory and file-backed
  adapters.
- ``LocalStore`` keeps JSON collections under fixed namespaces on top of a
  ``DeviceStorage``. Every read parses the whole collection and every write
  rewrites it. Nothing here raises: a failing or missing storage degrades to
  ``[]`` / ``None`` / ``False`` because there is no further tier to fall
  back to.
"""
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional
from uuid import uuid4

from reviewhub.lib.logging import get_logger
from reviewhub.services.records import LOCAL_ID_PREFIX


logger = get_logger(__name__)


# Namespaces (one key per domain collection)
REVIEWS_NAMESPACE = "local_reviews"
COMMENTS_NAMESPACE = "local_comments"  # {review_id: [comment, ...]} for remote reviews
CHAT_ROOMS_NAMESPACE = "local_chat_rooms"
CHAT_MESSAGES_NAMESPACE = "local_chat_messages"


Record = dict[str, Any]
Predicate = Callable[[Record], bool]


class DeviceStorageError(Exception):
    """Raised by a DeviceStorage when a read or write cannot be served."""


class DeviceStorage(ABC):
    """Abstract key/value storage holding string values."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""
        pass


class MemoryDeviceStorage(DeviceStorage):
    """In-process storage, optionally limited to a total size in bytes.

    Useful for tests and for processes where nothing should outlive the run.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self._items: dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(len(v.encode("utf-8")) for k, v in self._items.items() if k != key)
            if used + len(value.encode("utf-8")) > self.quota_bytes:
                raise DeviceStorageError(f"Quota of {self.quota_bytes} bytes exceeded writing '{key}'")
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileDeviceStorage(DeviceStorage):
    """One file per key under a directory.

    Writes go to a temporary file first and are moved into place, so a
    crash mid-write leaves the previous value intact.
    """

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        safe_key = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self.root / f"{safe_key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise DeviceStorageError(f"Cannot read '{key}': {e}") from e

    def set_item(self, key: str, value: str) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix=".tmp-")
        except OSError as e:
            raise DeviceStorageError(f"Cannot write '{key}': {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp_path, self._path(key))
        except OSError as e:
            Path(tmp_path).unlink(missing_ok=True)
            raise DeviceStorageError(f"Cannot write '{key}': {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise DeviceStorageError(f"Cannot remove '{key}': {e}") from e


def new_local_id() -> str:
    """Opaque, collision-resistant id for a device-local record."""
    return f"{LOCAL_ID_PREFIX}{uuid4().hex}"


class LocalStore:
    """JSON collections persisted in a DeviceStorage.

    A ``None`` storage means no device storage is configured; every read
    is then empty and every write fails softly.
    """

    def __init__(self, storage: Optional[DeviceStorage]):
        self.storage = storage

    # ----- raw access -----

    def _read(self, namespace: str, default: Any) -> Any:
        if self.storage is None:
            return default
        try:
            stored = self.storage.get_item(namespace)
            if not stored:
                return default
            value = json.loads(stored)
        except (DeviceStorageError, ValueError) as e:
            logger.warning(f"Local collection '{namespace}' unreadable, treating as empty: {e}")
            return default
        if not isinstance(value, type(default)):
            logger.warning(f"Local collection '{namespace}' has unexpected shape, treating as empty")
            return default
        return value

    def _write(self, namespace: str, value: Any) -> bool:
        if self.storage is None:
            return False
        try:
            self.storage.set_item(namespace, json.dumps(value, default=str))
            return True
        except (DeviceStorageError, TypeError, ValueError) as e:
            logger.warning(f"Local collection '{namespace}' could not be written: {e}")
            return False

    # ----- list collections -----

    def load_all(self, namespace: str) -> list[Record]:
        """All records in a collection; [] if empty, corrupt or unavailable."""
        return [record for record in self._read(namespace, []) if isinstance(record, dict)]

    def append_one(self, namespace: str, record: Record) -> Optional[str]:
        """Assign a local id, append and persist. Returns the id or None."""
        records = self.load_all(namespace)
        new_record = {**record, "id": new_local_id()}
        records.append(new_record)
        if not self._write(namespace, records):
            return None
        return new_record["id"]

    def remove_where(self, namespace: str, predicate: Predicate) -> bool:
        """Drop matching records. Returns whether the rewrite succeeded."""
        records = self.load_all(namespace)
        return self._write(namespace, [record for record in records if not predicate(record)])

    def update_where(self, namespace: str, predicate: Predicate, mutator: Callable[[Record], None]) -> bool:
        """Mutate matching records in place. False if nothing matched or the write failed."""
        records = self.load_all(namespace)
        matched = False
        for record in records:
            if predicate(record):
                mutator(record)
                matched = True
        if not matched:
            return False
        return self._write(namespace, records)

    # ----- keyed collections -----

    def load_map(self, namespace: str) -> dict[str, list[Record]]:
        """A {key: [record, ...]} collection; {} if empty, corrupt or unavailable."""
        return {
            key: [record for record in records if isinstance(record, dict)]
            for key, records in self._read(namespace, {}).items()
            if isinstance(records, list)
        }

    def append_to_map(self, namespace: str, key: str, record: Record) -> Optional[str]:
        """Append a record under ``key`` with a fresh local id."""
        mapping = self.load_map(namespace)
        new_record = {**record, "id": new_local_id()}
        mapping.setdefault(key, []).append(new_record)
        if not self._write(namespace, mapping):
            return None
        return new_record["id"]

    def remove_from_map(self, namespace: str, key: str, predicate: Optional[Predicate] = None) -> bool:
        """Remove matching records under ``key``, or the whole key when no predicate is given.

        Returns False when the key holds nothing to remove or the write failed.
        """
        mapping = self.load_map(namespace)
        if key not in mapping:
            return False
        if predicate is None:
            del mapping[key]
        else:
            remaining = [record for record in mapping[key] if not predicate(record)]
            if len(remaining) == len(mapping[key]):
                return False
            mapping[key] = remaining
        return self._write(namespace, mapping)
