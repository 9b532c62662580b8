"""Local cache for the synchronized content document.

The cache is the synchronous source of truth for page views and admin
screens. It keeps two keys in a small key-value store:

- the serialized ContentSnapshot
- the ISO-8601 time of the last successful remote sync

Reads never fail (corrupt data falls back to the empty snapshot) and writes
report failure through their return value instead of raising, so handlers
always get to finish what they were doing.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from shopsync.exceptions import StorageError, StorageQuotaExceededError
from shopsync.snapshot import ContentSnapshot

logger = logging.getLogger(__name__)

DATA_KEY = "inverted_admin_data"
LAST_SYNC_KEY = "inverted_last_sync"


class KeyValueStorage(Protocol):
    """The subset of the ``localStorage`` API the cache relies on."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage; nothing survives a restart."""

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        candidate = {**self._data, key: value}
        _check_quota(candidate, self.quota_bytes)
        self._data = candidate

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)


class FileStorage:
    """Durable storage kept as one JSON object file.

    Every ``set_item`` rewrites the file through a temp file and
    ``os.replace`` so a crash never leaves a half-written store behind.

    Stored as: <path> (e.g. ~/.shopsync/storage.json)
    """

    def __init__(self, path: Path | str, quota_bytes: Optional[int] = None):
        self.path = Path(path).expanduser()
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] | None = None

    def _load(self) -> dict[str, str]:
        if self._data is not None:
            return self._data

        self._data = {}
        if not self.path.exists():
            return self._data

        try:
            with open(self.path, "r") as f:
                raw = json.load(f)
            if isinstance(raw, dict):
                self._data = {k: v for k, v in raw.items() if isinstance(v, str)}
            else:
                logger.warning(f"Ignoring malformed storage file {self.path}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read storage file {self.path}: {e}")
        return self._data

    def _persist(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(data, f)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write {self.path}: {e}") from e

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        candidate = {**self._load(), key: value}
        _check_quota(candidate, self.quota_bytes)
        self._persist(candidate)
        self._data = candidate

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key not in data:
            return
        candidate = {k: v for k, v in data.items() if k != key}
        self._persist(candidate)
        self._data = candidate


def _check_quota(data: dict[str, str], quota_bytes: Optional[int]) -> None:
    if quota_bytes is None:
        return
    size = sum(len(k) + len(v) for k, v in data.items())
    if size > quota_bytes:
        raise StorageQuotaExceededError(
            f"Storage quota exceeded ({size} > {quota_bytes} bytes)",
            size=size,
            quota=quota_bytes,
        )


class LocalCache:
    """Durable local copy of the content document plus its last-sync marker."""

    def __init__(
        self,
        storage: KeyValueStorage,
        data_key: str = DATA_KEY,
        last_sync_key: str = LAST_SYNC_KEY,
    ):
        """Initialize the cache.

        Args:
            storage: Key-value store to persist into
            data_key: Key holding the serialized snapshot
            last_sync_key: Key holding the last sync timestamp
        """
        self.storage = storage
        self.data_key = data_key
        self.last_sync_key = last_sync_key

    def read(self) -> ContentSnapshot:
        """Return the cached snapshot, or the empty default."""
        raw = self.storage.get_item(self.data_key)
        if not raw:
            return ContentSnapshot()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Cached content is not valid JSON, ignoring it: {e}")
            return ContentSnapshot()

        return ContentSnapshot.from_remote(data)

    def write(self, snapshot: ContentSnapshot) -> bool:
        """Persist *snapshot*.

        Returns:
            True if stored, False if the store refused the write
        """
        try:
            payload = json.dumps(snapshot.to_dict())
            self.storage.set_item(self.data_key, payload)
            return True
        except StorageQuotaExceededError as e:
            logger.error(f"Local cache is full, edit not persisted: {e}")
            return False
        except (StorageError, TypeError, ValueError) as e:
            logger.error(f"Failed to write local cache: {e}")
            return False

    def mark_synced_now(self) -> None:
        """Record the current time as the last successful remote sync."""
        try:
            self.storage.set_item(
                self.last_sync_key, datetime.now(timezone.utc).isoformat()
            )
        except StorageError as e:
            logger.error(f"Failed to record sync time: {e}")

    def last_synced_at(self) -> Optional[datetime]:
        """Return when the cache was last synced, or None if never."""
        raw = self.storage.get_item(self.last_sync_key)
        if not raw:
            return None
        try:
            synced = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Ignoring malformed last sync marker: {raw!r}")
            return None
        if synced.tzinfo is None:
            synced = synced.replace(tzinfo=timezone.utc)
        return synced

    def clear(self) -> None:
        """Forget the cached snapshot and the sync marker."""
        try:
            self.storage.remove_item(self.data_key)
            self.storage.remove_item(self.last_sync_key)
            logger.info("Cleared local cache")
        except StorageError as e:
            logger.error(f"Failed to clear local cache: {e}")

    def export_json(self) -> str:
        """Current snapshot as pretty-printed JSON (for backups)."""
        return json.dumps(self.read().to_dict(), indent=2)

    def import_json(self, text: str) -> bool:
        """Overwrite the cache with an exported snapshot.

        Returns:
            False if *text* isn't a JSON object or couldn't be stored
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Import rejected, invalid JSON: {e}")
            return False
        if not isinstance(data, dict):
            logger.error("Import rejected, expected a JSON object")
            return False
        return self.write(ContentSnapshot.from_remote(data))
