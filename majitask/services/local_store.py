"""Durable key/value store backing the local adapter (browser localStorage analogue)."""

import json
import os
import tempfile
from typing import Any, Optional

from majitask.utils.config import SyncConfig
from majitask.utils.errors import InternalError
from majitask.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class LocalKeyValueStore:
    """
    String key/value store persisted as one JSON document.

    With no path the store lives in memory only (tests, throwaway sessions).
    Every write rewrites the file through a temp file and os.replace, so a
    crash never leaves a half-written document behind.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._items: dict[str, str] = {}
        if path and os.path.exists(path):
            self._load()

    def _load(self) -> None:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            raise InternalError(f"Failed to read local store {self.path}: {e}")
        if not isinstance(data, dict):
            raise InternalError(f"Local store {self.path} is not a JSON object")
        self._items = {str(k): v for k, v in data.items() if isinstance(v, str)}
        logger.debug("Local store loaded", path=self.path, keys=len(self._items))

    def _flush(self) -> None:
        if not self.path:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".majitask-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._items, fh)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise InternalError(f"Failed to write local store {self.path}: {e}")

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        self._flush()

    def remove_item(self, key: str) -> None:
        if self._items.pop(key, None) is not None:
            self._flush()

    def clear(self) -> None:
        self._items = {}
        self._flush()

    def keys(self) -> list[str]:
        return list(self._items)

    # JSON helpers

    def get_json(self, key: str, default: Any = None) -> Any:
        """Decode a JSON value; a corrupt value reads as the default."""
        raw = self.get_item(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable local store value", key=key)
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value))


_store: Optional[LocalKeyValueStore] = None


def get_local_store() -> LocalKeyValueStore:
    """Get or create the process-wide local store."""
    global _store
    if _store is None:
        _store = LocalKeyValueStore(SyncConfig.LOCAL_STORE_PATH)
        logger.info("Local store initialized", persistent=bool(SyncConfig.LOCAL_STORE_PATH))
    return _store
