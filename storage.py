"""
Key/value "local storage" for client-held state: the auth token, the cached
user and the serialized meeting registry. Values are always strings.
"""
import json
import logging
import os
import tempfile
import threading
from typing import Dict, Optional

import config

logger = logging.getLogger(__name__)


class LocalStorage:
    def get_item(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set_item(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove_item(self, key: str) -> None:
        raise NotImplementedError


class MemoryStorage(LocalStorage):
    def __init__(self, items: Optional[Dict[str, str]] = None):
        self._items = dict(items or {})

    def get_item(self, key):
        return self._items.get(key)

    def set_item(self, key, value):
        self._items[key] = value

    def remove_item(self, key):
        self._items.pop(key, None)


class FileStorage(LocalStorage):
    """Keeps every key in one JSON object on disk, rewritten on each change."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.RLock()

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Unreadable storage file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, items: Dict[str, str]) -> None:
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", dir=directory, suffix=".tmp", delete=False) as f:
            json.dump(items, f)
            tmp_path = f.name
        try:
            os.replace(tmp_path, self.path)
        except OSError:
            os.unlink(tmp_path)
            raise

    def get_item(self, key):
        with self._lock:
            return self._read().get(key)

    def set_item(self, key, value):
        with self._lock:
            items = self._read()
            items[key] = value
            self._write(items)

    def remove_item(self, key):
        with self._lock:
            items = self._read()
            if key in items:
                del items[key]
                self._write(items)


def create_storage() -> LocalStorage:
    if config.LOCAL_STORAGE_PATH:
        return FileStorage(config.LOCAL_STORAGE_PATH)
    return MemoryStorage()
