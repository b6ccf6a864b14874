"""
Durable per-session key-value store.

Holds the player identifier and the match id so a fully restarted client
can ask to rejoin its match. Nothing else survives a restart.
"""

import logging
import os
from typing import Dict, Optional

import orjson

logger = logging.getLogger(__name__)


class SessionStore:
    """Interface for the durable store. Values are plain strings."""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str):
        raise NotImplementedError

    def remove(self, key: str):
        raise NotImplementedError

    def clear(self):
        raise NotImplementedError


class MemorySessionStore(SessionStore):
    """Store that lives as long as the process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str):
        self._data[key] = value

    def remove(self, key: str):
        self._data.pop(key, None)

    def clear(self):
        self._data.clear()


class FileSessionStore(SessionStore):
    """
    Store persisted as a JSON object in a single file.

    The file is rewritten on every change. A missing or corrupt file reads
    as an empty store.
    """

    def __init__(self, path: str):
        self.path = path
        self._data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'rb') as f:
                data = orjson.loads(f.read())
        except (OSError, orjson.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring session file {self.path}: not a JSON object")
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _save(self):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'wb') as f:
            f.write(orjson.dumps(self._data))

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str):
        self._data[key] = value
        self._save()

    def remove(self, key: str):
        if key in self._data:
            del self._data[key]
            self._save()

    def clear(self):
        self._data = {}
        self._save()


def create_session_store(path: Optional[str] = None) -> SessionStore:
    """File-backed store when a path is given, in-memory otherwise."""
    if path:
        return FileSessionStore(path)
    return MemorySessionStore()
