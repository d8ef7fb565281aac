"""
Key-value persistence used for the username and the watch-time counter.
"""
import json
import logging
import os
import random
from typing import Dict, Optional

logger = logging.getLogger(__name__)

USERNAME_KEY = "chatUsername"


class MemoryStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str):
        self._data[key] = value


class JsonFileStore:
    """A flat JSON object on disk, rewritten on every `set`."""

    def __init__(self, path: str):
        self.path = path
        self._data: Dict[str, str] = {}
        if os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    loaded = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Could not read %s, starting empty: %s", path, e)
            else:
                if isinstance(loaded, dict):
                    self._data = {str(k): str(v) for k, v in loaded.items()}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str):
        self._data[key] = value
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f)
        os.replace(tmp, self.path)


def load_username(store, override: Optional[str] = None) -> str:
    if override:
        store.set(USERNAME_KEY, override)
        return override
    name = store.get(USERNAME_KEY)
    if not name:
        name = f"User{random.randrange(10000)}"
        store.set(USERNAME_KEY, name)
    return name
