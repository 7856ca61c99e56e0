"""
Key-Value Snapshot Store

Holds persisted crawl state (quota counters, dedup set, failure counters,
stats, start tasks). Two implementations share the get/set contract:
an in-memory store for tests and single-shot runs, and a JSON-file store
that writes one file per key so a restarted process can resume.
"""

import json
import os
import re
from threading import Lock
from typing import Any, Dict, Optional

from ..logging_config import get_logger

logger = get_logger(__name__)


class MemoryKeyValueStore:
    """Dictionary-backed store. Values are copied through JSON to mimic persistence."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any):
        self._data[key] = json.dumps(value)

    def keys(self):
        return list(self._data.keys())


class JsonFileKeyValueStore:
    """Stores each key as <directory>/<key>.json."""

    def __init__(self, directory: str):
        self.directory = directory
        self._lock = Lock()
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        safe_key = re.sub(r'[^A-Za-z0-9_.-]', '_', key)
        return os.path.join(self.directory, f"{safe_key}.json")

    def get(self, key: str) -> Any:
        """Return the stored value, or None when missing or unreadable."""
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read state record {key} ({e}), ignoring it")
            return None

    def set(self, key: str, value: Any):
        path = self._path(key)
        tmp_path = path + '.tmp'
        with self._lock:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(value, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, path)
