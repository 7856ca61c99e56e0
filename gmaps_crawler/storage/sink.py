"""
Record Sinks

Append-only outputs for extracted records.
"""

import json
import os
from threading import Lock
from typing import Dict, List, Union


class MemorySink:
    """Keeps pushed records in a list."""

    def __init__(self):
        self.records: List[Dict] = []

    def push(self, records: Union[Dict, List[Dict]]):
        if isinstance(records, dict):
            records = [records]
        self.records.extend(records)

    def __len__(self):
        return len(self.records)


class JsonLinesSink:
    """Streams records to a JSON-lines file, one record per line."""

    def __init__(self, path: str):
        self.path = path
        self.count = 0
        self._lock = Lock()
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def push(self, records: Union[Dict, List[Dict]]):
        if isinstance(records, dict):
            records = [records]
        with self._lock:
            with open(self.path, 'a', encoding='utf-8') as f:
                for record in records:
                    f.write(json.dumps(record, ensure_ascii=False) + '\n')
                    self.count += 1

    def __len__(self):
        return self.count
