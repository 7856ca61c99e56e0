"""
Storage module for crawl state and output.

- kv.py: Key-value snapshot stores (memory, JSON files)
- queue.py: Idempotent work queue
- sink.py: Append-only record sinks (memory, JSON lines)
"""

from .kv import MemoryKeyValueStore, JsonFileKeyValueStore
from .queue import MemoryWorkQueue
from .sink import MemorySink, JsonLinesSink
