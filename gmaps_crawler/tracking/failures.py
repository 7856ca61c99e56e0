"""Per-task failure counter for review page requests."""

from typing import Dict

from ..config import REVIEWS_FAIL_COUNT_KEY
from ..logging_config import get_logger

logger = get_logger(__name__)


class FailureCounter:
    """
    Map from task id to consecutive failure count.

    Google answers with server errors fairly often on long review threads,
    so the ceiling is high and the count is reset after each good page.
    """

    def __init__(self, max_failures: int, store=None):
        self.max_failures = max_failures
        self.store = store
        self.counts: Dict[str, int] = {}

    def initialize(self):
        if self.store is None:
            return
        stored = self.store.get(REVIEWS_FAIL_COUNT_KEY)
        if isinstance(stored, dict):
            self.counts = {str(k): int(v) for k, v in stored.items()}
        elif stored is not None:
            logger.warning("Persisted failure counts are unreadable, starting empty")

    def persist(self):
        if self.store is None:
            return
        self.store.set(REVIEWS_FAIL_COUNT_KEY, dict(self.counts))

    def increase(self, task_id: str, increment: int = 1) -> int:
        self.counts[task_id] = self.counts.get(task_id, 0) + increment
        return self.counts[task_id]

    def reached_limit(self, task_id: str) -> bool:
        return self.counts.get(task_id, 0) >= self.max_failures

    def reset(self, task_id: str):
        self.counts.pop(task_id, None)

    def get(self, task_id: str) -> int:
        return self.counts.get(task_id, 0)
