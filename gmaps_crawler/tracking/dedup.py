"""Persisted dedup set for export-URLs mode, where the work queue is bypassed."""

from typing import Set

from ..config import EXPORT_URLS_DEDUP_KEY
from ..logging_config import get_logger

logger = get_logger(__name__)


class ResultDeduper:
    """Remembers every place id already pushed during the job."""

    def __init__(self, store=None):
        self.store = store
        self.seen: Set[str] = set()

    def initialize(self):
        if self.store is None:
            return
        stored = self.store.get(EXPORT_URLS_DEDUP_KEY)
        if not stored:
            return
        if not isinstance(stored, list):
            logger.warning("Persisted dedup set is unreadable, starting empty")
            return
        self.seen.update(str(place_id) for place_id in stored)

    def persist(self):
        if self.store is None:
            return
        self.store.set(EXPORT_URLS_DEDUP_KEY, sorted(self.seen))

    def test_duplicate_and_add(self, place_id: str) -> bool:
        """Returns True if the place was already there."""
        if place_id in self.seen:
            return True
        self.seen.add(place_id)
        return False

    def __len__(self):
        return len(self.seen)
