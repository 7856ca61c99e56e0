"""
Crawl Quota Tracking

Enforces the global and per-query ceilings on how many places a crawl may
enqueue and scrape.

Enqueueing is reserve-then-maybe-release: a slot is reserved before the
detail task is added, and released again when the work queue reports the
task as a duplicate (only the queue knows that). Scraping is
commit-then-check: a pushed record always counts, and the return value
tells the caller whether to keep producing for that query.

Counters are guarded by a lock inside one process. Across processes that
share persisted state the guarantee is monotonic counters with at most
one unit of overshoot per concurrent writer.
"""

from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, Optional

from ..config import QUOTA_STATE_KEY
from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class QuotaState:
    """Persisted counters"""
    global_enqueued: int = 0
    per_query_enqueued: Dict[str, int] = field(default_factory=dict)
    global_scraped: int = 0
    per_query_scraped: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            'global_enqueued': self.global_enqueued,
            'per_query_enqueued': dict(self.per_query_enqueued),
            'global_scraped': self.global_scraped,
            'per_query_scraped': dict(self.per_query_scraped),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'QuotaState':
        state = cls(
            global_enqueued=int(data.get('global_enqueued', 0)),
            per_query_enqueued={str(k): int(v) for k, v in (data.get('per_query_enqueued') or {}).items()},
            global_scraped=int(data.get('global_scraped', 0)),
            per_query_scraped={str(k): int(v) for k, v in (data.get('per_query_scraped') or {}).items()},
        )
        return state


class QuotaTracker:
    """
    Global and per-query crawl ceilings.

    Args:
        global_ceiling: Maximum places for the whole crawl
        per_query_ceiling: Maximum places for one search term
        store: Optional key-value store used by initialize()/persist()
    """

    def __init__(self, global_ceiling: int, per_query_ceiling: int, store=None):
        self.global_ceiling = global_ceiling
        self.per_query_ceiling = per_query_ceiling
        self.store = store
        self.state = QuotaState()
        self._lock = Lock()

    def initialize(self):
        """Restore counters from the store; unreadable state starts from zero."""
        if self.store is None:
            return
        loaded = self.store.get(QUOTA_STATE_KEY)
        if not loaded:
            return
        try:
            self.state = QuotaState.from_dict(loaded)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"[QUOTA]: Persisted quota state is unreadable ({e}), starting from zero")
            self.state = QuotaState()
            return
        logger.info(f"[QUOTA]: Restored state, enqueued {self.state.global_enqueued}, "
                    f"scraped {self.state.global_scraped}")

    def persist(self):
        if self.store is None:
            return
        with self._lock:
            snapshot = self.state.to_dict()
        self.store.set(QUOTA_STATE_KEY, snapshot)

    @property
    def global_enqueued(self) -> int:
        return self.state.global_enqueued

    @property
    def global_scraped(self) -> int:
        return self.state.global_scraped

    def enqueued_for(self, query_key: str) -> int:
        return self.state.per_query_enqueued.get(query_key, 0)

    def scraped_for(self, query_key: str) -> int:
        return self.state.per_query_scraped.get(query_key, 0)

    def _can_enqueue(self, query_key: Optional[str]) -> bool:
        if self.state.global_enqueued >= self.global_ceiling:
            return False
        if query_key and self.state.per_query_enqueued.get(query_key, 0) >= self.per_query_ceiling:
            return False
        return True

    def _can_scrape(self, query_key: Optional[str]) -> bool:
        if self.state.global_scraped >= self.global_ceiling:
            return False
        if query_key and self.state.per_query_scraped.get(query_key, 0) >= self.per_query_ceiling:
            return False
        return True

    def can_enqueue_more(self, query_key: Optional[str] = None) -> bool:
        """True if neither the global nor the query's enqueue ceiling is reached."""
        with self._lock:
            return self._can_enqueue(query_key)

    def try_reserve_enqueue(self, query_key: Optional[str] = None) -> bool:
        """
        Reserve one enqueue slot.

        Must be followed by either enqueueing the task or release_enqueue().

        Returns:
            True if the slot was reserved and the task should be enqueued
        """
        with self._lock:
            if not self._can_enqueue(query_key):
                return False
            self.state.global_enqueued += 1
            if query_key:
                self.state.per_query_enqueued[query_key] = self.state.per_query_enqueued.get(query_key, 0) + 1
            return True

    def release_enqueue(self, query_key: Optional[str] = None):
        """Undo a reservation whose task turned out to be a duplicate."""
        with self._lock:
            self.state.global_enqueued = max(0, self.state.global_enqueued - 1)
            if query_key and self.state.per_query_enqueued.get(query_key, 0) > 0:
                self.state.per_query_enqueued[query_key] -= 1

    def can_scrape_more(self, query_key: Optional[str] = None) -> bool:
        with self._lock:
            return self._can_scrape(query_key)

    def record_scrape(self, query_key: Optional[str] = None) -> bool:
        """
        Count one produced record, then check the ceiling.

        Returns:
            True if more records may be produced for this query
        """
        with self._lock:
            self.state.global_scraped += 1
            if query_key:
                self.state.per_query_scraped[query_key] = self.state.per_query_scraped.get(query_key, 0) + 1
            return self._can_scrape(query_key)

    def to_dict(self) -> Dict:
        with self._lock:
            data = self.state.to_dict()
        data['global_ceiling'] = self.global_ceiling
        data['per_query_ceiling'] = self.per_query_ceiling
        return data
