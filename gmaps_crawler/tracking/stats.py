"""
Crawl Statistics

Run-level counters persisted with the rest of the crawl state, plus the list
of places that were rejected by the geo fence (useful to tune the region).
"""

from dataclasses import dataclass, field, asdict
from threading import Lock
from typing import Dict, List, Optional

from ..config import STATS_KEY, PLACES_OUT_OF_POLYGON_KEY
from ..logging_config import get_logger

logger = get_logger(__name__)

PERSIST_BATCH_SIZE = 10000


@dataclass
class StatsCounters:
    """Counter values"""
    ok: int = 0
    failed: int = 0
    maps: int = 0
    places: int = 0
    out_of_polygon: int = 0
    quota_rejected: int = 0
    duplicates: int = 0
    title_mismatch: int = 0


@dataclass
class CrawlStats:
    """Thread-safe counters for one crawl."""

    store: Optional[object] = None
    counters: StatsCounters = field(default_factory=StatsCounters)
    places_out_of_polygon: List[Dict] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    def initialize(self):
        if self.store is None:
            return
        loaded = self.store.get(STATS_KEY)
        if isinstance(loaded, dict):
            known = set(asdict(StatsCounters()).keys())
            self.counters = StatsCounters(**{k: int(v) for k, v in loaded.items() if k in known})
        batch_index = 0
        while True:
            batch = self.store.get(f"{PLACES_OUT_OF_POLYGON_KEY}-{batch_index}")
            if not batch:
                break
            self.places_out_of_polygon.extend(batch)
            batch_index += 1

    def persist(self):
        if self.store is None:
            return
        with self._lock:
            counters = asdict(self.counters)
            places = list(self.places_out_of_polygon)
        self.store.set(STATS_KEY, counters)
        for i in range(0, len(places), PERSIST_BATCH_SIZE):
            self.store.set(f"{PLACES_OUT_OF_POLYGON_KEY}-{i // PERSIST_BATCH_SIZE}", places[i:i + PERSIST_BATCH_SIZE])
        self.log_info()

    def increment(self, name: str, amount: int = 1):
        with self._lock:
            setattr(self.counters, name, getattr(self.counters, name) + amount)

    def ok(self):
        self.increment('ok')

    def failed(self):
        self.increment('failed')

    def maps(self):
        self.increment('maps')

    def places(self):
        self.increment('places')

    def quota_rejected(self, amount: int = 1):
        self.increment('quota_rejected', amount)

    def duplicate(self):
        self.increment('duplicates')

    def title_mismatch(self):
        self.increment('title_mismatch')

    def out_of_polygon(self, url: str, search_page_url: str, coordinates: Optional[Dict]):
        with self._lock:
            self.counters.out_of_polygon += 1
            self.places_out_of_polygon.append({
                'url': url,
                'search_page_url': search_page_url,
                'coordinates': coordinates,
            })

    def to_dict(self) -> Dict[str, int]:
        with self._lock:
            return asdict(self.counters)

    def log_info(self):
        parts = [f"{key}: {value}" for key, value in self.to_dict().items()]
        logger.info(f"[STATS]: {' | '.join(parts)}")
