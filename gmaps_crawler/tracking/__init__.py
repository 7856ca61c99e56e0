"""
Crawl state tracking.

- quota.py: Global and per-query enqueue/scrape ceilings
- dedup.py: Persisted dedup set for export mode
- failures.py: Per-task review request failure counts
- stats.py: Run statistics
"""

from .quota import QuotaTracker, QuotaState
from .dedup import ResultDeduper
from .failures import FailureCounter
from .stats import CrawlStats
