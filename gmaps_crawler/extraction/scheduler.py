"""
Start Task Scheduling

Feeds the initial frontier into the work queue without adding everything at
once: the first group synchronously, the rest in groups from a background
task. The number of tasks already added is persisted so a restarted crawl
continues after the last one it enqueued.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional

from ..config import MAX_START_TASKS_SYNC, START_TASKS_INTERVAL, ENQUEUEING_STATE_KEY
from ..logging_config import get_logger
from ..models import DetailTask
from ..tracking.quota import QuotaTracker

logger = get_logger(__name__)


class CrawlScheduler:
    """
    Args:
        queue: Work queue
        quota: QuotaTracker, detail tasks reserve a global slot before being added
        store: Optional key-value store for the enqueueing progress
        batch_size: Tasks per group
        interval: Seconds between background groups
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(self, queue, quota: QuotaTracker, store=None,
                 batch_size: int = MAX_START_TASKS_SYNC, interval: float = START_TASKS_INTERVAL,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.queue = queue
        self.quota = quota
        self.store = store
        self.batch_size = batch_size
        self.interval = interval
        self.sleep = sleep
        self.enqueued = 0
        self.stopped = False
        self._background: Optional[asyncio.Task] = None

    def initialize(self):
        if self.store is None:
            return
        state = self.store.get(ENQUEUEING_STATE_KEY)
        if state is None:
            return
        try:
            self.enqueued = int(state.get('enqueued', 0))
        except (AttributeError, TypeError, ValueError):
            logger.warning("Persisted enqueueing state is unreadable, starting from the first task")
            self.enqueued = 0

    def persist(self):
        if self.store is not None:
            self.store.set(ENQUEUEING_STATE_KEY, {'enqueued': self.enqueued})

    @property
    def is_running(self) -> bool:
        return self._background is not None and not self._background.done()

    def _enqueue(self, tasks: List) -> bool:
        """Add tasks in order, False once the quota refuses a detail task"""
        for task in tasks:
            if self.stopped:
                return False
            if isinstance(task, DetailTask):
                if not self.quota.try_reserve_enqueue():
                    logger.warning(f"Reached max_crawled_places {self.quota.global_enqueued}, "
                                   f"not enqueueing any more")
                    self.stopped = True
                    return False
                if self.queue.add(task, task.unique_key).was_already_present:
                    self.quota.release_enqueue()
            else:
                self.queue.add(task, task.unique_key)
            self.enqueued += 1
        return True

    async def start(self, tasks: List):
        """
        Enqueue the first group now and schedule the rest.

        Args:
            tasks: The full frontier, in order; already enqueued ones are skipped
        """
        remaining = tasks[self.enqueued:]
        if self.enqueued:
            logger.info(f"Skipping {self.enqueued} start tasks enqueued before the restart")

        sync_group = remaining[:self.batch_size]
        if not self._enqueue(sync_group):
            return

        background = remaining[self.batch_size:]
        if background:
            logger.info(f"Enqueued {len(sync_group)} start tasks, {len(background)} more will follow "
                        f"in groups of {self.batch_size} every {self.interval}s")
            self._background = asyncio.ensure_future(self._drip(background))

    async def _drip(self, tasks: List):
        for i in range(0, len(tasks), self.batch_size):
            await self.sleep(self.interval)
            if not self._enqueue(tasks[i:i + self.batch_size]):
                return
        logger.info(f"All {self.enqueued} start tasks enqueued")

    async def wait(self):
        if self._background is not None:
            await self._background

    async def stop(self):
        self.stopped = True
        if self._background is not None and not self._background.done():
            self._background.cancel()
            try:
                await self._background
            except asyncio.CancelledError:
                logger.debug("Background enqueueing cancelled")
