"""
Work Queue

In-memory request queue that is idempotent by a caller-supplied unique key.
A key that was ever added stays known for the queue's lifetime, so a place
found by several searches is only crawled once.

With a key-value store the queue snapshots its pending tasks and known keys,
so a restarted crawl picks up the work that was enqueued but not handled.
Tasks that were in progress at snapshot time are restored as pending.
"""

from collections import deque
from typing import Deque, Dict, Optional

from ..config import WORK_QUEUE_KEY
from ..logging_config import get_logger
from ..models import AddResult, QueuedTask, task_from_dict

logger = get_logger(__name__)


class MemoryWorkQueue:
    """Deque-backed queue with forefront inserts and in-progress tracking."""

    def __init__(self, store=None):
        self.store = store
        self._pending: Deque[QueuedTask] = deque()
        self._in_progress: Dict[str, QueuedTask] = {}
        self._known_keys = set()
        self.handled_count = 0

    # =========================================================================
    # State
    # =========================================================================

    def initialize(self):
        """Restore the snapshot; unreadable state starts an empty queue."""
        if self.store is None:
            return
        state = self.store.get(WORK_QUEUE_KEY)
        if not state:
            return
        try:
            pending = [
                QueuedTask(
                    task=task_from_dict(item['task']),
                    unique_key=item['unique_key'],
                    retry_count=int(item.get('retry_count', 0)),
                )
                for item in state.get('pending', [])
            ]
            known_keys = set(state.get('known_keys', []))
            handled_count = int(state.get('handled_count', 0))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Persisted work queue is unreadable ({e}), starting with an empty queue")
            return

        self._pending = deque(pending)
        self._in_progress = {}
        self._known_keys = known_keys | {queued.unique_key for queued in pending}
        self.handled_count = handled_count
        logger.info(f"Restored work queue, {len(self._pending)} pending, {self.handled_count} handled")

    def persist(self):
        if self.store is None:
            return
        # in-progress tasks go first so they are retried right after a restart
        queued_tasks = list(self._in_progress.values()) + list(self._pending)
        self.store.set(WORK_QUEUE_KEY, {
            'pending': [
                {'task': q.task.to_dict(), 'unique_key': q.unique_key, 'retry_count': q.retry_count}
                for q in queued_tasks
            ],
            'known_keys': sorted(self._known_keys),
            'handled_count': self.handled_count,
        })

    # =========================================================================
    # Queue operations
    # =========================================================================

    def add(self, task, unique_key: str, forefront: bool = False) -> AddResult:
        """
        Add a task unless its unique key was already seen.

        Args:
            task: SearchTask or DetailTask
            unique_key: Deduplication key
            forefront: Put the task at the head of the queue

        Returns:
            AddResult telling whether the key was already present
        """
        if unique_key in self._known_keys:
            return AddResult(was_already_present=True)

        self._known_keys.add(unique_key)
        queued = QueuedTask(task=task, unique_key=unique_key)
        if forefront:
            self._pending.appendleft(queued)
        else:
            self._pending.append(queued)
        return AddResult(was_already_present=False)

    def fetch_next(self) -> Optional[QueuedTask]:
        if not self._pending:
            return None
        queued = self._pending.popleft()
        self._in_progress[queued.unique_key] = queued
        return queued

    def mark_handled(self, queued: QueuedTask):
        self._in_progress.pop(queued.unique_key, None)
        self.handled_count += 1

    def reclaim(self, queued: QueuedTask, forefront: bool = False):
        """Return a failed task to the queue for another attempt."""
        self._in_progress.pop(queued.unique_key, None)
        queued.retry_count += 1
        if forefront:
            self._pending.appendleft(queued)
        else:
            self._pending.append(queued)

    def drop(self, queued: QueuedTask):
        """Give up on a task; its key stays known so it is not re-added."""
        self._in_progress.pop(queued.unique_key, None)

    def is_empty(self) -> bool:
        return not self._pending

    def is_finished(self) -> bool:
        return not self._pending and not self._in_progress

    def __len__(self):
        return len(self._pending)
