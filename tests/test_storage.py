from gmaps_crawler.config import WORK_QUEUE_KEY
from gmaps_crawler.models import Coordinates, DetailTask, SearchTask
from gmaps_crawler.storage.kv import JsonFileKeyValueStore, MemoryKeyValueStore
from gmaps_crawler.storage.queue import MemoryWorkQueue


def detail(place_id: str) -> DetailTask:
    return DetailTask(external_id=place_id, query_term="lawyers", rank=1,
                      coordinates=Coordinates(lat=50.08, lng=14.42))


def test_queue_is_idempotent_by_unique_key() -> None:
    queue = MemoryWorkQueue()

    assert not queue.add(detail("p1"), "p1").was_already_present
    assert queue.add(detail("p1"), "p1").was_already_present
    queue.add(detail("p2"), "p2", forefront=True)

    assert [queue.fetch_next().unique_key for _ in range(2)] == ["p2", "p1"]
    assert queue.fetch_next() is None
    assert not queue.is_finished()


def test_dropped_key_is_never_added_again() -> None:
    queue = MemoryWorkQueue()
    queue.add(detail("p1"), "p1")
    queued = queue.fetch_next()

    queue.drop(queued)

    assert queue.is_finished()
    assert queue.add(detail("p1"), "p1").was_already_present


def test_snapshot_restores_pending_and_in_progress_tasks(tmp_path) -> None:
    store = JsonFileKeyValueStore(str(tmp_path))
    queue = MemoryWorkQueue(store)
    search = SearchTask(region_point=Coordinates(lat=50.08, lng=14.42), zoom=15, query_term="lawyers")
    queue.add(search, search.unique_key)
    queue.add(detail("p1"), "p1")
    queue.add(detail("p2"), "p2")
    queue.mark_handled(queue.fetch_next())
    in_progress = queue.fetch_next()
    queue.reclaim(in_progress)
    queue.fetch_next()

    queue.persist()
    restored = MemoryWorkQueue(store)
    restored.initialize()

    assert [q.task for q in (restored.fetch_next(), restored.fetch_next())] == [detail("p2"), detail("p1")]
    assert restored.handled_count == 1
    assert restored.add(search, search.unique_key).was_already_present


def test_unreadable_snapshot_starts_empty() -> None:
    store = MemoryKeyValueStore({WORK_QUEUE_KEY: {"pending": [{"task": {}}]}})
    queue = MemoryWorkQueue(store)

    queue.initialize()

    assert queue.is_finished()
    assert not queue.add(detail("p1"), "p1").was_already_present
