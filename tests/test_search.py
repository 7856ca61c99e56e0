import asyncio
import json

import pytest

from conftest import FakePage, no_sleep, place_data, search_response
from gmaps_crawler.browser.page import InterceptedResponse, SearchOutcome
from gmaps_crawler.exceptions import SearchTaskError
from gmaps_crawler.extraction.search import (
    SearchPaginator,
    SearchState,
    does_place_match_search_term,
    parse_zoom_from_url,
)
from gmaps_crawler.geo.fence import GeoFence
from gmaps_crawler.models import Coordinates, SearchTask
from gmaps_crawler.storage.queue import MemoryWorkQueue
from gmaps_crawler.storage.sink import MemorySink
from gmaps_crawler.tracking.dedup import ResultDeduper
from gmaps_crawler.tracking.quota import QuotaTracker
from gmaps_crawler.tracking.stats import CrawlStats

PRAGUE_SQUARE = {
    "type": "Polygon",
    "coordinates": [[[14.3, 50.0], [14.6, 50.0], [14.6, 50.2], [14.3, 50.2], [14.3, 50.0]]],
}


def make_task(term: str = "lawyers") -> SearchTask:
    return SearchTask(region_point=Coordinates(lat=50.08, lng=14.42), zoom=15, query_term=term)


def places(prefix: str, count: int):
    return [place_data(f"{prefix}{i}", title=f"Lawyers {prefix}{i}") for i in range(count)]


def run_paginator(page, quota=None, fence=None, **kwargs):
    queue = MemoryWorkQueue()
    stats = CrawlStats()
    quota = quota or QuotaTracker(100, 100)

    async def go():
        paginator = SearchPaginator(page, make_task(), queue, quota, fence or GeoFence(None), stats,
                                    sleep=no_sleep, **kwargs)
        state = await paginator.run()
        return paginator, state

    paginator, state = asyncio.run(go())
    return paginator, state, queue, stats


def test_parse_zoom_from_url() -> None:
    assert parse_zoom_from_url("https://www.google.com/maps/search/x/@50.08,14.42,15z") == 15.0
    assert parse_zoom_from_url("https://www.google.com/maps/search/x/@50.08,-14.42,13.5z/data") == 13.5
    assert parse_zoom_from_url("https://www.google.com/maps") is None


def test_search_matching_modes() -> None:
    assert does_place_match_search_term("Best Lawyers", "lawyers", "all")
    assert does_place_match_search_term("Best Lawyers", "lawyers", "only_includes")
    assert not does_place_match_search_term("Best Lawyers", "lawyers", "only_exact")
    assert does_place_match_search_term(" Lawyers ", "lawyers", "only_exact")
    assert does_place_match_search_term(None, "lawyers", "only_exact")


def test_empty_scrolls_exhaust_the_search() -> None:
    page = FakePage(initial=[search_response(places("a", 3))])

    paginator, state, queue, _ = run_paginator(page)

    assert state == SearchState.EXHAUSTED
    assert len(queue) == 3
    # one scroll per loop before the tenth empty check
    assert page.scroll_count == 10


def test_end_marker_exhausts_the_search() -> None:
    page = FakePage(
        initial=[search_response(places("a", 2))],
        scrolls=[[search_response(places("b", 2), page=2)]],
        end_marker=True,
    )

    _, state, queue, _ = run_paginator(page)

    assert state == SearchState.EXHAUSTED
    assert len(queue) == 4
    assert page.scroll_count == 1


def test_quota_ceiling_aborts_with_rejections() -> None:
    page = FakePage(
        initial=[search_response(places("a", 4))],
        scrolls=[[search_response(places("b", 4), page=2)]],
    )
    quota = QuotaTracker(global_ceiling=5, per_query_ceiling=100)

    paginator, state, queue, stats = run_paginator(page, quota=quota)

    assert state == SearchState.ABORTED_QUOTA
    assert len(queue) == 5
    assert quota.global_enqueued == 5
    assert stats.counters.quota_rejected == 3
    assert paginator.page_stats.quota_rejected == 3


def test_duplicates_release_their_quota_slot() -> None:
    same = places("a", 2)
    page = FakePage(initial=[search_response(same)], scrolls=[[search_response(same, page=2)]])
    quota = QuotaTracker(100, 100)

    _, state, queue, stats = run_paginator(page, quota=quota)

    assert len(queue) == 2
    assert quota.global_enqueued == 2
    assert stats.counters.duplicates == 2
    # the second page only had known places
    assert state == SearchState.EXHAUSTED
    assert page.scroll_count == 1


def test_places_outside_the_region_are_recorded() -> None:
    inside = place_data("in1", lat=50.1, lng=14.4)
    outside = place_data("out1", lat=48.2, lng=16.37)
    page = FakePage(initial=[search_response([inside, outside])])

    _, _, queue, stats = run_paginator(page, fence=GeoFence(PRAGUE_SQUARE))

    assert len(queue) == 1
    assert stats.counters.out_of_polygon == 1
    assert stats.places_out_of_polygon[0]["coordinates"] == {"lat": 48.2, "lng": 16.37}


def test_title_mismatch_is_skipped() -> None:
    page = FakePage(initial=[search_response([
        place_data("p1", title="lawyers"),
        place_data("p2", title="Bakery"),
    ])])

    _, _, queue, stats = run_paginator(page, search_matching="only_exact")

    assert len(queue) == 1
    assert stats.counters.title_mismatch == 1


def test_ads_are_enqueued_first() -> None:
    page = FakePage(initial=[search_response(places("a", 2), ads=[place_data("ad1", title="Ad lawyers")])])

    _, _, queue, _ = run_paginator(page)

    tasks = [queue.fetch_next().task for _ in range(3)]
    # forefront inserts reverse the response order
    assert [t.external_id for t in tasks] == ["a1", "a0", "ad1"]
    assert tasks[2].is_ad is True
    assert tasks[2].rank == 1
    assert tasks[0].rank == 3


def test_export_mode_pushes_urls_with_dedup() -> None:
    same = places("a", 2)
    page = FakePage(initial=[search_response(same)], scrolls=[[search_response(same + places("b", 1), page=2)]])
    sink = MemorySink()

    _, _, queue, stats = run_paginator(
        page, export_place_urls=True, sink=sink, deduper=ResultDeduper(),
    )

    assert len(queue) == 0
    assert len(sink.records) == 3
    assert all("query_place_id=" in record["url"] for record in sink.records)
    assert stats.counters.duplicates == 2


def test_export_mode_stops_at_global_limit() -> None:
    page = FakePage(initial=[search_response(places("a", 4))])
    sink = MemorySink()
    quota = QuotaTracker(global_ceiling=2, per_query_ceiling=100)

    paginator, state, _, _ = run_paginator(
        page, quota=quota, export_place_urls=True, sink=sink, deduper=ResultDeduper(),
    )

    assert state == SearchState.ABORTED_QUOTA
    assert paginator.global_limit_reached is True
    assert len(sink.records) == 2
    assert quota.global_scraped == 2


def test_no_results_and_bad_query_exhaust() -> None:
    for outcome in (SearchOutcome.NO_RESULTS, SearchOutcome.BAD_QUERY):
        _, state, queue, _ = run_paginator(FakePage(outcome=outcome))
        assert state == SearchState.EXHAUSTED
        assert len(queue) == 0


def test_unrecognized_page_raises_for_retry() -> None:
    with pytest.raises(SearchTaskError):
        run_paginator(FakePage(outcome=SearchOutcome.NONE))


def test_unparsable_response_raises_for_retry() -> None:
    broken = InterceptedResponse(
        url="https://www.google.com/search?tbm=map&ech=1", status=200, body="<html>blocked</html>",
    )
    with pytest.raises(SearchTaskError):
        run_paginator(FakePage(initial=[broken]))


def test_single_place_page_enqueues_the_place() -> None:
    preview = InterceptedResponse(
        url="https://www.google.com/maps/preview/place?authuser=0&hl=en",
        status=200,
        body=")]}'\n" + json.dumps([None] * 6 + [place_data("single1", title="lawyers")]),
    )
    page = FakePage(initial=[preview], outcome=SearchOutcome.PLACE_DETAIL)

    _, state, queue, _ = run_paginator(page)

    assert state == SearchState.EXHAUSTED
    assert queue.fetch_next().task.external_id == "single1"


def test_both_ceilings_at_five() -> None:
    page = FakePage(
        initial=[search_response(places("a", 4))],
        scrolls=[[search_response(places("b", 4), page=2)]],
    )
    quota = QuotaTracker(global_ceiling=5, per_query_ceiling=5)

    _, state, queue, stats = run_paginator(page, quota=quota)

    assert state == SearchState.ABORTED_QUOTA
    assert len(queue) == 5
    assert quota.enqueued_for("lawyers") == 5
    assert quota.global_enqueued == 5
    assert stats.counters.quota_rejected == 3


def test_per_query_ceiling_binds_below_the_global_one() -> None:
    page = FakePage(
        initial=[search_response(places("a", 4))],
        scrolls=[[search_response(places("b", 4), page=2)]],
    )
    quota = QuotaTracker(global_ceiling=100, per_query_ceiling=5)

    _, state, queue, _ = run_paginator(page, quota=quota)

    assert state == SearchState.ABORTED_QUOTA
    assert len(queue) == 5
    assert quota.can_enqueue_more()
    assert not quota.can_enqueue_more("lawyers")


class ZoomingOutPage(FakePage):
    """Google zooms the map out while the results are scrolled"""

    async def scroll_results(self) -> None:
        self._url = self._url.replace(",15z", ",12z")
        await super().scroll_results()


def test_zoom_drift_aborts_the_search() -> None:
    page = ZoomingOutPage(
        initial=[search_response(places("a", 2))],
        scrolls=[[search_response(places("b", 2), page=2)]],
    )

    _, state, queue, _ = run_paginator(page, max_automatic_zoom_out=1)

    assert state == SearchState.ABORTED_ZOOM_DRIFT
    assert len(queue) == 4
    assert page.scroll_count == 1


def test_small_zoom_change_keeps_scrolling() -> None:
    page = ZoomingOutPage(
        initial=[search_response(places("a", 2))],
        scrolls=[[search_response(places("b", 2), page=2)]],
        end_marker=True,
    )

    _, state, _, _ = run_paginator(page, max_automatic_zoom_out=3)

    assert state == SearchState.EXHAUSTED


def test_search_stops_at_the_places_per_page_cap() -> None:
    page = FakePage(initial=[search_response(places("a", 120))])

    _, state, queue, _ = run_paginator(page, quota=QuotaTracker(1000, 1000))

    assert state == SearchState.EXHAUSTED
    assert len(queue) == 120
    assert page.scroll_count == 0


def test_rejected_page_does_not_stop_when_disabled() -> None:
    same = places("a", 2)
    page = FakePage(
        initial=[search_response(same)],
        scrolls=[[search_response(same, page=2)], [search_response(places("b", 2), page=3)]],
        end_marker=True,
    )

    _, state, queue, stats = run_paginator(page, stop_on_rejected_page=False)

    assert state == SearchState.EXHAUSTED
    assert len(queue) == 4
    assert stats.counters.duplicates == 2
    assert page.scroll_count == 2
