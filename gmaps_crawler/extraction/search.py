"""
Search Page Pagination

Drives one search task: opens the search page, waits for the page to settle,
then scrolls the results panel while intercepted search responses are turned
into detail tasks.

The interception callback only parses; it hands a SearchBatch or a
ResponseParseError to the state machine through an asyncio.Queue, and the
state machine drains that channel on every poll tick. Candidate filtering
therefore always runs in the state machine's own flow.

States:
    INIT -> WAITING_FIRST_BATCH -> SCROLLING -> one of
    EXHAUSTED           end of list, empty scrolls, per-page cap, rejected page,
                        no results / bad query / single place handled
    ABORTED_QUOTA       enqueue (or export) ceiling reached
    ABORTED_ZOOM_DRIFT  Google zoomed out further than allowed
    ABORTED_NO_PROGRESS page never showed a recognizable outcome (retried)
    ERROR               a response could not be parsed (retried)
"""

import asyncio
import random
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from ..browser.page import InterceptedResponse, MapsPage, SearchOutcome
from ..config import (
    SEARCH_RESPONSE_PATTERN,
    PLACE_PREVIEW_RESPONSE_PATTERN,
    MAX_PLACES_PER_PAGE,
    MAX_EMPTY_SCROLLS,
    SEARCH_WAIT_TIMEOUT,
    CHECK_OUTCOME_INTERVAL,
    SINGLE_PLACE_WAIT_TIMEOUT,
    BATCH_WAIT_TIMEOUT,
    BATCH_POLL_INTERVAL,
    SCROLL_DELAY_MIN,
    SCROLL_DELAY_MAX,
)
from ..exceptions import ResponseParseError, SearchTaskError
from ..geo.fence import GeoFence
from ..logging_config import get_logger
from ..models import Candidate, DetailTask, SearchTask
from ..parsers.search import SearchBatch, parse_search_response, parse_place_preview_response
from ..tracking.dedup import ResultDeduper
from ..tracking.quota import QuotaTracker
from ..tracking.stats import CrawlStats

logger = get_logger(__name__)

ZOOM_PATTERN = re.compile(r'@[0-9.\-]+,[0-9.\-]+,([0-9.]+)z')


class SearchState(Enum):
    INIT = 'init'
    WAITING_FIRST_BATCH = 'waiting_first_batch'
    SCROLLING = 'scrolling'
    EXHAUSTED = 'exhausted'
    ABORTED_QUOTA = 'aborted_quota'
    ABORTED_ZOOM_DRIFT = 'aborted_zoom_drift'
    ABORTED_NO_PROGRESS = 'aborted_no_progress'
    ERROR = 'error'

    @property
    def is_terminal(self) -> bool:
        return self not in (SearchState.INIT, SearchState.WAITING_FIRST_BATCH, SearchState.SCROLLING)


@dataclass
class PageStats:
    """Counts for the last processed batch and the whole task"""
    page_num: int = 1
    found: int = 0
    enqueued: int = 0
    pushed: int = 0
    total_found: int = 0
    total_enqueued: int = 0
    total_pushed: int = 0
    quota_rejected: int = 0


def parse_zoom_from_url(url: str) -> Optional[float]:
    match = ZOOM_PATTERN.search(url or '')
    return float(match.group(1)) if match else None


def does_place_match_search_term(title: Optional[str], search_term: Optional[str], search_matching: str) -> bool:
    """Title filter; missing data never filters a place out"""
    if not title or not search_term or not search_matching or search_matching == 'all':
        return True
    title_lower = title.lower().strip()
    term_lower = search_term.lower().strip()
    if search_matching == 'only_exact':
        return title_lower == term_lower
    if search_matching == 'only_includes':
        return term_lower in title_lower
    return True


class SearchPaginator:
    """
    Scroll-and-intercept state machine for one SearchTask.

    Args:
        page: Browser page to drive
        task: The search task
        queue: Work queue receiving DetailTasks
        quota: Shared QuotaTracker
        fence: GeoFence of the crawl region
        stats: Shared CrawlStats
        sink: Record sink, used in export mode
        deduper: ResultDeduper, used in export mode
        search_matching: Title matching mode
        export_place_urls: Push place URLs instead of enqueueing DetailTasks
        stop_on_rejected_page: Stop after a page where every candidate was rejected
        max_automatic_zoom_out: Allowed zoom-out before stopping, None disables
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        page: MapsPage,
        task: SearchTask,
        queue,
        quota: QuotaTracker,
        fence: GeoFence,
        stats: CrawlStats,
        sink=None,
        deduper: Optional[ResultDeduper] = None,
        search_matching: str = 'all',
        export_place_urls: bool = False,
        stop_on_rejected_page: bool = True,
        max_automatic_zoom_out: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.page = page
        self.task = task
        self.queue = queue
        self.quota = quota
        self.fence = fence
        self.stats = stats
        self.sink = sink
        self.deduper = deduper
        self.search_matching = search_matching
        self.export_place_urls = export_place_urls
        self.stop_on_rejected_page = stop_on_rejected_page
        self.max_automatic_zoom_out = max_automatic_zoom_out
        self.sleep = sleep

        self.state = SearchState.INIT
        self.page_stats = PageStats()
        self.global_limit_reached = False
        self._quota_exhausted = False
        self._error: Optional[ResponseParseError] = None
        self._channel: asyncio.Queue = asyncio.Queue()

    @property
    def query_key(self) -> str:
        return self.task.query_term or self.task.url

    @property
    def log_base(self) -> str:
        return f"[SEARCH][{self.task.query_term}]"

    # =========================================================================
    # Interception
    # =========================================================================

    async def handle_response(self, response: InterceptedResponse):
        """Parse matching responses and hand the outcome to the state machine"""
        is_search = re.search(SEARCH_RESPONSE_PATTERN, response.url) is not None
        is_preview = re.search(PLACE_PREVIEW_RESPONSE_PATTERN, response.url) is not None
        if not is_search and not is_preview:
            return

        if response.status != 200:
            logger.warning(f"Response status is not 200, it is {response.status}. "
                           f"This might mean the response is blocked")
        try:
            if is_preview:
                batch = parse_place_preview_response(response.url, response.body, response.status)
            else:
                batch = parse_search_response(response.url, response.body, response.status)
        except ResponseParseError as e:
            self._channel.put_nowait(e)
            return
        self._channel.put_nowait(batch)

    def drain(self):
        """Apply every message received since the last tick"""
        while True:
            try:
                item: Union[SearchBatch, ResponseParseError] = self._channel.get_nowait()
            except asyncio.QueueEmpty:
                return
            if isinstance(item, ResponseParseError):
                # keep the first error, later ones are usually the same failure
                if self._error is None:
                    self._error = item
                continue
            self._process_batch(item)

    # =========================================================================
    # Candidate filtering
    # =========================================================================

    def _process_batch(self, batch: SearchBatch):
        stats = self.page_stats
        search_page_url = self.task.url
        enqueued = pushed = 0

        for index, candidate in enumerate(batch.candidates):
            if self._quota_exhausted or self.global_limit_reached:
                stats.quota_rejected += len(batch.candidates) - index
                self.stats.quota_rejected(len(batch.candidates) - index)
                break

            if not does_place_match_search_term(candidate.title, self.task.query_term, self.search_matching):
                logger.warning(f"Place title \"{candidate.title}\" does not match search term "
                               f"\"{self.task.query_term}\" using search_matching \"{self.search_matching}\", skipping...")
                self.stats.title_mismatch()
                continue

            if not self.fence.contains(candidate.coordinates):
                detail_url = DetailTask.from_candidate(candidate, self.task.query_term).url
                coords = candidate.coordinates
                self.stats.out_of_polygon(
                    detail_url, search_page_url,
                    {'lat': coords.lat, 'lng': coords.lng} if coords else None,
                )
                continue

            if self.export_place_urls:
                pushed += self._export_candidate(candidate)
            else:
                enqueued += self._enqueue_candidate(candidate, search_page_url)

        stats.found = len(batch.candidates)
        stats.total_found += len(batch.candidates)
        stats.enqueued = enqueued
        stats.total_enqueued += enqueued
        stats.pushed = pushed
        stats.total_pushed += pushed

        action = 'Pushed' if self.export_place_urls else 'Enqueued'
        count = pushed if self.export_place_urls else enqueued
        total = stats.total_pushed if self.export_place_urls else stats.total_enqueued
        logger.info(f"{self.log_base}[SCROLL: {stats.page_num}]: {action} {count}/{stats.found} "
                    f"places (unique & correct/found) + {batch.ads_count} ads for this page. "
                    f"Total for this search: {total}/{stats.total_found} --- {self.page.url}")

    def _enqueue_candidate(self, candidate: Candidate, search_page_url: str) -> int:
        if not self.quota.try_reserve_enqueue(self.query_key):
            logger.warning(f"{self.log_base}: Finishing search because we enqueued more than max_crawled_places "
                           f"currently: {self.quota.enqueued_for(self.query_key)}(for this search)"
                           f"/{self.quota.global_enqueued}(total) --- {self.task.url}")
            self._quota_exhausted = True
            self.page_stats.quota_rejected += 1
            self.stats.quota_rejected()
            return 0

        detail = DetailTask.from_candidate(candidate, self.task.query_term, search_page_url)
        result = self.queue.add(detail, detail.unique_key, forefront=True)
        if result.was_already_present:
            self.quota.release_enqueue(self.query_key)
            self.stats.duplicate()
            return 0
        return 1

    def _export_candidate(self, candidate: Candidate) -> int:
        if not self.quota.can_scrape_more():
            self.global_limit_reached = True
            return 0
        if not self.quota.can_scrape_more(self.query_key):
            self._quota_exhausted = True
            return 0

        if self.deduper is not None and self.deduper.test_duplicate_and_add(candidate.external_id):
            self.stats.duplicate()
            return 0

        url = DetailTask.from_candidate(candidate, self.task.query_term).url
        self.sink.push({'url': url})
        more_allowed = self.quota.record_scrape(self.query_key)
        if not self.quota.can_scrape_more():
            self.global_limit_reached = True
        elif not more_allowed:
            self._quota_exhausted = True
        return 1

    # =========================================================================
    # Waiting
    # =========================================================================

    async def _wait_until(self, condition: Callable[[], bool], timeout: float, interval: float) -> bool:
        """Drain and poll until condition() holds, False on timeout"""
        ticks = max(1, int(timeout / interval))
        for _ in range(ticks):
            self.drain()
            if condition():
                return True
            await self.sleep(interval)
        self.drain()
        return condition()

    async def _wait_for_rendered_batches(self):
        rendered = await self.page.count_rendered_rows()
        await self._wait_until(
            lambda: self.page_stats.total_found >= rendered or self._error is not None,
            BATCH_WAIT_TIMEOUT, BATCH_POLL_INTERVAL,
        )

    async def _wait_for_outcome(self) -> SearchOutcome:
        ticks = max(1, int(SEARCH_WAIT_TIMEOUT / CHECK_OUTCOME_INTERVAL))
        for _ in range(ticks):
            self.drain()
            outcome = await self.page.detect_outcome()
            if outcome != SearchOutcome.NONE:
                return outcome
            await self.sleep(CHECK_OUTCOME_INTERVAL)
        return SearchOutcome.NONE

    # =========================================================================
    # State machine
    # =========================================================================

    def _finish(self, state: SearchState, message: str) -> SearchState:
        self.state = state
        if state in (SearchState.ERROR, SearchState.ABORTED_NO_PROGRESS):
            raise SearchTaskError(f"{self.log_base} {message} - {self.task.url}")
        log = logger.warning if state != SearchState.EXHAUSTED else logger.info
        log(f"{self.log_base} {message} - {self.task.url}")
        return state

    def _raise_pending_error(self):
        error = self._error
        self._error = None
        detail = f" (status {error.response_status})" if error.response_status else ''
        self._finish(SearchState.ERROR, f"Error occurred, will retry the page: {error}{detail}")

    async def run(self) -> SearchState:
        """
        Run the task to a terminal state.

        Returns:
            The terminal SearchState

        Raises:
            SearchTaskError: On ERROR and ABORTED_NO_PROGRESS, the task should be retried
        """
        await self.page.goto(self.task.url)
        self.page.on_response(self.handle_response)

        # Results of the initial load are not XHRs, searching again makes them one
        await self.page.click_search_button()
        self.state = SearchState.WAITING_FIRST_BATCH
        start_zoom = parse_zoom_from_url(self.page.url)

        await self._wait_for_rendered_batches()
        await self.sleep(0.5)

        outcome = await self._wait_for_outcome()
        if outcome == SearchOutcome.NONE:
            return self._finish(SearchState.ABORTED_NO_PROGRESS, "Don't recognize the loaded content")
        if outcome == SearchOutcome.BAD_QUERY:
            return self._finish(SearchState.EXHAUSTED, "Finishing search because this query yielded no results")
        if outcome == SearchOutcome.NO_RESULTS:
            return self._finish(SearchState.EXHAUSTED, "Finishing search because there are no results for this query")
        if outcome == SearchOutcome.PLACE_DETAIL:
            logger.warning(f"{self.log_base} Finishing scroll because we loaded a single place page directly "
                           f"- {self.task.url}")
            found = await self._wait_until(
                lambda: self.page_stats.total_found > 0 or self._error is not None,
                SINGLE_PLACE_WAIT_TIMEOUT, CHECK_OUTCOME_INTERVAL,
            )
            if self._error is not None:
                self._raise_pending_error()
            if not found:
                return self._finish(SearchState.ABORTED_NO_PROGRESS, "Could not enqueue single place in time")
            return self._finish(SearchState.EXHAUSTED, "Single place handled")

        self.state = SearchState.SCROLLING
        return await self._scroll(start_zoom)

    async def _scroll(self, start_zoom: Optional[float]) -> SearchState:
        empty_scrolls = 0
        last_total_found = 0

        while True:
            self.drain()
            stats = self.page_stats
            log_scroll = f"[SCROLL: {stats.page_num}]:"

            if self._error is not None:
                self._raise_pending_error()

            if self.global_limit_reached:
                return self._finish(SearchState.ABORTED_QUOTA,
                                    f"{log_scroll} Finishing search because the global place limit was reached")

            if self._quota_exhausted or not self._can_produce_more():
                return self._finish(SearchState.ABORTED_QUOTA,
                                    f"{log_scroll} Finishing search because max_crawled_places was reached")

            if await self.page.has_end_marker():
                return self._finish(SearchState.EXHAUSTED,
                                    f"Finishing search because we reached all {stats.total_found} results")

            if last_total_found == stats.total_found:
                empty_scrolls += 1
            else:
                empty_scrolls = 0
            last_total_found = stats.total_found
            if empty_scrolls >= MAX_EMPTY_SCROLLS:
                return self._finish(SearchState.EXHAUSTED,
                                    f"{log_scroll} Finishing scroll with {stats.total_found} results because "
                                    f"scrolling doesn't yield any more results")

            if self.max_automatic_zoom_out is not None and start_zoom is not None:
                current_zoom = parse_zoom_from_url(self.page.url)
                if current_zoom is not None and start_zoom - current_zoom > self.max_automatic_zoom_out:
                    return self._finish(SearchState.ABORTED_ZOOM_DRIFT,
                                        f"{log_scroll} Finishing search because Google zoomed out further than "
                                        f"max_automatic_zoom_out. Current zoom: {current_zoom}")

            if stats.total_found >= MAX_PLACES_PER_PAGE:
                return self._finish(SearchState.EXHAUSTED,
                                    f"{log_scroll} Finishing scrolling with {stats.total_found} results because "
                                    f"we found maximum ({MAX_PLACES_PER_PAGE}) places per page")

            # Later scrolls only go further from the map center
            if self.stop_on_rejected_page and stats.found > 0 and stats.enqueued + stats.pushed == 0:
                return self._finish(SearchState.EXHAUSTED,
                                    f"{log_scroll} Finishing scrolling with {stats.total_found} results because "
                                    f"we only found places we already have or that are outside of required location")

            await self.page.scroll_results()
            stats.page_num += 1
            await self.sleep(random.uniform(SCROLL_DELAY_MIN, SCROLL_DELAY_MAX))
            await self._wait_for_rendered_batches()

    def _can_produce_more(self) -> bool:
        if self.export_place_urls:
            return self.quota.can_scrape_more(self.query_key)
        return self.quota.can_enqueue_more(self.query_key)
