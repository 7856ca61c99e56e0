"""
Crawl Orchestration

Wires the components into one run:

1. Resolve the region (custom geometry, Nominatim lookup, or a single point)
2. Build the start tasks once and persist them (reused after a restart)
3. Feed them into the work queue through the CrawlScheduler
4. Run max_concurrency workers, each task on a fresh browser page
5. Persist the work queue, quota, dedup, failure counters and stats periodically and on exit

Search tasks go through SearchPaginator, detail tasks are summarized, get
their reviews through ReviewPaginator and are pushed to the sink.
"""

import asyncio
import threading
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import uvicorn

from ..browser.page import MapsPage
from ..browser.playwright_page import launch_browser
from ..config import (
    API_HOST,
    GEO_KEY,
    MIN_REVIEWS_RETRIES,
    START_TASKS_KEY,
    WORKER_IDLE_INTERVAL,
)
from ..config_manager import CrawlerConfig, PLACE_ID_PREFIX, UNLIMITED_PLACES
from ..exceptions import ResponseParseError
from ..geo.fence import GeoFence
from ..geo.grid import CoverageTiler
from ..geo.nominatim import default_zoom_for, geojson_from_result, get_geolocation
from ..logging_config import get_logger
from ..models import Coordinates, DetailTask, QueuedTask, SearchTask, task_from_dict
from ..parsers.place import summarize_place
from ..server import create_app
from ..storage.kv import JsonFileKeyValueStore
from ..storage.queue import MemoryWorkQueue
from ..storage.sink import JsonLinesSink, MemorySink
from ..tracking.dedup import ResultDeduper
from ..tracking.failures import FailureCounter
from ..tracking.quota import QuotaTracker
from ..tracking.stats import CrawlStats
from .reviews import HttpxReviewFetcher, ReviewPaginator
from .scheduler import CrawlScheduler
from .search import SearchPaginator

logger = get_logger(__name__)

PageFactory = Callable[[], Awaitable[MapsPage]]


class Crawler:
    """
    One crawl run.

    Args:
        config: Validated CrawlerConfig
        store: Key-value store for the crawl state, JSON files under state_dir by default
        queue: Work queue, in-memory and snapshotted to the store by default
        sink: Record sink, JSON lines when output_path is set, in-memory otherwise
        page_factory: Async callable returning a fresh MapsPage, a Playwright browser by default
        fetcher_factory: Callable cookies -> review fetcher, HttpxReviewFetcher by default
        sleep: Awaitable sleep handed to the paginators and the scheduler
    """

    def __init__(
        self,
        config: CrawlerConfig,
        store=None,
        queue=None,
        sink=None,
        page_factory: Optional[PageFactory] = None,
        fetcher_factory: Optional[Callable[[Dict[str, str]], Any]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.store = store if store is not None else JsonFileKeyValueStore(config.state_dir)
        self.queue = queue if queue is not None else MemoryWorkQueue(self.store)
        if sink is None:
            sink = JsonLinesSink(config.output_path) if config.output_path else MemorySink()
        self.sink = sink
        self.page_factory = page_factory
        self.fetcher_factory = fetcher_factory or self._default_fetcher
        self.sleep = sleep

        self.quota = QuotaTracker(
            config.max_crawled_places or UNLIMITED_PLACES,
            config.max_crawled_places_per_search or UNLIMITED_PLACES,
            self.store,
        )
        self.deduper = ResultDeduper(self.store) if config.export_place_urls else None
        self.failures = FailureCounter(max(MIN_REVIEWS_RETRIES, config.max_task_retries), self.store)
        self.stats = CrawlStats(self.store)
        self.scheduler = CrawlScheduler(self.queue, self.quota, self.store, sleep=sleep)

        self.fence = GeoFence(None)
        self.started_at: Optional[datetime] = None
        self.stopped = False
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def _default_fetcher(self, cookies: Dict[str, str]) -> HttpxReviewFetcher:
        return HttpxReviewFetcher(cookies, proxy_url=self.config.proxy_url)

    # =========================================================================
    # State
    # =========================================================================

    def initialize(self):
        self.queue.initialize()
        self.quota.initialize()
        if self.deduper is not None:
            self.deduper.initialize()
        self.failures.initialize()
        self.stats.initialize()
        self.scheduler.initialize()

    def persist(self):
        self.queue.persist()
        self.quota.persist()
        if self.deduper is not None:
            self.deduper.persist()
        self.failures.persist()
        self.scheduler.persist()
        self.stats.persist()

    async def _persist_periodically(self):
        while True:
            await asyncio.sleep(self.config.persist_interval)
            self.persist()

    # =========================================================================
    # Start tasks
    # =========================================================================

    def resolve_region(self) -> Tuple[Optional[Dict[str, Any]], int]:
        """
        Find the crawl region and its zoom.

        Returns:
            (GeoJSON geometry or None, zoom)

        Raises:
            GeolocationError: If the location lookup fails
        """
        config = self.config
        zoom = config.zoom or default_zoom_for(config.location)

        if config.custom_geolocation:
            return config.custom_geolocation, zoom

        if config.has_location:
            geometry = self.store.get(GEO_KEY)
            if not geometry:
                geometry = geojson_from_result(get_geolocation(config.location, proxy_url=config.proxy_url))
                self.store.set(GEO_KEY, geometry)
            return geometry, zoom

        return None, zoom

    def build_start_tasks(self) -> List:
        """
        Resolve the region, set up the geo fence and build the start tasks.

        Tasks built by an earlier run of the same crawl are reused.
        """
        config = self.config
        geometry, zoom = self.resolve_region()
        self.fence = GeoFence(geometry, config.point_radius_km)

        stored = self.store.get(START_TASKS_KEY)
        if stored:
            logger.info("Crawl restarted, skipping search preparation")
            return [task_from_dict(data) for data in stored]

        if geometry is not None:
            points: List[Optional[Coordinates]] = CoverageTiler(
                zoom, config.polygon_spread_multiplier, config.point_radius_km,
            ).tile(geometry)
        elif config.lat is not None:
            points = [Coordinates(lat=config.lat, lng=config.lng)]
        else:
            points = [None]

        tasks: List = []
        for term in config.search_terms:
            if term.startswith(PLACE_ID_PREFIX):
                tasks.append(DetailTask(external_id=term[len(PLACE_ID_PREFIX):].strip(), query_term=None, rank=None))
                continue
            for point in points:
                tasks.append(SearchTask(region_point=point, zoom=zoom, query_term=term))

        logger.info(f"Prepared {len(tasks)} start tasks for {len(config.search_terms)} search terms")
        self.store.set(START_TASKS_KEY, [task.to_dict() for task in tasks])
        return tasks

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self) -> Dict[str, int]:
        """
        Run the crawl until the queue is drained or the global limit is reached.

        Returns:
            Final stats counters

        Raises:
            GeolocationError: If the location lookup fails
        """
        self.started_at = datetime.now(timezone.utc)
        self._running = True
        self.initialize()
        # The location lookup is blocking
        tasks = await asyncio.get_running_loop().run_in_executor(None, self.build_start_tasks)

        server = self._start_monitor() if self.config.monitor_port else None
        persister = asyncio.ensure_future(self._persist_periodically())
        try:
            await self.scheduler.start(tasks)
            if self.page_factory is not None:
                await self._run_workers(self.page_factory)
            else:
                async with launch_browser(self.config.headless) as new_page:
                    await self._run_workers(new_page)
        finally:
            persister.cancel()
            try:
                await persister
            except asyncio.CancelledError:
                logger.debug("Periodic persisting stopped")
            await self.scheduler.stop()
            self.persist()
            self._running = False
            if server is not None:
                server.should_exit = True

        logger.info(f"Crawl finished, {len(self.sink)} records pushed")
        return self.stats.to_dict()

    async def stop(self, reason: str):
        """Stop producing work; workers finish their current task and exit."""
        if self.stopped:
            return
        self.stopped = True
        logger.info(reason)
        await self.scheduler.stop()

    def _start_monitor(self) -> uvicorn.Server:
        server = uvicorn.Server(uvicorn.Config(
            create_app(self),
            host=API_HOST,
            port=self.config.monitor_port,
            log_level="warning",
        ))
        thread = threading.Thread(target=server.run, daemon=True)
        thread.start()
        logger.info(f"Monitor API listening on {API_HOST}:{self.config.monitor_port}")
        return server

    async def _run_workers(self, new_page: PageFactory):
        workers = [asyncio.ensure_future(self._worker(i, new_page)) for i in range(self.config.max_concurrency)]
        await asyncio.gather(*workers)

    async def _worker(self, index: int, new_page: PageFactory):
        while not self.stopped:
            queued = self.queue.fetch_next()
            if queued is None:
                if self.queue.is_finished() and not self.scheduler.is_running:
                    logger.debug(f"Worker {index} done")
                    return
                await asyncio.sleep(WORKER_IDLE_INTERVAL)
                continue
            await self._process(queued, new_page)

    async def _process(self, queued: QueuedTask, new_page: PageFactory):
        task = queued.task
        page: Optional[MapsPage] = None
        try:
            page = await new_page()
            if isinstance(task, SearchTask):
                await self._handle_search(task, page)
            else:
                await self._handle_detail(task, page)
        except Exception as e:
            queued.error_messages.append(str(e))
            if queued.retry_count < self.config.max_task_retries:
                logger.warning(f"Task {task.url} failed, retrying "
                               f"({queued.retry_count + 1}/{self.config.max_task_retries}): {e}")
                self.queue.reclaim(queued)
            else:
                logger.error(f"Task {task.url} failed {queued.retry_count + 1} times, giving up: {e}")
                self.queue.drop(queued)
                self.stats.failed()
        else:
            self.queue.mark_handled(queued)
            self.stats.ok()
        finally:
            if page is not None:
                await page.close()

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _handle_search(self, task: SearchTask, page: MapsPage):
        self.stats.maps()
        config = self.config
        paginator = SearchPaginator(
            page, task, self.queue, self.quota, self.fence, self.stats,
            sink=self.sink,
            deduper=self.deduper,
            search_matching=config.search_matching,
            export_place_urls=config.export_place_urls,
            stop_on_rejected_page=config.stop_on_rejected_page,
            max_automatic_zoom_out=config.max_automatic_zoom_out,
            sleep=self.sleep,
        )
        await paginator.run()
        if paginator.global_limit_reached:
            await self.stop(f"[QUOTA]: Reached max_crawled_places {self.quota.global_scraped}, finishing the crawl")

    async def _handle_detail(self, task: DetailTask, page: MapsPage):
        if not self.quota.can_scrape_more():
            logger.info(f"[PLACE]: Skipping place, max_crawled_places already reached --- {task.url}")
            return

        await page.goto(task.url)
        place_data = await page.place_payload()
        summary = summarize_place(place_data)
        if summary is None:
            raise ResponseParseError(f"Could not find place data on the page --- {task.url}")
        self.stats.places()

        record = self._build_record(task, summary, page.url)
        if self.config.max_reviews > 0:
            record['reviews'] = await self._extract_reviews(task, page, summary, place_data)

        self.sink.push(self._to_rows(record))
        self.quota.record_scrape(task.query_term)
        logger.info(f"[PLACE]: Place scraped successfully --- {page.url}")

        if not self.quota.can_scrape_more():
            await self.stop(f"[QUOTA]: Reached max_crawled_places {self.quota.global_scraped}, finishing the crawl")

    def _build_record(self, task: DetailTask, summary: Dict, page_url: str) -> Dict:
        record = {
            'search_string': task.query_term,
            'rank': task.rank,
            'search_page_url': task.search_page_url,
            'is_advertisement': task.is_ad,
        }
        record.update(summary)
        record['url'] = page_url or task.url
        record['scraped_at'] = datetime.now(timezone.utc).isoformat()

        if not record['categories'] and task.categories:
            record['categories'] = list(task.categories)
        location = record['location']
        if (location['lat'] is None or location['lng'] is None) and task.coordinates is not None:
            record['location'] = {'lat': task.coordinates.lat, 'lng': task.coordinates.lng}
        return record

    async def _extract_reviews(self, task: DetailTask, page: MapsPage, summary: Dict, place_data) -> List[Dict]:
        config = self.config
        fetcher = self.fetcher_factory(await page.cookies())
        try:
            paginator = ReviewPaginator(
                page, fetcher, self.failures,
                sort=config.review_sort,
                translation=config.review_translation,
                filter_string=config.reviews_filter_string,
                start_date=config.reviews_start_datetime,
                personal_data=config.personal_data_options,
                sleep=self.sleep,
            )
            return await paginator.extract(task.unique_key, summary['reviews_count'], config.max_reviews, place_data)
        finally:
            aclose = getattr(fetcher, 'aclose', None)
            if aclose is not None:
                await aclose()

    def _to_rows(self, record: Dict) -> List[Dict]:
        if not self.config.one_review_per_row:
            return [record]
        reviews = record.pop('reviews', None) or []
        if not reviews:
            return [record]
        return [{**record, **review} for review in reviews]
