"""
Review Pagination

Pulls a place's reviews through the listentitiesreviews endpoint.

The first reviews request is made by the page itself (clicking the reviews
button); its URL is the template for every following page. The pb parameter
of that URL is decoded, a few leaves are rewritten and the URL is sent again:

    !2m!2i  page size, forced to 199
    !3e     sort, ReviewSort value + 1
    !2m!3s  cursor of the next page
    !4e     page index

Each page request races a timeout. An invalid answer (no body, not JSON,
timeout, transport error) is retried with the same cursor after a pause until
the task's failure ceiling, then the reviews gathered so far are returned.
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx

from ..browser.page import MapsPage
from ..config import (
    DEFAULT_HEADERS,
    REVIEWS_PAGE_SIZE,
    REVIEWS_REQUEST_TIMEOUT,
    REVIEWS_RETRY_DELAY,
    REVIEWS_PAGE_DELAY_MIN,
    REVIEWS_PAGE_DELAY_MAX,
)
from ..decoder.pb import PbTree
from ..exceptions import ResponseParseError, ReviewFetchError
from ..logging_config import get_logger
from ..models import ReviewCursor, ReviewSort
from ..parsers.reviews import (
    PersonalDataOptions,
    ReviewTranslation,
    parse_inline_reviews,
    parse_reviews_response,
    review_datetime,
    sort_reviews,
    strip_personal_data,
)
from ..tracking.failures import FailureCounter

logger = get_logger(__name__)

PAGE_SIZE_PATH = '!2m!2i'
SORT_PATH = '!3e'
CURSOR_PATH = '!2m!3s'
PAGE_INDEX_PATH = '!4e'


@dataclass
class FetchResult:
    """Body and content type of one review page request"""
    body: Optional[str]
    content_type: Optional[str]
    status: int = 200

    @property
    def is_valid(self) -> bool:
        return bool(self.body) and bool(self.content_type) and 'application/json' in self.content_type


ReviewFetcher = Callable[[str], Awaitable[FetchResult]]


class HttpxReviewFetcher:
    """
    Fetches review pages out of band with the page's cookies.

    Args:
        cookies: Cookies of the browser session that opened the reviews
        timeout: Request timeout in seconds
        proxy_url: Optional proxy
    """

    def __init__(self, cookies: Optional[Dict[str, str]] = None,
                 timeout: float = REVIEWS_REQUEST_TIMEOUT, proxy_url: Optional[str] = None):
        self.cookies = cookies or {}
        self.timeout = timeout
        self.proxy_url = proxy_url
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=DEFAULT_HEADERS,
                cookies=self.cookies,
                timeout=self.timeout,
                proxy=self.proxy_url,
                follow_redirects=True,
            )
        return self._client

    async def __call__(self, url: str) -> FetchResult:
        try:
            response = await self._get_client().get(url)
        except httpx.HTTPError as e:
            raise ReviewFetchError(f"Review request failed: {e}") from e
        return FetchResult(
            body=response.text,
            content_type=response.headers.get('content-type'),
            status=response.status_code,
        )

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> 'HttpxReviewFetcher':
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()


class ReviewRequestParams:
    """
    Review request URL with its pb parameter decoded for rewriting.

    Raises:
        ReviewFetchError: If the URL has no pb parameter
    """

    def __init__(self, review_url: str):
        self.parts = urlsplit(review_url)
        self.query = parse_qsl(self.parts.query, keep_blank_values=True)
        pb = next((value for key, value in self.query if key == 'pb'), None)
        if not pb:
            raise ReviewFetchError('Could not find pb parameter in the review URL')
        try:
            self.tree = PbTree.decode(pb)
        except ValueError as e:
            raise ReviewFetchError(f"Could not decode pb parameter of the review URL: {e}") from e

        self.tree.set(PAGE_SIZE_PATH, REVIEWS_PAGE_SIZE)

    @property
    def page_index(self) -> int:
        value = self.tree.get(PAGE_INDEX_PATH, 0)
        return value if isinstance(value, int) else 0

    def set_sort(self, sort: ReviewSort):
        self.tree.set(SORT_PATH, sort.value + 1)

    def set_cursor(self, cursor: ReviewCursor):
        self.tree.set(CURSOR_PATH, cursor.page_token)
        self.tree.set(PAGE_INDEX_PATH, cursor.page_index)
        logger.debug(f"Setting next page to {cursor.page_index}")

    def get_url(self) -> str:
        query = [(key, self.tree.encode() if key == 'pb' else value) for key, value in self.query]
        encoded = urlencode(query, safe='!*:,', quote_via=quote)
        return urlunsplit((self.parts.scheme, self.parts.netloc, self.parts.path, encoded, self.parts.fragment))


class ReviewPaginator:
    """
    Cursor protocol over a place's review thread.

    Args:
        page: Page of the place, used to open the reviews panel
        fetcher: Async callable url -> FetchResult
        failures: Shared FailureCounter, its ceiling bounds the retries
        sort: Requested order
        translation: Translation handling of review texts
        filter_string: Only reviews matching this text
        start_date: Drop reviews published before this moment
        personal_data: Personal data switches
        request_timeout: Seconds a page request may take
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        page: MapsPage,
        fetcher: ReviewFetcher,
        failures: FailureCounter,
        sort: ReviewSort = ReviewSort.NEWEST,
        translation: ReviewTranslation = ReviewTranslation.ORIGINAL_AND_TRANSLATED,
        filter_string: Optional[str] = None,
        start_date: Optional[datetime] = None,
        personal_data: Optional[PersonalDataOptions] = None,
        request_timeout: float = REVIEWS_REQUEST_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.page = page
        self.fetcher = fetcher
        self.failures = failures
        self.sort = sort
        self.translation = translation
        self.filter_string = filter_string
        self.start_date = start_date
        self.personal_data = personal_data or PersonalDataOptions()
        self.request_timeout = request_timeout
        self.sleep = sleep

    async def _fetch_with_timeout(self, url: str) -> Optional[FetchResult]:
        """Fetch a page, None on timeout or transport error"""
        fetch = asyncio.ensure_future(self.fetcher(url))
        done, _ = await asyncio.wait({fetch}, timeout=self.request_timeout)
        if not done:
            # The request keeps running, its late result is just ignored
            fetch.add_done_callback(_log_late_result)
            logger.debug(f"Reviews request timed out after {self.request_timeout}s")
            return None
        try:
            return fetch.result()
        except ReviewFetchError as e:
            logger.debug(f"Error while fetching reviews: {e}")
            return None

    def _is_before_start(self, review: Dict) -> bool:
        if self.start_date is None:
            return False
        published = review_datetime(review)
        return published is not None and published < self.start_date

    async def extract(self, task_id: str, reviews_count: int, max_reviews: int,
                      place_data=None) -> List[Dict]:
        """
        Extract up to min(reviews_count, max_reviews) reviews.

        Args:
            task_id: Id the failure counter is keyed by
            reviews_count: Review count the place reports
            max_reviews: Requested maximum
            place_data: Place payload carrying the inline review batch

        Returns:
            Reviews in the requested order, personal data stripped per options

        Raises:
            ReviewFetchError: If the reviews panel could not be opened
        """
        target = min(reviews_count or 0, max_reviews or 0)
        if target <= 0:
            return []

        inline = parse_inline_reviews(place_data, self.translation)
        if not self.filter_string and len(inline) >= target:
            reviews = sort_reviews(inline, self.sort)
            logger.info(f"[PLACE]: Reviews extraction finished: {len(reviews)}/{reviews_count} --- {self.page.url}")
        else:
            reviews = await self._paginate(task_id, target, reviews_count)

        reviews = [r for r in reviews[:target] if not self._is_before_start(r)]
        return strip_personal_data(reviews, self.personal_data)

    async def _paginate(self, task_id: str, target: int, reviews_count: int) -> List[Dict]:
        if self.filter_string:
            logger.info('[PLACE]: Searching reviews....')
        review_url = await self.page.open_reviews(self.filter_string)
        if not review_url:
            raise ReviewFetchError(f"Didn't receive reviews response after clicking on reviews button --- {self.page.url}")

        params = ReviewRequestParams(review_url)
        params.set_sort(self.sort)
        cursor = ReviewCursor(sort_mode=self.sort, page_index=params.page_index)

        reviews: List[Dict] = []
        while len(reviews) < target:
            if cursor.page_token:
                params.set_cursor(cursor)
            url = params.get_url()
            logger.debug(f"[REVIEW URL]: {url}")

            result = await self._fetch_with_timeout(url)
            if result is None or not result.is_valid:
                self.failures.increase(task_id)
                logger.warning('[REVIEWS]: Reviews response is invalid. Retrying...')
                if self.failures.reached_limit(task_id):
                    self.failures.reset(task_id)
                    logger.warning(f"[REVIEWS]: Finishing with incomplete set of {len(reviews)} reviews "
                                   f"for {self.page.url}")
                    break
                await self.sleep(REVIEWS_RETRY_DELAY)
                continue
            self.failures.reset(task_id)

            try:
                batch, next_token = parse_reviews_response(result.body, self.translation)
            except ResponseParseError as e:
                logger.warning(f"Invalid response returned for reviews. This might be caused by updated "
                               f"review count. {e} --- {self.page.url}")
                break
            if not batch:
                break

            older = next((i for i, review in enumerate(batch) if self._is_before_start(review)), None)
            if older is not None:
                reviews.extend(batch[:older])
                logger.info(f"[PLACE]: Extracting reviews stopping: Reached review older than "
                            f"{self.start_date.date().isoformat()} --- {self.page.url}")
                break
            reviews.extend(batch)
            logger.info(f"[PLACE]: Extracting reviews: {len(reviews)}/{reviews_count} --- {self.page.url}")

            if not next_token and len(reviews) < target:
                if self.filter_string:
                    logger.warning(f"Found only {len(reviews)} for reviews search string: {self.filter_string}, "
                                   f"stopping now --- {self.page.url}")
                else:
                    logger.warning(f"Could not find parameter to get to a next page of reviews, "
                                   f"stopping now --- {self.page.url}")
                break
            cursor = ReviewCursor(sort_mode=self.sort, page_token=next_token, page_index=cursor.page_index + 1)

            if len(reviews) < target:
                await self.sleep(random.uniform(REVIEWS_PAGE_DELAY_MIN, REVIEWS_PAGE_DELAY_MAX))

        if not self.filter_string and self.start_date is None and len(reviews) < target:
            logger.warning(f"Google served us less reviews than it should ({len(reviews)}/{target})")
        logger.info(f"[PLACE]: Reviews extraction finished: {len(reviews)}/{reviews_count} --- {self.page.url}")
        return reviews


def _log_late_result(fetch: asyncio.Future):
    if fetch.cancelled():
        return
    error = fetch.exception()
    if error is not None:
        logger.debug(f"Timed out reviews request failed later: {error}")
