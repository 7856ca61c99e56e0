"""
Playwright adapter for MapsPage.

Selectors used on the Maps UI:
- #searchbox-searchbutton: search button (clicked again so results arrive via XHR)
- [class*="section-bad-query"]: query Google could not understand
- "No results found" text: empty search
- h1.fontHeadlineLarge: search redirected straight to a place page
- a.hfpxzc: result links, the normal outcome
- .HlvSq: "You've reached the end of the list" marker
- [role="article"]: rendered result rows
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from playwright.async_api import (
    async_playwright,
    Browser,
    Page,
    Response,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
)

from ..config import DEFAULT_HEADERS, REVIEWS_RESPONSE_MARKER, SCROLL_DELTA_Y
from ..logging_config import get_logger
from .page import InterceptedResponse, ResponseHandler, SearchOutcome

logger = get_logger(__name__)

SEARCH_BUTTON_SEL = '#searchbox-searchbutton'
BAD_QUERY_SEL = '[class*="section-bad-query"]'
NO_RESULTS_SEL = 'text="No results found"'
PLACE_TITLE_SEL = 'h1.fontHeadlineLarge'
RESULT_LINK_SEL = 'a.hfpxzc'
END_OF_RESULTS_SEL = '.HlvSq'
RESULT_ROW_SEL = '[role="article"]'
REVIEWS_BUTTON_SEL = 'button[jsaction="pane.reviewChart.moreReviews"]'
REVIEWS_SEARCH_BUTTON_SEL = 'div.pV4rW.q8YqMd > div > button'

PLACE_PAYLOAD_JS = """() => {
    try {
        return JSON.parse(APP_INITIALIZATION_STATE[3][6].replace(")]}'", ''))[6];
    } catch (e) {
        return null;
    }
}"""

NAVIGATION_TIMEOUT_MS = 60000
REVIEWS_BUTTON_TIMEOUT_MS = 15000
REVIEWS_RESPONSE_TIMEOUT_MS = 60000


class PlaywrightMapsPage:
    """MapsPage backed by a Playwright page"""

    def __init__(self, page: Page):
        self.page = page
        self._handlers: List[ResponseHandler] = []
        self._pending = set()
        page.on("response", self._on_response)

    @property
    def url(self) -> str:
        return self.page.url

    def on_response(self, handler: ResponseHandler) -> None:
        self._handlers.append(handler)

    def _on_response(self, response: Response):
        if not self._handlers:
            return
        task = asyncio.ensure_future(self._dispatch(response))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _dispatch(self, response: Response):
        try:
            body = await response.text()
        except PlaywrightError as e:
            # Redirects and aborted requests have no body
            logger.debug(f"No body for {response.url}: {e}")
            return
        intercepted = InterceptedResponse(
            url=response.url,
            status=response.status,
            body=body,
            content_type=response.headers.get('content-type', ''),
        )
        for handler in list(self._handlers):
            await handler(intercepted)

    async def goto(self, url: str) -> None:
        await self.page.goto(url, timeout=NAVIGATION_TIMEOUT_MS, wait_until='domcontentloaded')

    async def click_search_button(self) -> None:
        await self.page.wait_for_selector(SEARCH_BUTTON_SEL, timeout=NAVIGATION_TIMEOUT_MS)
        await self.page.click(SEARCH_BUTTON_SEL)

    async def detect_outcome(self) -> SearchOutcome:
        if await self.page.query_selector(BAD_QUERY_SEL):
            return SearchOutcome.BAD_QUERY
        if await self.page.query_selector(NO_RESULTS_SEL):
            return SearchOutcome.NO_RESULTS
        if await self.page.query_selector(PLACE_TITLE_SEL):
            return SearchOutcome.PLACE_DETAIL
        if await self.page.query_selector(RESULT_LINK_SEL):
            return SearchOutcome.RESULTS
        return SearchOutcome.NONE

    async def has_end_marker(self) -> bool:
        return await self.page.query_selector(END_OF_RESULTS_SEL) is not None

    async def count_rendered_rows(self) -> int:
        return await self.page.locator(RESULT_ROW_SEL).count()

    async def scroll_results(self) -> None:
        # The mouse has to be over the results panel for the wheel to scroll it
        await self.page.mouse.move(10, 300)
        await self.page.wait_for_timeout(100)
        await self.page.mouse.wheel(0, SCROLL_DELTA_Y)

    async def open_reviews(self, filter_string: Optional[str] = None) -> Optional[str]:
        try:
            await self.page.wait_for_selector(REVIEWS_BUTTON_SEL, timeout=REVIEWS_BUTTON_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            logger.warning(f"Could not find reviews button, check if the page really has no reviews --- {self.url}")
            return None

        def is_reviews_response(response: Response) -> bool:
            return REVIEWS_RESPONSE_MARKER in response.url

        async with self.page.expect_response(is_reviews_response, timeout=REVIEWS_RESPONSE_TIMEOUT_MS) as info:
            await self.page.click(REVIEWS_BUTTON_SEL)
        response = await info.value

        if filter_string:
            await self.page.click(REVIEWS_SEARCH_BUTTON_SEL)
            await self.page.keyboard.type(filter_string.strip())
            async with self.page.expect_response(is_reviews_response, timeout=REVIEWS_RESPONSE_TIMEOUT_MS) as info:
                await self.page.keyboard.press('Enter')
            response = await info.value

        return response.url

    async def place_payload(self) -> Optional[Any]:
        return await self.page.evaluate(PLACE_PAYLOAD_JS)

    async def cookies(self) -> Dict[str, str]:
        cookies = await self.page.context.cookies()
        return {c['name']: c['value'] for c in cookies}

    async def close(self) -> None:
        for task in list(self._pending):
            task.cancel()
        await self.page.context.close()


@asynccontextmanager
async def launch_browser(headless: bool = True) -> AsyncIterator[Callable]:
    """
    Start Chromium and yield an async factory of fresh PlaywrightMapsPage objects.

    Every page gets its own browser context so cookies are not shared
    between workers.
    """
    async with async_playwright() as p:
        browser: Browser = await p.chromium.launch(headless=headless)

        async def new_page() -> PlaywrightMapsPage:
            context = await browser.new_context(
                user_agent=DEFAULT_HEADERS['User-Agent'],
                locale='en-US',
                viewport={'width': 1366, 'height': 768},
            )
            return PlaywrightMapsPage(await context.new_page())

        try:
            yield new_page
        finally:
            await browser.close()
