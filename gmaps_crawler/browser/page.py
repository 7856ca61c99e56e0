"""
Page automation interface.

The crawl logic only talks to a MapsPage; the Playwright adapter in
playwright_page.py is the shipped implementation and tests use fakes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol


class SearchOutcome(Enum):
    """What a search page settled on"""
    RESULTS = 'results'
    NO_RESULTS = 'no_results'
    BAD_QUERY = 'bad_query'
    PLACE_DETAIL = 'place_detail'
    NONE = 'none'


@dataclass
class InterceptedResponse:
    """A network response observed by the page, body already read"""
    url: str
    status: int
    body: str
    content_type: str = ''


ResponseHandler = Callable[[InterceptedResponse], Awaitable[None]]


class MapsPage(Protocol):
    """Browser page driving the Google Maps UI"""

    @property
    def url(self) -> str:
        ...

    async def goto(self, url: str) -> None:
        ...

    def on_response(self, handler: ResponseHandler) -> None:
        """Register a callback for every response the page receives"""
        ...

    async def click_search_button(self) -> None:
        ...

    async def detect_outcome(self) -> SearchOutcome:
        """Single probe of the page state, NONE while still loading"""
        ...

    async def has_end_marker(self) -> bool:
        """True once the "end of results" marker is rendered"""
        ...

    async def count_rendered_rows(self) -> int:
        ...

    async def scroll_results(self) -> None:
        ...

    async def open_reviews(self, filter_string: Optional[str] = None) -> Optional[str]:
        """Open the review list, return the URL of the first reviews request"""
        ...

    async def place_payload(self) -> Optional[Any]:
        """Positional place data of a detail page"""
        ...

    async def cookies(self) -> Dict[str, str]:
        ...

    async def close(self) -> None:
        ...
