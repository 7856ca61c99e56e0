import asyncio
import json
from typing import Dict, List, Optional

from gmaps_crawler.browser.page import InterceptedResponse, SearchOutcome
from gmaps_crawler.extraction.reviews import FetchResult

SEARCH_RESPONSE_URL = "https://www.google.com/search?tbm=map&authuser=0&hl=en&ech={page}&q=lawyers"
REVIEW_URL = (
    "https://www.google.com/maps/preview/review/listentitiesreviews?authuser=0&hl=en&gl=us"
    "&pb=!1m2!1y1!2y2!2m2!1i0!2i10!3e1!4m5!3b1!4b1!5b1!6b1!7b1!5m2!1s0!7e81"
)


async def no_sleep(_seconds):
    await asyncio.sleep(0)


# =============================================================================
# Response bodies
# =============================================================================

def place_data(place_id: str, title: str = "Place", lat: float = 50.08, lng: float = 14.42,
               reviews_count: int = 0, inline_reviews: Optional[List] = None) -> List:
    data = [None] * 90
    data[4] = [None] * 7 + [4.5, reviews_count]
    data[9] = [None, None, lat, lng]
    data[11] = title
    data[13] = ["Lawyer"]
    data[18] = f"{title} street 1, Prague"
    data[78] = place_id
    if inline_reviews is not None:
        data[52] = [inline_reviews, None, None, [0, 0, 1, 2, 3]]
    return data


def search_body(places: List[List], ads: Optional[List[List]] = None) -> str:
    organic = [["header"]] + [[None] * 14 + [place] for place in places]
    ad_rows = [[None] * 15 + [place] for place in ads or []]
    payload = [[None, organic], None, [None, [ad_rows]]]
    return '/*""*/' + json.dumps({"d": ")]}'\n" + json.dumps(payload)})


def search_response(places: List[List], page: int = 1, ads: Optional[List[List]] = None) -> InterceptedResponse:
    return InterceptedResponse(url=SEARCH_RESPONSE_URL.format(page=page), status=200, body=search_body(places, ads))


def review_row(review_id: str, published_ms: int, stars: int = 5, cursor: Optional[str] = None) -> List:
    row = [None] * 62
    row[0] = [f"https://www.google.com/maps/contrib/{review_id}", f"Reviewer {review_id}", "https://photo"]
    row[1] = "a week ago"
    row[3] = f"Review {review_id}"
    row[4] = stars
    row[6] = f"user-{review_id}"
    row[10] = review_id
    row[27] = published_ms
    row[61] = cursor
    return row


def reviews_body(rows: List[List]) -> str:
    return ")]}'\n" + json.dumps([None, None, rows])


def json_result(body: str) -> FetchResult:
    return FetchResult(body=body, content_type="application/json; charset=utf-8")


# =============================================================================
# Doubles
# =============================================================================

class FakePage:
    """Scripted MapsPage: responses are replayed on search click and on scrolls."""

    def __init__(self, initial: Optional[List[InterceptedResponse]] = None,
                 scrolls: Optional[List[List[InterceptedResponse]]] = None,
                 outcome: SearchOutcome = SearchOutcome.RESULTS,
                 end_marker: bool = False,
                 places: Optional[Dict[str, List]] = None,
                 review_url: Optional[str] = REVIEW_URL):
        self._url = "about:blank"
        self.initial = list(initial or [])
        self.scrolls = [list(batch) for batch in scrolls or []]
        self.outcome = outcome
        self.end_marker = end_marker
        self.places = places or {}
        self.review_url = review_url
        self.handlers = []
        self.scroll_count = 0
        self.closed = False

    @property
    def url(self) -> str:
        return self._url

    async def goto(self, url: str) -> None:
        self._url = url

    def on_response(self, handler) -> None:
        self.handlers.append(handler)

    async def _emit(self, responses: List[InterceptedResponse]):
        for response in responses:
            for handler in self.handlers:
                await handler(response)

    async def click_search_button(self) -> None:
        await self._emit(self.initial)

    async def detect_outcome(self) -> SearchOutcome:
        return self.outcome

    async def has_end_marker(self) -> bool:
        return self.end_marker and not self.scrolls

    async def count_rendered_rows(self) -> int:
        return 0

    async def scroll_results(self) -> None:
        self.scroll_count += 1
        if self.scrolls:
            await self._emit(self.scrolls.pop(0))

    async def open_reviews(self, filter_string: Optional[str] = None) -> Optional[str]:
        return self.review_url

    async def place_payload(self):
        for place_id, data in self.places.items():
            if place_id in self._url:
                return data
        return None

    async def cookies(self) -> Dict[str, str]:
        return {"NID": "cookie"}

    async def close(self) -> None:
        self.closed = True


class FakeFetcher:
    """Review fetcher returning scripted results and recording requested URLs."""

    def __init__(self, results: List):
        self.results = list(results)
        self.urls: List[str] = []
        self.closed = False

    async def __call__(self, url: str) -> FetchResult:
        self.urls.append(url)
        result = self.results.pop(0) if self.results else json_result(reviews_body([]))
        if isinstance(result, Exception):
            raise result
        return result

    async def aclose(self):
        self.closed = True
