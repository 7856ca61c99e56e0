import asyncio
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

import pytest

from conftest import FakeFetcher, FakePage, json_result, no_sleep, review_row, reviews_body, REVIEW_URL
from gmaps_crawler.decoder.pb import PbTree
from gmaps_crawler.exceptions import ReviewFetchError
from gmaps_crawler.extraction.reviews import FetchResult, ReviewPaginator, ReviewRequestParams
from gmaps_crawler.models import ReviewCursor, ReviewSort
from gmaps_crawler.parsers.reviews import PersonalDataOptions
from gmaps_crawler.tracking.failures import FailureCounter


def ms(year: int, month: int, day: int) -> int:
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp() * 1000)


def pb_of(url: str) -> PbTree:
    return PbTree.decode(parse_qs(urlsplit(url).query)["pb"][0])


def extract(fetcher, reviews_count=100, max_reviews=100, page=None, failures=None, **kwargs):
    paginator = ReviewPaginator(
        page or FakePage(),
        fetcher,
        failures or FailureCounter(10),
        sleep=no_sleep,
        **kwargs,
    )
    return asyncio.run(paginator.extract("place-1", reviews_count, max_reviews))


def test_request_params_rewrite_the_pb_leaves() -> None:
    params = ReviewRequestParams(REVIEW_URL)
    params.set_sort(ReviewSort.NEWEST)
    params.set_cursor(ReviewCursor(sort_mode=ReviewSort.NEWEST, page_token="tokB", page_index=1))

    tree = pb_of(params.get_url())

    assert tree.get("!2m!2i") == 199
    assert tree.get("!3e") == 2
    assert tree.get("!2m!3s") == "tokB"
    assert tree.get("!4e") == 1
    assert tree.get("!1m!2y") == "2"
    assert params.get_url().startswith("https://www.google.com/maps/preview/review/listentitiesreviews?")


def test_request_params_without_pb_fail() -> None:
    with pytest.raises(ReviewFetchError):
        ReviewRequestParams("https://www.google.com/maps/preview/review/listentitiesreviews?hl=en")


def test_cursor_pages_are_followed_until_an_empty_page() -> None:
    fetcher = FakeFetcher([
        json_result(reviews_body([review_row("a1", ms(2024, 3, 1)), review_row("a2", ms(2024, 2, 1), cursor="tokB")])),
        json_result(reviews_body([review_row("b1", ms(2024, 1, 1)), review_row("b2", ms(2023, 12, 1), cursor="tokC")])),
        json_result(reviews_body([review_row("c1", ms(2023, 11, 1)), review_row("c2", ms(2023, 10, 1), cursor="tokD")])),
        json_result(reviews_body([])),
    ])

    reviews = extract(fetcher)

    assert [r["review_id"] for r in reviews] == ["a1", "a2", "b1", "b2", "c1", "c2"]
    assert len(fetcher.urls) == 4
    assert pb_of(fetcher.urls[0]).get("!2m!3s") is None
    assert pb_of(fetcher.urls[1]).get("!2m!3s") == "tokB"
    assert pb_of(fetcher.urls[2]).get("!2m!3s") == "tokC"
    assert pb_of(fetcher.urls[3]).get("!2m!3s") == "tokD"
    assert [pb_of(url).get("!4e", 0) for url in fetcher.urls] == [0, 1, 2, 3]


def test_pagination_stops_at_the_requested_count() -> None:
    fetcher = FakeFetcher([
        json_result(reviews_body([review_row("a1", ms(2024, 3, 1)), review_row("a2", ms(2024, 2, 1), cursor="tokB")])),
        json_result(reviews_body([review_row("b1", ms(2024, 1, 1)), review_row("b2", ms(2023, 12, 1), cursor="tokC")])),
    ])

    reviews = extract(fetcher, reviews_count=50, max_reviews=3)

    assert [r["review_id"] for r in reviews] == ["a1", "a2", "b1"]
    assert len(fetcher.urls) == 2


def test_reviews_before_the_start_date_are_excluded() -> None:
    fetcher = FakeFetcher([
        json_result(reviews_body([review_row("a1", ms(2024, 1, 20)), review_row("a2", ms(2024, 1, 15), cursor="tokB")])),
        json_result(reviews_body([
            review_row("b1", ms(2024, 1, 12)),
            review_row("b2", ms(2024, 1, 9)),
            review_row("b3", ms(2024, 1, 11), cursor="tokC"),
        ])),
        json_result(reviews_body([review_row("c1", ms(2024, 1, 10))])),
    ])

    reviews = extract(fetcher, start_date=datetime(2024, 1, 10, tzinfo=timezone.utc))

    assert [r["review_id"] for r in reviews] == ["a1", "a2", "b1"]
    assert len(fetcher.urls) == 2


def test_review_on_the_start_date_is_kept() -> None:
    fetcher = FakeFetcher([
        json_result(reviews_body([review_row("a1", ms(2024, 1, 10)), review_row("a2", ms(2024, 1, 9))])),
    ])

    reviews = extract(fetcher, start_date=datetime(2024, 1, 10, tzinfo=timezone.utc))

    assert [r["review_id"] for r in reviews] == ["a1"]


def test_invalid_response_is_retried_with_the_same_cursor() -> None:
    fetcher = FakeFetcher([
        json_result(reviews_body([review_row("a1", ms(2024, 3, 1), cursor="tokB")])),
        FetchResult(body="<html>error</html>", content_type="text/html", status=500),
        ReviewFetchError("connection reset"),
        json_result(reviews_body([review_row("b1", ms(2024, 2, 1))])),
    ])
    failures = FailureCounter(10)

    reviews = extract(fetcher, failures=failures)

    assert [r["review_id"] for r in reviews] == ["a1", "b1"]
    assert [pb_of(url).get("!2m!3s") for url in fetcher.urls[1:]] == ["tokB", "tokB", "tokB"]
    assert failures.get("place-1") == 0


def test_failure_ceiling_returns_partial_reviews() -> None:
    invalid = FetchResult(body=None, content_type=None)
    fetcher = FakeFetcher([json_result(reviews_body([review_row("a1", ms(2024, 3, 1), cursor="tokB")]))] + [invalid] * 3)

    reviews = extract(fetcher, failures=FailureCounter(3))

    assert [r["review_id"] for r in reviews] == ["a1"]
    assert len(fetcher.urls) == 4


def test_timed_out_request_counts_as_failure() -> None:
    class SlowThenFast:
        def __init__(self):
            self.calls = 0

        async def __call__(self, url):
            self.calls += 1
            if self.calls == 1:
                await asyncio.sleep(5)
            return json_result(reviews_body([review_row("a1", ms(2024, 3, 1))]))

    fetcher = SlowThenFast()
    failures = FailureCounter(10)

    reviews = extract(fetcher, failures=failures, request_timeout=0.01)

    assert [r["review_id"] for r in reviews] == ["a1"]
    assert fetcher.calls == 2


def test_unparsable_json_keeps_partial_result() -> None:
    fetcher = FakeFetcher([
        json_result(reviews_body([review_row("a1", ms(2024, 3, 1), cursor="tokB")])),
        json_result(")]}'\n{not json"),
    ])

    reviews = extract(fetcher)

    assert [r["review_id"] for r in reviews] == ["a1"]


def test_missing_reviews_response_raises() -> None:
    with pytest.raises(ReviewFetchError):
        extract(FakeFetcher([]), page=FakePage(review_url=None))


def test_zero_target_makes_no_requests() -> None:
    fetcher = FakeFetcher([])
    assert extract(fetcher, reviews_count=10, max_reviews=0) == []
    assert extract(fetcher, reviews_count=0, max_reviews=10) == []
    assert fetcher.urls == []


def test_inline_reviews_skip_pagination() -> None:
    place = [None] * 60
    place[52] = [[
        review_row("i1", ms(2024, 1, 1), stars=2),
        review_row("i2", ms(2024, 3, 1), stars=5),
    ]]
    fetcher = FakeFetcher([])
    paginator = ReviewPaginator(FakePage(), fetcher, FailureCounter(10), sort=ReviewSort.NEWEST, sleep=no_sleep)

    reviews = asyncio.run(paginator.extract("place-1", 2, 10, place_data=place))

    assert [r["review_id"] for r in reviews] == ["i2", "i1"]
    assert fetcher.urls == []


def test_personal_data_is_stripped() -> None:
    fetcher = FakeFetcher([json_result(reviews_body([review_row("a1", ms(2024, 3, 1))]))])

    reviews = extract(fetcher, personal_data=PersonalDataOptions(reviewer_name=False, reviewer_id=False))

    assert reviews[0]["name"] is None
    assert reviews[0]["reviewer_id"] is None
    assert reviews[0]["review_id"] == "a1"
