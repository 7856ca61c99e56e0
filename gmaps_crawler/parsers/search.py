"""
Search Batch Parser

Turns an intercepted search XHR into the candidates of one scroll page.

Search body layout (after removing '/*""*/' and unstringifying "d"):
    d[0][1]       = organic rows; the first row is not a place when there is
                    more than one row, otherwise it is the place we landed on
    row[14]       = place data
    d[2][1][0]    = advertisement rows
    ad[15]        = place data

Place data:
    [78]          = place_id
    [11]          = title
    [9][2]        = latitude
    [9][3]        = longitude
    [13]          = categories
    [183][1][1-6] = neighborhood, street, city, postal code, state, country code
    [7][0]        = website

The single-place preview XHR (/maps/preview/place) carries the place data at
[6] of the ")]}'" guarded body.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.parse import parse_qs, urlparse

from ..config import RESULTS_PER_SCROLL_PAGE
from ..exceptions import ResponseParseError
from ..models import Candidate, Coordinates
from .common import safe_get, load_guarded_json, fix_float

ADDRESS_FIELDS = ('neighborhood', 'street', 'city', 'postal_code', 'state', 'country_code')


@dataclass
class SearchBatch:
    """Candidates of one intercepted response, in response order"""
    candidates: List[Candidate] = field(default_factory=list)
    page_number: int = 1
    url: Optional[str] = None

    @property
    def ads_count(self) -> int:
        return sum(1 for c in self.candidates if c.is_ad)


def page_number_from_url(url: str) -> int:
    """Scroll page number from the "ech" query parameter, 1 when absent"""
    values = parse_qs(urlparse(url or '').query).get('ech')
    try:
        return max(1, int(values[0])) if values else 1
    except ValueError:
        return 1


def compute_rank(page_number: int, index: int) -> int:
    """1-based position across scroll pages"""
    return (page_number - 1) * RESULTS_PER_SCROLL_PAGE + index + 1


def parse_place_data(place_data: Any, rank: int, is_ad: bool = False) -> Optional[Candidate]:
    """Build a Candidate from a place data array, None if it has no id"""
    if not isinstance(place_data, list):
        return None

    place_id = safe_get(place_data, 78)
    if not place_id:
        return None

    coords = safe_get(place_data, 9)
    coordinates = None
    if isinstance(coords, list):
        coordinates = Coordinates(lat=fix_float(safe_get(coords, 2)), lng=fix_float(safe_get(coords, 3)))

    address_detail = safe_get(place_data, 183, 1)
    address = {
        name: safe_get(address_detail, position)
        for position, name in enumerate(ADDRESS_FIELDS, start=1)
    }

    categories = safe_get(place_data, 13)
    title = safe_get(place_data, 11)

    return Candidate(
        external_id=place_id,
        title=title if isinstance(title, str) else None,
        coordinates=coordinates,
        rank=rank,
        is_ad=is_ad,
        categories=[c for c in categories if isinstance(c, str)] if isinstance(categories, list) else [],
        address=address,
        website=safe_get(place_data, 7, 0),
    )


def _unstringify(data: Any) -> Any:
    payload = data.get('d') if isinstance(data, dict) else None
    if payload is None:
        raise ValueError('Search response has no "d" payload')
    if isinstance(payload, str):
        return load_guarded_json(payload)
    return payload


def parse_search_response(url: str, body: str, status: int = None) -> SearchBatch:
    """
    Parse one search XHR into a SearchBatch.

    Args:
        url: Response URL (carries the "ech" page number)
        body: Raw response text
        status: HTTP status, kept on the error for debugging

    Returns:
        SearchBatch with ads first, then organic results

    Raises:
        ResponseParseError: If the body is not valid JSON or lacks the result rows
    """
    try:
        data = _unstringify(load_guarded_json(body))
    except ValueError as e:
        raise ResponseParseError(
            f"Response body doesn't contain a valid JSON: {e}",
            response_status=status, response_body=body,
        ) from e

    page_number = page_number_from_url(url)
    rows = []

    ads = safe_get(data, 2, 1, 0, default=[])
    if isinstance(ads, list):
        rows.extend((safe_get(ad, 15), True) for ad in ads)

    organic = safe_get(data, 0, 1)
    if not isinstance(organic, list):
        raise ResponseParseError(
            "Failed parsing JSON response: no result rows at [0][1]",
            response_status=status, response_body=body,
        )
    if len(organic) > 1:
        organic = organic[1:]
    rows.extend((safe_get(row, 14), False) for row in organic)

    candidates = []
    for place_data, is_ad in rows:
        candidate = parse_place_data(place_data, compute_rank(page_number, len(candidates)), is_ad)
        if candidate is not None:
            candidates.append(candidate)

    return SearchBatch(candidates=candidates, page_number=page_number, url=url)


def parse_place_preview_response(url: str, body: str, status: int = None) -> SearchBatch:
    """
    Parse the single-place preview XHR into a one-candidate batch.

    Raises:
        ResponseParseError: If the body is not valid JSON
    """
    try:
        data = load_guarded_json(body)
    except ValueError as e:
        raise ResponseParseError(
            f"Response body doesn't contain a valid JSON: {e}",
            response_status=status, response_body=body,
        ) from e

    candidate = parse_place_data(safe_get(data, 6), rank=1)
    return SearchBatch(candidates=[candidate] if candidate else [], page_number=1, url=url)
