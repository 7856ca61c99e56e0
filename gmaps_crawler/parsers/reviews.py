"""
Reviews Extractor

Extracts reviews from Google Maps review responses
(/maps/preview/review/listentitiesreviews) and from the inline review batch of
a place payload (place[52][0]).

Review rows are positional arrays:
    [0][1]      = reviewer name
    [0][0]      = reviewer profile URL
    [0][2]      = reviewer photo URL
    [1]         = relative publish date ("3 weeks ago")
    [3]         = text, possibly "translated\n\n(Original)\noriginal"
    [4]         = stars (1-5), empty for reviews imported from other sites
    [6]         = reviewer id
    [9][1]      = owner response text
    [9][3]      = owner response timestamp (ms)
    [10]        = review id
    [12][1][1]  = reviewer review count
    [12][1][0]  = list when the reviewer is a local guide
    [14][*][6][0] = image URLs
    [16]        = likes
    [18]        = review URL
    [25][1]     = rating from other sites
    [27]        = publish timestamp (ms)
    [61]        = cursor of the next page (on the last row of a page)
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import ResponseParseError
from ..models import ReviewSort
from .common import safe_get, load_guarded_json

ORIGINAL_MARKER = '\n\n(Original)\n'
TRANSLATED_MARKER = '(Translated by Google)'


class ReviewTranslation(str, Enum):
    """Which part of a machine-translated review text to keep"""
    ORIGINAL_AND_TRANSLATED = 'original_and_translated'
    ONLY_ORIGINAL = 'only_original'
    ONLY_TRANSLATED = 'only_translated'


@dataclass
class PersonalDataOptions:
    """Which personal fields survive in the output"""
    reviewer_name: bool = True
    reviewer_id: bool = True
    reviewer_url: bool = True
    review_id: bool = True
    review_url: bool = True
    owner_response: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'PersonalDataOptions':
        if not data:
            return cls()
        known = {k: bool(v) for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


def timestamp_to_iso(value: Any) -> Optional[str]:
    """Millisecond epoch to an ISO 8601 UTC string"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """ISO string (with or without "Z", date only allowed) to an aware datetime"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def review_datetime(review: Dict) -> Optional[datetime]:
    return parse_datetime(review.get('published_at_date'))


def apply_translation(text: Any, translation: ReviewTranslation) -> Any:
    """Keep the requested part of a "translated (Original) original" text"""
    if not isinstance(text, str) or translation == ReviewTranslation.ORIGINAL_AND_TRANSLATED:
        return text

    parts = text.split(ORIGINAL_MARKER)
    if translation == ReviewTranslation.ONLY_ORIGINAL:
        # no translation present means the text already is the original
        text = parts[1] if len(parts) > 1 and parts[1] else parts[0]
    else:
        text = parts[0]
    return text.replace(TRANSLATED_MARKER, '').replace(ORIGINAL_MARKER, '').strip()


def parse_review(row: List, translation: ReviewTranslation = ReviewTranslation.ORIGINAL_AND_TRANSLATED) -> Dict:
    """Extract a single review from a review data array."""
    reviewer_stats = safe_get(row, 12, 1)
    images = safe_get(row, 14, default=[])
    owner_response = safe_get(row, 9)

    return {
        'name': safe_get(row, 0, 1),
        'text': apply_translation(safe_get(row, 3), translation),
        'publish_at': safe_get(row, 1),
        'published_at_date': timestamp_to_iso(safe_get(row, 27)),
        'likes_count': safe_get(row, 16),
        'review_id': safe_get(row, 10),
        'review_url': safe_get(row, 18),
        'reviewer_id': safe_get(row, 6),
        'reviewer_url': safe_get(row, 0, 0),
        'reviewer_photo_url': safe_get(row, 0, 2),
        'reviewer_number_of_reviews': safe_get(reviewer_stats, 1),
        'is_local_guide': isinstance(safe_get(reviewer_stats, 0), list),
        # Reviews imported from booking sites have a rating instead of stars
        'stars': safe_get(row, 4) or None,
        'rating': safe_get(row, 25, 1),
        'response_from_owner_date': timestamp_to_iso(safe_get(owner_response, 3)),
        'response_from_owner_text': safe_get(owner_response, 1),
        'review_image_urls': [
            safe_get(image, 6, 0) for image in images if isinstance(image, list)
        ] if isinstance(images, list) else [],
    }


def parse_reviews_response(
    body: Any,
    translation: ReviewTranslation = ReviewTranslation.ORIGINAL_AND_TRANSLATED,
) -> Tuple[List[Dict], Optional[str]]:
    """
    Parse one page of the reviews endpoint.

    Args:
        body: Raw response body
        translation: Translation handling for review texts

    Returns:
        (reviews, cursor), cursor is None on the last page

    Raises:
        ResponseParseError: If the body is not valid JSON
    """
    try:
        data = load_guarded_json(body)
    except ValueError as e:
        raise ResponseParseError(f"Reviews response is not valid JSON: {e}") from e

    rows = safe_get(data, 2)
    if not isinstance(rows, list) or not rows:
        return [], None

    reviews = [parse_review(row, translation) for row in rows if isinstance(row, list)]
    cursor = safe_get(rows, -1, 61)
    return reviews, cursor if isinstance(cursor, str) and cursor else None


def parse_inline_reviews(place_data: Any,
                         translation: ReviewTranslation = ReviewTranslation.ORIGINAL_AND_TRANSLATED) -> List[Dict]:
    """Reviews shipped with the place payload itself"""
    rows = safe_get(place_data, 52, 0)
    if not isinstance(rows, list):
        return []
    return [parse_review(row, translation) for row in rows if isinstance(row, list)]


def sort_reviews(reviews: List[Dict], sort: ReviewSort) -> List[Dict]:
    """Order reviews locally the way the endpoint would"""
    if sort == ReviewSort.NEWEST:
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(reviews, key=lambda r: review_datetime(r) or epoch, reverse=True)
    if sort == ReviewSort.HIGHEST_RANKING:
        return sorted(reviews, key=lambda r: r.get('stars') or 0, reverse=True)
    if sort == ReviewSort.LOWEST_RANKING:
        return sorted(reviews, key=lambda r: r.get('stars') or 0)
    return list(reviews)


def strip_personal_data(reviews: List[Dict], options: PersonalDataOptions) -> List[Dict]:
    """Blank the personal fields switched off in options, in place"""
    for review in reviews:
        if not options.reviewer_name:
            review['name'] = None
        if not options.reviewer_id:
            review['reviewer_id'] = None
        if not options.reviewer_url:
            review['reviewer_url'] = None
            review['reviewer_photo_url'] = None
        if not options.review_id:
            review['review_id'] = None
        if not options.review_url:
            review['review_url'] = None
        if not options.owner_response:
            review['response_from_owner_text'] = None
    return reviews
