"""
Parsers module for extracting data from Google Maps responses.

- common.py: Guard stripping and positional access
- search.py: Candidates from intercepted search responses
- reviews.py: Reviews and next-page cursor from review responses
- place.py: Place summary from the detail page payload
"""

from .common import safe_get, strip_xssi_prefix, load_guarded_json
from .search import SearchBatch, parse_search_response, parse_place_preview_response
from .reviews import (
    ReviewTranslation,
    PersonalDataOptions,
    parse_review,
    parse_reviews_response,
    parse_inline_reviews,
    sort_reviews,
    strip_personal_data,
)
from .place import summarize_place
