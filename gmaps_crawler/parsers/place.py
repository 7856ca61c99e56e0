"""
Place Summary Extractor

Summarizes the place payload a detail page carries
(APP_INITIALIZATION_STATE[3][6] with ")]}'" removed, then [6]).

Place data:
- [11] = name
- [18] = full address
- [78] = place_id
- [10] = "0x..:0x.." feature id, the second half is the CID in hex
- [4][7] = rating
- [4][8] = review count
- [9][2], [9][3] = lat, lng
- [13] = categories
- [7][0] = website
- [178][0][0] = phone
- [52][3] = review count per star, one to five
- [88][0] = "CLOSED" for permanently closed places
- [203][0] = opening hours per weekday
"""

from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from .common import safe_get, fix_float


def extract_website(place_data: List) -> Optional[str]:
    """Website from [7][0], unwrapping Google's /url?q= redirect"""
    website = safe_get(place_data, 7, 0)
    if not isinstance(website, str):
        return None
    if '/url?q=' in website:
        target = parse_qs(urlparse(website).query).get('q')
        if target:
            return target[0]
    return website


def extract_phone(place_data: List) -> Optional[str]:
    phone = safe_get(place_data, 178, 0, 0)
    return phone if isinstance(phone, str) else None


def extract_cid(place_data: List) -> Optional[str]:
    """Decimal CID from the hex feature id"""
    feature_id = safe_get(place_data, 10)
    if not isinstance(feature_id, str) or ':' not in feature_id:
        return None
    try:
        return str(int(feature_id.split(':')[1], 16))
    except ValueError:
        return None


def extract_opening_hours(place_data: List) -> Optional[Dict[str, str]]:
    """
    Opening hours from [203][0].

    Each entry: [day_name, day_num, [year, month, day], [[hours_string, ...]], ...]
    """
    entries = safe_get(place_data, 203, 0)
    if not isinstance(entries, list):
        return None

    hours = {}
    for entry in entries:
        day_name = safe_get(entry, 0)
        if not isinstance(day_name, str):
            continue
        slot = safe_get(entry, 3, 0, 0)
        if isinstance(slot, str):
            hours[day_name.lower()] = slot.replace('\u202f', ' ').replace('\u2013', '-')
        else:
            hours[day_name.lower()] = 'Unknown'
    return hours or None


def extract_reviews_distribution(place_data: List) -> Dict[str, int]:
    counts = safe_get(place_data, 52, 3)
    keys = ('one_star', 'two_star', 'three_star', 'four_star', 'five_star')
    if not isinstance(counts, list):
        return {key: 0 for key in keys}
    return {key: safe_get(counts, i, default=0) for i, key in enumerate(keys)}


def summarize_place(place_data: Any) -> Optional[Dict]:
    """
    Extract the place summary from a place payload.

    Args:
        place_data: Positional place array

    Returns:
        Summary dict, or None if the payload has no name
    """
    if not isinstance(place_data, list):
        return None

    name = safe_get(place_data, 11)
    if not isinstance(name, str) or not name:
        return None

    categories = safe_get(place_data, 13)
    review_count = safe_get(place_data, 4, 8)

    return {
        'title': name,
        'place_id': safe_get(place_data, 78),
        'cid': extract_cid(place_data),
        'address': safe_get(place_data, 18),
        'categories': [c for c in categories if isinstance(c, str)] if isinstance(categories, list) else [],
        'total_score': safe_get(place_data, 4, 7),
        'reviews_count': review_count if isinstance(review_count, int) else 0,
        'reviews_distribution': extract_reviews_distribution(place_data),
        'location': {
            'lat': fix_float(safe_get(place_data, 9, 2)),
            'lng': fix_float(safe_get(place_data, 9, 3)),
        },
        'phone': extract_phone(place_data),
        'website': extract_website(place_data),
        'opening_hours': extract_opening_hours(place_data),
        'permanently_closed': safe_get(place_data, 88, 0) == 'CLOSED',
    }
