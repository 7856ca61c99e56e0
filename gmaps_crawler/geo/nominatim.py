"""
Nominatim API Integration

Resolves a location (country, state, county, city, postal code) into the
GeoJSON geometry of its boundary using the OpenStreetMap Nominatim API.
"""

import time
from typing import Any, Dict, List, Optional

import httpx

from ..config import (
    NOMINATIM_URL,
    NOMINATIM_USER_AGENT,
    NOMINATIM_MAX_TRIES,
    NOMINATIM_RETRY_DELAY,
    GEO_TO_DEFAULT_ZOOM,
)
from ..exceptions import GeolocationError
from ..logging_config import get_logger
from .fence import POLYGON

logger = get_logger(__name__)

LOCATION_PARTS = ('country', 'state', 'county', 'city', 'postal_code')


def default_zoom_for(location: Dict[str, Optional[str]]) -> int:
    """Pick the zoom for the most specific location part that is set."""
    for part in ('postal_code', 'city', 'county', 'state', 'country'):
        if location.get(part):
            return GEO_TO_DEFAULT_ZOOM[part]
    return GEO_TO_DEFAULT_ZOOM['default']


def build_query_params(location: Dict[str, Optional[str]]) -> Dict[str, Any]:
    """
    Build Nominatim structured-search parameters.

    Nominatim handles a country-only structured query poorly, so a lone
    country goes into the free-form "q" parameter instead.
    """
    values = {part: (location.get(part) or '').strip() for part in LOCATION_PARTS}

    # "Congo, Democratic Republic of the" => "Democratic Republic of the Congo"
    if ',' in values['country']:
        first, second = values['country'].split(',', 1)
        values['country'] = f"{second.strip()} {first.strip()}"

    params = {
        'format': 'json',
        'polygon_geojson': 1,
        'limit': 1,
        'polygon_threshold': 0.005,
    }
    only_country = values['country'] and not any(values[p] for p in LOCATION_PARTS if p != 'country')
    if only_country:
        params['q'] = values['country']
        return params

    for part in LOCATION_PARTS:
        if values[part]:
            key = 'postalcode' if part == 'postal_code' else part
            params[key] = values[part]
    return params


def polygon_from_bounding_box(boundingbox: List[str]) -> Dict[str, Any]:
    """Nominatim bounding box [south, north, west, east] to a GeoJSON polygon"""
    south, north, west, east = (float(v) for v in boundingbox)
    return {
        'type': POLYGON,
        'coordinates': [[
            [west, south],
            [west, north],
            [east, north],
            [east, south],
            [west, south],
        ]],
    }


def geojson_from_result(result: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extract the region geometry from a Nominatim result.

    Raises:
        GeolocationError: If the result has neither geojson nor a bounding box
    """
    geojson = result.get('geojson')
    if geojson:
        return geojson
    boundingbox = result.get('boundingbox')
    if not boundingbox:
        raise GeolocationError(
            f"Could not find geojson or bounding box for {result.get('display_name')}"
        )
    return polygon_from_bounding_box(boundingbox)


def get_geolocation(
    location: Dict[str, Optional[str]],
    proxy_url: Optional[str] = None,
    timeout: float = 30.0,
) -> Dict[str, Any]:
    """
    Fetch the full Nominatim result for a location.

    The first try goes direct for speed, later tries use the proxy if given.

    Args:
        location: Dict with any of country, state, county, city, postal_code
        proxy_url: Optional proxy for retries
        timeout: Request timeout in seconds

    Returns:
        The first Nominatim result (includes "geojson" and "boundingbox")

    Raises:
        GeolocationError: If the API keeps failing or finds nothing
    """
    params = build_query_params(location)
    headers = {"User-Agent": NOMINATIM_USER_AGENT, "Referer": "http://google.com"}
    logger.info(f"Finding geolocation for {', '.join(f'{k}: {v}' for k, v in location.items() if v)}")

    data = None
    for attempt in range(1, NOMINATIM_MAX_TRIES + 1):
        try:
            with httpx.Client(
                timeout=timeout,
                proxy=proxy_url if attempt > 1 else None,
            ) as client:
                response = client.get(NOMINATIM_URL, params=params, headers=headers)
                response.raise_for_status()
                data = response.json()
            break
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Error while getting geolocation on try {attempt}: {e}")
            if attempt >= NOMINATIM_MAX_TRIES:
                raise GeolocationError("Could not get geolocation from OpenStreetMap") from e
            time.sleep(NOMINATIM_RETRY_DELAY)

    if not data:
        raise GeolocationError("Location not found, check that it is spelled correctly")

    result = data[0]
    logger.info(f"[Geolocation]: Location found: {result.get('display_name')}, "
                f"lat: {result.get('lat')}, lng: {result.get('lon')}")
    return result
