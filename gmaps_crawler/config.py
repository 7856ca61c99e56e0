"""
Default configuration for the Google Maps crawler.

Module-level defaults used across the package. Values that are commonly
tuned per deployment can be overridden with GMAPS_CRAWLER_* environment
variables; everything else is set per run through CrawlerConfig.
"""

import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


# Google Maps URLs
MAPS_BASE_URL = "https://www.google.com/maps"
SEARCH_URL_TEMPLATE = MAPS_BASE_URL + "/search/{query}/@{lat},{lng},{zoom}z"
PLACE_URL_TEMPLATE = MAPS_BASE_URL + "/search/?api=1&query={query}&query_place_id={place_id}"

# Response URL markers used by the interception layer
SEARCH_RESPONSE_PATTERN = r"google\.[a-z.]+/search"
PLACE_PREVIEW_RESPONSE_PATTERN = r"google\.[a-z.]+/maps/preview/place"
REVIEWS_RESPONSE_MARKER = "preview/review/listentitiesreviews"

# Search scrolling
MAX_PLACES_PER_PAGE = 120
RESULTS_PER_SCROLL_PAGE = 20
MAX_EMPTY_SCROLLS = 10
SEARCH_WAIT_TIMEOUT = 30.0
CHECK_OUTCOME_INTERVAL = 0.5
SINGLE_PLACE_WAIT_TIMEOUT = 60.0
BATCH_WAIT_TIMEOUT = 5.0
BATCH_POLL_INTERVAL = 1.0
SCROLL_DELAY_MIN = 2.0
SCROLL_DELAY_MAX = 3.0
SCROLL_DELTA_Y = 800

# Reviews
REVIEWS_PAGE_SIZE = 199
REVIEWS_REQUEST_TIMEOUT = _env_float("GMAPS_CRAWLER_REVIEWS_TIMEOUT", 30.0)
REVIEWS_RETRY_DELAY = 10.0
REVIEWS_PAGE_DELAY_MIN = 2.0
REVIEWS_PAGE_DELAY_MAX = 5.0
MIN_REVIEWS_RETRIES = 10

# Start task scheduling
MAX_START_TASKS_SYNC = 200
START_TASKS_INTERVAL = 20.0
WORKER_IDLE_INTERVAL = 0.5

# Retries and persistence
MAX_TASK_RETRIES = _env_int("GMAPS_CRAWLER_MAX_TASK_RETRIES", 6)
PERSIST_INTERVAL = _env_float("GMAPS_CRAWLER_PERSIST_INTERVAL", 60.0)
DEFAULT_STATE_DIR = os.environ.get("GMAPS_CRAWLER_STATE_DIR", "storage")

# Geometry
DEFAULT_POINT_RADIUS_KM = 5.0
VIEWPORT_PX = 800
METERS_PER_PIXEL_AT_ZOOM_0 = 156543.03392
EARTH_RADIUS_KM = 6371.0088
CIRCLE_STEPS = 64

# Default zoom per geolocation granularity, most specific first
GEO_TO_DEFAULT_ZOOM = {
    "postal_code": 16,
    "city": 15,
    "county": 14,
    "state": 12,
    "country": 12,
    "default": 12,
}

# Nominatim
NOMINATIM_URL = "https://nominatim.openstreetmap.org/search"
NOMINATIM_USER_AGENT = "GoogleMapsCrawler/1.0"
NOMINATIM_MAX_TRIES = 3
NOMINATIM_RETRY_DELAY = 5.0

# Monitor API
API_HOST = "0.0.0.0"
API_PORT = _env_int("GMAPS_CRAWLER_API_PORT", 8000)

# Key-value store record names
QUOTA_STATE_KEY = "QUOTA_STATE"
EXPORT_URLS_DEDUP_KEY = "EXPORT_URLS_DEDUP"
REVIEWS_FAIL_COUNT_KEY = "REVIEWS_FAIL_COUNT"
STATS_KEY = "STATS"
PLACES_OUT_OF_POLYGON_KEY = "PLACES_OUT_OF_POLYGON"
ENQUEUEING_STATE_KEY = "ENQUEUEING_STATE"
START_TASKS_KEY = "START_TASKS"
GEO_KEY = "GEO"
WORK_QUEUE_KEY = "WORK_QUEUE"

# Headers for out-of-band requests
DEFAULT_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36',
    'Accept': '*/*',
    'Accept-Language': 'en-US,en;q=0.9',
    'Referer': 'https://www.google.com/',
}
