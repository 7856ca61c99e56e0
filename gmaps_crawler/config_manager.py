"""
Run configuration for a crawl.

CrawlerConfig holds every per-run option; module-level defaults come from
config.py. Load it from a dict or a JSON file and call validate() before
starting a crawl.
"""

import json
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import (
    MAX_TASK_RETRIES,
    PERSIST_INTERVAL,
    DEFAULT_STATE_DIR,
    DEFAULT_POINT_RADIUS_KM,
)
from .exceptions import ConfigurationError
from .logging_config import get_logger
from .models import ReviewSort
from .parsers.reviews import ReviewTranslation, PersonalDataOptions, parse_datetime
from .parsers.common import safe_get

logger = get_logger(__name__)

SEARCH_MATCHING_MODES = ('all', 'only_includes', 'only_exact')
PLACE_ID_PREFIX = 'place_id:'

# 0 used to mean "no limit"
UNLIMITED_PLACES = 99999999


@dataclass
class CrawlerConfig:
    """Configuration for one crawl.

    Args:
        search_terms: Queries to run; "place_id:<id>" goes straight to the place.
        country, state, county, city, postal_code: Location resolved through
            Nominatim into the crawl region.
        lat, lng: Single search center when no location is given.
        zoom: Map zoom; derived from the location granularity when omitted.
        custom_geolocation: GeoJSON geometry, takes precedence over the location.
        polygon_spread_multiplier: >1 spreads search centers further apart.
        point_radius_km: Radius around a Point region.
        max_crawled_places: Global ceiling on places.
        max_crawled_places_per_search: Ceiling per search term.
        max_automatic_zoom_out: Stop scrolling once Google zooms out this far.
        search_matching: "all", "only_includes" or "only_exact" title matching.
        export_place_urls: Only push place URLs instead of scraping details.
        stop_on_rejected_page: Stop scrolling after a page where nothing was kept.
        max_reviews: Reviews per place, 0 skips reviews.
        reviews_sort: "most_relevant", "newest", "highest_ranking", "lowest_ranking".
        reviews_translation: "original_and_translated", "only_original", "only_translated".
        reviews_filter_string: Only reviews matching this text.
        reviews_start_date: Only reviews published on or after this date (YYYY-MM-DD).
        one_review_per_row: Output one record per review.
        scrape_*: Personal data switches for reviews.
        max_concurrency: Parallel browser pages.
        max_task_retries: Retries of a failed task before it is dropped.
        headless: Run the browser headless.
        state_dir: Directory of the persisted crawl state.
        output_path: JSON lines output file, in-memory when omitted.
        persist_interval: Seconds between state snapshots.
        monitor_port: Serve the monitor API on this port.
        proxy_url: Proxy used for Nominatim retries.
        debug: Verbose logging.
    """

    search_terms: List[str] = field(default_factory=list)

    country: Optional[str] = None
    state: Optional[str] = None
    county: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    zoom: Optional[int] = None
    custom_geolocation: Optional[Dict[str, Any]] = None
    polygon_spread_multiplier: float = 1.0
    point_radius_km: float = DEFAULT_POINT_RADIUS_KM

    max_crawled_places: Optional[int] = None
    max_crawled_places_per_search: Optional[int] = None
    max_automatic_zoom_out: Optional[int] = None
    search_matching: str = 'all'
    export_place_urls: bool = False
    stop_on_rejected_page: bool = True

    max_reviews: int = 0
    reviews_sort: str = 'newest'
    reviews_translation: str = 'original_and_translated'
    reviews_filter_string: Optional[str] = None
    reviews_start_date: Optional[str] = None
    one_review_per_row: bool = False
    scrape_reviewer_name: bool = True
    scrape_reviewer_id: bool = True
    scrape_reviewer_url: bool = True
    scrape_review_id: bool = True
    scrape_review_url: bool = True
    scrape_response_from_owner_text: bool = True

    max_concurrency: int = 4
    max_task_retries: int = MAX_TASK_RETRIES
    headless: bool = True
    state_dir: str = DEFAULT_STATE_DIR
    output_path: Optional[str] = None
    persist_interval: float = PERSIST_INTERVAL
    monitor_port: Optional[int] = None
    proxy_url: Optional[str] = None
    debug: bool = False

    # =========================================================================
    # Loading
    # =========================================================================

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CrawlerConfig':
        """Build a config from a dict, unknown keys are logged and ignored"""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_file(cls, path: str) -> 'CrawlerConfig':
        """
        Load a config from a JSON file.

        Raises:
            ConfigurationError: If the file is missing or not a JSON object
        """
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Could not read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {path} must contain a JSON object")
        return cls.from_dict(data)

    # =========================================================================
    # Derived values
    # =========================================================================

    @property
    def location(self) -> Dict[str, Optional[str]]:
        return {
            'country': self.country,
            'state': self.state,
            'county': self.county,
            'city': self.city,
            'postal_code': self.postal_code,
        }

    @property
    def has_location(self) -> bool:
        return any(self.location.values())

    @property
    def review_sort(self) -> ReviewSort:
        return ReviewSort.from_name(self.reviews_sort)

    @property
    def review_translation(self) -> ReviewTranslation:
        return ReviewTranslation(self.reviews_translation)

    @property
    def personal_data_options(self) -> PersonalDataOptions:
        return PersonalDataOptions(
            reviewer_name=self.scrape_reviewer_name,
            reviewer_id=self.scrape_reviewer_id,
            reviewer_url=self.scrape_reviewer_url,
            review_id=self.scrape_review_id,
            review_url=self.scrape_review_url,
            owner_response=self.scrape_response_from_owner_text,
        )

    @property
    def reviews_start_datetime(self) -> Optional[datetime]:
        return parse_datetime(self.reviews_start_date)

    @property
    def only_place_ids(self) -> bool:
        return bool(self.search_terms) and all(t.startswith(PLACE_ID_PREFIX) for t in self.search_terms)

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self) -> 'CrawlerConfig':
        """
        Check the config and normalize legacy values.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: On the first invalid option
        """
        if isinstance(self.search_terms, str):
            raise ConfigurationError("search_terms has to be a list of strings")
        self.search_terms = [t.strip() for t in self.search_terms or [] if isinstance(t, str) and t.strip()]
        if not self.search_terms:
            raise ConfigurationError("You have to provide at least one search term in search_terms")

        if (self.lat is None) != (self.lng is None):
            raise ConfigurationError("lat and lng have to be provided together")

        has_region = self.custom_geolocation or self.has_location or self.lat is not None
        if not has_region and not self.only_place_ids:
            raise ConfigurationError(
                "You have to provide a region: custom_geolocation, a location "
                "(country, state, county, city, postal_code) or lat/lng"
            )

        if self.custom_geolocation is not None:
            self._check_geolocation(self.custom_geolocation)

        if self.search_matching not in SEARCH_MATCHING_MODES:
            raise ConfigurationError(
                f"search_matching must be one of {', '.join(SEARCH_MATCHING_MODES)}, got {self.search_matching!r}"
            )

        try:
            sort = self.review_sort
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        try:
            self.review_translation
        except ValueError as e:
            raise ConfigurationError(f"Unknown reviews_translation: {self.reviews_translation!r}") from e

        if self.reviews_start_date:
            if self.reviews_start_datetime is None:
                raise ConfigurationError(
                    f"{self.reviews_start_date} is not a valid date format. Use YYYY-MM-DD"
                )
            if sort != ReviewSort.NEWEST:
                logger.warning("reviews_start_date requires reviews_sort newest, switching to newest")
                self.reviews_sort = 'newest'

        if self.max_crawled_places == 0:
            logger.warning(f"max_crawled_places: 0 means no limit, use {UNLIMITED_PLACES} instead")
            self.max_crawled_places = UNLIMITED_PLACES

        for name in ('max_crawled_places', 'max_crawled_places_per_search', 'max_automatic_zoom_out'):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or value < 0):
                raise ConfigurationError(f"{name} must be a non-negative integer")
        if not isinstance(self.max_reviews, int) or self.max_reviews < 0:
            raise ConfigurationError("max_reviews must be a non-negative integer")
        if self.zoom is not None and not 1 <= self.zoom <= 21:
            raise ConfigurationError("zoom must be between 1 and 21")
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be at least 1")
        if self.polygon_spread_multiplier <= 0:
            raise ConfigurationError("polygon_spread_multiplier must be positive")

        return self

    @staticmethod
    def _check_geolocation(geometry: Dict[str, Any]):
        if not isinstance(geometry, dict) or 'type' not in geometry:
            raise ConfigurationError("custom_geolocation must be a GeoJSON geometry or Feature")

        inner = geometry.get('geometry') if geometry.get('type') == 'Feature' else geometry
        coordinates = (inner or {}).get('coordinates')
        first = None
        if inner and inner.get('type') == 'Polygon':
            first = safe_get(coordinates, 0, 0)
        elif inner and inner.get('type') == 'MultiPolygon':
            first = safe_get(coordinates, 0, 0, 0)
        if isinstance(first, list) and len(first) == 2 and abs(first[1]) > 60:
            logger.warning(
                f"Latitude {first[1]} is probably wrong. The order of coordinates must be [longitude, latitude]"
            )
