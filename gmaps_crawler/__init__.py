"""
Google Maps Crawler

Crawls Google Maps search results over a geographic region and extracts
place details and reviews.

Quick start (library usage):
    import asyncio
    from gmaps_crawler import Crawler, CrawlerConfig

    config = CrawlerConfig(search_terms=["lawyers"], city="Prague", country="Czechia").validate()
    stats = asyncio.run(Crawler(config).run())

Or from the command line:
    gmaps-crawler --config crawl.json
"""

from .config_manager import CrawlerConfig
from .extraction.crawler import Crawler
from .exceptions import (
    GMapsCrawlerError,
    ConfigurationError,
    GeolocationError,
    ResponseParseError,
    ReviewFetchError,
    SearchTaskError,
)

__version__ = "1.0.0"
__all__ = [
    "Crawler",
    "CrawlerConfig",
    "GMapsCrawlerError",
    "ConfigurationError",
    "GeolocationError",
    "ResponseParseError",
    "ReviewFetchError",
    "SearchTaskError",
]
