"""
Command Line Interface

Entry point for running a crawl from the command line.

Usage:
    python -m gmaps_crawler --config crawl.json
    python -m gmaps_crawler --config crawl.json --max-places 500 --debug
    python -m gmaps_crawler -s "lawyers" --city Prague --country Czechia --max-reviews 20
"""

import argparse
import asyncio
import sys

from .config_manager import CrawlerConfig
from .exceptions import ConfigurationError, GeolocationError
from .extraction.crawler import Crawler
from .logging_config import get_logger, set_level

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Google Maps Crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m gmaps_crawler --config crawl.json
  python -m gmaps_crawler -s "lawyers" --city Prague --country Czechia
  python -m gmaps_crawler -s "cafes" --lat 50.08 --lng 14.42 --zoom 15 --max-places 100
  python -m gmaps_crawler -s "place_id:ChIJ..." --max-reviews 50 -o reviews.jsonl
        """
    )

    parser.add_argument(
        "-c", "--config",
        help="JSON file with crawl options (command line options override it)"
    )
    parser.add_argument(
        "-s", "--search",
        action="append",
        dest="search_terms",
        help="Search term, repeat for several terms"
    )

    # Region
    parser.add_argument("--country", help="Country of the crawl region")
    parser.add_argument("--state", help="State of the crawl region")
    parser.add_argument("--county", help="County of the crawl region")
    parser.add_argument("--city", help="City of the crawl region")
    parser.add_argument("--postal-code", dest="postal_code", help="Postal code of the crawl region")
    parser.add_argument("--lat", type=float, help="Latitude of a single search center")
    parser.add_argument("--lng", type=float, help="Longitude of a single search center")
    parser.add_argument("--zoom", type=int, help="Map zoom (default: from the location granularity)")

    # Limits
    parser.add_argument(
        "--max-places",
        type=int,
        dest="max_crawled_places",
        help="Maximum places for the whole crawl"
    )
    parser.add_argument(
        "--max-places-per-search",
        type=int,
        dest="max_crawled_places_per_search",
        help="Maximum places per search term"
    )
    parser.add_argument(
        "--max-reviews",
        type=int,
        dest="max_reviews",
        help="Reviews per place (default: 0, no reviews)"
    )
    parser.add_argument(
        "--export-place-urls",
        action="store_true",
        default=None,
        help="Only output place URLs without opening the places"
    )

    # Runtime
    parser.add_argument(
        "-o", "--output",
        dest="output_path",
        help="Output JSON lines file"
    )
    parser.add_argument(
        "-p", "--concurrency",
        type=int,
        dest="max_concurrency",
        help="Number of parallel browser pages (default: 4)"
    )
    parser.add_argument(
        "--state-dir",
        dest="state_dir",
        help="Directory of the persisted crawl state"
    )
    parser.add_argument(
        "--monitor-port",
        type=int,
        dest="monitor_port",
        help="Serve the monitor API on this port"
    )
    parser.add_argument(
        "--headful",
        action="store_false",
        dest="headless",
        default=None,
        help="Show the browser window"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Verbose logging"
    )
    return parser


def load_config(args: argparse.Namespace) -> CrawlerConfig:
    """
    Merge the config file with the command line options.

    Raises:
        ConfigurationError: If the file cannot be read or the result is invalid
    """
    config = CrawlerConfig.from_file(args.config) if args.config else CrawlerConfig()
    overrides = {key: value for key, value in vars(args).items() if key != 'config' and value is not None}
    for key, value in overrides.items():
        setattr(config, key, value)
    return config.validate()


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args)
        if config.debug:
            set_level("DEBUG")
        stats = asyncio.run(Crawler(config).run())
        logger.info(f"Done! {stats['places']} places, {stats['failed']} failed tasks.")
        return 0

    except (ConfigurationError, GeolocationError) as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n\nInterrupted by user.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
