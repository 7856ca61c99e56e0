"""
Package entry point.

Allows running: python -m gmaps_crawler --config crawl.json
"""

import sys

from .cli import main

if __name__ == "__main__":
    sys.exit(main())
