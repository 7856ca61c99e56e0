#!/usr/bin/env python
"""
Run the Monitor API Server without a crawl

Useful for decoding pb parameters of captured request URLs.

Usage:
    python run_server.py [port]

Endpoints:
    GET  /api/health     - Health check
    POST /api/decode-pb  - Decode a pb parameter
"""

import sys

from gmaps_crawler.config import API_PORT
from gmaps_crawler.server import run_server

if __name__ == "__main__":
    run_server(port=int(sys.argv[1]) if len(sys.argv) > 1 else API_PORT)
