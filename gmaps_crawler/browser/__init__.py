"""
Browser automation.

- page.py: MapsPage interface used by the crawl logic
- playwright_page.py: Playwright implementation and browser launcher
"""

from .page import MapsPage, InterceptedResponse, SearchOutcome, ResponseHandler
