"""
Extraction module driving the crawl.

- search.py: Scroll-and-intercept state machine for one search task
- reviews.py: Review pagination through the reviews endpoint
- scheduler.py: Gradual enqueueing of the start tasks
- crawler.py: Crawl orchestration (region, workers, persistence)
"""

from .search import SearchPaginator, SearchState, does_place_match_search_term
from .reviews import ReviewPaginator, ReviewRequestParams, HttpxReviewFetcher, FetchResult
from .scheduler import CrawlScheduler
from .crawler import Crawler
