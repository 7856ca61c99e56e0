"""
Crawl Data Model

Tasks, candidates and cursors passed between the crawler components.
Tasks serialize to plain dicts so they can be persisted in the key-value
store and restored after a restart.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from .config import SEARCH_URL_TEMPLATE, PLACE_URL_TEMPLATE


class TaskLabel(str, Enum):
    """Kinds of work the queue carries"""
    SEARCH = 'SEARCH'
    PLACE = 'PLACE'


class ReviewSort(Enum):
    """Review orderings, value is the offset used by the reviews endpoint"""
    MOST_RELEVANT = 0
    NEWEST = 1
    HIGHEST_RANKING = 2
    LOWEST_RANKING = 3

    @classmethod
    def from_name(cls, name: str) -> 'ReviewSort':
        normalized = (name or 'most_relevant').replace('-', '_').lower()
        aliases = {
            'mostrelevant': 'most_relevant',
            'highestranking': 'highest_ranking',
            'lowestranking': 'lowest_ranking',
        }
        normalized = aliases.get(normalized, normalized)
        for sort in cls:
            if sort.name.lower() == normalized:
                return sort
        raise ValueError(f"Unknown review sort: {name}")


@dataclass
class Coordinates:
    """Latitude/longitude pair, either part may be missing in the feed"""
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def is_complete(self) -> bool:
        return self.lat is not None and self.lng is not None

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> Optional['Coordinates']:
        if not data:
            return None
        return cls(lat=data.get('lat'), lng=data.get('lng'))


@dataclass
class SearchTask:
    """One search term at one map center and zoom"""
    region_point: Optional[Coordinates]
    zoom: Optional[int]
    query_term: str
    label: TaskLabel = field(default=TaskLabel.SEARCH, init=False)

    @property
    def url(self) -> str:
        query = quote(self.query_term)
        if self.region_point is None or not self.region_point.is_complete:
            return f"https://www.google.com/maps/search/{query}"
        return SEARCH_URL_TEMPLATE.format(
            query=query,
            lat=self.region_point.lat,
            lng=self.region_point.lng,
            zoom=self.zoom,
        )

    @property
    def unique_key(self) -> str:
        return self.url

    def to_dict(self) -> Dict[str, Any]:
        return {
            'label': self.label.value,
            'region_point': asdict(self.region_point) if self.region_point else None,
            'zoom': self.zoom,
            'query_term': self.query_term,
        }


@dataclass
class Candidate:
    """A place row parsed from one intercepted search batch, before filtering"""
    external_id: str
    title: Optional[str]
    coordinates: Optional[Coordinates]
    rank: int
    is_ad: bool = False
    categories: List[str] = field(default_factory=list)
    address: Dict[str, Optional[str]] = field(default_factory=dict)
    website: Optional[str] = None


@dataclass
class DetailTask:
    """Follow-up work to extract one place"""
    external_id: str
    query_term: Optional[str]
    rank: Optional[int]
    search_page_url: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    is_ad: bool = False
    categories: List[str] = field(default_factory=list)
    label: TaskLabel = field(default=TaskLabel.PLACE, init=False)

    @property
    def url(self) -> str:
        return PLACE_URL_TEMPLATE.format(
            query=quote(self.query_term or ''),
            place_id=self.external_id,
        )

    @property
    def unique_key(self) -> str:
        return self.external_id

    @classmethod
    def from_candidate(cls, candidate: Candidate, query_term: str, search_page_url: str = None) -> 'DetailTask':
        return cls(
            external_id=candidate.external_id,
            query_term=query_term,
            rank=candidate.rank,
            search_page_url=search_page_url,
            coordinates=candidate.coordinates,
            is_ad=candidate.is_ad,
            categories=list(candidate.categories or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'label': self.label.value,
            'external_id': self.external_id,
            'query_term': self.query_term,
            'rank': self.rank,
            'search_page_url': self.search_page_url,
            'coordinates': asdict(self.coordinates) if self.coordinates else None,
            'is_ad': self.is_ad,
            'categories': self.categories,
        }


def task_from_dict(data: Dict[str, Any]):
    """Restore a SearchTask or DetailTask persisted with to_dict()"""
    if data.get('label') == TaskLabel.PLACE.value:
        return DetailTask(
            external_id=data['external_id'],
            query_term=data.get('query_term'),
            rank=data.get('rank'),
            search_page_url=data.get('search_page_url'),
            coordinates=Coordinates.from_dict(data.get('coordinates')),
            is_ad=data.get('is_ad', False),
            categories=data.get('categories') or [],
        )
    return SearchTask(
        region_point=Coordinates.from_dict(data.get('region_point')),
        zoom=data.get('zoom'),
        query_term=data['query_term'],
    )


@dataclass
class ReviewCursor:
    """Pagination position inside one place's review stream"""
    sort_mode: ReviewSort
    page_token: Optional[str] = None
    page_index: int = 0


@dataclass
class AddResult:
    """Outcome of adding a task to the work queue"""
    was_already_present: bool


@dataclass
class QueuedTask:
    """Work queue envelope around a task"""
    task: Any
    unique_key: str
    retry_count: int = 0
    error_messages: List[str] = field(default_factory=list)
