import json

import pytest

from gmaps_crawler.config_manager import CrawlerConfig, UNLIMITED_PLACES
from gmaps_crawler.exceptions import ConfigurationError
from gmaps_crawler.models import ReviewSort
from gmaps_crawler.parsers.reviews import ReviewTranslation


def test_valid_config_with_location() -> None:
    config = CrawlerConfig(search_terms=[" lawyers ", ""], city="Prague", country="Czechia").validate()

    assert config.search_terms == ["lawyers"]
    assert config.has_location
    assert config.review_sort == ReviewSort.NEWEST
    assert config.review_translation == ReviewTranslation.ORIGINAL_AND_TRANSLATED


def test_missing_search_terms_fail() -> None:
    with pytest.raises(ConfigurationError):
        CrawlerConfig(city="Prague").validate()
    with pytest.raises(ConfigurationError):
        CrawlerConfig(search_terms="lawyers", city="Prague").validate()


def test_lat_without_lng_fails() -> None:
    with pytest.raises(ConfigurationError):
        CrawlerConfig(search_terms=["cafe"], lat=50.0).validate()


def test_missing_region_fails_unless_only_place_ids() -> None:
    with pytest.raises(ConfigurationError):
        CrawlerConfig(search_terms=["cafe"]).validate()

    config = CrawlerConfig(search_terms=["place_id:ChIJ1", "place_id:ChIJ2"]).validate()
    assert config.only_place_ids


def test_bad_enum_values_fail() -> None:
    with pytest.raises(ConfigurationError):
        CrawlerConfig(search_terms=["cafe"], lat=1.0, lng=2.0, search_matching="fuzzy").validate()
    with pytest.raises(ConfigurationError):
        CrawlerConfig(search_terms=["cafe"], lat=1.0, lng=2.0, reviews_sort="random").validate()
    with pytest.raises(ConfigurationError):
        CrawlerConfig(search_terms=["cafe"], lat=1.0, lng=2.0, reviews_translation="auto").validate()


def test_start_date_forces_newest_sort() -> None:
    config = CrawlerConfig(
        search_terms=["cafe"], lat=1.0, lng=2.0,
        reviews_sort="highest_ranking", reviews_start_date="2024-01-10",
    ).validate()

    assert config.review_sort == ReviewSort.NEWEST
    assert config.reviews_start_datetime.year == 2024


def test_invalid_start_date_fails() -> None:
    with pytest.raises(ConfigurationError):
        CrawlerConfig(search_terms=["cafe"], lat=1.0, lng=2.0, reviews_start_date="last week").validate()


def test_zero_max_places_means_unlimited() -> None:
    config = CrawlerConfig(search_terms=["cafe"], lat=1.0, lng=2.0, max_crawled_places=0).validate()

    assert config.max_crawled_places == UNLIMITED_PLACES


def test_negative_limits_fail() -> None:
    with pytest.raises(ConfigurationError):
        CrawlerConfig(search_terms=["cafe"], lat=1.0, lng=2.0, max_reviews=-1).validate()


def test_personal_data_options() -> None:
    config = CrawlerConfig(search_terms=["cafe"], lat=1.0, lng=2.0, scrape_reviewer_name=False)

    options = config.personal_data_options

    assert options.reviewer_name is False
    assert options.review_id is True


def test_from_file_ignores_unknown_keys(tmp_path) -> None:
    path = tmp_path / "crawl.json"
    path.write_text(json.dumps({"search_terms": ["cafe"], "city": "Brno", "unknown_option": 1}), encoding="utf-8")

    config = CrawlerConfig.from_file(str(path)).validate()

    assert config.city == "Brno"


def test_from_file_errors(tmp_path) -> None:
    with pytest.raises(ConfigurationError):
        CrawlerConfig.from_file(str(tmp_path / "missing.json"))

    path = tmp_path / "list.json"
    path.write_text("[]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        CrawlerConfig.from_file(str(path))
