import json

from gmaps_crawler.cli import build_parser, load_config, main


def test_command_line_overrides_the_config_file(tmp_path) -> None:
    path = tmp_path / "crawl.json"
    path.write_text(json.dumps({"search_terms": ["cafe"], "city": "Brno", "max_reviews": 5}), encoding="utf-8")

    args = build_parser().parse_args(["-c", str(path), "--city", "Prague", "--max-places", "20", "--headful"])
    config = load_config(args)

    assert config.search_terms == ["cafe"]
    assert config.city == "Prague"
    assert config.max_reviews == 5
    assert config.max_crawled_places == 20
    assert config.headless is False


def test_unset_flags_keep_defaults() -> None:
    args = build_parser().parse_args(["-s", "lawyers", "-s", "notaries", "--lat", "50.08", "--lng", "14.42"])
    config = load_config(args)

    assert config.search_terms == ["lawyers", "notaries"]
    assert config.headless is True
    assert config.export_place_urls is False
    assert config.debug is False


def test_main_reports_configuration_errors(capsys) -> None:
    assert main([]) == 1
    assert "Error:" in capsys.readouterr().err
