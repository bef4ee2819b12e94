import json
from datetime import date

import pytest

from gitstrata.config import (
    DATE_PRESETS,
    ConfigResolver,
    find_config_file,
    load_config_file,
    preset_date_range,
)

TODAY = date(2025, 6, 15)


def test_load_config_file_yaml_and_json(tmp_path):
    y = tmp_path / ".git-strata.yaml"
    y.write_text("store-backend: duckdb\nexclude:\n  - '*.lock'\n", encoding="utf-8")
    assert load_config_file(str(y)) == {"store-backend": "duckdb", "exclude": ["*.lock"]}

    j = tmp_path / "config.json"
    j.write_text(json.dumps({"batch_size": 100}), encoding="utf-8")
    assert load_config_file(str(j)) == {"batch_size": 100}


def test_load_config_file_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config_file(str(tmp_path / "missing.yaml"))

    bad = tmp_path / "config.toml"
    bad.touch()
    with pytest.raises(ValueError):
        load_config_file(str(bad))

    not_mapping = tmp_path / "list.yaml"
    not_mapping.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config_file(str(not_mapping))


def test_load_empty_yaml_is_empty_config(tmp_path):
    empty = tmp_path / "empty.yml"
    empty.write_text("", encoding="utf-8")
    assert load_config_file(str(empty)) == {}


def test_find_config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    repo = tmp_path / "repo"
    repo.mkdir()
    assert find_config_file(str(repo)) is None

    cwd_config = tmp_path / ".git-strata.json"
    cwd_config.write_text("{}", encoding="utf-8")
    assert find_config_file(str(repo)) == str(cwd_config)

    repo_config = repo / ".git-strata.yml"
    repo_config.write_text("limit: 5\n", encoding="utf-8")
    assert find_config_file(str(repo)) == str(repo_config)


@pytest.mark.parametrize(
    "name,expected_from",
    [("30d", "2025-05-16"), ("90d", "2025-03-17"), ("6mo", "2024-12-15"), ("1yr", "2024-06-15"), ("all", "1970-01-01")],
)
def test_preset_date_range(name, expected_from):
    assert preset_date_range(name, TODAY) == (expected_from, "2025-06-16")


def test_preset_date_range_unknown():
    with pytest.raises(ValueError):
        preset_date_range("2wk", TODAY)
    assert set(DATE_PRESETS) == {"30d", "90d", "6mo", "1yr", "all"}


def test_resolver_precedence(tmp_path):
    config = tmp_path / "c.yaml"
    config.write_text("batch-size: 50\nlimit: 20\nmin_count: 3\n", encoding="utf-8")

    resolver = ConfigResolver({"limit": 5, "min_count": None}, str(config), None, str(tmp_path), today=TODAY)

    assert resolver.get("limit") == 5
    assert resolver.get("batch_size") == 50
    assert resolver.get("min_count") == 3
    assert resolver.get("store_backend") == "sqlite"
    assert resolver.get("unknown_key", "fallback") == "fallback"


def test_resolver_default_range_is_six_months(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    resolver = ConfigResolver({}, None, None, str(tmp_path), today=TODAY)
    assert resolver.range_preset == "6mo"
    assert resolver.date_range() == ("2024-12-15", "2025-06-16")


def test_resolver_date_range_sources(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = tmp_path / ".git-strata.yaml"
    config.write_text("from: 2025-01-01\nto: 2025-02-01\n", encoding="utf-8")

    # Config bounds beat the default preset (YAML dates come back as date objects).
    resolver = ConfigResolver({}, None, None, str(tmp_path), today=TODAY)
    assert resolver.config_source == str(config)
    assert resolver.date_range() == ("2025-01-01", "2025-02-01")

    # A --range on the command line beats config bounds.
    resolver = ConfigResolver({"range": "30d"}, None, "30d", str(tmp_path), today=TODAY)
    assert resolver.date_range() == ("2025-05-16", "2025-06-16")

    # Explicit --from wins over everything.
    resolver = ConfigResolver({"range": "30d", "from": "2025-05-01"}, None, "30d", str(tmp_path), today=TODAY)
    assert resolver.date_range() == ("2025-05-01", "2025-06-16")


def test_resolver_range_from_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".git-strata.json").write_text('{"range": "all"}', encoding="utf-8")
    resolver = ConfigResolver({}, None, None, str(tmp_path), today=TODAY)
    assert resolver.date_range() == ("1970-01-01", "2025-06-16")


def test_resolver_exclude_globs(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = tmp_path / "c.yaml"
    config.write_text("exclude: '*.lock'\n", encoding="utf-8")

    assert ConfigResolver({}, str(config), None, None).exclude_globs() == ("*.lock",)
    assert ConfigResolver({"exclude": ()}, str(config), None, None).exclude_globs() == ("*.lock",)
    assert ConfigResolver({"exclude": ("vendor/*",)}, str(config), None, None).exclude_globs() == ("vendor/*",)
