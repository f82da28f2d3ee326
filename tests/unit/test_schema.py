import copy
from pathlib import Path

import pytest

from carparks.common.errors import ConfigError
from carparks.common.fs import read_yaml
from carparks.common.schema import validate_app_config

BASE_CONFIG = read_yaml(Path("config") / "carparks.yml")


def _config():
    return copy.deepcopy(BASE_CONFIG)


def test_validate_app_config_accepts_repo_config():
    validated = validate_app_config(_config())
    assert validated["projection"]["name"] == "SVY21"


def test_validate_app_config_rejects_unknown_top_level_key():
    bad = _config()
    bad["unexpected"] = True
    with pytest.raises(ConfigError):
        validate_app_config(bad)


def test_validate_app_config_allows_unknown_when_enabled():
    okay = _config()
    okay["extra"] = 1
    okay["cache"]["extra"] = 2
    validate_app_config(okay, allow_unknown=True)


def test_validate_app_config_logging_section_is_optional():
    cfg = _config()
    del cfg["logging"]
    validate_app_config(cfg)


@pytest.mark.parametrize(
    "section,key,value",
    [
        ("query", "search_radius_m", 0),
        ("query", "max_per_page", 101),
        ("cache", "ttl_seconds", -1),
        ("bulk_feed", "batch_size", 0),
        ("live_feed", "batch_size", 1.5),
        ("schedule", "jobs", ["reindex-everything"]),
    ],
)
def test_validate_app_config_rejects_bad_values(section, key, value):
    bad = _config()
    bad[section][key] = value
    with pytest.raises(ConfigError):
        validate_app_config(bad)


def test_validate_app_config_rejects_inverted_bounds():
    bad = _config()
    bad["projection"]["bounds_wgs84"]["min_lat"] = 2.0
    with pytest.raises(ConfigError):
        validate_app_config(bad)


def test_validate_app_config_rejects_missing_timeout_key():
    bad = _config()
    del bad["live_feed"]["timeout"]["total_seconds"]
    with pytest.raises(ConfigError):
        validate_app_config(bad)
