"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from carparks.common.errors import ConfigError

SECTION_KEYS = {
    "database": ({"url"}, {"url", "busy_timeout_seconds", "echo"}),
    "cache": ({"ttl_seconds"}, {"ttl_seconds", "cell_size_degrees"}),
    "query": (
        {"search_radius_m", "max_per_page"},
        {"search_radius_m", "default_per_page", "max_per_page", "fetch_chunk_size"},
    ),
    "projection": (
        {
            "origin_lat",
            "origin_lon",
            "false_easting",
            "false_northing",
            "scale_factor",
            "ellipsoid",
            "bounds_wgs84",
        },
        {
            "name",
            "origin_lat",
            "origin_lon",
            "false_easting",
            "false_northing",
            "scale_factor",
            "ellipsoid",
            "bounds_wgs84",
        },
    ),
    "bulk_feed": ({"csv_path", "batch_size"}, {"csv_path", "batch_size", "encoding"}),
    "live_feed": (
        {"url", "items_prefix", "batch_size", "timeout"},
        {"url", "api_key_env", "items_prefix", "batch_size", "timeout", "retry"},
    ),
    "schedule": ({"interval_seconds", "jobs"}, {"interval_seconds", "jobs", "wait_timeout_seconds"}),
    "logging": (set(), {"level", "data_dir"}),
}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    if not isinstance(obj, dict):
        raise ConfigError(f"Expected a mapping for {ctx}")
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_positive(value: object, ctx: str) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
        raise ConfigError(f"{ctx} must be a positive number")


def validate_app_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    if not isinstance(cfg, dict):
        raise ConfigError("Config root must be a mapping")
    top_required = set(SECTION_KEYS) - {"logging"}
    _assert_required_keys(cfg, top_required, "config")
    _assert_no_unknown_keys(cfg, set(SECTION_KEYS), "config", allow_unknown)

    for section, (required, known) in SECTION_KEYS.items():
        if section not in cfg:
            continue
        _assert_required_keys(cfg[section], required, section)
        _assert_no_unknown_keys(cfg[section], known, section, allow_unknown)

    _assert_required_keys(
        cfg["projection"]["bounds_wgs84"],
        {"min_lat", "max_lat", "min_lon", "max_lon"},
        "projection.bounds_wgs84",
    )
    bounds = cfg["projection"]["bounds_wgs84"]
    if bounds["min_lat"] >= bounds["max_lat"] or bounds["min_lon"] >= bounds["max_lon"]:
        raise ConfigError("projection.bounds_wgs84 min values must be below max values")

    _assert_required_keys(cfg["live_feed"]["timeout"], {"connect_seconds", "read_seconds", "total_seconds"}, "live_feed.timeout")
    for key in ("connect_seconds", "read_seconds", "total_seconds"):
        _assert_positive(cfg["live_feed"]["timeout"][key], f"live_feed.timeout.{key}")

    _assert_positive(cfg["query"]["search_radius_m"], "query.search_radius_m")
    _assert_positive(cfg["cache"]["ttl_seconds"], "cache.ttl_seconds")
    _assert_positive(cfg["schedule"]["interval_seconds"], "schedule.interval_seconds")
    for section in ("bulk_feed", "live_feed"):
        batch_size = cfg[section]["batch_size"]
        if not isinstance(batch_size, int) or batch_size < 1:
            raise ConfigError(f"{section}.batch_size must be a positive integer")

    max_per_page = cfg["query"]["max_per_page"]
    if not isinstance(max_per_page, int) or not 1 <= max_per_page <= 100:
        raise ConfigError("query.max_per_page must be an integer between 1 and 100")

    unknown_jobs = set(cfg["schedule"]["jobs"] or []) - {"bulk-import", "availability-sync"}
    if unknown_jobs:
        raise ConfigError(f"Unknown scheduled jobs: {', '.join(sorted(unknown_jobs))}")

    return cfg
