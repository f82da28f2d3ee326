"""Configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from carparks.common.errors import ConfigError
from carparks.common.fs import read_yaml
from carparks.common.schema import validate_app_config

DEFAULT_CONFIG_PATH = Path("config") / "carparks.yml"


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    base = read_yaml(path) or {}
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path) or {}
    return _deep_merge(base, overlay)


def load_config(
    config_path: Path = DEFAULT_CONFIG_PATH,
    *,
    allow_unknown: bool = False,
    overlay_path: Path | None = None,
) -> dict:
    cfg = _load_yaml_with_overlay(config_path, overlay_path)
    return validate_app_config(cfg, allow_unknown=allow_unknown)


def resolve_api_key(live_feed_config: dict) -> str | None:
    env_name = live_feed_config.get("api_key_env")
    if not env_name:
        return None
    value = os.environ.get(env_name, "").strip()
    return value or None
