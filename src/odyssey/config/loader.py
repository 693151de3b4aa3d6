# src/odyssey/config/loader.py
"""
Config loader utilities.

Knows how to find and load `settings.yaml` (shipped next to this file), or an
alternative file pointed to by ODYSSEY_SETTINGS_FILE. Values missing from the
file fall back to DEFAULT_SETTINGS, so a partial YAML is fine.

Turning these numbers into objects (windows, timedeltas, ...) is left to the
composition root in `odyssey.main`.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "scheduler": {
        "period_seconds": 60.0,
        "reasoning_timeout_seconds": 30.0,
        "activity_nudges_enabled": False,
        "activity_min_spacing_minutes": 10.0,
        "activity_trigger_labels": ["faucet"],
    },
    "stabilizer": {
        "streak_threshold": 7,
        "max_buffer_events": 2000,
    },
    "hydration": {
        "default_goal_ml": 2000,
        "default_window": {"start_hour": 8, "end_hour": 22},
    },
    "context": {
        "activity_lookback_hours": 3.0,
        "calendar_lookback_hours": 3.0,
        "calendar_lookahead_hours": 3.0,
        "max_activity_lines": 10,
        "max_calendar_lines": 8,
    },
    "nudge": {
        "max_chars": 140,
        "retention_days": 7,
        "suggest_amount_below_gap_ml": -200,
    },
    "lm": {
        "model": "openai/gpt-4o-mini",
        "temperature": 0.7,
        "max_tokens": 1024,
    },
}


# ---------------------------------------------------------------------------
# path resolution utilities
# ---------------------------------------------------------------------------

def _package_config_dir() -> Path:
    """
    Return the default path to the config directory inside the package.
    We assume this file lives at: src/odyssey/config/loader.py
    """
    return Path(__file__).resolve().parent


def _resolve_yaml_path(filename: str, env_var: str | None = None) -> Path:
    """
    1. If `env_var` is set in the environment, use that path.
    2. Otherwise, fall back to the package's config dir.
    """
    if env_var:
        env_value = os.getenv(env_var)
        if env_value:
            return Path(env_value).expanduser().resolve()
    return _package_config_dir() / filename


def _load_yaml(path: Path) -> Dict[str, Any]:
    """
    Load a YAML file from the given path.
    Raises FileNotFoundError if the file is missing.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# ---------------------------------------------------------------------------
# public config loaders
# ---------------------------------------------------------------------------

def load_settings_yaml() -> Dict[str, Any]:
    """
    Load `settings.yaml`, using ODYSSEY_SETTINGS_FILE if set.

    Expected shape (every key optional):
    {
        "scheduler": {"period_seconds": 60, ...},
        "stabilizer": {"streak_threshold": 7, ...},
        "hydration": {"default_goal_ml": 2000, "default_window": {...}},
        "context": {...},
        "nudge": {...},
        "lm": {"model": "openai/gpt-4o-mini", ...}
    }
    """
    path = _resolve_yaml_path("settings.yaml", env_var="ODYSSEY_SETTINGS_FILE")
    return _load_yaml(path)


def get_settings() -> Dict[str, Any]:
    """
    Return the effective settings: DEFAULT_SETTINGS overlaid with the YAML.

    A missing or unreadable file is not an error; we log and run on defaults.
    """
    try:
        raw = load_settings_yaml()
    except FileNotFoundError as exc:
        logger.warning("%s; using default settings", exc)
        raw = {}
    except yaml.YAMLError as exc:
        logger.error("invalid settings YAML (%s); using default settings", exc)
        raw = {}
    if not isinstance(raw, dict):
        logger.error("settings YAML must be a mapping, got %s; using defaults", type(raw).__name__)
        raw = {}
    return _deep_merge(DEFAULT_SETTINGS, raw)


# ---------------------------------------------------------------------------
# convenience helpers
# ---------------------------------------------------------------------------

def get_section(name: str) -> Dict[str, Any]:
    """Return one top-level section of the effective settings (or {})."""
    return get_settings().get(name, {}) or {}
