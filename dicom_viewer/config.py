"""
config.py - Configuration loader for the DICOM viewer core.

Loads settings from config.yaml with sensible defaults so that no
rendering, view or playback parameter is hard-coded inside a module.
"""

import logging
import os
from typing import Any

import yaml

logger = logging.getLogger(__name__)

# config.yaml sits next to the package, independent of the working directory
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_CONFIG_PATH = os.path.join(_REPO_ROOT, "config.yaml")

_DEFAULTS: dict[str, Any] = {
    "paths": {
        "input_folder": "data/raw",
        "reports_folder": "reports",
        "session_file": "data/session.yaml",
    },
    "render": {
        "default_window": 400.0,
        "default_level": 50.0,
        "placeholder": {
            "width": 512,
            "height": 512,
            "background": "#1a1a1a",
            "text_color": "#ffffff",
        },
        "cache_size": 32,
    },
    "view": {
        "zoom_min": 0.5,
        "zoom_max": 5.0,
        "zoom_step": 0.1,
    },
    "playback": {
        "fps": 10,
    },
    "loader": {
        "extensions": [".dcm", ".dicom", ".ct", ".mri", ".xray"],
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Overlay *override* on *base* section by section; neither input is modified."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = _deep_merge(current, value)
        merged[key] = value
    return merged


def load_config(config_path: str = _CONFIG_PATH) -> dict[str, Any]:
    """
    Read viewer settings from *config_path* on top of the built-in defaults.

    A missing file gives the defaults unchanged.  A file whose top level is
    not a mapping is ignored with a warning.
    """
    if not os.path.exists(config_path):
        return _deep_merge(_DEFAULTS, {})

    with open(config_path, "r") as f:
        overrides = yaml.safe_load(f)
    if overrides is None:
        overrides = {}
    if not isinstance(overrides, dict):
        logger.warning("Ignoring %s: expected a mapping, got %s", config_path, type(overrides).__name__)
        overrides = {}
    logger.debug("Loaded viewer settings from %s", config_path)
    return _deep_merge(_DEFAULTS, overrides)


# Module-level singleton so callers can just do `from dicom_viewer.config import CONFIG`
CONFIG = load_config()
