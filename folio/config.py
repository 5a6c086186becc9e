"""Site configuration for Folio.

Configuration is read from ``folio.yaml`` at the project root and merged over
``DEFAULT_CONFIG``. A handful of environment variables override the site
section so deployments can re-brand a build without editing the file.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "folio.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "content_dir": "content/blog",
    "output_dir": "output",
    "static_dir": "static",
    "data_dir": "data",
    "layouts_dir": "layouts",
    "port": 4000,
    "root_url": "",
    "site": {
        "title": "",
        "description": "",
        "url": "",
        "language": "en-us",
    },
    "markdown": {
        "heading_ids": False,
        "diagram_languages": ["mermaid"],
    },
    "diagrams": {
        "renderer": "client",
    },
    "math": {
        "macros": {
            "\\RR": "\\mathbb{R}",
            "\\NN": "\\mathbb{N}",
            "\\ZZ": "\\mathbb{Z}",
        },
    },
}

# Environment variable -> key inside the "site" section
SITE_ENV_OVERRIDES = {
    "FOLIO_SITE_URL": "url",
    "FOLIO_SITE_TITLE": "title",
    "FOLIO_SITE_DESCRIPTION": "description",
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from folio.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = project_root / CONFIG_FILENAME
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            logger.warning("Ignoring malformed %s: %s", config_path, exc)
            loaded = {}
        if isinstance(loaded, dict):
            _merge(config, loaded)
        else:
            logger.warning("Ignoring %s: top level is not a mapping", config_path)

    if not isinstance(config.get("site"), dict):
        config["site"] = copy.deepcopy(DEFAULT_CONFIG["site"])
    for env_name, key in SITE_ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            config["site"][key] = value
    return config
