"""Site configuration and data loading for Folio.

Key functions:
- load_config: Loads folio.yaml (or _config.yml) over DEFAULT_CONFIG.
- load_data: Loads site data from YAML files in the data directory.
- find_config_file: Locates the configuration file of a project.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any

import yaml

from .errors import BuildError

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("folio.yaml", "folio.yml", "_config.yml", "_config.yaml")

DEFAULT_CONFIG: dict[str, Any] = {
    "title": "Folio Site",
    "description": "",
    "author": "",
    "url": "",
    "baseurl": "",
    "content_dir": "site",
    "layouts_dir": "site/_layouts",
    "partials_dir": "site/_partials",
    "data_dir": "data",
    "assets_dir": "assets",
    "output_dir": "output",
    "state_file": ".folio/state.json",
    "extensions": [".md", ".markdown", ".html", ".jinja"],
    "default_layout": "default",
    "workers": 4,
    "collections": {
        "posts": {
            "dir": "posts",
            "permalink": "/:year/:month/:day/:slug/",
            "sort_by": "date",
            "reverse": True,
            "layout": "post",
            "paginate": 10,
            "paginate_path": "/page/:num/",
            "index_permalink": "/",
            "index_layout": "home",
        },
    },
    "taxonomies": {
        "tags": {"permalink": "/tags/:slug/", "layout": "tag"},
        "categories": {"permalink": "/categories/:slug/", "layout": "category"},
    },
    "archives": {"permalink": "/archive/:year/", "layout": "archive"},
    "feeds": {"rss": True, "sitemap": True, "limit": 20},
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def find_config_file(project_root: Path) -> Path | None:
    """Return the first configuration file present in project_root."""
    for name in CONFIG_FILENAMES:
        candidate = project_root / name
        if candidate.exists():
            return candidate
    return None


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.

    Raises:
        BuildError: If the configuration file is not valid YAML.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = find_config_file(project_root)
    if config_path is None:
        return config
    with open(config_path, encoding="utf-8") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise BuildError(config_path, f"Invalid configuration: {exc}", exc) from exc
    if not isinstance(loaded, dict):
        logger.warning("Ignoring %s: top level is not a mapping", config_path.name)
        return config
    return _deep_merge(config, loaded)


def load_data(data_dir: Path) -> dict[str, Any]:
    """Load site data from YAML files in the data directory.

    Keys from site.yaml merge at the top level; every other file is stored
    under its stem.

    Args:
        data_dir: Directory holding the data files.

    Returns:
        Dictionary containing merged data from all YAML files.
    """
    data: dict[str, Any] = {}
    if not data_dir.exists():
        return data
    for path in data_files(data_dir):
        with open(path, encoding="utf-8") as f:
            try:
                payload = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise BuildError(path, f"Invalid data file: {exc}", exc) from exc
        if payload is None:
            continue
        if path.stem == "site":
            if isinstance(payload, dict):
                data.update(payload)
            continue
        data[path.stem] = payload
    return data


def data_files(data_dir: Path) -> list[Path]:
    """List the data files of a data directory in load order."""
    if not data_dir.exists():
        return []
    return sorted(
        p for p in data_dir.iterdir() if p.is_file() and p.suffix in (".yaml", ".yml")
    )
