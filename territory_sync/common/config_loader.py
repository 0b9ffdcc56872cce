"""Configuration loading and validation."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from territory_sync.common.errors import ConfigurationError
from territory_sync.common.fs import read_json, read_yaml
from territory_sync.common.schema import validate_pipeline_config, validate_territories_config

_SLUG_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class ConfigBundle:
    territories: dict
    pipeline: dict
    config_dir: Path


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
        raise ConfigurationError(f"Missing config file: {path}")
    base = read_yaml(path)
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if overlay is None:
        return base
    if not isinstance(overlay, dict):
        raise ConfigurationError(f"Overlay config must be a mapping: {overlay_path}")
    return _deep_merge(base, overlay)


def load_all_configs(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> ConfigBundle:
    def _overlay(name: str) -> Path | None:
        return (overlay_config_dir / name) if overlay_config_dir is not None else None

    territories = validate_territories_config(
        _load_yaml_with_overlay(config_dir / "territories.yml", _overlay("territories.yml")),
        allow_unknown=allow_unknown,
    )
    pipeline = validate_pipeline_config(
        _load_yaml_with_overlay(config_dir / "pipeline.yml", _overlay("pipeline.yml")),
        allow_unknown=allow_unknown,
    )
    return ConfigBundle(territories=territories, pipeline=pipeline, config_dir=config_dir)


def resolve_entities(bundle: ConfigBundle, target: str) -> list[str]:
    entities = list(bundle.pipeline["entities"])
    if target == "all":
        return entities
    if target not in bundle.pipeline["entities"]:
        raise ConfigurationError(f"Unknown entity: {target}")
    return [target]


def territory_slug(name: str) -> str:
    return _SLUG_RE.sub("_", name.lower()).strip("_")


def _load_geometry_file(path: Path) -> dict | None:
    if not path.exists():
        return None
    try:
        payload = read_json(path)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid GeoJSON file: {path}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"GeoJSON root must be an object: {path}")
    return payload


def territory_source(bundle: ConfigBundle) -> dict[str, dict]:
    """Mapping of territory name to units, fallback boxes and optional geometry.

    An explicit ``bbox`` replaces the unit boxes; otherwise each unit
    contributes its own box.
    """
    cfg = bundle.territories
    units_bbox = cfg["units"]
    geometry_dir = cfg.get("geometry_dir")
    geometry_root = (bundle.config_dir / geometry_dir) if geometry_dir else None

    source: dict[str, dict] = {}
    for name, entry in cfg["territories"].items():
        if entry.get("bbox") is not None:
            boxes = [entry["bbox"]]
        else:
            boxes = [units_bbox[unit] for unit in entry["units"] if unit in units_bbox]

        geometry = None
        if geometry_root is not None:
            filename = entry.get("geometry_file") or f"{territory_slug(name)}.geojson"
            geometry = _load_geometry_file(geometry_root / filename)

        source[name] = {"units": list(entry["units"]), "boxes": boxes, "geometry": geometry}
    return source


def store_credentials(store_cfg: dict) -> tuple[str, str]:
    url_env = store_cfg.get("url_env", "SUPABASE_URL")
    key_env = store_cfg.get("key_env", "SUPABASE_SECRET_KEY")
    url = os.environ.get(url_env)
    key = os.environ.get(key_env)
    if not url or not key:
        raise ConfigurationError(f"Store credentials missing; set {url_env} and {key_env}")
    return url, key
