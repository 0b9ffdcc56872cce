"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from territory_sync.common.errors import ConfigurationError

BBOX_KEYS = {"min_lat", "max_lat", "min_lng", "max_lng"}
STORE_KINDS = {"postgrest", "snapshot"}


def _assert_mapping(obj, ctx: str) -> None:
    if not isinstance(obj, dict):
        raise ConfigurationError(f"{ctx} must be a mapping")


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    _assert_mapping(obj, ctx)
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigurationError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigurationError(f"Unknown keys in {ctx}: {unknown_str}")


def validate_bbox(bbox: dict, ctx: str) -> dict:
    _assert_required_keys(bbox, BBOX_KEYS, ctx)
    try:
        values = {key: float(bbox[key]) for key in BBOX_KEYS}
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Non-numeric bounds in {ctx}") from exc
    if values["min_lat"] > values["max_lat"] or values["min_lng"] > values["max_lng"]:
        raise ConfigurationError(f"Inverted bounds in {ctx}")
    if not (-90 <= values["min_lat"] and values["max_lat"] <= 90):
        raise ConfigurationError(f"Latitude out of range in {ctx}")
    if not (-180 <= values["min_lng"] and values["max_lng"] <= 180):
        raise ConfigurationError(f"Longitude out of range in {ctx}")
    return values


def validate_territories_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    required = {"version", "units", "territories"}
    _assert_required_keys(cfg, required, "territories config")
    _assert_no_unknown_keys(cfg, required | {"geometry_dir"}, "territories config", allow_unknown)

    _assert_mapping(cfg["units"], "units")
    for unit, bbox in cfg["units"].items():
        validate_bbox(bbox, f"units.{unit}")

    territories = cfg["territories"]
    if not isinstance(territories, dict) or not territories:
        raise ConfigurationError("territories must be a non-empty mapping")

    for name, entry in territories.items():
        ctx = f"territories.{name}"
        _assert_required_keys(entry, {"units"}, ctx)
        _assert_no_unknown_keys(entry, {"units", "bbox", "geometry_file"}, ctx, allow_unknown)
        units = entry["units"]
        if not isinstance(units, list) or not units:
            raise ConfigurationError(f"{ctx}.units must reference at least one administrative unit")
        if "bbox" in entry:
            validate_bbox(entry["bbox"], f"{ctx}.bbox")
            continue
        unknown_units = [unit for unit in units if unit not in cfg["units"]]
        if unknown_units:
            raise ConfigurationError(f"{ctx} references unknown units: {', '.join(unknown_units)}")

    return cfg


def validate_entity_config(name: str, cfg: dict, *, allow_unknown: bool = False) -> dict:
    ctx = f"entities.{name}"
    required = {"table", "key", "label", "latitude", "longitude", "address"}
    optional = {"name", "status", "error", "precision", "display_name", "skip_international", "derived"}
    _assert_required_keys(cfg, required, ctx)
    _assert_no_unknown_keys(cfg, required | optional, ctx, allow_unknown)

    derived = cfg.get("derived") or []
    if not isinstance(derived, list):
        raise ConfigurationError(f"{ctx}.derived must be a list")
    for idx, item in enumerate(derived):
        derived_required = {"table", "key", "foreign_key", "label"}
        _assert_required_keys(item, derived_required, f"{ctx}.derived[{idx}]")
        _assert_no_unknown_keys(item, derived_required, f"{ctx}.derived[{idx}]", allow_unknown)
    return cfg


def validate_pipeline_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    required = {"store", "geocoder", "entities"}
    _assert_required_keys(cfg, required, "pipeline config")
    _assert_no_unknown_keys(cfg, required | {"repair"}, "pipeline config", allow_unknown)

    _assert_required_keys(cfg["store"], {"kind", "page_size"}, "store")
    if cfg["store"]["kind"] not in STORE_KINDS:
        raise ConfigurationError(f"Unsupported store kind: {cfg['store']['kind']}")
    if int(cfg["store"]["page_size"]) <= 0:
        raise ConfigurationError("store.page_size must be positive")

    _assert_required_keys(cfg["geocoder"], {"endpoint"}, "geocoder")

    entities = cfg["entities"]
    if not isinstance(entities, dict) or not entities:
        raise ConfigurationError("entities must be a non-empty mapping")
    for name, entity_cfg in entities.items():
        validate_entity_config(name, entity_cfg, allow_unknown=allow_unknown)
    return cfg
