"""Data models used across the pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any


def safe_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(out):
        return None
    return out


def valid_lat_lng(lat: float | None, lng: float | None) -> bool:
    if lat is None or lng is None:
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    @classmethod
    def parse(cls, lat: Any, lng: Any) -> "Coordinate | None":
        parsed_lat = safe_float(lat)
        parsed_lng = safe_float(lng)
        if not valid_lat_lng(parsed_lat, parsed_lng):
            return None
        return cls(lat=parsed_lat, lng=parsed_lng)


@dataclass(frozen=True)
class LocationRecord:
    entity: str
    record_id: Any
    address: str | None
    name: str | None
    coordinate: Coordinate | None
    territory: str | None
    geocode_status: str | None
    geocode_error: str | None
    precision_score: int | None
    display_name: str | None = None

    @classmethod
    def from_row(cls, entity: str, row: dict, entity_config: dict) -> "LocationRecord":
        def _col(option: str):
            column = entity_config.get(option)
            if not column:
                return None
            return row.get(column)

        precision = safe_float(_col("precision"))
        return cls(
            entity=entity,
            record_id=row.get(entity_config["key"]),
            address=_col("address"),
            name=_col("name"),
            coordinate=Coordinate.parse(_col("latitude"), _col("longitude")),
            territory=row.get(entity_config["label"]),
            geocode_status=_col("status"),
            geocode_error=_col("error"),
            precision_score=int(precision) if precision is not None else None,
            display_name=_col("display_name"),
        )
