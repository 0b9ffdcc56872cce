"""Territory index: canonical territory names, units, polygons and fallback boxes."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

from territory_sync.common.config_loader import ConfigBundle, territory_source
from territory_sync.common.errors import ConfigurationError, GeometryError
from territory_sync.common.geometry import POLYGON_TYPES, BoundingBox, geometry_bbox, unwrap_geometry
from territory_sync.common.schema import validate_bbox


@dataclass(frozen=True)
class Territory:
    name: str
    units: tuple[str, ...]
    geometry: Mapping[str, Any] | None
    boxes: tuple[BoundingBox, ...]

    @property
    def has_geometry(self) -> bool:
        return self.geometry is not None

    @property
    def bbox(self) -> BoundingBox | None:
        if not self.boxes:
            return None
        merged = self.boxes[0]
        for box in self.boxes[1:]:
            merged = merged.union(box)
        return merged

    def bbox_contains(self, lat: float, lng: float) -> bool:
        return any(box.contains(lat, lng) for box in self.boxes)


def _build_territory(name: str, entry: Mapping[str, Any]) -> Territory:
    if not isinstance(entry, Mapping):
        raise ConfigurationError(f"Territory {name!r} must be a mapping")

    units = tuple(str(unit) for unit in (entry.get("units") or ()))
    if not units:
        raise ConfigurationError(f"Territory {name!r} references zero administrative units")

    geometry = unwrap_geometry(entry.get("geometry"))
    if geometry is not None:
        if not isinstance(geometry, dict) or geometry.get("type") not in POLYGON_TYPES:
            raise ConfigurationError(f"Territory {name!r} geometry must be a Polygon or MultiPolygon")
        geometry = copy.deepcopy(geometry)

    raw_boxes = entry.get("boxes")
    if raw_boxes is None and entry.get("bbox") is not None:
        raw_boxes = [entry["bbox"]]
    boxes: tuple[BoundingBox, ...] = ()
    if raw_boxes:
        boxes = tuple(
            BoundingBox(**validate_bbox(raw, f"territory {name!r} bbox[{idx}]")) for idx, raw in enumerate(raw_boxes)
        )
    elif geometry is not None:
        try:
            boxes = (geometry_bbox(geometry),)
        except GeometryError:
            # Containment skips it too; the territory keeps no fallback box.
            boxes = ()

    if geometry is None and not boxes:
        raise ConfigurationError(f"Territory {name!r} has neither geometry nor bounding box")

    return Territory(name=name, units=units, geometry=geometry, boxes=boxes)


class TerritoryIndex:
    """Immutable lookup over the canonical territory enumeration."""

    def __init__(self, territories: Iterable[Territory]) -> None:
        by_name: dict[str, Territory] = {}
        for territory in territories:
            if territory.name in by_name:
                raise ConfigurationError(f"Duplicate territory: {territory.name}")
            by_name[territory.name] = territory
        if not by_name:
            raise ConfigurationError("Territory index needs at least one territory")
        self._territories = MappingProxyType(by_name)
        self._names = tuple(sorted(by_name))

    @classmethod
    def load(cls, territories: Mapping[str, Mapping[str, Any]]) -> "TerritoryIndex":
        return cls(_build_territory(name, entry) for name, entry in territories.items())

    def all_territory_names(self) -> tuple[str, ...]:
        return self._names

    def get(self, name: str) -> Territory | None:
        return self._territories.get(name)

    def with_geometry(self) -> list[Territory]:
        return [self._territories[name] for name in self._names if self._territories[name].has_geometry]

    def with_bbox(self) -> list[Territory]:
        return [self._territories[name] for name in self._names if self._territories[name].boxes]

    def __contains__(self, name: object) -> bool:
        return name in self._territories

    def __iter__(self) -> Iterator[Territory]:
        return (self._territories[name] for name in self._names)

    def __len__(self) -> int:
        return len(self._names)


def load_territory_index(bundle: ConfigBundle) -> TerritoryIndex:
    return TerritoryIndex.load(territory_source(bundle))
