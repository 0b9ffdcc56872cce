"""Geometry helpers for GeoJSON-like polygons.

Positions follow GeoJSON order, ``[lng, lat]``. A polygon is a list of rings;
the first ring is the outer boundary and any following rings are holes.
Containment uses the even-odd ray casting rule, so ring winding order does not
matter.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable

from territory_sync.common.errors import GeometryError

POLYGON_TYPES = ("Polygon", "MultiPolygon")


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng

    def union(self, other: "BoundingBox") -> "BoundingBox":
        return BoundingBox(
            min_lat=min(self.min_lat, other.min_lat),
            max_lat=max(self.max_lat, other.max_lat),
            min_lng=min(self.min_lng, other.min_lng),
            max_lng=max(self.max_lng, other.max_lng),
        )


def unwrap_geometry(payload: Any) -> Any:
    """Return the geometry object inside a Feature or FeatureCollection.

    Anything that is not a mapping comes back unchanged for the caller to reject.
    """
    if not isinstance(payload, dict):
        return payload
    kind = payload.get("type")
    if kind == "FeatureCollection":
        features = payload.get("features") or []
        if not features:
            return None
        return unwrap_geometry(features[0])
    if kind == "Feature":
        return payload.get("geometry")
    return payload


def _position(value: Any) -> tuple[float, float]:
    if not isinstance(value, (list, tuple)) or len(value) < 2:
        raise GeometryError(f"Invalid position: {value!r}")
    try:
        lng = float(value[0])
        lat = float(value[1])
    except (TypeError, ValueError) as exc:
        raise GeometryError(f"Non-numeric position: {value!r}") from exc
    if math.isnan(lng) or math.isnan(lat):
        raise GeometryError(f"NaN position: {value!r}")
    return lng, lat


def _ring_positions(ring: Any) -> list[tuple[float, float]]:
    if not isinstance(ring, (list, tuple)):
        raise GeometryError("Ring must be a list of positions")
    positions = [_position(value) for value in ring]
    if len(positions) > 1 and positions[0] == positions[-1]:
        positions = positions[:-1]
    if len(positions) < 3:
        raise GeometryError(f"Ring has {len(positions)} distinct positions, need at least 3")
    return positions


def point_in_ring(lat: float, lng: float, ring: Any) -> bool:
    positions = _ring_positions(ring)
    inside = False
    j = len(positions) - 1
    for i in range(len(positions)):
        xi, yi = positions[i]
        xj, yj = positions[j]
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < x_cross:
                inside = not inside
        j = i
    return inside


def point_in_polygon(lat: float, lng: float, rings: Any) -> bool:
    if not isinstance(rings, (list, tuple)) or not rings:
        raise GeometryError("Polygon must contain at least one ring")
    if not point_in_ring(lat, lng, rings[0]):
        return False
    for hole in rings[1:]:
        if point_in_ring(lat, lng, hole):
            return False
    return True


def _polygons(geometry: dict[str, Any]) -> Iterable[Any]:
    if not isinstance(geometry, dict):
        raise GeometryError("Geometry must be a mapping")
    kind = geometry.get("type")
    coordinates = geometry.get("coordinates")
    if kind == "Polygon":
        return [coordinates]
    if kind == "MultiPolygon":
        if not isinstance(coordinates, (list, tuple)) or not coordinates:
            raise GeometryError("MultiPolygon must contain at least one polygon")
        return coordinates
    raise GeometryError(f"Unsupported geometry type: {kind}")


def point_in_geometry(lat: float, lng: float, geometry: dict[str, Any]) -> bool:
    """Containment test; a MultiPolygon is the union of its polygons."""
    return any(point_in_polygon(lat, lng, polygon) for polygon in _polygons(geometry))


def geometry_bbox(geometry: dict[str, Any]) -> BoundingBox:
    lats: list[float] = []
    lngs: list[float] = []
    for polygon in _polygons(geometry):
        if not isinstance(polygon, (list, tuple)) or not polygon:
            raise GeometryError("Polygon must contain at least one ring")
        # Holes sit inside the outer ring, so it alone bounds the polygon.
        for lng, lat in _ring_positions(polygon[0]):
            lats.append(lat)
            lngs.append(lng)
    return BoundingBox(min_lat=min(lats), max_lat=max(lats), min_lng=min(lngs), max_lng=max(lngs))
