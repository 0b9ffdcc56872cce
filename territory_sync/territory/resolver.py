"""Point to territory resolution: polygon containment first, bounding boxes second."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from territory_sync.common.errors import GeometryError
from territory_sync.common.geometry import point_in_geometry
from territory_sync.common.logging import default_logger, log_event
from territory_sync.common.models import valid_lat_lng
from territory_sync.territory.index import TerritoryIndex

RESOLVED = "resolved"
AMBIGUOUS = "ambiguous"
UNRESOLVED = "unresolved"

METHOD_GEOMETRY = "geometry"
METHOD_BBOX = "bbox"


@dataclass(frozen=True)
class Resolution:
    status: str
    territory: str | None = None
    method: str | None = None
    candidates: tuple[str, ...] = ()
    skipped_geometries: tuple[str, ...] = ()

    @property
    def is_resolved(self) -> bool:
        return self.status == RESOLVED


class PointResolver:
    def __init__(self, index: TerritoryIndex, *, logger: logging.Logger | None = None) -> None:
        self.index = index
        self.logger = logger or default_logger()

    def _geometry_matches(self, lat: float, lng: float) -> tuple[list[str], list[str]]:
        matches: list[str] = []
        skipped: list[str] = []
        for territory in self.index.with_geometry():
            try:
                if point_in_geometry(lat, lng, territory.geometry):
                    matches.append(territory.name)
            except GeometryError as exc:
                skipped.append(territory.name)
                log_event(
                    self.logger,
                    f"skipping malformed geometry for {territory.name}: {exc}",
                    level=logging.WARNING,
                    stage="resolve",
                    territory=territory.name,
                    event="GEOMETRY_SKIPPED",
                    status="warning",
                    error_code=exc.error_code,
                )
        return matches, skipped

    def _bbox_matches(self, lat: float, lng: float) -> list[str]:
        return [territory.name for territory in self.index.with_bbox() if territory.bbox_contains(lat, lng)]

    def resolve(self, lat: float, lng: float) -> Resolution:
        if not valid_lat_lng(lat, lng):
            return Resolution(status=UNRESOLVED)

        geometry_matches, skipped = self._geometry_matches(lat, lng)
        if len(geometry_matches) == 1:
            return Resolution(
                status=RESOLVED,
                territory=geometry_matches[0],
                method=METHOD_GEOMETRY,
                candidates=tuple(geometry_matches),
                skipped_geometries=tuple(skipped),
            )

        # Zero matches happen on shared borders; several mean overlapping data.
        bbox_matches = self._bbox_matches(lat, lng)
        if len(bbox_matches) == 1:
            return Resolution(
                status=RESOLVED,
                territory=bbox_matches[0],
                method=METHOD_BBOX,
                candidates=tuple(bbox_matches),
                skipped_geometries=tuple(skipped),
            )
        if not bbox_matches:
            return Resolution(status=UNRESOLVED, skipped_geometries=tuple(skipped))
        return Resolution(
            status=AMBIGUOUS,
            method=METHOD_BBOX,
            candidates=tuple(sorted(bbox_matches)),
            skipped_geometries=tuple(skipped),
        )
