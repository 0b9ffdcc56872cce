from __future__ import annotations

from pathlib import Path

import pytest

from territory_sync.common.config_loader import load_all_configs
from territory_sync.store.memory import MemoryStore
from territory_sync.territory.index import TerritoryIndex, load_territory_index


def _square(min_lng: float, min_lat: float, max_lng: float, max_lat: float) -> list:
    return [[[min_lng, min_lat], [max_lng, min_lat], [max_lng, max_lat], [min_lng, max_lat], [min_lng, min_lat]]]


@pytest.fixture
def grid_index() -> TerritoryIndex:
    return TerritoryIndex.load(
        {
            "Alpha": {"units": ["A"], "geometry": {"type": "Polygon", "coordinates": _square(0, 0, 10, 10)}},
            "Beta": {"units": ["B"], "geometry": {"type": "Polygon", "coordinates": _square(10, 0, 20, 10)}},
            "Gamma": {"units": ["G"], "bbox": {"min_lat": 20, "max_lat": 30, "min_lng": 0, "max_lng": 10}},
            "Delta": {"units": ["D"], "bbox": {"min_lat": 25, "max_lat": 35, "min_lng": 5, "max_lng": 15}},
        }
    )


@pytest.fixture
def repo_bundle():
    return load_all_configs(Path("config"))


@pytest.fixture
def repo_index(repo_bundle) -> TerritoryIndex:
    return load_territory_index(repo_bundle)


@pytest.fixture
def meets_entities() -> dict:
    return {
        "meets": {
            "table": "usaw_meets",
            "key": "meet_id",
            "label": "wso_geography",
            "latitude": "latitude",
            "longitude": "longitude",
            "address": "address",
            "derived": [
                {"table": "usaw_meet_results", "key": "result_id", "foreign_key": "meet_id", "label": "wso"},
            ],
        }
    }


@pytest.fixture
def places_entities() -> dict:
    return {
        "places": {
            "table": "places",
            "key": "id",
            "label": "label",
            "latitude": "lat",
            "longitude": "lng",
            "address": "address",
            "derived": [{"table": "place_copies", "key": "copy_id", "foreign_key": "place_id", "label": "label"}],
        }
    }


@pytest.fixture
def places_store() -> MemoryStore:
    """Rows laid out against ``grid_index``: Alpha near (5, 5), Beta near (5, 15), Gamma/Delta overlap at (27, 7)."""
    return MemoryStore(
        {
            "places": [
                {"id": 1, "label": "Alpha", "lat": 5.0, "lng": 5.0, "address": "1 First St"},
                {"id": 2, "label": "Alfa", "lat": 5.0, "lng": 15.0, "address": "2 Second St"},
                {"id": 3, "label": "Alpha", "lat": 5.0, "lng": 15.0, "address": "3 Third St"},
                {"id": 4, "label": None, "lat": None, "lng": None, "address": "4 Fourth St"},
                {"id": 5, "label": "Beta", "lat": 5.0, "lng": 15.0, "address": "5 Fifth St"},
                {"id": 6, "label": "Bogus", "lat": None, "lng": None, "address": "6 Sixth St"},
                {"id": 7, "label": "Bogus", "lat": 27.0, "lng": 7.0, "address": "7 Seventh St"},
            ],
            "place_copies": [
                {"copy_id": 10, "place_id": 1, "label": "Alpha"},
                {"copy_id": 11, "place_id": 1, "label": None},
                {"copy_id": 20, "place_id": 2, "label": "Alfa"},
                {"copy_id": 50, "place_id": 5, "label": "Beta"},
            ],
        }
    )
