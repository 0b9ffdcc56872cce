from __future__ import annotations

import pytest

from territory_sync.territory.resolver import AMBIGUOUS, RESOLVED, PointResolver

pytestmark = pytest.mark.regression


@pytest.mark.parametrize(
    ("lat", "lng", "territory"),
    [
        (34.0522, -118.2437, "California South"),
        (32.7157, -117.1611, "California South"),
        (37.7749, -122.4194, "California North Central"),
        (38.5816, -121.4944, "California North Central"),
    ],
)
def test_california_cities_resolve_to_one_wso(repo_index, lat, lng, territory):
    resolution = PointResolver(repo_index).resolve(lat, lng)

    assert resolution.status == RESOLVED
    assert resolution.territory == territory


def test_split_line_is_ambiguous(repo_index):
    resolution = PointResolver(repo_index).resolve(35.5, -120.5)

    assert resolution.status == AMBIGUOUS
    assert resolution.candidates == ("California North Central", "California South")
