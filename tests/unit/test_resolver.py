import math

from territory_sync.territory.index import TerritoryIndex
from territory_sync.territory.resolver import AMBIGUOUS, METHOD_BBOX, METHOD_GEOMETRY, RESOLVED, UNRESOLVED, PointResolver


def test_single_polygon_match_resolves_by_geometry(grid_index):
    resolution = PointResolver(grid_index).resolve(5, 5)

    assert resolution.status == RESOLVED
    assert resolution.territory == "Alpha"
    assert resolution.method == METHOD_GEOMETRY


def test_resolution_is_a_pure_function_of_the_point(grid_index):
    resolver = PointResolver(grid_index)

    assert resolver.resolve(5, 15) == resolver.resolve(5, 15)


def test_bbox_fallback_when_no_polygon_matches(grid_index):
    resolution = PointResolver(grid_index).resolve(22, 2)

    assert resolution.status == RESOLVED
    assert resolution.territory == "Gamma"
    assert resolution.method == METHOD_BBOX


def test_overlapping_boxes_are_reported_as_ambiguous(grid_index):
    resolution = PointResolver(grid_index).resolve(27, 7)

    assert resolution.status == AMBIGUOUS
    assert resolution.territory is None
    assert resolution.candidates == ("Delta", "Gamma")


def test_point_outside_everything_is_unresolved(grid_index):
    resolution = PointResolver(grid_index).resolve(60, 60)

    assert resolution.status == UNRESOLVED
    assert resolution.candidates == ()


def test_invalid_coordinates_are_unresolved(grid_index):
    resolver = PointResolver(grid_index)

    assert resolver.resolve(91, 0).status == UNRESOLVED
    assert resolver.resolve(0, -181).status == UNRESOLVED
    assert resolver.resolve(math.nan, 0).status == UNRESOLVED


def test_malformed_geometry_is_skipped_and_bbox_still_answers():
    index = TerritoryIndex.load(
        {
            "Broken": {
                "units": ["X"],
                "geometry": {"type": "Polygon", "coordinates": [[[0, 40], [5, 40]]]},
                "bbox": {"min_lat": 40, "max_lat": 45, "min_lng": 0, "max_lng": 5},
            },
            "Other": {"units": ["Y"], "bbox": {"min_lat": 0, "max_lat": 1, "min_lng": 0, "max_lng": 1}},
        }
    )

    resolution = PointResolver(index).resolve(42, 2)

    assert resolution.status == RESOLVED
    assert resolution.territory == "Broken"
    assert resolution.method == METHOD_BBOX
    assert resolution.skipped_geometries == ("Broken",)


def test_repo_config_resolves_known_cities(repo_index):
    resolver = PointResolver(repo_index)

    assert resolver.resolve(30.2672, -97.7431).territory == "Texas-Oklahoma"
    assert resolver.resolve(36.1627, -86.7816).territory == "Tennessee-Kentucky"
    assert resolver.resolve(35.2271, -80.8431).territory == "Carolina"
    assert resolver.resolve(21.3069, -157.8583).territory == "Hawaii and International"


def test_polygon_match_wins_over_overlapping_boxes():
    index = TerritoryIndex.load(
        {
            "Alpha": {
                "units": ["A"],
                "geometry": {"type": "Polygon", "coordinates": [[[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]]]},
            },
            "Omega": {"units": ["O"], "bbox": {"min_lat": 0, "max_lat": 10, "min_lng": 5, "max_lng": 15}},
        }
    )
    resolver = PointResolver(index)

    inside_both_boxes = resolver.resolve(5, 7)
    only_in_omega = resolver.resolve(5, 12)

    assert inside_both_boxes.status == RESOLVED
    assert inside_both_boxes.territory == "Alpha"
    assert inside_both_boxes.method == METHOD_GEOMETRY
    assert only_in_omega.territory == "Omega"
    assert only_in_omega.method == METHOD_BBOX
