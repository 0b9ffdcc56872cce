from __future__ import annotations

import threading

import pytest

from territory_sync.common.errors import NoMatch, ProviderSemanticError, StageError, StoreError
from territory_sync.geocode.orchestrator import GeocodeOrchestrator
from territory_sync.geocode.provider import GeocodeHit
from territory_sync.geocode.runner import run_geocode
from territory_sync.store.memory import MemoryStore
from territory_sync.territory.resolver import PointResolver

pytestmark = pytest.mark.integration

HITS = {
    "Austin": GeocodeHit(lat=30.2672, lng=-97.7431, display_name="Main St, Austin, Texas, 78701, United States"),
    "Honolulu": GeocodeHit(lat=21.3069, lng=-157.8583, display_name="Honolulu, Hawaii, United States"),
    "Rio": GeocodeHit(lat=34.0522, lng=-118.2437, display_name="Los Angeles, California, United States"),
    "Templeton": GeocodeHit(lat=35.5, lng=-120.5, display_name="Templeton, California, United States"),
}


class TownGeocoder:
    def __init__(self):
        self.lock = threading.Lock()
        self.queries: list[str] = []

    def geocode(self, address: str) -> GeocodeHit:
        with self.lock:
            self.queries.append(address)
        for town, hit in HITS.items():
            if town in address:
                return hit
        raise NoMatch(f"no result for {address}")

    def close(self) -> None:
        pass


def _meets_store() -> MemoryStore:
    base = {"geocode_status": None, "geocode_error": None, "geocode_precision_score": None, "geocode_display_name": None}
    rows = [
        {"meet_id": 1, "Meet": "Texas Open", "address": "1200 Main St, Austin, TX 78701", "wso_geography": None},
        {"meet_id": 2, "Meet": "Aloha Classic", "address": "Honolulu, HI", "wso_geography": None},
        {"meet_id": 3, "Meet": "Ghost Meet", "address": "Nowhere Land", "wso_geography": "Carolina"},
        {"meet_id": 4, "Meet": "Rio Pan Am Qualifier", "address": "Rio Hotel, Brazil", "wso_geography": "Florida"},
        {
            "meet_id": 5,
            "Meet": "Carolina Cup",
            "address": "600 E 4th St, Charlotte, NC 28202",
            "wso_geography": "Carolina",
            "latitude": 35.2271,
            "longitude": -80.8431,
            "geocode_status": "success",
            "geocode_precision_score": 8,
        },
        {"meet_id": 6, "Meet": "Address Unknown", "address": None, "wso_geography": None},
        {"meet_id": 7, "Meet": "Central Coast Open", "address": "Templeton, CA", "wso_geography": "California South"},
    ]
    meets = []
    for row in rows:
        merged = dict(base, latitude=None, longitude=None)
        merged.update(row)
        meets.append(merged)
    return MemoryStore({"usaw_meets": meets})


def _run(store, repo_index, repo_bundle, **kwargs):
    geocoder = TownGeocoder()
    orchestrator = GeocodeOrchestrator(geocoder, variant_generator=lambda raw: [raw], sleep=lambda _s: None)
    report = run_geocode(
        store=store,
        resolver=PointResolver(repo_index),
        orchestrator=orchestrator,
        entities={"meets": repo_bundle.pipeline["entities"]["meets"]},
        run_id="run-geocode",
        page_size=3,
        **kwargs,
    )
    return report, geocoder


def _meets(store) -> dict:
    return {row["meet_id"]: row for row in store.rows("usaw_meets")}


def test_geocode_pass_counts(repo_index, repo_bundle):
    report, geocoder = _run(_meets_store(), repo_index, repo_bundle)

    counts = report["counts"]
    assert report["status"] == "success"
    assert counts["scanned"] == 6
    assert counts["eligible"] == 5
    assert counts["skipped_precision"] == 1
    assert counts["geocoded"] == 4
    assert counts["unresolved"] == 1
    assert counts["labelled"] == 2
    assert counts["international"] == 1
    assert counts["manual_review"] == 1
    assert counts["written"] == 5
    assert "600 E 4th St, Charlotte, NC 28202" not in geocoder.queries


def test_geocoded_records_get_coordinates_and_labels(repo_index, repo_bundle):
    store = _meets_store()
    _run(store, repo_index, repo_bundle)
    meets = _meets(store)

    assert meets[1]["wso_geography"] == "Texas-Oklahoma"
    assert meets[1]["latitude"] == 30.2672
    assert meets[1]["geocode_status"] == "success"
    assert meets[1]["geocode_precision_score"] == 8
    assert meets[1]["geocode_error"] is None
    assert meets[2]["wso_geography"] == "Hawaii and International"


def test_unresolved_geocode_clears_label_and_records_error(repo_index, repo_bundle):
    store = _meets_store()
    _run(store, repo_index, repo_bundle)
    meet = _meets(store)[3]

    assert meet["wso_geography"] is None
    assert meet["latitude"] is None
    assert meet["geocode_status"] == "unresolved"
    assert "no_match" in meet["geocode_error"]


def test_international_events_are_not_labelled(repo_index, repo_bundle):
    store = _meets_store()
    _run(store, repo_index, repo_bundle)
    meet = _meets(store)[4]

    assert meet["wso_geography"] is None
    assert meet["latitude"] == 34.0522


def test_ambiguous_point_keeps_label_and_is_queued(repo_index, repo_bundle):
    store = _meets_store()
    report, _geocoder = _run(store, repo_index, repo_bundle)
    meet = _meets(store)[7]

    assert meet["wso_geography"] == "California South"
    assert meet["latitude"] == 35.5
    assert report["manual_review"] == [
        {
            "entity": "meets",
            "record_id": 7,
            "label": "California South",
            "reason": "ambiguous",
            "candidates": ["California North Central", "California South"],
        }
    ]


def test_cancel_before_start_does_nothing(repo_index, repo_bundle):
    cancel = threading.Event()
    cancel.set()

    report, geocoder = _run(_meets_store(), repo_index, repo_bundle, cancel=cancel)

    assert report["cancelled"] is True
    assert report["counts"]["scanned"] == 0
    assert geocoder.queries == []


class ReadOnlyStore(MemoryStore):
    def update(self, table, key_column, key, values, *, expected=None):
        raise StoreError("permission denied")


def test_write_failures_make_the_pass_partial(repo_index, repo_bundle):
    store = ReadOnlyStore(_meets_store().tables)

    report, _geocoder = _run(store, repo_index, repo_bundle)

    assert report["status"] == "partial"
    assert report["counts"]["write_failures"] == 5
    assert report["counts"]["written"] == 0
    assert {failure["record_id"] for failure in report["failures"]} == {1, 2, 3, 4, 7}


class BrokenForHonoluluOrchestrator(GeocodeOrchestrator):
    def geocode(self, raw_address, variant_generator=None):
        if "Honolulu" in raw_address:
            raise StageError("geocoder state corrupted")
        return super().geocode(raw_address, variant_generator)


def test_one_record_raising_does_not_stop_the_pass(repo_index, repo_bundle):
    store = _meets_store()
    orchestrator = BrokenForHonoluluOrchestrator(TownGeocoder(), variant_generator=lambda raw: [raw], sleep=lambda _s: None)

    report = run_geocode(
        store=store,
        resolver=PointResolver(repo_index),
        orchestrator=orchestrator,
        entities={"meets": repo_bundle.pipeline["entities"]["meets"]},
        run_id="run-geocode",
        page_size=3,
    )
    meets = _meets(store)

    assert report["status"] == "partial"
    assert report["counts"]["failed"] == 1
    assert report["counts"]["written"] == 4
    assert report["failures"] == [
        {"entity": "meets", "record_id": 2, "message": "geocoder state corrupted", "error_code": "STAGE_ERROR"}
    ]
    assert meets[2]["geocode_status"] is None
    assert meets[1]["wso_geography"] == "Texas-Oklahoma"
    assert meets[3]["geocode_status"] == "unresolved"
    assert meets[7]["latitude"] == 35.5


class CentroidOnlyGeocoder(TownGeocoder):
    def geocode(self, address: str) -> GeocodeHit:
        if "Honolulu" in address:
            raise ProviderSemanticError("answered with a country-level centroid")
        return super().geocode(address)


def test_unusable_provider_answer_is_recorded_as_unresolved(repo_index, repo_bundle):
    store = _meets_store()
    orchestrator = GeocodeOrchestrator(CentroidOnlyGeocoder(), variant_generator=lambda raw: [raw], sleep=lambda _s: None)

    report = run_geocode(
        store=store,
        resolver=PointResolver(repo_index),
        orchestrator=orchestrator,
        entities={"meets": repo_bundle.pipeline["entities"]["meets"]},
        run_id="run-geocode",
        page_size=3,
    )
    meet = _meets(store)[2]

    assert report["status"] == "success"
    assert report["counts"]["unresolved"] == 2
    assert meet["geocode_status"] == "unresolved"
    assert "country-level centroid" in meet["geocode_error"]
