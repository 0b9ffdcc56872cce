from __future__ import annotations

import json
from pathlib import Path

import pytest

from territory_sync.common.errors import ConfigurationError, RepairConflict, StoreError
from territory_sync.store.base import Filter, RowWrite
from territory_sync.store.memory import MemoryStore


def _store() -> MemoryStore:
    return MemoryStore(
        {
            "usaw_meets": [
                {"meet_id": 3, "wso_geography": "Carolina", "latitude": 35.2},
                {"meet_id": 1, "wso_geography": "Texas-Oklahoma", "latitude": 30.2},
                {"meet_id": 2, "wso_geography": None, "latitude": None},
            ]
        }
    )


def test_fetch_page_filters_orders_and_projects():
    rows = _store().fetch_page(
        "usaw_meets",
        ["meet_id", "wso_geography"],
        filters=[Filter("latitude", "not_null")],
        order_by="meet_id",
    )

    assert rows == [
        {"meet_id": 1, "wso_geography": "Texas-Oklahoma"},
        {"meet_id": 3, "wso_geography": "Carolina"},
    ]


def test_fetch_page_returns_copies():
    store = _store()

    rows = store.fetch_page("usaw_meets", ["meet_id", "wso_geography"], order_by="meet_id", limit=1)
    rows[0]["wso_geography"] = "mutated"

    assert store.rows("usaw_meets")[1]["wso_geography"] == "Texas-Oklahoma"


def test_unknown_table_raises_store_error():
    with pytest.raises(StoreError):
        _store().fetch_page("missing", ["id"])


def test_update_with_matching_expectation_writes():
    store = _store()

    written = store.update("usaw_meets", "meet_id", 2, {"wso_geography": "Carolina"}, expected={"wso_geography": None})

    assert written == 1
    assert store.rows("usaw_meets")[2]["wso_geography"] == "Carolina"


def test_update_with_stale_expectation_conflicts():
    store = _store()

    with pytest.raises(RepairConflict):
        store.update("usaw_meets", "meet_id", 1, {"wso_geography": "Carolina"}, expected={"wso_geography": "Florida"})
    assert store.rows("usaw_meets")[1]["wso_geography"] == "Texas-Oklahoma"


def test_apply_unit_is_all_or_nothing():
    store = _store()
    writes = [
        RowWrite("usaw_meets", "meet_id", 1, {"wso_geography": "X"}, {"wso_geography": "Texas-Oklahoma"}),
        RowWrite("usaw_meets", "meet_id", 99, {"wso_geography": "X"}, {"wso_geography": None}),
    ]

    with pytest.raises(RepairConflict):
        store.apply_unit(writes)
    assert store.rows("usaw_meets")[1]["wso_geography"] == "Texas-Oklahoma"


def test_snapshot_round_trip(tmp_path: Path):
    path = tmp_path / "snapshot.json"
    store = _store()
    store.update("usaw_meets", "meet_id", 2, {"wso_geography": "Carolina"})

    store.save_snapshot(path)
    reloaded = MemoryStore.from_snapshot(path)

    assert reloaded.rows("usaw_meets") == store.rows("usaw_meets")


def test_snapshot_must_map_tables_to_lists(tmp_path: Path):
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps({"usaw_meets": {"meet_id": 1}}), encoding="utf-8")

    with pytest.raises(ConfigurationError):
        MemoryStore.from_snapshot(path)
    with pytest.raises(ConfigurationError):
        MemoryStore.from_snapshot(tmp_path / "missing.json")
