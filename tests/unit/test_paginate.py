from __future__ import annotations

import threading

import pytest

from territory_sync.common.errors import RetryableStoreError, StoreError
from territory_sync.common.http import RetryConfig
from territory_sync.store.base import Filter, paginate
from territory_sync.store.memory import MemoryStore

FAST_RETRY = RetryConfig(max_attempts=3, multiplier=0.01, max_wait=0.01)


def _store(count: int) -> MemoryStore:
    return MemoryStore({"usaw_meets": [{"meet_id": idx, "wso_geography": None} for idx in range(count, 0, -1)]})


def _keys(pages) -> list[list[int]]:
    return [[row["meet_id"] for row in page] for page in pages]


def test_pages_are_ordered_and_complete():
    pages = list(paginate(_store(5), "usaw_meets", ["wso_geography"], key_column="meet_id", page_size=2))

    assert _keys(pages) == [[1, 2], [3, 4], [5]]


def test_exact_multiple_ends_with_empty_fetch():
    pages = list(paginate(_store(4), "usaw_meets", ["wso_geography"], key_column="meet_id", page_size=2))

    assert _keys(pages) == [[1, 2], [3, 4]]


def test_writes_between_pages_do_not_skip_rows():
    store = _store(6)
    seen: list[int] = []
    pages = paginate(
        store,
        "usaw_meets",
        ["wso_geography"],
        key_column="meet_id",
        page_size=2,
        filters=[Filter("wso_geography", "is_null")],
    )
    for page in pages:
        for row in page:
            seen.append(row["meet_id"])
            store.update("usaw_meets", "meet_id", row["meet_id"], {"wso_geography": "Carolina"})

    assert seen == [1, 2, 3, 4, 5, 6]


def test_start_after_resumes_from_checkpoint():
    pages = list(
        paginate(_store(5), "usaw_meets", ["wso_geography"], key_column="meet_id", page_size=10, start_after=3)
    )

    assert _keys(pages) == [[4, 5]]


def test_cancel_stops_between_pages():
    cancel = threading.Event()
    pages = paginate(_store(6), "usaw_meets", ["wso_geography"], key_column="meet_id", page_size=2, cancel=cancel)

    first = next(pages)
    cancel.set()

    assert [row["meet_id"] for row in first] == [1, 2]
    assert list(pages) == []


def test_non_positive_page_size_is_rejected():
    with pytest.raises(StoreError):
        list(paginate(_store(1), "usaw_meets", [], key_column="meet_id", page_size=0))


class FlakyStore:
    def __init__(self, inner: MemoryStore, failures: int):
        self.inner = inner
        self.failures = failures
        self.calls = 0

    def fetch_page(self, *args, **kwargs):
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise RetryableStoreError("temporarily unavailable")
        return self.inner.fetch_page(*args, **kwargs)


def test_transient_page_failures_are_retried():
    store = FlakyStore(_store(1), failures=2)

    pages = list(
        paginate(
            store,
            "usaw_meets",
            ["wso_geography"],
            key_column="meet_id",
            page_size=5,
            retry_config=FAST_RETRY,
            sleep=lambda _seconds: None,
        )
    )

    assert _keys(pages) == [[1]]
    assert store.calls == 3


def test_retry_exhaustion_surfaces_error():
    store = FlakyStore(_store(1), failures=5)

    with pytest.raises(RetryableStoreError):
        list(
            paginate(
                store,
                "usaw_meets",
                ["wso_geography"],
                key_column="meet_id",
                page_size=5,
                retry_config=FAST_RETRY,
                sleep=lambda _seconds: None,
            )
        )
