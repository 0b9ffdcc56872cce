"""Location store contract and the keyset paginator shared by scanners."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Protocol, Sequence

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from territory_sync.common.errors import RetryableStoreError, StoreError
from territory_sync.common.http import RetryConfig

FILTER_OPS = ("eq", "neq", "gt", "gte", "lt", "lte", "is_null", "not_null", "in")


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any = None

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPS:
            raise StoreError(f"Unsupported filter op: {self.op}")

    def matches(self, row: dict) -> bool:
        current = row.get(self.column)
        if self.op == "is_null":
            return current is None
        if self.op == "not_null":
            return current is not None
        if self.op == "eq":
            return current == self.value
        if self.op == "neq":
            return current != self.value
        if self.op == "in":
            return current in set(self.value)
        if current is None:
            return False
        if self.op == "gt":
            return current > self.value
        if self.op == "gte":
            return current >= self.value
        if self.op == "lt":
            return current < self.value
        return current <= self.value


@dataclass(frozen=True)
class RowWrite:
    """Update of one row; ``expected`` holds compare-and-set preconditions."""

    table: str
    key_column: str
    key: Any
    values: dict[str, Any]
    expected: dict[str, Any] = field(default_factory=dict)


class LocationStore(Protocol):
    def fetch_page(
        self,
        table: str,
        fields: Sequence[str],
        *,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        offset: int = 0,
        limit: int = 100,
    ) -> list[dict]: ...

    def update(
        self,
        table: str,
        key_column: str,
        key: Any,
        values: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> int: ...

    def apply_unit(self, writes: Sequence[RowWrite]) -> int: ...


def fetch_with_retry(
    fetch: Callable[[], list[dict]],
    retry_config: RetryConfig,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> list[dict]:
    @retry(
        stop=stop_after_attempt(retry_config.max_attempts),
        wait=wait_exponential_jitter(
            initial=retry_config.multiplier,
            max=retry_config.max_wait,
            jitter=1.0,
        ),
        retry=retry_if_exception_type(RetryableStoreError),
        sleep=sleep,
        reraise=True,
    )
    def _wrapped() -> list[dict]:
        return fetch()

    return _wrapped()


def paginate(
    store: LocationStore,
    table: str,
    fields: Sequence[str],
    *,
    key_column: str,
    page_size: int,
    filters: Sequence[Filter] = (),
    start_after: Any = None,
    retry_config: RetryConfig | None = None,
    cancel: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[list[dict]]:
    """Yield pages ordered by ``key_column`` using ``key > last_key`` windows.

    Rows are never skipped or repeated when other rows change between
    fetches. The caller finishes a page before the next one is requested.
    """
    if page_size <= 0:
        raise StoreError("page_size must be positive")
    retry_config = retry_config or RetryConfig(max_attempts=3)
    columns = list(fields)
    if key_column not in columns:
        columns.insert(0, key_column)

    last_key = start_after
    while True:
        if cancel is not None and cancel.is_set():
            return
        page_filters = list(filters)
        if last_key is not None:
            page_filters.append(Filter(key_column, "gt", last_key))

        def _fetch() -> list[dict]:
            return store.fetch_page(
                table,
                columns,
                filters=page_filters,
                order_by=key_column,
                offset=0,
                limit=page_size,
            )

        rows = fetch_with_retry(_fetch, retry_config, sleep=sleep)
        if not rows:
            return
        yield rows
        last_key = rows[-1][key_column]
        if len(rows) < page_size:
            return
