"""PostgREST (Supabase REST) implementation of the location store."""

from __future__ import annotations

from typing import Any, Sequence

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from territory_sync.common.errors import RepairConflict, RetryableStoreError, StoreError
from territory_sync.common.http import HttpClient, HttpRequestError, RetryableHttpError, RetryConfig, TimeoutConfig
from territory_sync.store.base import Filter, RowWrite

STORE_SOURCE = "store"


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote(value: Any) -> str:
    text = format_value(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def filter_param(item: Filter) -> tuple[str, str]:
    if item.op == "is_null" or (item.op == "eq" and item.value is None):
        return item.column, "is.null"
    if item.op == "not_null" or (item.op == "neq" and item.value is None):
        return item.column, "not.is.null"
    if item.op == "in":
        return item.column, "in.(" + ",".join(_quote(value) for value in item.value) + ")"
    return item.column, f"{item.op}.{format_value(item.value)}"


def expected_filters(key_column: str, key: Any, expected: dict[str, Any] | None) -> list[Filter]:
    filters = [Filter(key_column, "eq", key)]
    for column, value in (expected or {}).items():
        filters.append(Filter(column, "is_null") if value is None else Filter(column, "eq", value))
    return filters


class PostgrestStore:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        http_client: HttpClient | None = None,
        retry_config: RetryConfig | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.retry = retry_config or RetryConfig(max_attempts=3)
        self.timeout = timeout or TimeoutConfig(connect=10, read=60)
        self.owns_client = http_client is None
        # Single-shot requests; reads are retried by the paginator, writes below.
        self.client = http_client or HttpClient(timeout=self.timeout, retry=RetryConfig(max_attempts=1))

    def close(self) -> None:
        if self.owns_client:
            self.client.close()

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {"apikey": self.api_key, "Authorization": f"Bearer {self.api_key}"}
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _call(self, method: str, table: str, params: list[tuple[str, str]], body: dict | None = None) -> Any:
        try:
            if method == "GET":
                return self.client.get_json(
                    self._url(table),
                    source_type=STORE_SOURCE,
                    params=params,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
            return self.client.patch_json(
                self._url(table),
                source_type=STORE_SOURCE,
                json_body=body or {},
                params=params,
                headers=self._headers("return=representation"),
                timeout=self.timeout,
            )
        except RetryableHttpError as exc:
            raise RetryableStoreError(f"{method} {table} failed: {exc}") from exc
        except HttpRequestError as exc:
            raise StoreError(f"{method} {table} failed: {exc}") from exc

    def fetch_page(
        self,
        table: str,
        fields: Sequence[str],
        *,
        filters: Sequence[Filter] = (),
        order_by: str | None = None,
        offset: int = 0,
        limit: int = 100,
    ) -> list[dict]:
        params: list[tuple[str, str]] = [("select", ",".join(fields))]
        params.extend(filter_param(item) for item in filters)
        if order_by:
            params.append(("order", f"{order_by}.asc"))
        params.append(("offset", str(offset)))
        params.append(("limit", str(limit)))
        payload = self._call("GET", table, params)
        if not isinstance(payload, list):
            raise StoreError(f"Unexpected payload for {table}: {type(payload).__name__}")
        return payload

    def _patch(self, table: str, filters: Sequence[Filter], values: dict[str, Any]) -> int:
        @retry(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_exponential_jitter(initial=self.retry.multiplier, max=self.retry.max_wait, jitter=1.0),
            retry=retry_if_exception_type(RetryableStoreError),
            reraise=True,
        )
        def _wrapped() -> int:
            payload = self._call("PATCH", table, [filter_param(item) for item in filters], values)
            return len(payload) if isinstance(payload, list) else 0

        return _wrapped()

    def update(
        self,
        table: str,
        key_column: str,
        key: Any,
        values: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> int:
        updated = self._patch(table, expected_filters(key_column, key, expected), values)
        if expected and updated == 0:
            raise RepairConflict(f"{table}.{key_column}={key} changed before update")
        return updated

    def _current_values(self, write: RowWrite) -> dict[str, Any] | None:
        rows = self.fetch_page(
            write.table,
            [write.key_column, *write.values],
            filters=[Filter(write.key_column, "eq", write.key)],
            limit=1,
        )
        return rows[0] if rows else None

    def apply_unit(self, writes: Sequence[RowWrite]) -> int:
        """Apply every write or none; compensating writes undo a partial unit."""
        applied: list[tuple[RowWrite, dict[str, Any]]] = []
        total = 0
        try:
            for write in writes:
                current = self._current_values(write)
                if current is None:
                    raise RepairConflict(f"{write.table}.{write.key_column}={write.key} no longer exists")
                previous = {column: current.get(column) for column in write.values}
                total += self.update(write.table, write.key_column, write.key, write.values, expected=write.expected)
                applied.append((write, previous))
        except (StoreError, RepairConflict) as exc:
            self._rollback(applied, exc)
            raise
        return total

    def _rollback(self, applied: list[tuple[RowWrite, dict[str, Any]]], cause: Exception) -> None:
        for write, previous in reversed(applied):
            try:
                self.update(write.table, write.key_column, write.key, previous, expected=write.values)
            except (StoreError, RepairConflict) as exc:
                raise StoreError(
                    f"Rollback of {write.table}.{write.key_column}={write.key} failed after {cause}: {exc}"
                ) from exc
