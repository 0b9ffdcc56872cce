"""In-memory location store backed by JSON snapshots."""

from __future__ import annotations

import copy
import threading
from pathlib import Path
from typing import Any, Sequence

from territory_sync.common.errors import ConfigurationError, RepairConflict, StoreError
from territory_sync.common.fs import read_json, write_json
from territory_sync.store.base import Filter, RowWrite


class MemoryStore:
    def __init__(self, tables: dict[str, list[dict]] | None = None) -> None:
        self.tables: dict[str, list[dict]] = copy.deepcopy(tables or {})
        self.lock = threading.Lock()

    @classmethod
    def from_snapshot(cls, path: Path) -> "MemoryStore":
        if not path.exists():
            raise ConfigurationError(f"Missing snapshot file: {path}")
        payload = read_json(path)
        if not isinstance(payload, dict) or not all(isinstance(rows, list) for rows in payload.values()):
            raise ConfigurationError(f"Snapshot must map table names to row lists: {path}")
        return cls(payload)

    def save_snapshot(self, path: Path) -> None:
        with self.lock:
            write_json(path, self.tables)

    def rows(self, table: str) -> list[dict]:
        with self.lock:
            return copy.deepcopy(self.tables.get(table, []))

    def _table(self, table: str) -> list[dict]:
        if table not in self.tables:
            raise StoreError(f"Unknown table: {table}")
        return self.tables[table]

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
        with self.lock:
            matched = [row for row in self._table(table) if all(item.matches(row) for item in filters)]
            if order_by:
                matched.sort(key=lambda row: (row.get(order_by) is None, row.get(order_by)))
            window = matched[offset : offset + limit]
            return [{column: copy.deepcopy(row.get(column)) for column in fields} for row in window]

    def _find(self, table: str, key_column: str, key: Any) -> list[dict]:
        return [row for row in self._table(table) if row.get(key_column) == key]

    def _check_expected(self, write: RowWrite) -> list[dict]:
        rows = self._find(write.table, write.key_column, write.key)
        if write.expected:
            if not rows:
                raise RepairConflict(f"{write.table}.{write.key_column}={write.key} no longer exists")
            for row in rows:
                for column, value in write.expected.items():
                    if row.get(column) != value:
                        raise RepairConflict(
                            f"{write.table}.{write.key_column}={write.key} has {column}={row.get(column)!r},"
                            f" expected {value!r}"
                        )
        return rows

    def update(
        self,
        table: str,
        key_column: str,
        key: Any,
        values: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> int:
        return self.apply_unit([RowWrite(table, key_column, key, dict(values), dict(expected or {}))])

    def apply_unit(self, writes: Sequence[RowWrite]) -> int:
        with self.lock:
            targets = [(write, self._check_expected(write)) for write in writes]
            total = 0
            for write, rows in targets:
                for row in rows:
                    row.update(copy.deepcopy(write.values))
                total += len(rows)
            return total
