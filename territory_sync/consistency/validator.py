"""Label validation across canonical and derived tables."""

from __future__ import annotations

import logging
import threading
from typing import Any, Iterator, Mapping, Sequence

from territory_sync.common.errors import StoreError
from territory_sync.common.http import RetryConfig
from territory_sync.common.logging import default_logger, log_event
from territory_sync.common.models import Coordinate
from territory_sync.consistency.findings import (
    DISAGREEMENT,
    INVALID_LABEL,
    REASON_DERIVED_MISMATCH,
    REASON_GEOGRAPHY_MISMATCH,
    REASON_MISSING,
    REASON_NOT_CANONICAL,
    ConsistencyFinding,
    DerivedCopy,
)
from territory_sync.store.base import Filter, LocationStore, paginate
from territory_sync.territory.index import TerritoryIndex
from territory_sync.territory.resolver import PointResolver

DERIVED_PAGE_SIZE = 1000


def canonical_fields(entity_cfg: Mapping[str, Any]) -> list[str]:
    return [entity_cfg["key"], entity_cfg["label"], entity_cfg["latitude"], entity_cfg["longitude"]]


def load_derived_copies(
    store: LocationStore,
    entity_cfg: Mapping[str, Any],
    record_ids: Sequence[Any],
    *,
    retry_config: RetryConfig | None = None,
) -> dict[Any, list[DerivedCopy]]:
    """Derived copies keyed by canonical record id, one ``in`` scan per derived table."""
    copies: dict[Any, list[DerivedCopy]] = {record_id: [] for record_id in record_ids}
    if not record_ids:
        return copies
    for derived in entity_cfg.get("derived") or []:
        fields = [derived["key"], derived["foreign_key"], derived["label"]]
        pages = paginate(
            store,
            derived["table"],
            fields,
            key_column=derived["key"],
            page_size=DERIVED_PAGE_SIZE,
            filters=[Filter(derived["foreign_key"], "in", list(record_ids))],
            retry_config=retry_config,
        )
        for page in pages:
            for row in page:
                owner = row.get(derived["foreign_key"])
                if owner not in copies:
                    continue
                copies[owner].append(
                    DerivedCopy(
                        table=derived["table"],
                        key_column=derived["key"],
                        key=row.get(derived["key"]),
                        label_column=derived["label"],
                        label=row.get(derived["label"]),
                    )
                )
    return copies


def evaluate_record(
    entity: str,
    entity_cfg: Mapping[str, Any],
    row: Mapping[str, Any],
    copies: Sequence[DerivedCopy],
    index: TerritoryIndex,
    resolver: PointResolver,
) -> ConsistencyFinding | None:
    record_id = row.get(entity_cfg["key"])
    label = row.get(entity_cfg["label"])
    coordinate = Coordinate.parse(row.get(entity_cfg["latitude"]), row.get(entity_cfg["longitude"]))

    if label is not None and label not in index:
        return ConsistencyFinding(
            kind=INVALID_LABEL,
            reason=REASON_NOT_CANONICAL,
            entity=entity,
            record_id=record_id,
            label=label,
            coordinate=coordinate,
            divergent=tuple(copy for copy in copies if copy.label != label),
        )
    if label is None:
        if not any(copy.label is not None for copy in copies):
            return None
        resolution = resolver.resolve(coordinate.lat, coordinate.lng) if coordinate is not None else None
        expected = resolution.territory if resolution is not None and resolution.is_resolved else None
        return ConsistencyFinding(
            kind=INVALID_LABEL,
            reason=REASON_MISSING,
            entity=entity,
            record_id=record_id,
            label=None,
            coordinate=coordinate,
            divergent=tuple(copy for copy in copies if copy.label != expected),
            expected_territory=expected,
        )

    if coordinate is not None:
        resolution = resolver.resolve(coordinate.lat, coordinate.lng)
        if resolution.is_resolved and resolution.territory != label:
            return ConsistencyFinding(
                kind=INVALID_LABEL,
                reason=REASON_GEOGRAPHY_MISMATCH,
                entity=entity,
                record_id=record_id,
                label=label,
                coordinate=coordinate,
                divergent=tuple(copy for copy in copies if copy.label != resolution.territory),
                expected_territory=resolution.territory,
            )

    divergent = tuple(copy for copy in copies if copy.label != label)
    if divergent:
        return ConsistencyFinding(
            kind=DISAGREEMENT,
            reason=REASON_DERIVED_MISMATCH,
            entity=entity,
            record_id=record_id,
            label=label,
            coordinate=coordinate,
            divergent=divergent,
        )
    return None


class ConsistencyValidator:
    def __init__(
        self,
        store: LocationStore,
        index: TerritoryIndex,
        resolver: PointResolver,
        entities: Mapping[str, Mapping[str, Any]],
        *,
        retry_config: RetryConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.index = index
        self.resolver = resolver
        self.entities = entities
        self.retry_config = retry_config
        self.logger = logger or default_logger()
        self.checkpoint: dict[str, Any] = {}
        self.failures: list[dict[str, Any]] = []
        self.records_scanned = 0
        self.pages_scanned = 0

    def scan(
        self,
        page_size: int,
        entities: Sequence[str] | None = None,
        start_after: Mapping[str, Any] | None = None,
        cancel: threading.Event | None = None,
    ) -> Iterator[ConsistencyFinding]:
        for entity in entities or list(self.entities):
            if cancel is not None and cancel.is_set():
                return
            yield from self._scan_entity(entity, page_size, (start_after or {}).get(entity), cancel)

    def _scan_entity(
        self,
        entity: str,
        page_size: int,
        start_after: Any,
        cancel: threading.Event | None,
    ) -> Iterator[ConsistencyFinding]:
        cfg = self.entities[entity]
        key_column = cfg["key"]
        pages = paginate(
            self.store,
            cfg["table"],
            canonical_fields(cfg),
            key_column=key_column,
            page_size=page_size,
            start_after=start_after,
            retry_config=self.retry_config,
            cancel=cancel,
        )
        try:
            for page in pages:
                record_ids = [row[key_column] for row in page]
                copies = load_derived_copies(self.store, cfg, record_ids, retry_config=self.retry_config)
                for row in page:
                    self.records_scanned += 1
                    finding = evaluate_record(entity, cfg, row, copies.get(row[key_column], []), self.index, self.resolver)
                    if finding is not None:
                        log_event(
                            self.logger,
                            f"{finding.kind} ({finding.reason}) on {entity} {finding.record_id}",
                            stage="validate",
                            entity=entity,
                            record_id=finding.record_id,
                            territory=finding.label,
                            event="FINDING",
                            status=finding.kind,
                        )
                        yield finding
                self.pages_scanned += 1
                self.checkpoint[entity] = page[-1][key_column]
        except StoreError as exc:
            self.failures.append(
                {
                    "entity": entity,
                    "after_key": self.checkpoint.get(entity, start_after),
                    "error_code": exc.error_code,
                    "message": str(exc),
                }
            )
            log_event(
                self.logger,
                f"scan of {entity} aborted: {exc}",
                level=logging.ERROR,
                stage="validate",
                entity=entity,
                event="PAGE_FETCH_FAILED",
                status="error",
                error_code=exc.error_code,
            )
