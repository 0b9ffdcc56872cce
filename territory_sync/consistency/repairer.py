"""Repairs for consistency findings.

Every repair starts from a fresh read of the record. Writes carry the label
values from that read as compare-and-set preconditions, and the canonical
record together with its derived copies is applied as one unit. Running a
repair twice is therefore harmless: the second pass finds nothing to do.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from territory_sync.common.errors import RepairConflict, StoreError
from territory_sync.common.http import RetryConfig
from territory_sync.common.logging import default_logger, log_event
from territory_sync.consistency.findings import (
    APPLIED,
    DISAGREEMENT,
    FAILED,
    REASON_ALREADY_CONSISTENT,
    REASON_CONFLICT,
    REASON_MANUAL_REVIEW,
    REASON_PROPAGATED,
    REASON_RELABELLED,
    REASON_STORE_ERROR,
    SKIPPED,
    ConsistencyFinding,
    DerivedCopy,
    RepairOutcome,
)
from territory_sync.consistency.validator import canonical_fields, evaluate_record, load_derived_copies
from territory_sync.store.base import Filter, LocationStore, RowWrite, fetch_with_retry
from territory_sync.territory.index import TerritoryIndex
from territory_sync.territory.resolver import PointResolver

DEFAULT_CONFLICT_ATTEMPTS = 2


class ConsistencyRepairer:
    def __init__(
        self,
        store: LocationStore,
        index: TerritoryIndex,
        resolver: PointResolver,
        entities: Mapping[str, Mapping[str, Any]],
        *,
        conflict_attempts: int = DEFAULT_CONFLICT_ATTEMPTS,
        retry_config: RetryConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.index = index
        self.resolver = resolver
        self.entities = entities
        self.conflict_attempts = max(1, conflict_attempts)
        self.retry_config = retry_config or RetryConfig(max_attempts=3)
        self.logger = logger or default_logger()

    def _load(self, entity: str, record_id: Any) -> tuple[dict | None, list[DerivedCopy]]:
        cfg = self.entities[entity]

        def _fetch() -> list[dict]:
            return self.store.fetch_page(
                cfg["table"],
                canonical_fields(cfg),
                filters=[Filter(cfg["key"], "eq", record_id)],
                limit=1,
            )

        rows = fetch_with_retry(_fetch, self.retry_config)
        if not rows:
            return None, []
        copies = load_derived_copies(self.store, cfg, [record_id], retry_config=self.retry_config)
        return rows[0], copies.get(record_id, [])

    def revalidate(self, finding: ConsistencyFinding) -> tuple[ConsistencyFinding | None, list[DerivedCopy]]:
        row, copies = self._load(finding.entity, finding.record_id)
        if row is None:
            return None, []
        cfg = self.entities[finding.entity]
        return evaluate_record(finding.entity, cfg, row, copies, self.index, self.resolver), copies

    def repair(self, finding: ConsistencyFinding) -> RepairOutcome:
        attempt = 0
        while True:
            attempt += 1
            try:
                current, copies = self.revalidate(finding)
                if current is None:
                    outcome = RepairOutcome(finding=finding, status=SKIPPED, reason=REASON_ALREADY_CONSISTENT)
                elif current.kind == DISAGREEMENT:
                    outcome = self._propagate(finding, current)
                else:
                    outcome = self._relabel(finding, current, copies)
            except RepairConflict as exc:
                log_event(
                    self.logger,
                    f"repair conflict on {finding.entity} {finding.record_id} (attempt {attempt}): {exc}",
                    level=logging.WARNING,
                    stage="repair",
                    entity=finding.entity,
                    record_id=finding.record_id,
                    event="REPAIR_CONFLICT",
                    status="conflict",
                    attempt=attempt,
                    error_code=exc.error_code,
                )
                if attempt >= self.conflict_attempts:
                    outcome = RepairOutcome(finding=finding, status=SKIPPED, reason=REASON_CONFLICT, detail=str(exc))
                else:
                    continue
            except StoreError as exc:
                outcome = RepairOutcome(finding=finding, status=FAILED, reason=REASON_STORE_ERROR, detail=str(exc))

            self._log_outcome(outcome)
            return outcome

    def _propagate(self, finding: ConsistencyFinding, current: ConsistencyFinding) -> RepairOutcome:
        cfg = self.entities[current.entity]
        writes = [
            RowWrite(
                table=copy.table,
                key_column=copy.key_column,
                key=copy.key,
                values={copy.label_column: current.label},
                expected={copy.label_column: copy.label},
            )
            for copy in current.divergent
        ]
        # No-op write that pins the canonical label read above.
        writes.append(
            RowWrite(
                table=cfg["table"],
                key_column=cfg["key"],
                key=current.record_id,
                values={cfg["label"]: current.label},
                expected={cfg["label"]: current.label},
            )
        )
        self.store.apply_unit(writes)
        return RepairOutcome(
            finding=finding,
            status=APPLIED,
            reason=REASON_PROPAGATED,
            label_written=current.label,
            rows_written=len(current.divergent),
        )

    def _relabel(
        self,
        finding: ConsistencyFinding,
        current: ConsistencyFinding,
        copies: Sequence[DerivedCopy],
    ) -> RepairOutcome:
        if current.coordinate is None:
            return RepairOutcome(finding=finding, status=SKIPPED, reason=REASON_MANUAL_REVIEW, detail="no_coordinates")

        resolution = self.resolver.resolve(current.coordinate.lat, current.coordinate.lng)
        if not resolution.is_resolved:
            return RepairOutcome(
                finding=finding,
                status=SKIPPED,
                reason=REASON_MANUAL_REVIEW,
                detail=resolution.status,
                candidates=resolution.candidates,
            )

        target = resolution.territory
        cfg = self.entities[current.entity]
        writes = [
            RowWrite(
                table=cfg["table"],
                key_column=cfg["key"],
                key=current.record_id,
                values={cfg["label"]: target},
                expected={cfg["label"]: current.label},
            )
        ]
        writes.extend(
            RowWrite(
                table=copy.table,
                key_column=copy.key_column,
                key=copy.key,
                values={copy.label_column: target},
                expected={copy.label_column: copy.label},
            )
            for copy in copies
            if copy.label != target
        )
        self.store.apply_unit(writes)
        return RepairOutcome(
            finding=finding,
            status=APPLIED,
            reason=REASON_RELABELLED,
            label_written=target,
            rows_written=len(writes),
        )

    def _log_outcome(self, outcome: RepairOutcome) -> None:
        level = logging.ERROR if outcome.status == FAILED else logging.INFO
        log_event(
            self.logger,
            f"repair {outcome.status} ({outcome.reason}) on {outcome.finding.entity} {outcome.finding.record_id}",
            level=level,
            stage="repair",
            entity=outcome.finding.entity,
            record_id=outcome.finding.record_id,
            territory=outcome.label_written,
            event="REPAIR_OUTCOME",
            status=outcome.status,
            error_code=REASON_STORE_ERROR.upper() if outcome.status == FAILED else None,
        )
