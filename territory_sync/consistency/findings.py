"""Finding and repair outcome records."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from territory_sync.common.models import Coordinate

INVALID_LABEL = "invalid_label"
DISAGREEMENT = "disagreement"

REASON_NOT_CANONICAL = "not_canonical"
REASON_GEOGRAPHY_MISMATCH = "geography_mismatch"
REASON_DERIVED_MISMATCH = "derived_mismatch"
REASON_MISSING = "missing"

APPLIED = "applied"
SKIPPED = "skipped"
FAILED = "failed"

REASON_ALREADY_CONSISTENT = "already_consistent"
REASON_MANUAL_REVIEW = "manual_review"
REASON_CONFLICT = "conflict"
REASON_STORE_ERROR = "store_error"
REASON_PROPAGATED = "propagated"
REASON_RELABELLED = "relabelled"


@dataclass(frozen=True)
class DerivedCopy:
    table: str
    key_column: str
    key: Any
    label_column: str
    label: str | None


@dataclass(frozen=True)
class ConsistencyFinding:
    kind: str
    reason: str
    entity: str
    record_id: Any
    label: str | None
    coordinate: Coordinate | None = None
    divergent: tuple[DerivedCopy, ...] = ()
    expected_territory: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RepairOutcome:
    finding: ConsistencyFinding
    status: str
    reason: str
    label_written: str | None = None
    rows_written: int = 0
    detail: str | None = None
    candidates: tuple[str, ...] = ()
