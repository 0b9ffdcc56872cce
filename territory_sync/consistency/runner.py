"""Sequential validate / repair pass over the configured entities."""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping, Sequence

from territory_sync.common.http import RetryConfig
from territory_sync.common.logging import default_logger, log_event
from territory_sync.consistency.findings import ConsistencyFinding, RepairOutcome
from territory_sync.consistency.repairer import DEFAULT_CONFLICT_ATTEMPTS, ConsistencyRepairer
from territory_sync.consistency.reports import build_consistency_report
from territory_sync.consistency.validator import ConsistencyValidator
from territory_sync.store.base import LocationStore
from territory_sync.territory.index import TerritoryIndex
from territory_sync.territory.resolver import PointResolver

MODE_VALIDATE = "validate"
MODE_REPAIR = "repair"


def run_consistency(
    *,
    store: LocationStore,
    index: TerritoryIndex,
    entities: Mapping[str, Mapping[str, Any]],
    run_id: str,
    mode: str = MODE_REPAIR,
    page_size: int = 100,
    targets: Sequence[str] | None = None,
    resolver: PointResolver | None = None,
    retry_config: RetryConfig | None = None,
    conflict_attempts: int = DEFAULT_CONFLICT_ATTEMPTS,
    start_after: Mapping[str, Any] | None = None,
    cancel: threading.Event | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    logger = logger or default_logger()
    resolver = resolver or PointResolver(index, logger=logger)
    validator = ConsistencyValidator(store, index, resolver, entities, retry_config=retry_config, logger=logger)
    repairer = ConsistencyRepairer(
        store,
        index,
        resolver,
        entities,
        conflict_attempts=conflict_attempts,
        retry_config=retry_config,
        logger=logger,
    )

    findings: list[ConsistencyFinding] = []
    outcomes: list[RepairOutcome] = []
    for finding in validator.scan(page_size, entities=targets, start_after=start_after, cancel=cancel):
        findings.append(finding)
        if mode == MODE_REPAIR:
            outcomes.append(repairer.repair(finding))

    cancelled = cancel is not None and cancel.is_set()
    report = build_consistency_report(
        run_id=run_id,
        mode=mode,
        findings=findings,
        outcomes=outcomes,
        failures=validator.failures,
        records_scanned=validator.records_scanned,
        checkpoint=dict(validator.checkpoint),
        cancelled=cancelled,
    )
    log_event(
        logger,
        f"{mode} pass finished: {len(findings)} findings, {len(outcomes)} outcomes",
        run_id=run_id,
        stage=mode,
        event="PASS_END",
        status=report["status"],
    )
    return report
