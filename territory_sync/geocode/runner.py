"""Geocode canonical records and assign their territory label."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Mapping, Sequence

from territory_sync.common.constants import (
    DEFAULT_PRECISION_THRESHOLD,
    GEOCODE_FAILURE,
    GEOCODE_SUCCESS,
    GEOCODE_UNRESOLVED,
)
from territory_sync.common.errors import StoreError
from territory_sync.common.http import RetryConfig
from territory_sync.common.logging import default_logger, log_event
from territory_sync.common.models import LocationRecord
from territory_sync.consistency.reports import STATUS_ERROR, STATUS_PARTIAL, STATUS_SUCCESS
from territory_sync.geocode.orchestrator import STATUS_UNRESOLVED, GeocodeOrchestrator, GeocodeResult
from territory_sync.geocode.quality import is_international_event, should_regeocode
from territory_sync.store.base import Filter, LocationStore, paginate
from territory_sync.territory.resolver import PointResolver

OPTIONAL_COLUMNS = ("name", "status", "error", "precision", "display_name")
COUNT_KEYS = (
    "scanned",
    "eligible",
    "skipped_precision",
    "geocoded",
    "failed",
    "unresolved",
    "labelled",
    "international",
    "manual_review",
    "placeholders",
    "written",
    "write_failures",
)


def geocode_fields(entity_cfg: Mapping[str, Any]) -> list[str]:
    fields = [entity_cfg["key"], entity_cfg["label"], entity_cfg["latitude"], entity_cfg["longitude"], entity_cfg["address"]]
    fields.extend(entity_cfg[option] for option in OPTIONAL_COLUMNS if entity_cfg.get(option))
    return fields


def build_update(
    entity_cfg: Mapping[str, Any],
    result: GeocodeResult,
    *,
    label: str | None,
    write_label: bool,
) -> dict[str, Any]:
    values: dict[str, Any] = {
        entity_cfg["latitude"]: result.coordinate.lat if result.coordinate else None,
        entity_cfg["longitude"]: result.coordinate.lng if result.coordinate else None,
    }
    if entity_cfg.get("status"):
        if result.success:
            status = GEOCODE_SUCCESS
        elif result.status == STATUS_UNRESOLVED:
            status = GEOCODE_UNRESOLVED
        else:
            status = GEOCODE_FAILURE
        values[entity_cfg["status"]] = status
    if entity_cfg.get("error"):
        values[entity_cfg["error"]] = result.error_summary()
    if entity_cfg.get("precision"):
        values[entity_cfg["precision"]] = result.precision
    if entity_cfg.get("display_name"):
        values[entity_cfg["display_name"]] = result.hit.display_name if result.hit else None
    if write_label:
        values[entity_cfg["label"]] = label
    return values


class GeocodeRunner:
    def __init__(
        self,
        store: LocationStore,
        resolver: PointResolver,
        orchestrator: GeocodeOrchestrator,
        entities: Mapping[str, Mapping[str, Any]],
        *,
        run_id: str,
        workers: int = 2,
        precision_threshold: int = DEFAULT_PRECISION_THRESHOLD,
        retry_config: RetryConfig | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.orchestrator = orchestrator
        self.entities = entities
        self.run_id = run_id
        self.workers = max(1, workers)
        self.precision_threshold = precision_threshold
        self.retry_config = retry_config
        self.logger = logger or default_logger()
        self.counts = {key: 0 for key in COUNT_KEYS}
        self.manual_review: list[dict[str, Any]] = []
        self.placeholders: list[dict[str, Any]] = []
        self.failures: list[dict[str, Any]] = []

    def run(
        self,
        page_size: int,
        targets: Sequence[str] | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="geocode") as executor:
            for entity in targets or list(self.entities):
                if cancel is not None and cancel.is_set():
                    break
                self._run_entity(entity, page_size, executor, cancel)
        return self.report(cancelled=cancel is not None and cancel.is_set())

    def _run_entity(
        self,
        entity: str,
        page_size: int,
        executor: ThreadPoolExecutor,
        cancel: threading.Event | None,
    ) -> None:
        cfg = self.entities[entity]
        pages = paginate(
            self.store,
            cfg["table"],
            geocode_fields(cfg),
            key_column=cfg["key"],
            page_size=page_size,
            filters=[Filter(cfg["address"], "not_null")],
            retry_config=self.retry_config,
            cancel=cancel,
        )
        try:
            for page in pages:
                records = [LocationRecord.from_row(entity, row, cfg) for row in page]
                self.counts["scanned"] += len(records)
                eligible = []
                for record in records:
                    if not (record.address or "").strip():
                        continue
                    if not should_regeocode(record, self.precision_threshold):
                        self.counts["skipped_precision"] += 1
                        continue
                    eligible.append(record)
                self.counts["eligible"] += len(eligible)

                futures = [(record, executor.submit(self.orchestrator.geocode, record.address)) for record in eligible]
                for record, future in futures:
                    try:
                        result = future.result()
                    except Exception as exc:
                        self._record_geocode_failure(record, exc)
                        continue
                    self._persist(cfg, record, result)
        except StoreError as exc:
            self.failures.append({"entity": entity, "message": str(exc), "error_code": exc.error_code})
            log_event(
                self.logger,
                f"geocode scan of {entity} aborted: {exc}",
                level=logging.ERROR,
                run_id=self.run_id,
                stage="geocode",
                entity=entity,
                event="PAGE_FETCH_FAILED",
                status="error",
                error_code=exc.error_code,
            )

    def _record_geocode_failure(self, record: LocationRecord, exc: Exception) -> None:
        error_code = getattr(exc, "error_code", "UNEXPECTED_ERROR")
        self.counts["failed"] += 1
        self.failures.append(
            {
                "entity": record.entity,
                "record_id": record.record_id,
                "message": str(exc),
                "error_code": error_code,
            }
        )
        log_event(
            self.logger,
            f"geocode of {record.entity} {record.record_id} raised: {exc}",
            level=logging.ERROR,
            run_id=self.run_id,
            stage="geocode",
            entity=record.entity,
            record_id=record.record_id,
            event="GEOCODE_FAILED",
            status="error",
            error_code=error_code,
        )

    def _label_for(self, cfg: Mapping[str, Any], record: LocationRecord, result: GeocodeResult) -> tuple[str | None, bool]:
        """Label to write and whether to write it at all."""
        if not result.success or result.coordinate is None:
            return None, True
        if cfg.get("skip_international") and is_international_event(record.name):
            self.counts["international"] += 1
            return None, True

        resolution = self.resolver.resolve(result.coordinate.lat, result.coordinate.lng)
        if resolution.is_resolved:
            self.counts["labelled"] += 1
            return resolution.territory, True

        self.counts["manual_review"] += 1
        self.manual_review.append(
            {
                "entity": record.entity,
                "record_id": record.record_id,
                "label": record.territory,
                "reason": resolution.status,
                "candidates": list(resolution.candidates),
            }
        )
        return record.territory, False

    def _persist(self, cfg: Mapping[str, Any], record: LocationRecord, result: GeocodeResult) -> None:
        if result.success:
            self.counts["geocoded"] += 1
        elif result.status == STATUS_UNRESOLVED:
            self.counts["unresolved"] += 1
        else:
            self.counts["failed"] += 1
        if result.placeholder:
            self.counts["placeholders"] += 1
            self.placeholders.append(
                {"entity": record.entity, "record_id": record.record_id, "placeholder": result.placeholder}
            )

        label, write_label = self._label_for(cfg, record, result)
        values = build_update(cfg, result, label=label, write_label=write_label)
        try:
            self.store.update(cfg["table"], cfg["key"], record.record_id, values)
        except StoreError as exc:
            self.counts["write_failures"] += 1
            self.failures.append(
                {
                    "entity": record.entity,
                    "record_id": record.record_id,
                    "message": str(exc),
                    "error_code": exc.error_code,
                }
            )
            log_event(
                self.logger,
                f"failed to persist geocode for {record.entity} {record.record_id}: {exc}",
                level=logging.ERROR,
                run_id=self.run_id,
                stage="geocode",
                entity=record.entity,
                record_id=record.record_id,
                event="WRITE_FAILED",
                status="error",
                error_code=exc.error_code,
            )
            return

        self.counts["written"] += 1
        log_event(
            self.logger,
            f"geocoded {record.entity} {record.record_id}: {result.status}",
            run_id=self.run_id,
            stage="geocode",
            entity=record.entity,
            record_id=record.record_id,
            territory=label if write_label else None,
            event="GEOCODE_WRITTEN",
            status=result.status,
            attempt=len(result.attempts),
        )

    def report(self, *, cancelled: bool = False) -> dict[str, Any]:
        status = STATUS_SUCCESS
        if self.failures:
            status = STATUS_ERROR if self.counts["scanned"] == 0 else STATUS_PARTIAL
        return {
            "run_id": self.run_id,
            "stage": "geocode",
            "status": status,
            "cancelled": cancelled,
            "counts": dict(self.counts),
            "manual_review": self.manual_review,
            "placeholders": self.placeholders,
            "failures": self.failures,
        }


def run_geocode(
    *,
    store: LocationStore,
    resolver: PointResolver,
    orchestrator: GeocodeOrchestrator,
    entities: Mapping[str, Mapping[str, Any]],
    run_id: str,
    page_size: int = 100,
    targets: Sequence[str] | None = None,
    workers: int = 2,
    precision_threshold: int = DEFAULT_PRECISION_THRESHOLD,
    retry_config: RetryConfig | None = None,
    cancel: threading.Event | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, Any]:
    runner = GeocodeRunner(
        store,
        resolver,
        orchestrator,
        entities,
        run_id=run_id,
        workers=workers,
        precision_threshold=precision_threshold,
        retry_config=retry_config,
        logger=logger,
    )
    return runner.run(page_size, targets=targets, cancel=cancel)
