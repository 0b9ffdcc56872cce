"""CLI entrypoint for territory label geocoding and consistency maintenance."""

from __future__ import annotations

import argparse
import json
import sys
import threading
import time
from pathlib import Path
from typing import Any

from territory_sync.common.config_loader import ConfigBundle, load_all_configs, resolve_entities, store_credentials
from territory_sync.common.constants import (
    DEFAULT_PRECISION_THRESHOLD,
    EXIT_HARD_FAIL,
    EXIT_PARTIAL,
    EXIT_SUCCESS,
    STAGES,
)
from territory_sync.common.errors import ConfigurationError, PipelineError
from territory_sync.common.http import RetryConfig, TimeoutConfig
from territory_sync.common.ids import generate_run_id
from territory_sync.common.logging import build_logger, log_event
from territory_sync.common.models import safe_float
from territory_sync.common.time_utils import elapsed_ms
from territory_sync.consistency.reports import STATUS_ERROR, STATUS_PARTIAL, write_report
from territory_sync.consistency.runner import MODE_REPAIR, MODE_VALIDATE, run_consistency
from territory_sync.geocode.orchestrator import GeocodeOrchestrator
from territory_sync.geocode.provider import NominatimGeocoder
from territory_sync.geocode.runner import run_geocode
from territory_sync.store.memory import MemoryStore
from territory_sync.store.postgrest import PostgrestStore
from territory_sync.territory.index import TerritoryIndex, load_territory_index
from territory_sync.territory.resolver import PointResolver


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=[*STAGES, "resolve", "all"])
    parser.add_argument("--entity", default="all")
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--config-dir", default="./config")
    parser.add_argument("--overlay-config-dir", default=None)
    parser.add_argument("--data-dir", default="./data")
    parser.add_argument("--snapshot", default=None)
    parser.add_argument("--page-size", type=int, default=None)
    parser.add_argument("--lat", default=None)
    parser.add_argument("--lng", default=None)
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARN", "ERROR"])
    parser.add_argument("--strict", action="store_true")
    return parser.parse_args(argv)


def build_store(bundle: ConfigBundle, snapshot: str | None):
    store_cfg = bundle.pipeline["store"]
    snapshot_path = snapshot or (store_cfg.get("snapshot") if store_cfg["kind"] == "snapshot" else None)
    if snapshot_path:
        return MemoryStore.from_snapshot(Path(snapshot_path)), Path(snapshot_path)
    if store_cfg["kind"] == "snapshot":
        raise ConfigurationError("store.kind is snapshot but no snapshot path was given")
    url, key = store_credentials(store_cfg)
    store = PostgrestStore(
        url,
        key,
        retry_config=RetryConfig.from_mapping(store_cfg.get("retry")),
        timeout=TimeoutConfig.from_mapping(store_cfg.get("timeout")),
    )
    return store, None


def build_orchestrator(bundle: ConfigBundle, logger) -> GeocodeOrchestrator:
    geocoder_cfg = bundle.pipeline["geocoder"]
    geocoder = NominatimGeocoder(
        geocoder_cfg["endpoint"],
        country_codes=geocoder_cfg.get("country_codes", "us"),
        rate_per_sec=float(geocoder_cfg.get("rate_per_sec", 0.9)),
        timeout=TimeoutConfig.from_mapping(geocoder_cfg.get("timeout")),
        user_agent=geocoder_cfg.get("user_agent"),
    )
    return GeocodeOrchestrator(
        geocoder,
        retry=RetryConfig.from_mapping(geocoder_cfg.get("retry")),
        logger=logger,
    )


def resolve_point(index: TerritoryIndex, lat: Any, lng: Any, logger) -> dict[str, Any]:
    parsed_lat = safe_float(lat)
    parsed_lng = safe_float(lng)
    if parsed_lat is None or parsed_lng is None:
        raise ConfigurationError("resolve needs numeric --lat and --lng")
    resolution = PointResolver(index, logger=logger).resolve(parsed_lat, parsed_lng)
    return {
        "lat": parsed_lat,
        "lng": parsed_lng,
        "status": resolution.status,
        "territory": resolution.territory,
        "method": resolution.method,
        "candidates": list(resolution.candidates),
    }


def exit_code_for(statuses: list[str], strict: bool) -> int:
    if STATUS_ERROR in statuses:
        return EXIT_HARD_FAIL
    if STATUS_PARTIAL in statuses:
        return EXIT_HARD_FAIL if strict else EXIT_PARTIAL
    return EXIT_SUCCESS


def run_stage(
    stage: str,
    *,
    bundle: ConfigBundle,
    store,
    index: TerritoryIndex,
    resolver: PointResolver,
    run_id: str,
    page_size: int,
    targets: list[str],
    retry_config: RetryConfig,
    cancel: threading.Event | None,
    logger,
) -> dict[str, Any]:
    entities = bundle.pipeline["entities"]
    if stage == "geocode":
        geocoder_cfg = bundle.pipeline["geocoder"]
        orchestrator = build_orchestrator(bundle, logger)
        try:
            return run_geocode(
                store=store,
                resolver=resolver,
                orchestrator=orchestrator,
                entities=entities,
                run_id=run_id,
                page_size=page_size,
                targets=targets,
                workers=int(geocoder_cfg.get("workers", 2)),
                precision_threshold=int(geocoder_cfg.get("precision_threshold", DEFAULT_PRECISION_THRESHOLD)),
                retry_config=retry_config,
                cancel=cancel,
                logger=logger,
            )
        finally:
            orchestrator.geocoder.close()
    return run_consistency(
        store=store,
        index=index,
        entities=entities,
        run_id=run_id,
        mode=MODE_VALIDATE if stage == "validate" else MODE_REPAIR,
        page_size=page_size,
        targets=targets,
        resolver=resolver,
        retry_config=retry_config,
        conflict_attempts=int((bundle.pipeline.get("repair") or {}).get("conflict_attempts", 2)),
        cancel=cancel,
        logger=logger,
    )


def run_command(args: argparse.Namespace, *, cancel: threading.Event | None = None) -> int:
    run_id = args.run_id or generate_run_id()
    config_dir = Path(args.config_dir)
    overlay_config_dir = Path(args.overlay_config_dir) if args.overlay_config_dir else None
    data_dir = Path(args.data_dir)

    logger = build_logger(run_id, data_dir=data_dir, level=args.log_level)
    bundle = load_all_configs(config_dir, overlay_config_dir=overlay_config_dir)
    index = load_territory_index(bundle)

    if args.command == "resolve":
        print(json.dumps(resolve_point(index, args.lat, args.lng, logger), sort_keys=True))
        return EXIT_SUCCESS

    targets = resolve_entities(bundle, args.entity)
    page_size = args.page_size or int(bundle.pipeline["store"]["page_size"])
    retry_config = RetryConfig.from_mapping(bundle.pipeline["store"].get("retry"))
    store, snapshot_path = build_store(bundle, args.snapshot)
    resolver = PointResolver(index, logger=logger)
    stages = ("geocode", "repair") if args.command == "all" else (args.command,)

    statuses: list[str] = []
    try:
        for stage in stages:
            started = time.monotonic()
            log_event(logger, "stage start", run_id=run_id, stage=stage, event="STAGE_START", status="ok")
            report = run_stage(
                stage,
                bundle=bundle,
                store=store,
                index=index,
                resolver=resolver,
                run_id=run_id,
                page_size=page_size,
                targets=targets,
                retry_config=retry_config,
                cancel=cancel,
                logger=logger,
            )
            write_report(data_dir, run_id, "geocode" if stage == "geocode" else "consistency", report)
            statuses.append(report["status"])
            if snapshot_path is not None and stage != "validate":
                store.save_snapshot(snapshot_path)
            log_event(
                logger,
                "stage end",
                run_id=run_id,
                stage=stage,
                event="STAGE_END",
                status=report["status"],
                duration_ms=elapsed_ms(started),
            )
            if args.strict and report["status"] != "success":
                break
    finally:
        if isinstance(store, PostgrestStore):
            store.close()

    return exit_code_for(statuses, args.strict)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    try:
        return run_command(args)
    except PipelineError as exc:
        print(f"{exc.error_code}: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
