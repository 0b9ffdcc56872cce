"""Run reports for consistency and geocode passes."""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Any, Iterable

from territory_sync.common.fs import write_json, write_text
from territory_sync.consistency.findings import (
    FAILED,
    REASON_CONFLICT,
    REASON_MANUAL_REVIEW,
    SKIPPED,
    ConsistencyFinding,
    RepairOutcome,
)

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_ERROR = "error"


def report_paths(data_dir: Path, run_id: str, name: str) -> tuple[Path, Path]:
    base = data_dir / "out" / "reports" / f"{run_id}_{name}"
    return base.with_suffix(".json"), base.with_suffix(".txt")


def manual_review_entries(outcomes: Iterable[RepairOutcome]) -> list[dict[str, Any]]:
    entries = []
    for outcome in outcomes:
        if outcome.status != SKIPPED or outcome.reason not in (REASON_MANUAL_REVIEW, REASON_CONFLICT):
            continue
        finding = outcome.finding
        entries.append(
            {
                "entity": finding.entity,
                "record_id": finding.record_id,
                "label": finding.label,
                "finding": finding.kind,
                "reason": outcome.reason,
                "detail": outcome.detail,
                "candidates": list(outcome.candidates),
            }
        )
    return entries


def consistency_status(outcomes: list[RepairOutcome], failures: list[dict], records_scanned: int) -> str:
    if failures and records_scanned == 0:
        return STATUS_ERROR
    if failures or any(outcome.status == FAILED for outcome in outcomes):
        return STATUS_PARTIAL
    if any(outcome.reason == REASON_CONFLICT for outcome in outcomes):
        return STATUS_PARTIAL
    return STATUS_SUCCESS


def build_consistency_report(
    *,
    run_id: str,
    mode: str,
    findings: list[ConsistencyFinding],
    outcomes: list[RepairOutcome],
    failures: list[dict[str, Any]],
    records_scanned: int,
    checkpoint: dict[str, Any],
    cancelled: bool = False,
) -> dict[str, Any]:
    by_kind = Counter(finding.kind for finding in findings)
    by_reason = Counter(f"{finding.kind}:{finding.reason}" for finding in findings)
    by_status = Counter(outcome.status for outcome in outcomes)
    by_outcome_reason = Counter(f"{outcome.status}:{outcome.reason}" for outcome in outcomes)
    return {
        "run_id": run_id,
        "mode": mode,
        "status": consistency_status(outcomes, failures, records_scanned),
        "cancelled": cancelled,
        "records_scanned": records_scanned,
        "checkpoint": checkpoint,
        "findings": {
            "total": len(findings),
            "by_kind": dict(sorted(by_kind.items())),
            "by_reason": dict(sorted(by_reason.items())),
        },
        "outcomes": {
            "total": len(outcomes),
            "by_status": dict(sorted(by_status.items())),
            "by_reason": dict(sorted(by_outcome_reason.items())),
            "rows_written": sum(outcome.rows_written for outcome in outcomes),
        },
        "manual_review": manual_review_entries(outcomes),
        "failures": failures,
        "finding_details": [finding.to_dict() for finding in findings],
    }


def render_text(report: dict[str, Any]) -> str:
    lines = [
        f"run: {report['run_id']} ({report.get('mode', report.get('stage', '-'))})",
        f"status: {report['status']}",
    ]
    if "records_scanned" in report:
        lines.append(f"records scanned: {report['records_scanned']}")
    for section in ("findings", "outcomes", "counts"):
        data = report.get(section)
        if not data:
            continue
        lines.append(f"{section}:")
        for key, value in data.items():
            if isinstance(value, dict):
                for sub_key, count in value.items():
                    lines.append(f"  {key} {sub_key}: {count}")
            else:
                lines.append(f"  {key}: {value}")
    review = report.get("manual_review") or []
    lines.append(f"manual review: {len(review)}")
    for entry in review:
        extra = f" candidates={','.join(entry['candidates'])}" if entry.get("candidates") else ""
        lines.append(f"  {entry['entity']} {entry['record_id']}: {entry.get('detail') or entry['reason']}{extra}")
    failures = report.get("failures") or []
    lines.append(f"failures: {len(failures)}")
    for failure in failures:
        lines.append(f"  {failure.get('entity')} {failure.get('record_id', failure.get('after_key'))}: {failure['message']}")
    return "\n".join(lines) + "\n"


def write_report(data_dir: Path, run_id: str, name: str, report: dict[str, Any]) -> Path:
    json_path, text_path = report_paths(data_dir, run_id, name)
    write_json(json_path, report)
    write_text(text_path, render_text(report))
    return json_path
