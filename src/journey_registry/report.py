from __future__ import annotations

import difflib
import json
import logging
from pathlib import Path

from . import regions
from .models import Severity, ValidationReport
from .settings import RegistrySettings
from .state_store import JourneyStore, RegistrySnapshot, StoredRecord, atomic_write_text
from .utils import relative_posix

logger = logging.getLogger(__name__)


def _cell(value: str) -> str:
    return value.replace("|", "\\|").replace("\n", " ")


def render_markdown(report: ValidationReport) -> str:
    """Human-readable report; a pure function of *report*."""
    outcome = "PASS" if report.passed else "FAIL"
    lines = [
        f"# Validation report: {report.record_id}",
        "",
        f"- Result: **{outcome}**",
        f"- Mode: {report.mode}",
        f"- Strict: {'yes' if report.strict else 'no'}",
        f"- Contract: {report.contract}",
        f"- Backend: {report.backend}",
        f"- Generated: {report.generated_at}",
        "",
        "## Gates",
        "",
        "| Gate | Status | Errors | Warnings | Info | Detail |",
        "|---|---|---:|---:|---:|---|",
    ]
    for gate in report.gates:
        counts = {severity: sum(1 for issue in gate.issues if issue.severity == severity) for severity in Severity}
        lines.append(
            f"| {gate.name} | {gate.status.value} | {counts[Severity.ERROR]} | {counts[Severity.WARNING]} "
            f"| {counts[Severity.INFO]} | {_cell(gate.detail or '')} |"
        )
    lines.extend(["", "## Issues", ""])
    if report.issues:
        lines.extend(["| Severity | Gate | Rule | Kind | Location | Message |", "|---|---|---|---|---|---|"])
        for issue in report.issues:
            lines.append(
                f"| {issue.severity.value} | {issue.gate} | {issue.rule_id} | {issue.kind} "
                f"| {_cell(issue.location)} | {_cell(issue.message)} |"
            )
    else:
        lines.append("No issues.")
    lines.extend(["", "## Autofixes", ""])
    if report.fixes:
        for fix in report.fixes:
            lines.append(f"- `{fix.fix}` {fix.file}:{fix.line}")
            lines.append(f"  - before: `{fix.before.strip()}`")
            lines.append(f"  - after: `{fix.after.strip()}`")
    else:
        lines.append("None applied.")
    lines.extend(["", "## Settings", "", "```json", json.dumps(report.settings, indent=2, sort_keys=True), "```", ""])
    return "\n".join(lines)


def render_json(report: ValidationReport) -> str:
    return report.model_dump_json(indent=2) + "\n"


def report_paths(report: ValidationReport, settings: RegistrySettings, repo_root: Path) -> tuple[Path, Path]:
    reports_dir = settings.reports_path(repo_root)
    return reports_dir / f"{report.record_id}.md", reports_dir / f"{report.record_id}.json"


def emit_report(report: ValidationReport, settings: RegistrySettings, repo_root: Path) -> tuple[Path, Path]:
    """Write ``<reports>/<ID>.md`` and ``<reports>/<ID>.json``."""
    markdown_path, json_path = report_paths(report, settings, repo_root)
    atomic_write_text(markdown_path, render_markdown(report))
    atomic_write_text(json_path, render_json(report))
    logger.info("Wrote validation report %s", markdown_path)
    return markdown_path, json_path


def render_status_block(report: ValidationReport, report_path: str | None = None) -> str:
    """Content of the ``validation-status`` region for *report*."""
    outcome = "PASS" if report.passed else "FAIL"
    gates = ", ".join(f"{gate.name} {gate.status.value}" for gate in report.gates)
    lines = [
        f"**Last validation:** {outcome} ({'strict' if report.strict else 'non-strict'}, {report.mode}) at {report.generated_at}",
        "",
        f"- Gates: {gates}",
        f"- Errors: {report.count(Severity.ERROR)}, warnings: {report.count(Severity.WARNING)}",
        f"- Backend: {report.backend}",
    ]
    if report.fixes:
        lines.append(f"- Autofixes applied: {len(report.fixes)}")
    if report_path:
        lines.append(f"- Report: `{report_path}`")
    return "\n".join(lines)


def merge_status_block(
    store: JourneyStore,
    report: ValidationReport,
    *,
    snapshot: RegistrySnapshot,
    report_path: str | None = None,
) -> StoredRecord:
    """Write the status block into the record through the store's region discipline."""
    return store.update_region(
        report.record_id,
        regions.VALIDATION_STATUS,
        render_status_block(report, report_path),
        snapshot=snapshot,
    )


def current_status_block(stored: StoredRecord) -> str:
    return regions.parse_regions(stored.body).get(regions.VALIDATION_STATUS, "")


def diff_status_block(old: str, new: str, *, label: str = "validation-status") -> str:
    """Unified diff between two status blocks; empty when identical."""
    return "".join(
        difflib.unified_diff(
            _as_lines(old),
            _as_lines(new),
            fromfile=f"a/{label}",
            tofile=f"b/{label}",
        )
    )


def _as_lines(block: str) -> list[str]:
    if not block:
        return []
    return (block if block.endswith("\n") else f"{block}\n").splitlines(keepends=True)


def relative_report_path(path: Path, repo_root: Path) -> str:
    return relative_posix(path, repo_root)
