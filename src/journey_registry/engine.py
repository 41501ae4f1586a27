from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path

from .autofix import apply_autofixes
from .backends import LintBackend, select_backend
from .corpus import ArtifactCorpus
from .errors import JourneyError, SchemaError
from .gates import SCHEMA, GateContext, gates_for_mode
from .models import AutofixChange, GateResult, JourneyRecord, Severity, ValidationIssue, ValidationReport
from .settings import RegistrySettings
from .state_store import JourneyStore
from .utils import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationOptions:
    """Per-run overrides of the configured validation settings."""

    strict: bool | None = None
    mode: str | None = None
    contract: str | None = None
    autofix: str | None = None
    lint_backend: str | None = None
    dry_run: bool = False

    def apply(self, settings: RegistrySettings) -> RegistrySettings:
        overrides = {
            name: value
            for name, value in (
                ("strict", self.strict),
                ("mode", self.mode),
                ("contract", self.contract),
                ("autofix", self.autofix),
                ("lint_backend", self.lint_backend),
            )
            if value is not None
        }
        if not overrides:
            return settings
        return replace(settings, **overrides).normalized()


def _final_severity(severity: Severity, *, strict: bool, promotable: bool) -> Severity:
    if severity == Severity.INFO:
        return severity
    if not strict:
        return Severity.WARNING
    return Severity.ERROR if promotable else severity


def _internal_issue(gate: str, exc: Exception) -> ValidationIssue:
    return ValidationIssue(
        rule_id="internal",
        kind="internal",
        severity=Severity.ERROR,
        message=f"gate '{gate}' failed unexpectedly: {type(exc).__name__}: {exc}",
        gate=gate,
    )


class ValidationEngine:
    """Runs the gate pipeline for one record and returns a ``ValidationReport``.

    The engine never raises past the pipeline boundary: load failures and
    unexpected gate exceptions become error issues in the report.
    """

    def __init__(
        self,
        settings: RegistrySettings,
        repo_root: Path | None = None,
        *,
        backend: LintBackend | None = None,
    ) -> None:
        self.settings = settings
        self.repo_root = repo_root or Path.cwd()
        self.backend = backend

    def validate(
        self,
        record_id: str,
        corpus: ArtifactCorpus | None = None,
        *,
        store: JourneyStore | None = None,
        options: ValidationOptions | None = None,
    ) -> ValidationReport:
        store = store or JourneyStore(self.repo_root, self.settings)
        snapshot = store.snapshot()
        stored = snapshot.find(record_id)
        if stored is None:
            load_errors = [error for error in snapshot.errors if record_id in str(error.file or "")]
            error = load_errors[0] if load_errors else SchemaError(f"journey not found: {record_id}", code="not-found")
            return self._failed_load(record_id, error, options)
        return self.validate_record(stored.record, corpus, options=options, source=stored.rel_path)

    def _failed_load(self, record_id: str, error: JourneyError, options: ValidationOptions | None) -> ValidationReport:
        settings = (options or ValidationOptions()).apply(self.settings)
        issue = error.to_issue(_final_severity(Severity.ERROR, strict=settings.strict, promotable=True), gate=SCHEMA)
        gates = [GateResult.from_issues(SCHEMA, [issue])]
        gates.extend(GateResult.skipped(gate.name, "schema gate failed") for gate in gates_for_mode(settings.mode)[1:])
        return self._report(record_id, settings, gates, [], backend_name="none")

    def validate_record(
        self,
        record: JourneyRecord,
        corpus: ArtifactCorpus | None = None,
        *,
        options: ValidationOptions | None = None,
        source: str | None = None,
    ) -> ValidationReport:
        opts = options or ValidationOptions()
        settings = opts.apply(self.settings)
        corpus = corpus or ArtifactCorpus(self.repo_root, settings.artifact_globs)
        if not corpus.globs:
            corpus.globs = settings.artifact_globs
        backend = self.backend or select_backend(settings, corpus.root)
        record_id = record.id or "<unallocated>"

        fixes: list[AutofixChange] = []
        ctx = GateContext(record=record, corpus=corpus, settings=settings, backend=backend, source=source)
        results: list[GateResult] = []
        skip_reason: str | None = None
        for gate in gates_for_mode(settings.mode):
            if skip_reason is not None:
                results.append(GateResult.skipped(gate.name, skip_reason))
                continue
            crashed = False
            try:
                findings = gate.run(ctx)
                issues = [
                    error.to_issue(_final_severity(severity, strict=settings.strict, promotable=gate.promotable), gate=gate.name)
                    for error, severity in findings
                ]
            except Exception as exc:  # noqa: BLE001
                logger.exception("Gate %s crashed for %s", gate.name, record_id)
                findings = []
                issues = [_internal_issue(gate.name, exc)]
                crashed = True
            if gate.name in ctx.scanned:
                issues.extend(notice.to_issue(Severity.INFO, gate=gate.name) for notice in backend.take_notices())
            schema_failed = gate.name == SCHEMA and (crashed or any(severity == Severity.ERROR for _, severity in findings))
            if gate.name == SCHEMA and not schema_failed:
                # Artifacts are only rewritten for a record that passed the schema gate.
                try:
                    fixes = apply_autofixes(record, corpus, settings, dry_run=opts.dry_run)
                except OSError as exc:
                    logger.error("Autofix failed for %s: %s", record_id, exc)
                    issues.append(_internal_issue("autofix", exc))
                ctx.reset_artifacts()
            results.append(GateResult.from_issues(gate.name, issues, detail=ctx.notes.get(gate.name)))
            if schema_failed:
                skip_reason = "schema gate failed"

        return self._report(record_id, settings, results, fixes, backend_name=backend.name)

    def _report(
        self,
        record_id: str,
        settings: RegistrySettings,
        gates: list[GateResult],
        fixes: list[AutofixChange],
        *,
        backend_name: str,
    ) -> ValidationReport:
        passed = not any(issue.severity == Severity.ERROR for gate in gates for issue in gate.issues)
        report = ValidationReport(
            record_id=record_id,
            passed=passed,
            strict=settings.strict,
            mode=settings.mode,
            contract=settings.contract,
            backend=backend_name,
            generated_at=utc_now_iso(),
            settings=settings.as_report_dict(),
            gates=gates,
            fixes=fixes,
        )
        logger.info(
            "Validated %s: %s (%d error(s), %d warning(s))",
            record_id,
            "pass" if passed else "fail",
            report.count(Severity.ERROR),
            report.count(Severity.WARNING),
        )
        return report
