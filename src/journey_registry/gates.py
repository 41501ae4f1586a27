from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Callable

from .backends import LintBackend
from .corpus import Artifact, ArtifactCorpus, strip_comments, verification_pattern
from .errors import ContractGapError, JourneyError, TraceabilityError
from .lifecycle import validate_record
from .models import JourneyRecord, Severity
from .rules import ANTI_PATTERN, IMPORT_BOUNDARY, rules_for
from .settings import RegistrySettings

logger = logging.getLogger(__name__)

SCHEMA = "schema"
TRACEABILITY = "traceability"
CONTRACT_MAPPING = "contract-mapping"

Finding = tuple[JourneyError, Severity]


@dataclass
class GateContext:
    record: JourneyRecord
    corpus: ArtifactCorpus
    settings: RegistrySettings
    backend: LintBackend
    source: str | None = None
    notes: dict[str, str] = field(default_factory=dict)
    scanned: set[str] = field(default_factory=set)

    @cached_property
    def artifacts(self) -> list[Artifact]:
        """Listed tests that exist, plus unlisted artifacts carrying the record's tag."""
        paths = {self.corpus.key(path) for path in self.record.tests if not self.corpus.escapes(path)}
        if self.record.id:
            paths.update(self.corpus.tagged_with(self.record.id))
        found: list[Artifact] = []
        for path in sorted(paths):
            artifact = self.corpus.read(path)
            if artifact is not None:
                found.append(artifact)
        return found

    def reset_artifacts(self) -> None:
        self.__dict__.pop("artifacts", None)


@dataclass(frozen=True)
class Gate:
    name: str
    run: Callable[[GateContext], list[Finding]]
    # Strict mode promotes every warning of these gates to error.
    promotable: bool = True


def run_schema(ctx: GateContext) -> list[Finding]:
    errors = validate_record(ctx.record, settings=ctx.settings, source=ctx.source)
    return [(error, Severity.ERROR) for error in errors]


def _first_tag_line(artifact: Artifact, record_id: str) -> int | None:
    for line_no, line in enumerate(artifact.lines, start=1):
        if f"@{record_id}" in line:
            return line_no
    return None


def run_traceability(ctx: GateContext) -> list[Finding]:
    record = ctx.record
    if not record.id:
        return [(TraceabilityError("record has no id; cannot trace artifacts", file=ctx.source), Severity.ERROR)]

    findings: list[Finding] = []
    listed: set[str] = set()
    for rel_path in record.tests:
        listed.add(ctx.corpus.key(rel_path))
        if ctx.corpus.escapes(rel_path):
            findings.append(
                (TraceabilityError(f"test path escapes the repository root: {rel_path}", code="path-escape", file=ctx.source), Severity.ERROR)
            )
            continue
        artifact = ctx.corpus.read(rel_path)
        if artifact is None:
            findings.append(
                (TraceabilityError(f"listed test artifact does not exist: {rel_path}", code="missing-artifact", file=rel_path), Severity.ERROR)
            )
        elif not artifact.has_tag(record.id):
            findings.append(
                (TraceabilityError(f"listed test artifact lacks tag {record.tag}", code="missing-tag", file=rel_path), Severity.ERROR)
            )

    tagged = ctx.corpus.tagged_with(record.id)
    for rel_path in tagged:
        if rel_path in listed:
            continue
        artifact = ctx.corpus.read(rel_path)
        line = _first_tag_line(artifact, record.id) if artifact is not None else None
        findings.append(
            (
                TraceabilityError(
                    f"artifact carries tag {record.tag} but is not listed in the record's tests",
                    code="unlisted-artifact",
                    file=rel_path,
                    line=line,
                ),
                Severity.ERROR,
            )
        )

    if not record.tests and not tagged:
        findings.append(
            (TraceabilityError("no implementation artifacts are linked to this record", code="no-artifacts", file=ctx.source), Severity.WARNING)
        )
    return findings


def _lint(ctx: GateContext, gate: str) -> list[Finding]:
    rules = rules_for(gate, ctx.settings)
    if not rules or not ctx.artifacts:
        return []
    by_id = {rule.rule_id: rule for rule in rules}
    violations = ctx.backend.scan(ctx.artifacts, rules)
    ctx.notes[gate] = ctx.backend.name
    ctx.scanned.add(gate)
    return [(violation, by_id[violation.code].effective_severity(ctx.settings)) for violation in violations]


def run_import_boundary(ctx: GateContext) -> list[Finding]:
    if not ctx.settings.sanctioned_import or not ctx.settings.disallowed_imports:
        ctx.notes[IMPORT_BOUNDARY] = "no sanctioned wrapper configured"
        return []
    return _lint(ctx, IMPORT_BOUNDARY)


def run_anti_pattern(ctx: GateContext) -> list[Finding]:
    return _lint(ctx, ANTI_PATTERN)


def unverified_severity(record: JourneyRecord, settings: RegistrySettings) -> Severity:
    """Severity of a marker that exists but contains no verification call."""
    if settings.contract == "strict":
        return Severity.ERROR
    if settings.contract == "basic":
        return Severity.WARNING
    if all(criterion.explicit for criterion in record.acceptance_criteria):
        return Severity.ERROR
    return Severity(settings.contract_auto_unverified)


def run_contract_mapping(ctx: GateContext) -> list[Finding]:
    record = ctx.record
    if not record.acceptance_criteria:
        severity = Severity.ERROR if ctx.settings.contract == "strict" else Severity.WARNING
        return [(ContractGapError("record has no acceptance criteria to map", code="no-criteria", file=ctx.source), severity)]

    verifies = verification_pattern(ctx.settings.verification_calls)
    markers_by_ac: dict[str, list[tuple[Artifact, int, bool]]] = {}
    for artifact in ctx.artifacts:
        for marker in artifact.markers:
            if marker.is_describe:
                continue
            verified = marker.body is not None and verifies.search(strip_comments(marker.body)) is not None
            for ac_id in marker.ac_ids:
                markers_by_ac.setdefault(ac_id, []).append((artifact, marker.line, verified))

    findings: list[Finding] = []
    unverified = unverified_severity(record, ctx.settings)
    for criterion in record.acceptance_criteria:
        markers = markers_by_ac.get(criterion.id, [])
        if not markers:
            findings.append(
                (
                    ContractGapError(
                        f"{criterion.id} has no test or test.step marker referencing it",
                        code="contract-missing",
                        file=ctx.source,
                    ),
                    Severity.ERROR,
                )
            )
            continue
        if any(verified for _, _, verified in markers):
            continue
        artifact, line, _ = markers[0]
        findings.append(
            (
                ContractGapError(
                    f"{criterion.id} marker contains no verification call ({', '.join(ctx.settings.verification_calls)})",
                    code="contract-unverified",
                    file=artifact.path,
                    line=line,
                ),
                unverified,
            )
        )
    return findings


GATES: tuple[Gate, ...] = (
    Gate(SCHEMA, run_schema),
    Gate(TRACEABILITY, run_traceability),
    Gate(IMPORT_BOUNDARY, run_import_boundary),
    Gate(ANTI_PATTERN, run_anti_pattern),
    # Contract severities come from the contract setting, not from strict promotion.
    Gate(CONTRACT_MAPPING, run_contract_mapping, promotable=False),
)

MODE_GATES: dict[str, tuple[str, ...]] = {
    "quick": (SCHEMA, TRACEABILITY, ANTI_PATTERN),
    "standard": (SCHEMA, TRACEABILITY, IMPORT_BOUNDARY, ANTI_PATTERN, CONTRACT_MAPPING),
    "max": (SCHEMA, TRACEABILITY, IMPORT_BOUNDARY, ANTI_PATTERN, CONTRACT_MAPPING),
}


def gates_for_mode(mode: str) -> list[Gate]:
    selected = MODE_GATES[mode]
    return [gate for gate in GATES if gate.name in selected]
