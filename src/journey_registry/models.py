from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

AC_ID_RE = re.compile(r"^AC-(\d+)$")


class JourneyStatus(str, Enum):
    PROPOSED = "proposed"
    DEFINED = "defined"
    CLARIFIED = "clarified"
    IMPLEMENTED = "implemented"
    QUARANTINED = "quarantined"
    DEPRECATED = "deprecated"


FORWARD_STATUSES: tuple[JourneyStatus, ...] = (
    JourneyStatus.PROPOSED,
    JourneyStatus.DEFINED,
    JourneyStatus.CLARIFIED,
    JourneyStatus.IMPLEMENTED,
)
TERMINAL_STATUSES = frozenset({JourneyStatus.QUARANTINED, JourneyStatus.DEPRECATED})


def _build_status_transitions() -> dict[JourneyStatus, frozenset[JourneyStatus]]:
    transitions: dict[JourneyStatus, frozenset[JourneyStatus]] = {}
    for idx, status in enumerate(FORWARD_STATUSES):
        transitions[status] = frozenset(FORWARD_STATUSES[idx + 1 :]) | TERMINAL_STATUSES
    for status in TERMINAL_STATUSES:
        transitions[status] = frozenset()
    return transitions


# Forward moves may skip stages; side-exits are reachable from any live status.
JOURNEY_STATUS_TRANSITIONS: dict[JourneyStatus, frozenset[JourneyStatus]] = _build_status_transitions()


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class GateStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"
    SKIP = "skip"


class AcceptanceCriterion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    text: str
    explicit: bool = True

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        return normalize_ac_id(value)


class Provenance(BaseModel):
    model_config = ConfigDict(extra="forbid")

    by: str
    at: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class JourneyRecord(BaseModel):
    """One Journey: metadata header fields plus the content of its managed regions.

    ``body`` holds the raw Markdown body as last read from disk so that prose
    outside the managed regions survives a rewrite.  It is ``None`` for
    records that have never been persisted.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str | None = None
    title: str = ""
    status: JourneyStatus = JourneyStatus.PROPOSED
    tier: str = ""
    actor: str = ""
    scope: str = ""
    owner: str | None = None
    issue: str | None = None
    replaced_by: str | None = None
    status_reason: str | None = None
    tags: list[str] = Field(default_factory=list)
    tests: list[str] = Field(default_factory=list)
    provenance: Provenance | None = None
    # Header keys this package does not manage (links, modules, ...); written back unchanged.
    extensions: dict[str, Any] = Field(default_factory=dict)

    intent: str = ""
    acceptance_criteria: list[AcceptanceCriterion] = Field(default_factory=list)
    procedural_steps: list[str] = Field(default_factory=list)
    preconditions: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)

    body: str | None = Field(default=None, exclude=True)

    @field_validator("tests", mode="before")
    @classmethod
    def _coerce_tests(cls, value: Any) -> Any:
        # Older records list tests as {path: ..., ...} mappings.
        if not isinstance(value, list):
            return value
        coerced: list[Any] = []
        for item in value:
            if isinstance(item, dict) and "path" in item:
                coerced.append(item["path"])
            else:
                coerced.append(item)
        return coerced

    @property
    def tag(self) -> str:
        if not self.id:
            raise ValueError("record has no id yet")
        return f"@{self.id}"

    @property
    def ac_ids(self) -> list[str]:
        return [criterion.id for criterion in self.acceptance_criteria]

    def header(self) -> dict[str, Any]:
        """Return the metadata header in its canonical key order, omitting unset optionals."""
        header: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "tier": self.tier,
            "actor": self.actor,
            "scope": self.scope,
        }
        for key in ("owner", "issue", "replaced_by", "status_reason"):
            value = getattr(self, key)
            if value is not None:
                header[key] = value
        if self.tags:
            header["tags"] = list(self.tags)
        header["tests"] = list(self.tests)
        if self.provenance is not None:
            header["provenance"] = self.provenance.model_dump(mode="json", exclude_none=True)
        for key, value in self.extensions.items():
            header.setdefault(key, value)
        return header


class ValidationIssue(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rule_id: str
    kind: str
    severity: Severity
    message: str
    gate: str
    file: str | None = None
    line: int | None = None

    def sort_key(self) -> tuple[str, int, str, str]:
        return (self.file or "", self.line or 0, self.rule_id, self.message)

    @property
    def location(self) -> str:
        if not self.file:
            return "-"
        return f"{self.file}:{self.line}" if self.line else self.file


class GateResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    status: GateStatus
    issues: list[ValidationIssue] = Field(default_factory=list)
    detail: str | None = None

    @classmethod
    def from_issues(cls, name: str, issues: list[ValidationIssue], *, detail: str | None = None) -> "GateResult":
        ordered = sorted(issues, key=lambda issue: issue.sort_key())
        if any(issue.severity == Severity.ERROR for issue in ordered):
            status = GateStatus.FAIL
        elif any(issue.severity == Severity.WARNING for issue in ordered):
            status = GateStatus.WARN
        else:
            status = GateStatus.PASS
        return cls(name=name, status=status, issues=ordered, detail=detail)

    @classmethod
    def skipped(cls, name: str, reason: str) -> "GateResult":
        return cls(name=name, status=GateStatus.SKIP, detail=reason)


class AutofixChange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fix: str
    file: str
    line: int
    before: str
    after: str


class ValidationReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    record_id: str
    passed: bool
    strict: bool
    mode: str
    contract: str
    backend: str
    generated_at: str
    settings: dict[str, Any] = Field(default_factory=dict)
    gates: list[GateResult] = Field(default_factory=list)
    fixes: list[AutofixChange] = Field(default_factory=list)

    @property
    def issues(self) -> list[ValidationIssue]:
        """All issues in gate execution order, then by location."""
        return [issue for gate in self.gates for issue in gate.issues]

    def count(self, severity: Severity) -> int:
        return sum(1 for issue in self.issues if issue.severity == severity)

    def issues_of_kind(self, kind: str) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.kind == kind]

    def gate(self, name: str) -> GateResult:
        for gate in self.gates:
            if gate.name == name:
                return gate
        raise KeyError(name)


class IndexEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    title: str
    status: str
    tier: str
    actor: str
    scope: str
    owner: str | None = None
    tests: list[str] = Field(default_factory=list)
    file: str
    content_hash: str


class RegistryIndex(BaseModel):
    model_config = ConfigDict(extra="forbid")

    banner: str
    schema_version: int = 1
    generated_at: str
    content_hash: str
    journeys: list[IndexEntry] = Field(default_factory=list)


def normalize_ac_id(value: str) -> str:
    """Normalize ``AC-01`` / ``ac-1`` to ``AC-1``.  Non-matching ids are returned stripped."""
    candidate = value.strip().upper()
    match = AC_ID_RE.match(candidate)
    if match is None:
        return value.strip()
    return f"AC-{int(match.group(1))}"
