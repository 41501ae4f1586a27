"""Error taxonomy shared by the registry, the validation gates and the store.

Validators and gates do not raise these for ordinary findings; they collect
instances and convert them into report issues with ``to_issue``.  Only
``IOConflict`` (stale store write) and the rejection raised by
``JourneyStore.upsert`` escape to callers.
"""

from __future__ import annotations

from .models import Severity, ValidationIssue


class JourneyError(Exception):
    """Base class for every classified failure in the journey registry."""

    kind: str = "JourneyError"
    default_code: str = "journey-error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        file: str | None = None,
        line: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.file = file
        self.line = line

    def to_issue(self, severity: Severity, *, gate: str) -> ValidationIssue:
        return ValidationIssue(
            rule_id=self.code,
            kind=self.kind,
            severity=severity,
            message=self.message,
            file=self.file,
            line=self.line,
            gate=gate,
        )

    def __str__(self) -> str:
        location = ""
        if self.file:
            location = f"{self.file}:{self.line}: " if self.line else f"{self.file}: "
        return f"{location}{self.message}"


class SchemaError(JourneyError):
    """Missing or invalid field for the record's current status."""

    kind = "SchemaError"
    default_code = "schema"


class LifecycleError(JourneyError):
    """Illegal status transition or missing status-required metadata."""

    kind = "LifecycleError"
    default_code = "lifecycle"


class TraceabilityError(JourneyError):
    """Mismatch between a record's ``tests`` list and the artifacts carrying its tag."""

    kind = "TraceabilityError"
    default_code = "traceability"


class PatternViolation(JourneyError):
    """Forbidden construct found in an implementation artifact."""

    kind = "PatternViolation"
    default_code = "pattern"


class ContractGapError(JourneyError):
    """Acceptance criterion without a verified structural marker."""

    kind = "ContractGapError"
    default_code = "contract-gap"


class ToolUnavailable(JourneyError):
    """External lint backend missing, timed out or unusable.

    Always recoverable: the caller falls back to the pattern scan.
    """

    kind = "ToolUnavailable"
    default_code = "tool-unavailable"


class IOConflict(JourneyError):
    """The store changed since the caller's snapshot; nothing was written."""

    kind = "IOConflict"
    default_code = "io-conflict"


class RecordRejected(JourneyError):
    """Raised by store mutations when validation finds errors.

    ``errors`` keeps every finding; ``kind`` mirrors the first one so callers
    can branch on the dominant failure class.
    """

    def __init__(self, record_id: str | None, errors: list[JourneyError]) -> None:
        summary = "; ".join(str(error) for error in errors)
        super().__init__(f"record {record_id or '<new>'} rejected: {summary}", code="record-rejected")
        self.record_id = record_id
        self.errors = errors
        self.kind = errors[0].kind if errors else "JourneyError"

    def has(self, error_type: type[JourneyError]) -> bool:
        return any(isinstance(error, error_type) for error in self.errors)
