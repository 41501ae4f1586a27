from importlib.metadata import PackageNotFoundError, version

from .backends import ExternalLintBackend, LintBackend, PatternScanBackend, select_backend
from .corpus import ArtifactCorpus
from .engine import ValidationEngine, ValidationOptions
from .errors import (
    ContractGapError,
    IOConflict,
    JourneyError,
    LifecycleError,
    PatternViolation,
    RecordRejected,
    SchemaError,
    ToolUnavailable,
    TraceabilityError,
)
from .ids import allocate_id, parse_id_list
from .lifecycle import check_ready_for_implementation, check_transition, validate_record
from .models import (
    AcceptanceCriterion,
    GateResult,
    GateStatus,
    JourneyRecord,
    JourneyStatus,
    Provenance,
    RegistryIndex,
    Severity,
    ValidationIssue,
    ValidationReport,
)
from .promote import PromotionResult, promote
from .registry import generate, write_generated
from .report import diff_status_block, emit_report, merge_status_block, render_json, render_markdown, render_status_block
from .settings import RegistrySettings
from .state_store import JourneyStore, RegistrySnapshot, StoredRecord


def get_version() -> str:
    try:
        return version("journey-registry")
    except PackageNotFoundError:
        return "0.0.0"


__all__ = [
    "AcceptanceCriterion",
    "ArtifactCorpus",
    "ContractGapError",
    "ExternalLintBackend",
    "GateResult",
    "GateStatus",
    "IOConflict",
    "JourneyError",
    "JourneyRecord",
    "JourneyStatus",
    "JourneyStore",
    "LifecycleError",
    "LintBackend",
    "PatternScanBackend",
    "PatternViolation",
    "PromotionResult",
    "Provenance",
    "RecordRejected",
    "RegistryIndex",
    "RegistrySettings",
    "RegistrySnapshot",
    "SchemaError",
    "Severity",
    "StoredRecord",
    "ToolUnavailable",
    "TraceabilityError",
    "ValidationEngine",
    "ValidationIssue",
    "ValidationOptions",
    "ValidationReport",
    "allocate_id",
    "check_ready_for_implementation",
    "check_transition",
    "diff_status_block",
    "emit_report",
    "generate",
    "merge_status_block",
    "parse_id_list",
    "promote",
    "render_json",
    "render_markdown",
    "render_status_block",
    "select_backend",
    "validate_record",
    "write_generated",
]
