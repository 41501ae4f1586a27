"""Schema and lifecycle rules for Journey records.

``validate_record`` returns every finding instead of stopping at the first
one; callers decide whether the list blocks a write (the store) or becomes
report issues (the schema gate).
"""

from __future__ import annotations

import logging
import re
from collections import Counter

from .corpus import ArtifactCorpus
from .errors import JourneyError, LifecycleError, SchemaError
from .models import AC_ID_RE, JOURNEY_STATUS_TRANSITIONS, JourneyRecord, JourneyStatus
from .settings import RegistrySettings

logger = logging.getLogger(__name__)

STATUSES_REQUIRING_CRITERIA = frozenset({JourneyStatus.DEFINED, JourneyStatus.CLARIFIED, JourneyStatus.IMPLEMENTED})
STATUSES_REQUIRING_STEPS = frozenset({JourneyStatus.CLARIFIED, JourneyStatus.IMPLEMENTED})


def id_regex(settings: RegistrySettings) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(settings.id_prefix)}-\d{{{settings.id_width}}}$")


def check_transition(old: JourneyStatus, new: JourneyStatus, *, record_id: str | None = None) -> None:
    """Raise ``LifecycleError`` when ``old -> new`` is not in the transition table."""
    if old == new:
        return
    if new not in JOURNEY_STATUS_TRANSITIONS[old]:
        allowed = ", ".join(sorted(status.value for status in JOURNEY_STATUS_TRANSITIONS[old])) or "none"
        raise LifecycleError(
            f"{record_id or 'record'}: illegal status transition {old.value} -> {new.value} (allowed: {allowed})",
            code="illegal-transition",
        )


def _schema_errors(record: JourneyRecord, settings: RegistrySettings, *, require_id: bool, source: str | None) -> list[JourneyError]:
    errors: list[JourneyError] = []

    if record.id is None:
        if require_id:
            errors.append(SchemaError("missing required field: id", code="missing-field", file=source))
    elif not id_regex(settings).match(record.id):
        errors.append(
            SchemaError(
                f"id '{record.id}' does not match {settings.id_prefix}-{'N' * settings.id_width}",
                code="id-format",
                file=source,
            )
        )

    for name in ("title", "actor", "scope"):
        if not getattr(record, name).strip():
            errors.append(SchemaError(f"missing required field: {name}", code="missing-field", file=source))

    if record.tier not in settings.tiers:
        errors.append(
            SchemaError(
                f"tier '{record.tier}' is not one of: {', '.join(settings.tiers)}",
                code="tier",
                file=source,
            )
        )
    if record.status.value not in settings.statuses:
        errors.append(SchemaError(f"status '{record.status.value}' is not configured", code="status", file=source))

    counts = Counter(record.ac_ids)
    for ac_id, count in sorted(counts.items()):
        if count > 1:
            errors.append(SchemaError(f"duplicate acceptance criterion id {ac_id}", code="ac-duplicate", file=source))
    for criterion in record.acceptance_criteria:
        if not AC_ID_RE.match(criterion.id):
            errors.append(SchemaError(f"acceptance criterion id '{criterion.id}' must look like AC-1", code="ac-format", file=source))
        if not criterion.text.strip():
            errors.append(SchemaError(f"acceptance criterion {criterion.id} has no text", code="ac-empty", file=source))

    if record.status in STATUSES_REQUIRING_CRITERIA and not record.acceptance_criteria:
        errors.append(
            SchemaError(
                f"status '{record.status.value}' requires at least one acceptance criterion",
                code="status-structure",
                file=source,
            )
        )
    if record.status in STATUSES_REQUIRING_STEPS and not record.procedural_steps:
        errors.append(
            SchemaError(
                f"status '{record.status.value}' requires at least one procedural step",
                code="status-structure",
                file=source,
            )
        )
    return errors


def _implemented_errors(record: JourneyRecord, corpus: ArtifactCorpus | None, *, source: str | None) -> list[JourneyError]:
    if record.status != JourneyStatus.IMPLEMENTED:
        return []
    if not record.tests:
        return [SchemaError("status 'implemented' requires at least one entry in tests", code="tests-required", file=source)]
    if corpus is None or record.id is None:
        return []
    errors: list[JourneyError] = []
    for rel_path in record.tests:
        artifact = corpus.read(rel_path)
        if artifact is None:
            errors.append(SchemaError(f"test artifact not found: {rel_path}", code="tests-missing", file=source))
        elif not artifact.has_tag(record.id):
            errors.append(
                SchemaError(f"test artifact {rel_path} does not carry tag {record.tag}", code="tests-untagged", file=source)
            )
    return errors


def _lifecycle_errors(record: JourneyRecord, previous: JourneyRecord | None, *, source: str | None) -> list[JourneyError]:
    errors: list[JourneyError] = []
    if previous is not None:
        if previous.id is not None and record.id != previous.id:
            errors.append(SchemaError(f"id is immutable ({previous.id} -> {record.id})", code="id-immutable", file=source))
        try:
            check_transition(previous.status, record.status, record_id=record.id)
        except LifecycleError as exc:
            exc.file = source
            errors.append(exc)

    if record.status == JourneyStatus.QUARANTINED:
        missing = [name for name in ("owner", "issue") if not (getattr(record, name) or "").strip()]
        if missing:
            errors.append(
                LifecycleError(
                    f"status 'quarantined' requires {' and '.join(missing)}",
                    code="quarantine-metadata",
                    file=source,
                )
            )
    if record.status == JourneyStatus.DEPRECATED:
        if not (record.replaced_by or "").strip() and not (record.status_reason or "").strip():
            errors.append(
                LifecycleError(
                    "status 'deprecated' requires replaced_by or status_reason",
                    code="deprecation-metadata",
                    file=source,
                )
            )
    return errors


def validate_record(
    record: JourneyRecord,
    *,
    settings: RegistrySettings,
    previous: JourneyRecord | None = None,
    corpus: ArtifactCorpus | None = None,
    require_id: bool = True,
    source: str | None = None,
) -> list[JourneyError]:
    """Return every ``SchemaError`` and ``LifecycleError`` for *record*.

    Args:
        record: Candidate record.
        settings: Configured tiers, statuses and id format.
        previous: The stored version of the record, when this is an update.
        corpus: When given, ``tests`` entries of an implemented record must
            resolve to artifacts carrying the record's tag.
        require_id: ``False`` for records that have not been allocated yet.
        source: File path attached to every finding.
    """
    errors = _schema_errors(record, settings, require_id=require_id, source=source)
    errors.extend(_implemented_errors(record, corpus, source=source))
    errors.extend(_lifecycle_errors(record, previous, source=source))
    return errors


def check_ready_for_implementation(record: JourneyRecord) -> list[str]:
    """Refuse records that may not be implemented; return warnings for the rest."""
    label = record.id or "record"
    if record.status == JourneyStatus.PROPOSED:
        raise LifecycleError(
            f"{label} is 'proposed'; it must be at least 'defined' (preferably 'clarified') before implementation",
            code="not-ready",
        )
    if record.status == JourneyStatus.QUARANTINED:
        raise LifecycleError(f"{label} is quarantined; resolve {record.issue or 'its issue'} first", code="not-ready")
    if record.status == JourneyStatus.DEPRECATED:
        raise LifecycleError(f"{label} is deprecated and must not be implemented", code="not-ready")

    warnings: list[str] = []
    if record.status == JourneyStatus.DEFINED:
        warnings.append(f"{label} is 'defined' but not 'clarified'")
    elif record.status == JourneyStatus.IMPLEMENTED:
        warnings.append(f"{label} is already implemented; re-validating existing tests")
    return warnings
