"""Promotion of a record to ``implemented``.

The record only moves when a strict validation run passes.  Either way the
report is emitted and the ``validation-status`` region records the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from . import regions
from .corpus import ArtifactCorpus
from .engine import ValidationEngine, ValidationOptions
from .lifecycle import check_ready_for_implementation
from .models import JourneyStatus, Provenance, ValidationReport
from .report import (
    current_status_block,
    diff_status_block,
    emit_report,
    merge_status_block,
    relative_report_path,
    render_status_block,
    report_paths,
)
from .state_store import JourneyStore, StoredRecord

logger = logging.getLogger(__name__)

PROMOTED_BY = "journeys promote"


@dataclass
class PromotionResult:
    record_id: str
    report: ValidationReport
    promoted: bool
    dry_run: bool = False
    warnings: list[str] = field(default_factory=list)
    report_files: tuple[Path, Path] | None = None
    stored: StoredRecord | None = None
    status_diff: str = ""

    @property
    def would_promote(self) -> bool:
        return self.report.passed


def promote(
    store: JourneyStore,
    record_id: str,
    *,
    engine: ValidationEngine | None = None,
    corpus: ArtifactCorpus | None = None,
    dry_run: bool = False,
) -> PromotionResult:
    """Validate *record_id* in strict mode and mark it implemented on success.

    Raises:
        KeyError: If the record does not exist.
        LifecycleError: If the record's status does not allow implementation.
        RecordRejected: If the promoted record fails store validation.
        IOConflict: If the store changed during the run; nothing was written.
    """
    snapshot = store.snapshot()
    stored = snapshot.get(record_id)
    warnings = check_ready_for_implementation(stored.record)
    for warning in warnings:
        logger.warning("%s", warning)

    engine = engine or ValidationEngine(store.settings, store.repo_root)
    report = engine.validate_record(
        stored.record,
        corpus,
        options=ValidationOptions(strict=True, dry_run=dry_run),
        source=stored.rel_path,
    )
    markdown_path, _ = report_paths(report, store.settings, store.repo_root)
    block = render_status_block(report, relative_report_path(markdown_path, store.repo_root))
    status_diff = diff_status_block(current_status_block(stored), block)

    if dry_run:
        logger.info("Dry run: %s would %sbe promoted", record_id, "" if report.passed else "not ")
        return PromotionResult(
            record_id=record_id,
            report=report,
            promoted=False,
            dry_run=True,
            warnings=warnings,
            status_diff=status_diff,
        )

    files = emit_report(report, store.settings, store.repo_root)
    if not report.passed:
        logger.warning("Promotion of %s blocked: %d error(s)", record_id, len(report.issues))
        updated = merge_status_block(
            store, report, snapshot=snapshot, report_path=relative_report_path(markdown_path, store.repo_root)
        )
        return PromotionResult(
            record_id=record_id,
            report=report,
            promoted=False,
            warnings=warnings,
            report_files=files,
            stored=updated,
            status_diff=status_diff,
        )

    confidence = stored.record.provenance.confidence if stored.record.provenance else None
    promoted_record = stored.record.model_copy(
        update={
            "status": JourneyStatus.IMPLEMENTED,
            "body": regions.replace_region(stored.body, regions.VALIDATION_STATUS, block),
            "provenance": Provenance(by=PROMOTED_BY, at=report.generated_at, confidence=confidence),
        }
    )
    updated = store.upsert(promoted_record, snapshot=snapshot, promoted=True)
    logger.info("Promoted %s to implemented", record_id)
    return PromotionResult(
        record_id=record_id,
        report=report,
        promoted=True,
        warnings=warnings,
        report_files=files,
        stored=updated,
        status_diff=status_diff,
    )
