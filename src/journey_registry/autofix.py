"""Whitelisted, line-local repairs applied to a record's test artifacts before validation.

Only three edits exist and none touches assertions or control flow:

``normalize-tag``
    Near-miss spellings of the record tag (``@jrn-7``, ``@JRN_0007``,
    ``@ JRN-0007``) become the canonical ``@JRN-0007``.
``fix-import``
    The module specifier of a disallowed import is replaced by the sanctioned
    wrapper module.
``insert-tag``
    When an artifact still lacks the tag, it is appended to the title of the
    first ``test.describe``/``test`` call.
"""

from __future__ import annotations

import logging
import re

from .corpus import MARKER_RE, Artifact, ArtifactCorpus
from .ids import id_number
from .models import AutofixChange, JourneyRecord
from .rules import imported_module, is_disallowed_module
from .settings import RegistrySettings
from .state_store import atomic_write_text
from .utils import line_number_at

logger = logging.getLogger(__name__)

NORMALIZE_TAG = "normalize-tag"
FIX_IMPORT = "fix-import"
INSERT_TAG = "insert-tag"

AUTOFIX_SETS: dict[str, tuple[str, ...]] = {
    "true": (NORMALIZE_TAG, FIX_IMPORT, INSERT_TAG),
    "auto": (NORMALIZE_TAG, FIX_IMPORT),
    "false": (),
}


def enabled_fixes(settings: RegistrySettings) -> tuple[str, ...]:
    return AUTOFIX_SETS[settings.autofix]


def _near_miss_tag_re(record_id: str, prefix: str) -> re.Pattern[str] | None:
    number = id_number(record_id, prefix)
    if number is None:
        return None
    return re.compile(rf"@\s*{re.escape(prefix)}[-_ ]?0*{number}(?!\d)", re.IGNORECASE)


def _normalize_tags(lines: list[str], record: JourneyRecord, settings: RegistrySettings, path: str) -> list[AutofixChange]:
    pattern = _near_miss_tag_re(record.id or "", settings.id_prefix)
    if pattern is None:
        return []
    changes: list[AutofixChange] = []
    for idx, line in enumerate(lines):
        fixed = pattern.sub(record.tag, line)
        if fixed != line:
            changes.append(AutofixChange(fix=NORMALIZE_TAG, file=path, line=idx + 1, before=line, after=fixed))
            lines[idx] = fixed
    return changes


def _fix_imports(lines: list[str], settings: RegistrySettings, path: str) -> list[AutofixChange]:
    if not settings.sanctioned_import:
        return []
    changes: list[AutofixChange] = []
    for idx, line in enumerate(lines):
        module = imported_module(line)
        if module is None or not is_disallowed_module(module, settings):
            continue
        fixed = re.sub(
            rf"""(['"]){re.escape(module)}\1""",
            lambda match: f"{match.group(1)}{settings.sanctioned_import}{match.group(1)}",
            line,
            count=1,
        )
        if fixed != line:
            changes.append(AutofixChange(fix=FIX_IMPORT, file=path, line=idx + 1, before=line, after=fixed))
            lines[idx] = fixed
    return changes


def _insert_tag(text: str, record: JourneyRecord, path: str) -> tuple[str, list[AutofixChange]]:
    for match in MARKER_RE.finditer(text):
        if match.group(1) not in ("test.describe", "test"):
            continue
        title = match.group(3)
        if "\n" in title:
            continue
        insert_at = match.end(3)
        updated = f"{text[:insert_at]} {record.tag}{text[insert_at:]}"
        line_no = line_number_at(text, insert_at)
        before = text.splitlines()[line_no - 1]
        after = updated.splitlines()[line_no - 1]
        return updated, [AutofixChange(fix=INSERT_TAG, file=path, line=line_no, before=before, after=after)]
    return text, []


def plan_fixes(artifact: Artifact, record: JourneyRecord, settings: RegistrySettings) -> tuple[str, list[AutofixChange]]:
    """Return the fixed text of *artifact* and the changes made."""
    fixes = enabled_fixes(settings)
    if not fixes or not record.id:
        return artifact.text, []
    keep_final_newline = artifact.text.endswith("\n")
    lines = artifact.text.splitlines()
    changes: list[AutofixChange] = []
    if NORMALIZE_TAG in fixes:
        changes.extend(_normalize_tags(lines, record, settings, artifact.path))
    if FIX_IMPORT in fixes:
        changes.extend(_fix_imports(lines, settings, artifact.path))
    text = "\n".join(lines) + ("\n" if keep_final_newline else "")
    if INSERT_TAG in fixes and not Artifact(path=artifact.path, text=text).has_tag(record.id):
        text, inserted = _insert_tag(text, record, artifact.path)
        changes.extend(inserted)
    return text, changes


def apply_autofixes(
    record: JourneyRecord,
    corpus: ArtifactCorpus,
    settings: RegistrySettings,
    *,
    dry_run: bool = False,
) -> list[AutofixChange]:
    """Fix every listed test artifact of *record*; write atomically unless *dry_run*."""
    applied: list[AutofixChange] = []
    for rel_path in record.tests:
        if corpus.escapes(rel_path):
            continue
        artifact = corpus.read(rel_path)
        if artifact is None:
            continue
        fixed_text, changes = plan_fixes(artifact, record, settings)
        if not changes:
            continue
        applied.extend(changes)
        if dry_run:
            logger.info("Dry run: %d autofix change(s) for %s not written", len(changes), rel_path)
            continue
        atomic_write_text(corpus.path_for(rel_path), fixed_text)
        corpus.invalidate(rel_path)
        logger.info("Applied %d autofix change(s) to %s", len(changes), rel_path)
    return applied
