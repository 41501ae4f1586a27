from dataclasses import replace
from pathlib import Path

from journey_registry.autofix import FIX_IMPORT, INSERT_TAG, NORMALIZE_TAG, apply_autofixes, plan_fixes
from journey_registry.corpus import Artifact, ArtifactCorpus
from journey_registry.engine import ValidationEngine, ValidationOptions
from journey_registry.settings import RegistrySettings
from journey_registry.state_store import JourneyStore

SPEC_PATH = "tests/e2e/login.spec.ts"

NEEDS_FIXES = """import { test, expect } from '@playwright/test';

test.describe('User logs in @jrn-1', () => {
  test('AC-1: dashboard', async ({ page }) => {
    await expect(page).toHaveTitle('Dashboard');
  });
});
"""

UNTAGGED = """import { test, expect } from '@artk/core/fixtures';

test('AC-1: dashboard', async ({ page }) => {
  await expect(page).toHaveTitle('Dashboard');
});
"""


def test_plan_fixes_normalizes_tags_and_imports(make_record, settings: RegistrySettings) -> None:
    record = make_record(id="JRN-0001")
    fixed, changes = plan_fixes(Artifact(path=SPEC_PATH, text=NEEDS_FIXES), record, settings)

    assert [change.fix for change in changes] == [NORMALIZE_TAG, FIX_IMPORT]
    assert "test.describe('User logs in @JRN-0001'" in fixed
    assert fixed.startswith("import { test, expect } from '@artk/core/fixtures';\n")
    assert fixed.endswith("});\n")
    assert changes[0].line == 3


def test_plan_fixes_inserts_tag_only_when_fully_enabled(make_record, settings: RegistrySettings) -> None:
    record = make_record(id="JRN-0001")
    artifact = Artifact(path=SPEC_PATH, text=UNTAGGED)

    untouched, changes = plan_fixes(artifact, record, settings)
    assert changes == [] and untouched == UNTAGGED

    fixed, changes = plan_fixes(artifact, record, replace(settings, autofix="true"))
    assert [change.fix for change in changes] == [INSERT_TAG]
    assert "test('AC-1: dashboard @JRN-0001', async" in fixed


def test_plan_fixes_disabled(make_record, settings: RegistrySettings) -> None:
    fixed, changes = plan_fixes(Artifact(path=SPEC_PATH, text=NEEDS_FIXES), make_record(id="JRN-0001"), replace(settings, autofix="false"))
    assert changes == [] and fixed == NEEDS_FIXES


def test_apply_autofixes_writes_and_dry_run_does_not(repo: Path, make_record, write_artifact, settings: RegistrySettings) -> None:
    write_artifact(SPEC_PATH, NEEDS_FIXES)
    record = make_record(id="JRN-0001", tests=[SPEC_PATH, "../escape.spec.ts", "tests/e2e/missing.spec.ts"])
    corpus = ArtifactCorpus(repo)

    planned = apply_autofixes(record, corpus, settings, dry_run=True)
    assert len(planned) == 2
    assert (repo / SPEC_PATH).read_text(encoding="utf-8") == NEEDS_FIXES

    applied = apply_autofixes(record, corpus, settings)
    assert applied == planned
    assert "@JRN-0001" in (repo / SPEC_PATH).read_text(encoding="utf-8")
    assert corpus.read(SPEC_PATH).has_tag("JRN-0001")
    assert apply_autofixes(record, corpus, settings) == []


def test_engine_validates_fixed_artifact(store: JourneyStore, make_record, write_artifact) -> None:
    write_artifact(SPEC_PATH, NEEDS_FIXES)
    store.upsert(
        make_record(tests=[SPEC_PATH], acceptance_criteria=[{"id": "AC-1", "text": "Dashboard"}]),
        snapshot=store.snapshot(),
    )

    report = ValidationEngine(store.settings, store.repo_root).validate("JRN-0001", store=store, options=ValidationOptions(strict=True))

    assert report.passed is True
    assert [fix.fix for fix in report.fixes] == [NORMALIZE_TAG, FIX_IMPORT]
    assert report.issues_of_kind("PatternViolation") == []
    assert report.issues_of_kind("TraceabilityError") == []


def test_engine_leaves_artifacts_alone_when_schema_fails(repo: Path, store: JourneyStore, make_record, write_artifact) -> None:
    write_artifact(SPEC_PATH, NEEDS_FIXES)
    record = make_record(id="JRN-0001", actor="", tests=[SPEC_PATH])

    report = ValidationEngine(store.settings, repo).validate_record(record, ArtifactCorpus(repo))

    assert report.fixes == []
    assert [issue.rule_id for issue in report.gate("schema").issues] == ["missing-field"]
    assert (repo / SPEC_PATH).read_text(encoding="utf-8") == NEEDS_FIXES
