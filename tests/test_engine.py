from dataclasses import replace
from pathlib import Path

import pytest

import journey_registry.engine as engine_module
from journey_registry import gates
from journey_registry.engine import ValidationEngine, ValidationOptions
from journey_registry.gates import Gate
from journey_registry.models import AcceptanceCriterion, GateStatus, Severity
from journey_registry.state_store import JourneyStore

SPEC_PATH = "tests/e2e/login.spec.ts"
AC2_BODY = "    await page.reload();\n    await expect(page.getByRole('heading', { name: 'Dashboard' })).toBeVisible();\n"


def _engine(store: JourneyStore) -> ValidationEngine:
    return ValidationEngine(store.settings, store.repo_root)


def _rewrite_spec(repo: Path, text: str) -> None:
    (repo / SPEC_PATH).write_text(text, encoding="utf-8")


def test_clean_journey_passes_every_gate_in_strict_mode(store: JourneyStore, login_journey: str) -> None:
    report = _engine(store).validate(login_journey, store=store, options=ValidationOptions(strict=True))

    assert report.passed is True
    assert [gate.name for gate in report.gates] == [
        "schema",
        "traceability",
        "import-boundary",
        "anti-pattern",
        "contract-mapping",
    ]
    assert all(gate.status == GateStatus.PASS for gate in report.gates)
    assert report.backend == "fallback"
    assert report.fixes == []


def test_fixed_wait_fails_strict_and_warns_otherwise(store: JourneyStore, login_journey: str, repo: Path, login_spec: str) -> None:
    _rewrite_spec(
        repo,
        login_spec.replace("    await page.goto('/login');\n", "    await page.goto('/login');\n    await page.waitForTimeout(1000);\n"),
    )
    engine = _engine(store)

    strict = engine.validate(login_journey, store=store, options=ValidationOptions(strict=True))
    assert strict.passed is False
    [issue] = strict.issues_of_kind("PatternViolation")
    assert (issue.rule_id, issue.severity, issue.file, issue.line) == ("no-fixed-wait", Severity.ERROR, SPEC_PATH, 6)
    assert strict.gate("anti-pattern").status == GateStatus.FAIL

    relaxed = engine.validate(login_journey, store=store, options=ValidationOptions(strict=False))
    assert relaxed.passed is True
    [issue] = relaxed.issues_of_kind("PatternViolation")
    assert issue.severity == Severity.WARNING
    assert relaxed.gate("anti-pattern").status == GateStatus.WARN


def test_warning_rules_are_promoted_in_strict_mode(store: JourneyStore, login_journey: str, repo: Path, login_spec: str) -> None:
    _rewrite_spec(repo, login_spec.replace("page.getByLabel('Email')", "page.locator('input').first()"))
    report = _engine(store).validate(login_journey, store=store, options=ValidationOptions(strict=True))
    [issue] = report.issues_of_kind("PatternViolation")
    assert issue.rule_id == "no-positional-selector"
    assert issue.severity == Severity.ERROR


def test_comment_lines_are_not_scanned(store: JourneyStore, login_journey: str, repo: Path, login_spec: str) -> None:
    _rewrite_spec(
        repo,
        login_spec.replace("    await page.goto('/login');\n", "    await page.goto('/login');\n    // await page.waitForTimeout(1000);\n"),
    )
    report = _engine(store).validate(login_journey, store=store, options=ValidationOptions(strict=True))
    assert report.passed is True


def test_hardcoded_url_respects_allowed_prefixes(store: JourneyStore, login_journey: str, repo: Path, login_spec: str) -> None:
    _rewrite_spec(repo, login_spec.replace("page.goto('/login')", "page.goto('https://staging.example.com/login')"))

    report = _engine(store).validate(login_journey, store=store, options=ValidationOptions(strict=True))
    assert [issue.rule_id for issue in report.issues_of_kind("PatternViolation")] == ["no-hardcoded-url"]

    allowed = replace(store.settings, allowed_url_prefixes=("https://staging.example.com",))
    report = ValidationEngine(allowed, store.repo_root).validate(login_journey, store=store, options=ValidationOptions(strict=True))
    assert report.passed is True


def test_contract_mapping_reports_exactly_the_unmapped_criterion(
    store: JourneyStore, make_record, write_artifact, login_spec: str
) -> None:
    spec = login_spec.replace("AC-2: session survives a reload", "AC-3: session survives a reload")
    rel_path = write_artifact(SPEC_PATH, spec)
    criteria = [AcceptanceCriterion(id=f"AC-{n}", text=f"criterion {n}") for n in (1, 2, 3)]
    store.upsert(make_record(tests=[rel_path], acceptance_criteria=criteria), snapshot=store.snapshot())

    report = _engine(store).validate("JRN-0001", store=store, options=ValidationOptions(strict=True))

    gaps = report.issues_of_kind("ContractGapError")
    assert len(gaps) == 1
    assert gaps[0].rule_id == "contract-missing"
    assert "AC-2" in gaps[0].message
    assert gaps[0].severity == Severity.ERROR
    assert report.passed is False


def _unverified_journey(store: JourneyStore, make_record, write_artifact, login_spec: str, *, explicit: bool) -> str:
    spec = login_spec.replace(AC2_BODY, "    await page.reload();\n    // expect(page).toHaveURL('/dashboard');\n")
    rel_path = write_artifact(SPEC_PATH, spec)
    criteria = [
        AcceptanceCriterion(id="AC-1", text="Dashboard is shown after login", explicit=explicit),
        AcceptanceCriterion(id="AC-2", text="Session survives a reload", explicit=explicit),
    ]
    stored = store.upsert(make_record(tests=[rel_path], acceptance_criteria=criteria), snapshot=store.snapshot())
    return stored.record.id


def test_unverified_marker_with_explicit_ids_is_an_error(store: JourneyStore, make_record, write_artifact, login_spec: str) -> None:
    record_id = _unverified_journey(store, make_record, write_artifact, login_spec, explicit=True)
    report = _engine(store).validate(record_id, store=store, options=ValidationOptions(strict=True))

    [gap] = report.issues_of_kind("ContractGapError")
    assert gap.rule_id == "contract-unverified"
    assert gap.severity == Severity.ERROR
    assert (gap.file, gap.line) == (SPEC_PATH, 10)


def test_unverified_marker_with_implicit_ids_follows_auto_setting(
    store: JourneyStore, make_record, write_artifact, login_spec: str
) -> None:
    record_id = _unverified_journey(store, make_record, write_artifact, login_spec, explicit=False)
    assert store.snapshot().get(record_id).record.acceptance_criteria[1].explicit is False

    report = _engine(store).validate(record_id, store=store, options=ValidationOptions(strict=True))
    [gap] = report.issues_of_kind("ContractGapError")
    assert gap.severity == Severity.WARNING
    assert report.passed is True

    escalated = replace(store.settings, contract_auto_unverified="error")
    report = ValidationEngine(escalated, store.repo_root).validate(record_id, store=store, options=ValidationOptions(strict=True))
    [gap] = report.issues_of_kind("ContractGapError")
    assert gap.severity == Severity.ERROR


@pytest.mark.parametrize(("contract", "severity"), [("basic", Severity.WARNING), ("strict", Severity.ERROR)])
def test_contract_setting_overrides_unverified_severity(
    store: JourneyStore, make_record, write_artifact, login_spec: str, contract: str, severity: Severity
) -> None:
    record_id = _unverified_journey(store, make_record, write_artifact, login_spec, explicit=True)
    report = _engine(store).validate(record_id, store=store, options=ValidationOptions(strict=True, contract=contract))
    [gap] = report.issues_of_kind("ContractGapError")
    assert gap.severity == severity


def test_traceability_flags_listed_untagged_and_tagged_unlisted(
    store: JourneyStore, login_journey: str, repo: Path, login_spec: str, write_artifact
) -> None:
    _rewrite_spec(repo, login_spec.replace(" @JRN-0001", ""))
    write_artifact("tests/e2e/extra.spec.ts", "test('AC-1: extra @JRN-0001', async ({ page }) => {\n  await expect(page).toHaveTitle('x');\n});\n")

    report = _engine(store).validate(login_journey, store=store, options=ValidationOptions(strict=True))

    issues = {(issue.rule_id, issue.file) for issue in report.issues_of_kind("TraceabilityError")}
    assert issues == {("missing-tag", SPEC_PATH), ("unlisted-artifact", "tests/e2e/extra.spec.ts")}
    assert report.gate("traceability").status == GateStatus.FAIL


def test_traceability_flags_missing_and_escaping_paths(store: JourneyStore, make_record) -> None:
    store.upsert(
        make_record(tests=["tests/e2e/gone.spec.ts", "../outside.spec.ts"]),
        snapshot=store.snapshot(),
    )
    report = _engine(store).validate("JRN-0001", store=store, options=ValidationOptions(strict=True))
    codes = sorted(issue.rule_id for issue in report.issues_of_kind("TraceabilityError"))
    assert codes == ["missing-artifact", "path-escape"]


def test_record_without_artifacts_only_warns_on_traceability(store: JourneyStore, make_record) -> None:
    store.upsert(make_record(status="defined"), snapshot=store.snapshot())
    report = _engine(store).validate("JRN-0001", store=store, options=ValidationOptions(strict=False))
    [issue] = report.issues_of_kind("TraceabilityError")
    assert issue.rule_id == "no-artifacts"
    assert issue.severity == Severity.WARNING


def test_disallowed_import_is_reported_when_autofix_is_off(
    store: JourneyStore, login_journey: str, repo: Path, login_spec: str
) -> None:
    _rewrite_spec(repo, login_spec.replace("'@artk/core/fixtures'", "'@playwright/test'"))
    report = _engine(store).validate(login_journey, store=store, options=ValidationOptions(strict=True, autofix="false"))
    [issue] = report.issues_of_kind("PatternViolation")
    assert (issue.gate, issue.rule_id, issue.line) == ("import-boundary", "no-disallowed-import", 1)


def test_schema_failure_skips_remaining_gates(store: JourneyStore, make_record) -> None:
    record = make_record(id="JRN-0001", tier="")
    report = _engine(store).validate_record(record, options=ValidationOptions(strict=True))

    assert report.passed is False
    assert report.gate("schema").status == GateStatus.FAIL
    assert all(gate.status == GateStatus.SKIP for gate in report.gates[1:])


def test_unknown_record_yields_failed_report(store: JourneyStore) -> None:
    report = _engine(store).validate("JRN-0042", store=store)
    assert report.passed is False
    assert report.issues[0].rule_id == "not-found"


@pytest.mark.parametrize(
    ("mode", "expected"),
    [
        ("quick", ["schema", "traceability", "anti-pattern"]),
        ("max", ["schema", "traceability", "import-boundary", "anti-pattern", "contract-mapping"]),
    ],
)
def test_mode_selects_gates(store: JourneyStore, login_journey: str, mode: str, expected: list[str]) -> None:
    report = _engine(store).validate(login_journey, store=store, options=ValidationOptions(mode=mode))
    assert [gate.name for gate in report.gates] == expected
    assert report.mode == mode


def test_max_mode_enables_extra_rules(store: JourneyStore, login_journey: str, repo: Path, login_spec: str) -> None:
    _rewrite_spec(repo, login_spec.replace("    await page.reload();\n", "    await page.reload();\n    console.log('reloaded');\n"))
    engine = _engine(store)

    standard = engine.validate(login_journey, store=store, options=ValidationOptions(strict=True))
    assert standard.passed is True

    maximal = engine.validate(login_journey, store=store, options=ValidationOptions(strict=True, mode="max"))
    assert [issue.rule_id for issue in maximal.issues_of_kind("PatternViolation")] == ["no-console"]


def test_crashing_gate_becomes_internal_issue(store: JourneyStore, login_journey: str, monkeypatch: pytest.MonkeyPatch) -> None:
    def explode(ctx):
        raise RuntimeError("boom")

    monkeypatch.setattr(engine_module, "gates_for_mode", lambda mode: [*gates.gates_for_mode(mode), Gate("exploding", explode)])

    report = _engine(store).validate(login_journey, store=store, options=ValidationOptions(strict=True))

    assert report.passed is False
    [issue] = report.issues_of_kind("internal")
    assert issue.gate == "exploding"
    assert "RuntimeError: boom" in issue.message
    assert report.gate("contract-mapping").status == GateStatus.PASS


def test_dot_prefixed_test_path_is_the_same_artifact(
    store: JourneyStore, make_record, write_artifact, login_spec: str
) -> None:
    write_artifact(SPEC_PATH, login_spec)
    store.upsert(make_record(tests=[f"./{SPEC_PATH}"]), snapshot=store.snapshot())

    clean = _engine(store).validate("JRN-0001", store=store, options=ValidationOptions(strict=True))
    assert clean.passed is True
    assert clean.issues_of_kind("TraceabilityError") == []

    write_artifact(SPEC_PATH, login_spec.replace("    await page.reload();\n", "    await page.reload();\n    await page.waitForTimeout(500);\n"))
    dirty = _engine(store).validate("JRN-0001", store=store, options=ValidationOptions(strict=True))
    assert [(issue.rule_id, issue.file) for issue in dirty.issues_of_kind("PatternViolation")] == [("no-fixed-wait", SPEC_PATH)]
