"""Rule catalog for the import-boundary and anti-pattern gates.

Every rule has a stable id, a default severity, and either a per-line check
or a whole-artifact check.  ``eslint_rules`` names the ESLint rule ids that
cover the same construct; rules without one are always evaluated by the
pattern scan, even when the external linter runs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from .corpus import Artifact, strip_comments
from .models import Severity
from .settings import RegistrySettings

IMPORT_BOUNDARY = "import-boundary"
ANTI_PATTERN = "anti-pattern"

LineCheck = Callable[[str, RegistrySettings], "str | None"]
ArtifactCheck = Callable[[Artifact, RegistrySettings], "list[tuple[int, str]]"]


@dataclass(frozen=True)
class Rule:
    rule_id: str
    gate: str
    description: str
    severity: Severity = Severity.ERROR
    max_only: bool = False
    eslint_rules: tuple[str, ...] = ()
    line_check: LineCheck | None = None
    artifact_check: ArtifactCheck | None = None

    def effective_severity(self, settings: RegistrySettings) -> Severity:
        override = settings.rule_severities.get(self.rule_id)
        return Severity(override) if override else self.severity


def _regex_check(pattern: str, message: str) -> LineCheck:
    compiled = re.compile(pattern)

    def check(line: str, settings: RegistrySettings) -> str | None:
        return message if compiled.search(line) else None

    return check


_MODULE_RE = re.compile(
    r"""\bfrom\s*['"](?P<from>[^'"]+)['"]|\brequire\s*\(\s*['"](?P<require>[^'"]+)['"]\s*\)|^\s*import\s*['"](?P<bare>[^'"]+)['"]"""
)


def imported_module(line: str) -> str | None:
    match = _MODULE_RE.search(line)
    if match is None:
        return None
    return match.group("from") or match.group("require") or match.group("bare")


def is_disallowed_module(module: str, settings: RegistrySettings) -> bool:
    return any(module == banned or module.startswith(f"{banned}/") for banned in settings.disallowed_imports)


def _check_import(line: str, settings: RegistrySettings) -> str | None:
    if not settings.sanctioned_import:
        return None
    module = imported_module(line)
    if module is None or not is_disallowed_module(module, settings):
        return None
    return f"direct import of '{module}' bypasses the sanctioned wrapper '{settings.sanctioned_import}'"


_URL_RE = re.compile(r"""(['"`])(https?://[^'"`\s]+)""")


def _check_hardcoded_url(line: str, settings: RegistrySettings) -> str | None:
    for match in _URL_RE.finditer(line):
        url = match.group(2)
        if any(url.startswith(prefix) for prefix in settings.allowed_url_prefixes):
            continue
        return f"hardcoded absolute URL {url}; use baseURL-relative navigation"
    return None


def _check_empty_test_bodies(artifact: Artifact, settings: RegistrySettings) -> list[tuple[int, str]]:
    findings: list[tuple[int, str]] = []
    for marker in artifact.markers:
        if marker.is_describe or marker.body is None:
            continue
        if not strip_comments(marker.body).strip():
            findings.append((marker.line, f"{marker.kind}('{marker.title}') has an empty body"))
    return findings


RULES: tuple[Rule, ...] = (
    Rule(
        rule_id="no-disallowed-import",
        gate=IMPORT_BOUNDARY,
        description="Low-level test-runner imports where a sanctioned wrapper exists",
        line_check=_check_import,
    ),
    Rule(
        rule_id="no-fixed-wait",
        gate=ANTI_PATTERN,
        description="Fixed-duration waits",
        eslint_rules=("playwright/no-wait-for-timeout",),
        line_check=_regex_check(
            r"\bwaitForTimeout\s*\(|\bsetTimeout\s*\(|(?<![\w.])sleep\s*\(",
            "fixed-duration wait; wait for a condition instead",
        ),
    ),
    Rule(
        rule_id="no-force-option",
        gate=ANTI_PATTERN,
        description="Forced interactions that bypass actionability checks",
        eslint_rules=("playwright/no-force-option",),
        line_check=_regex_check(r"\bforce\s*:\s*true\b", "forced interaction ({ force: true })"),
    ),
    Rule(
        rule_id="no-networkidle",
        gate=ANTI_PATTERN,
        description="Broad unconditional network waits",
        eslint_rules=("playwright/no-networkidle",),
        line_check=_regex_check(r"""['"`]networkidle['"`]""", "'networkidle' wait; wait for a specific response or element"),
    ),
    Rule(
        rule_id="no-hardcoded-url",
        gate=ANTI_PATTERN,
        description="Hardcoded absolute URLs outside the allowed prefixes",
        line_check=_check_hardcoded_url,
    ),
    Rule(
        rule_id="no-focused-test",
        gate=ANTI_PATTERN,
        description="Focused tests (.only)",
        eslint_rules=("playwright/no-focused-test",),
        line_check=_regex_check(r"\b(?:test|describe|it)(?:\.describe)?\.only\s*\(", "focused test (.only) disables the rest of the suite"),
    ),
    Rule(
        rule_id="no-skipped-test",
        gate=ANTI_PATTERN,
        description="Disabled tests (.skip / .fixme)",
        severity=Severity.WARNING,
        eslint_rules=("playwright/no-skipped-test",),
        line_check=_regex_check(r"\b(?:test|describe|it)(?:\.describe)?\.(?:skip|fixme)\s*\(", "disabled test (.skip/.fixme)"),
    ),
    Rule(
        rule_id="no-positional-selector",
        gate=ANTI_PATTERN,
        description="Brittle positional selectors",
        severity=Severity.WARNING,
        eslint_rules=("playwright/no-nth-methods",),
        line_check=_regex_check(
            r"\.(?:nth|first|last)\s*\(|:nth-(?:child|of-type)\(",
            "positional selector; prefer role, label or test id locators",
        ),
    ),
    Rule(
        rule_id="no-page-pause",
        gate=ANTI_PATTERN,
        description="Debugger pauses left in tests",
        eslint_rules=("playwright/no-page-pause",),
        line_check=_regex_check(r"\bpage\.pause\s*\(", "page.pause() left in test"),
    ),
    Rule(
        rule_id="no-empty-test-body",
        gate=ANTI_PATTERN,
        description="Tests or steps whose body is empty",
        max_only=True,
        artifact_check=_check_empty_test_bodies,
    ),
    Rule(
        rule_id="no-console",
        gate=ANTI_PATTERN,
        description="console.log debugging output",
        severity=Severity.WARNING,
        max_only=True,
        eslint_rules=("no-console",),
        line_check=_regex_check(r"\bconsole\.log\s*\(", "console.log left in test"),
    ),
)

RULES_BY_ID: dict[str, Rule] = {rule.rule_id: rule for rule in RULES}
ESLINT_RULE_MAP: dict[str, str] = {eslint_id: rule.rule_id for rule in RULES for eslint_id in rule.eslint_rules}


def rules_for(gate: str, settings: RegistrySettings, *, mode: str | None = None) -> list[Rule]:
    """Enabled rules of *gate* for the given mode, in catalog order."""
    effective_mode = mode or settings.mode
    return [
        rule
        for rule in RULES
        if rule.gate == gate
        and rule.rule_id not in settings.disabled_rules
        and (effective_mode == "max" or not rule.max_only)
    ]
