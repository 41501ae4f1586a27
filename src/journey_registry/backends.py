"""Lint backends for the import-boundary and anti-pattern gates.

Two interchangeable implementations of ``LintBackend`` emit the same finding
shape (a ``PatternViolation`` carrying rule id, file and line):

1. **PatternScanBackend** -- line-accurate regex scan over the rule catalog.
   Always available.
2. **ExternalLintBackend** -- runs ESLint (with ``eslint-plugin-playwright``)
   through ``npx --no-install`` and maps ESLint rule ids onto catalog ids.
   Rules ESLint does not cover are delegated to the pattern scan.

Composition (innermost to outermost)::

    ExternalLintBackend -> FallbackLintBackend(primary, PatternScanBackend)

``FallbackLintBackend`` turns every ``ToolUnavailable`` into a fallback run
and keeps the error as a notice; the engine reports notices as ``info``
issues.  Absence of the external tool is never fatal.
"""

from __future__ import annotations

import json
import logging
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Any, Protocol

from .corpus import Artifact, is_comment_line
from .errors import PatternViolation, ToolUnavailable
from .rules import ESLINT_RULE_MAP, RULES_BY_ID, Rule
from .settings import RegistrySettings
from .utils import relative_posix

logger = logging.getLogger(__name__)


class LintBackend(Protocol):
    name: str

    def scan(self, artifacts: list[Artifact], rules: list[Rule]) -> list[PatternViolation]:
        ...

    def take_notices(self) -> list[ToolUnavailable]:
        ...


def _violation(rule: Rule, message: str, *, file: str, line: int | None) -> PatternViolation:
    return PatternViolation(message, code=rule.rule_id, file=file, line=line)


class PatternScanBackend:
    """Regex scan of every non-comment line against the enabled rules."""

    name = "fallback"

    def __init__(self, settings: RegistrySettings) -> None:
        self.settings = settings

    def scan(self, artifacts: list[Artifact], rules: list[Rule]) -> list[PatternViolation]:
        findings: list[PatternViolation] = []
        line_rules = [rule for rule in rules if rule.line_check is not None]
        artifact_rules = [rule for rule in rules if rule.artifact_check is not None]
        for artifact in artifacts:
            in_block_comment = False
            for line_no, line in enumerate(artifact.lines, start=1):
                if in_block_comment:
                    if "*/" in line:
                        in_block_comment = False
                    continue
                if line.lstrip().startswith("/*") and "*/" not in line:
                    in_block_comment = True
                    continue
                if is_comment_line(line):
                    continue
                for rule in line_rules:
                    message = rule.line_check(line, self.settings)
                    if message is not None:
                        findings.append(_violation(rule, message, file=artifact.path, line=line_no))
            for rule in artifact_rules:
                for line_no, message in rule.artifact_check(artifact, self.settings):
                    findings.append(_violation(rule, message, file=artifact.path, line=line_no))
        return findings

    def take_notices(self) -> list[ToolUnavailable]:
        return []


class ExternalLintBackend:
    """ESLint via ``npx --no-install``, bounded by ``lint_timeout_seconds``.

    One ESLint run serves every gate of a validation: results are cached per
    artifact set.
    """

    name = "external"

    def __init__(self, settings: RegistrySettings, repo_root: Path) -> None:
        self.settings = settings
        self.repo_root = repo_root
        self.command = shlex.split(settings.lint_command)
        self._pattern_scan = PatternScanBackend(settings)
        self._cache: dict[tuple[str, ...], list[dict[str, Any]]] = {}

    def available(self) -> bool:
        return bool(self.command) and shutil.which(self.command[0]) is not None

    def _run(self, paths: tuple[str, ...]) -> list[dict[str, Any]]:
        if paths in self._cache:
            return self._cache[paths]
        if not self.available():
            raise ToolUnavailable(f"lint command not found: {self.command[0] if self.command else '<empty>'}", code="lint-missing")
        try:
            completed = subprocess.run(
                [*self.command, *paths],
                cwd=str(self.repo_root),
                capture_output=True,
                text=True,
                timeout=self.settings.lint_timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ToolUnavailable(
                f"lint command timed out after {self.settings.lint_timeout_seconds}s", code="lint-timeout"
            ) from exc
        except OSError as exc:
            raise ToolUnavailable(f"lint command failed to start: {exc}", code="lint-crash") from exc
        # ESLint exits 1 when it reports problems; anything else is a crash.
        if completed.returncode not in (0, 1):
            detail = (completed.stderr or completed.stdout or "").strip().splitlines()[-1:] or ["no output"]
            raise ToolUnavailable(
                f"lint command exited with {completed.returncode}: {detail[0]}", code="lint-crash"
            )
        try:
            payload = json.loads(completed.stdout)
        except json.JSONDecodeError as exc:
            raise ToolUnavailable(f"lint output is not valid JSON: {exc}", code="lint-output") from exc
        if not isinstance(payload, list):
            raise ToolUnavailable("lint output is not an ESLint JSON result list", code="lint-output")
        self._cache[paths] = payload
        return payload

    def scan(self, artifacts: list[Artifact], rules: list[Rule]) -> list[PatternViolation]:
        covered = [rule for rule in rules if rule.eslint_rules]
        delegated = [rule for rule in rules if not rule.eslint_rules]
        findings: list[PatternViolation] = []
        if covered and artifacts:
            wanted = {rule.rule_id for rule in covered}
            payload = self._run(tuple(artifact.path for artifact in artifacts))
            for file_result in payload:
                file_path = str(file_result.get("filePath", ""))
                rel_path = relative_posix(Path(file_path), self.repo_root) if Path(file_path).is_absolute() else file_path
                for message in file_result.get("messages", []):
                    rule_id = ESLINT_RULE_MAP.get(str(message.get("ruleId")))
                    if rule_id is None or rule_id not in wanted:
                        continue
                    findings.append(
                        _violation(
                            RULES_BY_ID[rule_id],
                            str(message.get("message", rule_id)),
                            file=rel_path,
                            line=message.get("line"),
                        )
                    )
        findings.extend(self._pattern_scan.scan(artifacts, delegated))
        return findings

    def take_notices(self) -> list[ToolUnavailable]:
        return []


class FallbackLintBackend:
    """Runs *primary*; on ``ToolUnavailable`` reruns the same rules on *fallback*."""

    def __init__(self, primary: LintBackend, fallback: LintBackend) -> None:
        self._primary = primary
        self._fallback = fallback
        self._notices: list[ToolUnavailable] = []
        self._degraded = False

    @property
    def name(self) -> str:
        return self._fallback.name if self._degraded else self._primary.name

    def scan(self, artifacts: list[Artifact], rules: list[Rule]) -> list[PatternViolation]:
        if not self._degraded:
            try:
                return self._primary.scan(artifacts, rules)
            except ToolUnavailable as exc:
                logger.warning("External lint backend unavailable (%s); falling back to pattern scan", exc)
                self._degraded = True
                self._notices.append(exc)
        return self._fallback.scan(artifacts, rules)

    def take_notices(self) -> list[ToolUnavailable]:
        notices, self._notices = self._notices, []
        return notices


class _ProbedFallback(PatternScanBackend):
    """Pattern scan chosen because ``auto`` found no external tool; reports that once."""

    def __init__(self, settings: RegistrySettings, reason: ToolUnavailable) -> None:
        super().__init__(settings)
        self._notices = [reason]

    def take_notices(self) -> list[ToolUnavailable]:
        notices, self._notices = self._notices, []
        return notices


def select_backend(settings: RegistrySettings, repo_root: Path) -> LintBackend:
    """Build the backend for ``lint_backend = auto | external | fallback``.

    ``external`` always attempts the tool and degrades on failure; ``auto``
    probes for the executable first and skips straight to the pattern scan
    when it is absent.
    """
    if settings.lint_backend == "fallback":
        return PatternScanBackend(settings)
    external = ExternalLintBackend(settings, repo_root)
    if settings.lint_backend == "auto" and not external.available():
        logger.info("No external lint tool on PATH; using pattern scan")
        return _ProbedFallback(
            settings,
            ToolUnavailable(f"lint command not found: {external.command[0] if external.command else '<empty>'}", code="lint-missing"),
        )
    return FallbackLintBackend(external, PatternScanBackend(settings))
