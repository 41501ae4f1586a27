from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import JourneyStatus, Severity

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "journeys.config.yml"

DEFAULT_TIERS: tuple[str, ...] = ("smoke", "release", "regression")
DEFAULT_STATUSES: tuple[str, ...] = tuple(status.value for status in JourneyStatus)

LAYOUT_CHOICES = frozenset({"flat", "staged"})
MODE_CHOICES = frozenset({"quick", "standard", "max"})
AUTOFIX_CHOICES = frozenset({"auto", "true", "false"})
LINT_BACKEND_CHOICES = frozenset({"auto", "external", "fallback"})
CONTRACT_CHOICES = frozenset({"basic", "strict", "auto"})

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class RegistrySettings:
    """Registry and validation settings with fail-fast validation.

    Values are layered: dataclass defaults, then ``journeys.config.yml``, then
    ``JOURNEY_*`` environment variables (a ``.env`` file at the repository
    root is loaded first without overriding the real environment).
    """

    journeys_dir: str = "journeys"
    reports_dir: str = "journeys/.registry/reports"
    id_prefix: str = "JRN"
    id_width: int = 4
    layout: str = "flat"
    mode: str = "standard"
    strict: bool = False
    autofix: str = "auto"
    lint_backend: str = "auto"
    contract: str = "auto"
    contract_auto_unverified: str = "warning"
    tiers: tuple[str, ...] = DEFAULT_TIERS
    statuses: tuple[str, ...] = DEFAULT_STATUSES
    artifact_globs: tuple[str, ...] = ("tests/**/*.spec.ts", "tests/**/*.spec.js")
    sanctioned_import: str = "@artk/core/fixtures"
    disallowed_imports: tuple[str, ...] = ("@playwright/test",)
    allowed_url_prefixes: tuple[str, ...] = ()
    verification_calls: tuple[str, ...] = ("expect", "expect.soft", "assert")
    lint_command: str = "npx --no-install eslint --format json"
    lint_timeout_seconds: int = 60
    disabled_rules: tuple[str, ...] = ()
    rule_severities: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, base: "RegistrySettings | None" = None) -> "RegistrySettings":
        current = base or cls()
        overrides: dict[str, Any] = {}
        for name in ("journeys_dir", "reports_dir", "id_prefix", "layout", "mode", "autofix",
                     "lint_backend", "contract", "contract_auto_unverified", "sanctioned_import",
                     "lint_command"):
            raw = os.getenv(f"JOURNEY_{name.upper()}")
            if raw is not None:
                overrides[name] = raw
        for name in ("tiers", "statuses", "artifact_globs", "disallowed_imports",
                     "allowed_url_prefixes", "verification_calls", "disabled_rules"):
            raw = os.getenv(f"JOURNEY_{name.upper()}")
            if raw is not None:
                overrides[name] = _split_csv(raw)
        if os.getenv("JOURNEY_ID_WIDTH") is not None:
            overrides["id_width"] = _get_env_int("JOURNEY_ID_WIDTH", default=current.id_width, minimum=1, maximum=12)
        if os.getenv("JOURNEY_LINT_TIMEOUT_SECONDS") is not None:
            overrides["lint_timeout_seconds"] = _get_env_int(
                "JOURNEY_LINT_TIMEOUT_SECONDS", default=current.lint_timeout_seconds, minimum=1, maximum=3_600
            )
        if os.getenv("JOURNEY_STRICT") is not None:
            overrides["strict"] = _get_env_bool("JOURNEY_STRICT", default=current.strict)
        return replace(current, **overrides).normalized()

    @classmethod
    def from_mapping(cls, payload: dict[str, Any]) -> "RegistrySettings":
        """Build settings from a parsed config file.

        Accepts both flat keys (``id_prefix``) and the nested form used by
        existing config files (``id: {prefix, width}``).
        """
        data = dict(payload)
        id_block = data.pop("id", None)
        if isinstance(id_block, dict):
            if "prefix" in id_block:
                data.setdefault("id_prefix", id_block["prefix"])
            if "width" in id_block:
                data.setdefault("id_width", id_block["width"])
        # Extra top-level keys (e.g. backlog grouping) are tolerated.
        known = set(cls.__dataclass_fields__)
        unknown = sorted(key for key in data if key not in known)
        if unknown:
            logger.debug("Ignoring unknown config keys: %s", ", ".join(unknown))
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                continue
            if isinstance(value, list):
                value = tuple(str(item) for item in value)
            if key == "autofix" and isinstance(value, bool):
                value = "true" if value else "false"
            kwargs[key] = value
        return cls(**kwargs).normalized()

    @classmethod
    def load(cls, repo_root: Path, *, config_path: Path | None = None) -> "RegistrySettings":
        """Load settings for a repository: ``.env``, then config file, then environment."""
        env_path = repo_root / ".env"
        if env_path.is_file():
            load_dotenv(env_path, override=False)

        journeys_dir = os.getenv("JOURNEY_JOURNEYS_DIR", cls.journeys_dir)
        path = config_path or repo_root / journeys_dir / CONFIG_FILENAME
        base = cls()
        if path.is_file():
            try:
                payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Failed to parse config {path}: {exc}") from exc
            if not isinstance(payload, dict):
                raise ValueError(f"Config {path} must be a mapping, got {type(payload).__name__}")
            base = cls.from_mapping(payload)
            logger.debug("Loaded registry config from %s", path)
        elif config_path is not None:
            raise FileNotFoundError(f"Config file does not exist: {config_path}")
        return cls.from_env(base)

    def normalized(self) -> "RegistrySettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        id_prefix = self.id_prefix.strip()
        if not id_prefix or not id_prefix.isalnum():
            raise ValueError(f"id_prefix must be a non-empty alphanumeric string, got: {self.id_prefix!r}")
        if not 1 <= int(self.id_width) <= 12:
            raise ValueError(f"id_width must be between 1 and 12, got: {self.id_width}")

        layout = self.layout.strip().lower()
        if layout not in LAYOUT_CHOICES:
            raise ValueError("layout must be one of: flat, staged")
        mode = self.mode.strip().lower()
        if mode not in MODE_CHOICES:
            raise ValueError("mode must be one of: quick, standard, max")
        autofix = str(self.autofix).strip().lower()
        if autofix not in AUTOFIX_CHOICES:
            raise ValueError("autofix must be one of: auto, true, false")
        lint_backend = self.lint_backend.strip().lower()
        if lint_backend not in LINT_BACKEND_CHOICES:
            raise ValueError("lint_backend must be one of: auto, external, fallback")
        contract = self.contract.strip().lower()
        if contract not in CONTRACT_CHOICES:
            raise ValueError("contract must be one of: basic, strict, auto")
        unverified = self.contract_auto_unverified.strip().lower()
        if unverified not in {Severity.ERROR.value, Severity.WARNING.value}:
            raise ValueError("contract_auto_unverified must be one of: error, warning")

        tiers = tuple(tier.strip() for tier in self.tiers if tier.strip())
        if not tiers:
            raise ValueError("tiers must be non-empty")
        if len(set(tiers)) != len(tiers):
            raise ValueError(f"tiers contain duplicates: {tiers}")
        statuses = tuple(status.strip().lower() for status in self.statuses if status.strip())
        unknown_statuses = sorted(set(statuses) - set(DEFAULT_STATUSES))
        if unknown_statuses:
            raise ValueError(f"statuses contain unknown values: {', '.join(unknown_statuses)}")
        if set(statuses) != set(DEFAULT_STATUSES):
            missing = sorted(set(DEFAULT_STATUSES) - set(statuses))
            raise ValueError(f"statuses must list every lifecycle status; missing: {', '.join(missing)}")

        rule_severities: dict[str, str] = {}
        for rule_id, severity in dict(self.rule_severities).items():
            normalized = str(severity).strip().lower()
            if normalized not in {Severity.ERROR.value, Severity.WARNING.value}:
                raise ValueError(f"rule_severities[{rule_id}] must be error or warning, got: {severity!r}")
            rule_severities[str(rule_id)] = normalized

        if not self.journeys_dir.strip():
            raise ValueError("journeys_dir must be non-empty")
        if not self.reports_dir.strip():
            raise ValueError("reports_dir must be non-empty")
        if not self.lint_command.strip():
            raise ValueError("lint_command must be non-empty")
        if int(self.lint_timeout_seconds) < 1:
            raise ValueError(f"lint_timeout_seconds must be >= 1, got: {self.lint_timeout_seconds}")
        if not self.verification_calls:
            raise ValueError("verification_calls must be non-empty")

        return RegistrySettings(
            journeys_dir=self.journeys_dir.strip(),
            reports_dir=self.reports_dir.strip(),
            id_prefix=id_prefix,
            id_width=int(self.id_width),
            layout=layout,
            mode=mode,
            strict=_as_bool("strict", self.strict),
            autofix=autofix,
            lint_backend=lint_backend,
            contract=contract,
            contract_auto_unverified=unverified,
            tiers=tiers,
            statuses=statuses,
            artifact_globs=tuple(self.artifact_globs),
            sanctioned_import=self.sanctioned_import.strip(),
            disallowed_imports=tuple(item.strip() for item in self.disallowed_imports if item.strip()),
            allowed_url_prefixes=tuple(item.strip() for item in self.allowed_url_prefixes if item.strip()),
            verification_calls=tuple(item.strip() for item in self.verification_calls if item.strip()),
            lint_command=self.lint_command.strip(),
            lint_timeout_seconds=int(self.lint_timeout_seconds),
            disabled_rules=tuple(item.strip() for item in self.disabled_rules if item.strip()),
            rule_severities=rule_severities,
        )

    def journeys_path(self, repo_root: Path) -> Path:
        path = Path(self.journeys_dir)
        return path if path.is_absolute() else repo_root / path

    def reports_path(self, repo_root: Path) -> Path:
        path = Path(self.reports_dir)
        return path if path.is_absolute() else repo_root / path

    def as_report_dict(self) -> dict[str, Any]:
        """Settings echoed into validation reports (JSON-friendly, stable order)."""
        payload = asdict(self)
        return {key: list(value) if isinstance(value, tuple) else value for key, value in sorted(payload.items())}


def _split_csv(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return _as_bool(name, raw)


def _as_bool(name: str, raw: object) -> bool:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got: {raw!r}")


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound.

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
