"""Derived registry artifacts: ``BACKLOG.md`` and ``index.json``.

Both are pure functions of a ``RegistrySnapshot``.  The only input that is not
part of the snapshot is ``generated_at``, and ``write_generated`` reuses the
previous timestamp whenever the timestamp-free content is unchanged, so a
regeneration over an untouched store is byte-identical.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from itertools import groupby
from pathlib import Path

from pydantic import ValidationError

from .canonical import content_hash
from .errors import SchemaError
from .ids import id_number
from .models import IndexEntry, JourneyStatus, RegistryIndex
from .settings import RegistrySettings
from .state_store import JourneyStore, RegistrySnapshot, StoredRecord, atomic_write_text
from .utils import utc_now_iso

logger = logging.getLogger(__name__)

BANNER = "Generated file. Do not edit by hand."
BACKLOG_FILENAME = "BACKLOG.md"
INDEX_FILENAME = "index.json"

_BACKLOG_STAMP_RE = re.compile(r"^> Generated: (?P<at>\S+) \(content (?P<hash>[0-9a-f]{64})\)$", re.MULTILINE)


@dataclass(frozen=True)
class GeneratedArtifacts:
    backlog: str
    index: str
    content_hash: str
    generated_at: str


@dataclass
class GenerationResult:
    backlog_path: Path
    index_path: Path
    content_hash: str
    written: list[Path] = field(default_factory=list)
    unchanged: list[Path] = field(default_factory=list)


def _record_file(stored: StoredRecord, settings: RegistrySettings) -> str:
    """Path of a record file relative to the journeys directory."""
    parent = stored.path.parent.name
    if parent in settings.statuses:
        return f"{parent}/{stored.path.name}"
    return stored.path.name


def _numeric_key(record_id: str | None, settings: RegistrySettings) -> tuple[int, str]:
    number = id_number(record_id or "", settings.id_prefix)
    return (number if number is not None else 10**12, record_id or "")


def _ordered(snapshot: RegistrySnapshot, settings: RegistrySettings) -> list[StoredRecord]:
    tier_rank = {tier: idx for idx, tier in enumerate(settings.tiers)}
    status_rank = {status: idx for idx, status in enumerate(settings.statuses)}
    return sorted(
        snapshot.records,
        key=lambda stored: (
            tier_rank.get(stored.record.tier, len(tier_rank)),
            status_rank.get(stored.record.status.value, len(status_rank)),
            _numeric_key(stored.record.id, settings),
        ),
    )


def _entries(snapshot: RegistrySnapshot, settings: RegistrySettings) -> list[IndexEntry]:
    entries = [
        IndexEntry(
            id=stored.record.id or "",
            title=stored.record.title,
            status=stored.record.status.value,
            tier=stored.record.tier,
            actor=stored.record.actor,
            scope=stored.record.scope,
            owner=stored.record.owner,
            tests=list(stored.record.tests),
            file=_record_file(stored, settings),
            content_hash=stored.content_hash,
        )
        for stored in snapshot.records
    ]
    entries.sort(key=lambda entry: _numeric_key(entry.id, settings))
    return entries


def _digest(entries: list[IndexEntry], settings: RegistrySettings) -> str:
    return content_hash({"journeys": entries, "tiers": list(settings.tiers), "statuses": list(settings.statuses)})


def _ensure_loadable(snapshot: RegistrySnapshot) -> None:
    if snapshot.errors:
        problems = "\n".join(f"- {error}" for error in snapshot.errors)
        raise SchemaError(f"refusing to generate: {len(snapshot.errors)} record problem(s)\n{problems}", code="generate")


def _backlog_line(stored: StoredRecord, settings: RegistrySettings) -> str:
    record = stored.record
    checkbox = "[x]" if record.status == JourneyStatus.IMPLEMENTED and record.tests else "[ ]"
    extras = [f"actor: {record.actor}"]
    if record.owner:
        extras.append(f"owner: {record.owner}")
    if record.tests:
        extras.append(f"tests: {len(record.tests)}")
    link = _record_file(stored, settings)
    return f"- {checkbox} {record.id}: {record.title} ([journey]({link})) {', '.join(extras)}"


def render_backlog(snapshot: RegistrySnapshot, settings: RegistrySettings, *, generated_at: str, digest: str) -> str:
    ordered = _ordered(snapshot, settings)
    counts = Counter((stored.record.tier, stored.record.status.value) for stored in ordered)

    lines = [
        "# Journey Backlog",
        "",
        f"> **{BANNER}** Regenerate with `journeys generate`.",
        f"> Generated: {generated_at} (content {digest})",
        "",
        "## Summary",
        "",
        "| Tier | Status | Count |",
        "|---|---|---:|",
    ]
    for tier in settings.tiers:
        for status in settings.statuses:
            if counts[(tier, status)]:
                lines.append(f"| {tier} | {status} | {counts[(tier, status)]} |")
    lines.extend([f"| **total** | | {len(ordered)} |", ""])

    for tier, tier_group in groupby(ordered, key=lambda stored: stored.record.tier):
        lines.extend([f"## Tier: {tier}", ""])
        for status, status_group in groupby(tier_group, key=lambda stored: stored.record.status.value):
            lines.extend([f"### Status: {status}", ""])
            lines.extend(_backlog_line(stored, settings) for stored in status_group)
            lines.append("")
    return "\n".join(lines).rstrip("\n") + "\n"


def render_index(entries: list[IndexEntry], *, generated_at: str, digest: str) -> str:
    index = RegistryIndex(banner=BANNER, generated_at=generated_at, content_hash=digest, journeys=entries)
    return index.model_dump_json(indent=2) + "\n"


def generate(snapshot: RegistrySnapshot, settings: RegistrySettings, *, generated_at: str | None = None) -> GeneratedArtifacts:
    """Render both derived artifacts from *snapshot*.

    Raises:
        SchemaError: When any record failed to load or two records share an id.
    """
    _ensure_loadable(snapshot)
    entries = _entries(snapshot, settings)
    digest = _digest(entries, settings)
    stamp = generated_at or utc_now_iso()
    return GeneratedArtifacts(
        backlog=render_backlog(snapshot, settings, generated_at=stamp, digest=digest),
        index=render_index(entries, generated_at=stamp, digest=digest),
        content_hash=digest,
        generated_at=stamp,
    )


def _previous_stamp(index_path: Path, backlog_path: Path) -> tuple[str | None, str | None]:
    """``(content_hash, generated_at)`` recorded by the last generation, if readable."""
    if index_path.is_file():
        try:
            previous = RegistryIndex.model_validate_json(index_path.read_bytes())
            return previous.content_hash, previous.generated_at
        except ValidationError:
            logger.warning("Existing %s is unreadable; it will be rebuilt", index_path.name)
    if backlog_path.is_file():
        match = _BACKLOG_STAMP_RE.search(backlog_path.read_bytes().decode("utf-8", "replace"))
        if match is not None:
            return match.group("hash"), match.group("at")
    return None, None


def _planned(store: JourneyStore, snapshot: RegistrySnapshot) -> tuple[GeneratedArtifacts, Path, Path]:
    backlog_path = store.journeys_dir / BACKLOG_FILENAME
    index_path = store.journeys_dir / INDEX_FILENAME
    _ensure_loadable(snapshot)
    digest = _digest(_entries(snapshot, store.settings), store.settings)
    previous_hash, previous_at = _previous_stamp(index_path, backlog_path)
    stamp = previous_at if previous_at and previous_hash == digest else utc_now_iso()
    return generate(snapshot, store.settings, generated_at=stamp), backlog_path, index_path


def _read_existing(path: Path) -> str | None:
    if not path.is_file():
        return None
    return path.read_bytes().decode("utf-8", "replace")


def write_generated(store: JourneyStore, *, snapshot: RegistrySnapshot | None = None) -> GenerationResult:
    """Regenerate ``BACKLOG.md`` and ``index.json``; files already up to date are left untouched."""
    current = snapshot or store.snapshot()
    artifacts, backlog_path, index_path = _planned(store, current)
    result = GenerationResult(backlog_path=backlog_path, index_path=index_path, content_hash=artifacts.content_hash)
    for path, content in ((backlog_path, artifacts.backlog), (index_path, artifacts.index)):
        if _read_existing(path) == content:
            result.unchanged.append(path)
            continue
        atomic_write_text(path, content)
        result.written.append(path)
        logger.info("Regenerated %s", path.name)
    return result


def stale_generated(store: JourneyStore, *, snapshot: RegistrySnapshot | None = None) -> list[Path]:
    """Derived files that ``write_generated`` would rewrite."""
    current = snapshot or store.snapshot()
    artifacts, backlog_path, index_path = _planned(store, current)
    return [
        path
        for path, content in ((backlog_path, artifacts.backlog), (index_path, artifacts.index))
        if _read_existing(path) != content
    ]
