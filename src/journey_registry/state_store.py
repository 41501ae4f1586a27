from __future__ import annotations

import fcntl
import logging
import os
import re
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import regions
from .canonical import content_hash, sha256_text
from .corpus import ArtifactCorpus
from .errors import IOConflict, JourneyError, LifecycleError, RecordRejected, SchemaError
from .ids import allocate_id, id_number
from .lifecycle import validate_record
from .models import JourneyRecord, JourneyStatus
from .records import parse_record_text, record_filename, render_frontmatter, render_record_text
from .settings import RegistrySettings
from .utils import relative_posix

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# File locking helpers
# ---------------------------------------------------------------------------

_LOCK_SUFFIX = ".lock"

REGISTRY_DIRNAME = ".registry"
RECORD_FILE_RE = re.compile(r"^[A-Za-z0-9]+-\d+(?:__[^/]*)?\.md$")


@contextmanager
def _locked_file(path: Path) -> Iterator[None]:
    """Acquire an exclusive file lock for the duration of the context.

    Uses a separate .lock sidecar file so the actual data file can be
    atomically replaced via ``os.replace`` without disturbing the lock
    handle.
    """
    lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as lock_handle:
        fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)


def atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* atomically.

    Writes to a temporary file in the same directory, then renames
    (``os.replace``) into place so readers never observe a partial file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        # Clean up the temp file on any failure.
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise SchemaError(f"{path.name} contains invalid UTF-8 data", code="encoding", file=str(path)) from exc


# ---------------------------------------------------------------------------
# Snapshot types
# ---------------------------------------------------------------------------


class IdLedger(BaseModel):
    """Highest id number ever issued, per prefix."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int = 1
    high_water: dict[str, int] = Field(default_factory=dict)


@dataclass(frozen=True)
class StoredRecord:
    record: JourneyRecord
    path: Path
    rel_path: str
    text: str

    @property
    def content_hash(self) -> str:
        return sha256_text(self.text)

    @property
    def body(self) -> str:
        return self.record.body or ""


@dataclass(frozen=True)
class RegistrySnapshot:
    """Immutable view of every record file plus the id ledger at one point in time."""

    records: tuple[StoredRecord, ...]
    errors: tuple[JourneyError, ...]
    high_water: int
    content_hash: str
    _by_id: dict[str, StoredRecord] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        for stored in self.records:
            if stored.record.id is not None:
                self._by_id.setdefault(stored.record.id, stored)

    @property
    def ids(self) -> list[str]:
        return [stored.record.id for stored in self.records if stored.record.id is not None]

    def find(self, record_id: str) -> StoredRecord | None:
        return self._by_id.get(record_id)

    def get(self, record_id: str) -> StoredRecord:
        stored = self.find(record_id)
        if stored is None:
            raise KeyError(f"journey not found: {record_id}")
        return stored


def _state_hash(files: dict[str, str], ledger_text: str) -> str:
    return content_hash({"records": {path: sha256_text(text) for path, text in files.items()}, "ledger": ledger_text})


# ---------------------------------------------------------------------------
# JourneyStore
# ---------------------------------------------------------------------------


class JourneyStore:
    """File-backed Journey registry.

    Every mutation follows the same discipline: validate against the caller's
    snapshot, then under an exclusive ``fcntl`` lock recompute the store hash,
    refuse with ``IOConflict`` if it moved, and replace whole files atomically.
    """

    def __init__(self, repo_root: Path, settings: RegistrySettings | None = None) -> None:
        self.repo_root = repo_root
        self.settings = settings or RegistrySettings()
        self.journeys_dir = self.settings.journeys_path(repo_root)
        self.registry_dir = self.journeys_dir / REGISTRY_DIRNAME
        self.ledger_path = self.registry_dir / "ids.json"

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def record_paths(self) -> list[Path]:
        """Record files in both layouts, sorted by relative path."""
        if not self.journeys_dir.is_dir():
            return []
        candidates = [*self.journeys_dir.glob("*.md"), *self.journeys_dir.glob("*/*.md")]
        paths = [
            path
            for path in candidates
            if path.is_file() and RECORD_FILE_RE.match(path.name) and REGISTRY_DIRNAME not in path.parts
        ]
        return sorted(paths, key=lambda path: relative_posix(path, self.journeys_dir))

    def _read_ledger_text(self) -> str:
        if not self.ledger_path.is_file():
            return ""
        return self.ledger_path.read_text(encoding="utf-8")

    def _parse_ledger(self, text: str) -> IdLedger:
        if not text.strip():
            return IdLedger()
        try:
            return IdLedger.model_validate_json(text)
        except ValidationError as exc:
            raise ValueError(f"id ledger at {self.ledger_path} failed validation: {exc}") from exc

    def _current_state_hash(self) -> str:
        files = {relative_posix(path, self.repo_root): path.read_bytes().decode("utf-8", "replace") for path in self.record_paths()}
        return _state_hash(files, self._read_ledger_text())

    def snapshot(self) -> RegistrySnapshot:
        """Read every record once.  Unreadable records are reported in ``errors``."""
        files: dict[str, str] = {}
        records: list[StoredRecord] = []
        errors: list[JourneyError] = []
        seen: dict[str, str] = {}
        for path in self.record_paths():
            rel_path = relative_posix(path, self.repo_root)
            raw = path.read_bytes().decode("utf-8", "replace")
            files[rel_path] = raw
            try:
                record = parse_record_text(_read_text(path), source=rel_path)
            except SchemaError as exc:
                errors.append(exc)
                continue
            if record.id is None:
                errors.append(SchemaError("missing required field: id", code="missing-field", file=rel_path))
                continue
            if not path.name.startswith(f"{record.id}__") and path.stem != record.id:
                errors.append(
                    SchemaError(f"file name does not start with its id {record.id}", code="file-name", file=rel_path)
                )
            if record.id in seen:
                errors.append(
                    SchemaError(
                        f"duplicate journey id {record.id} (also in {seen[record.id]})",
                        code="id-duplicate",
                        file=rel_path,
                    )
                )
            seen.setdefault(record.id, rel_path)
            records.append(StoredRecord(record=record, path=path, rel_path=rel_path, text=raw))

        ledger_text = self._read_ledger_text()
        ledger = self._parse_ledger(ledger_text)
        records.sort(key=lambda stored: self._sort_number(stored.record.id))
        return RegistrySnapshot(
            records=tuple(records),
            errors=tuple(errors),
            high_water=ledger.high_water.get(self.settings.id_prefix, 0),
            content_hash=_state_hash(files, ledger_text),
        )

    def _sort_number(self, record_id: str | None) -> tuple[int, str]:
        number = id_number(record_id or "", self.settings.id_prefix)
        return (number if number is not None else 10**12, record_id or "")

    def get(self, record_id: str) -> StoredRecord:
        return self.snapshot().get(record_id)

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def allocate(self, prefix: str | None = None, width: int | None = None, *, snapshot: RegistrySnapshot | None = None) -> str:
        """Next free id for the current snapshot.  Nothing is reserved until a record is committed."""
        current = snapshot or self.snapshot()
        prefix = prefix or self.settings.id_prefix
        width = width or self.settings.id_width
        if prefix == self.settings.id_prefix:
            high_water = current.high_water
        else:
            high_water = self._parse_ledger(self._read_ledger_text()).high_water.get(prefix, 0)
        return allocate_id(current.ids, prefix, width, high_water=high_water)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _target_path(self, record: JourneyRecord, previous: StoredRecord | None) -> Path:
        assert record.id is not None
        filename = previous.path.name if previous is not None else record_filename(record.id, record.title)
        if self.settings.layout == "staged":
            return self.journeys_dir / record.status.value / filename
        return self.journeys_dir / filename

    def upsert(self, record: JourneyRecord, *, snapshot: RegistrySnapshot, promoted: bool = False) -> StoredRecord:
        """Validate, allocate an id if needed, and commit *record*.

        Only ``promote`` passes ``promoted=True``, after a passing strict
        validation; any other move into ``implemented`` is rejected.

        Raises:
            RecordRejected: When validation finds schema or lifecycle errors.
            IOConflict: When the store changed since *snapshot*; nothing is written.
            ValueError: When the id space for the configured width is exhausted.
        """
        previous = snapshot.find(record.id) if record.id is not None else None
        if record.id is None:
            record = record.model_copy(update={"id": self.allocate(snapshot=snapshot)})
        elif previous is None:
            number = id_number(record.id, self.settings.id_prefix)
            if number is not None and number <= snapshot.high_water:
                raise RecordRejected(
                    record.id,
                    [SchemaError(f"id {record.id} was already issued and cannot be reused", code="id-reused")],
                )

        target = self._target_path(record, previous)
        source = relative_posix(target, self.repo_root)
        errors = validate_record(
            record,
            settings=self.settings,
            previous=previous.record if previous is not None else None,
            corpus=ArtifactCorpus(self.repo_root),
            source=source,
        )
        entering = previous is None or previous.record.status != JourneyStatus.IMPLEMENTED
        if record.status == JourneyStatus.IMPLEMENTED and entering and not promoted:
            errors.append(
                LifecycleError(
                    f"{record.id} can only become implemented through a passing strict validation (journeys promote)",
                    code="promotion-required",
                    file=source,
                )
            )
        if errors:
            logger.info("Rejected %s: %d validation error(s)", record.id, len(errors))
            raise RecordRejected(record.id, errors)

        text = render_record_text(record)
        return self._commit(record.id, text, target=target, previous=previous, snapshot=snapshot)

    def update_region(self, record_id: str, region: str, content: str, *, snapshot: RegistrySnapshot) -> StoredRecord:
        """Rewrite one managed region of a stored record."""
        if region not in regions.REGION_NAMES:
            raise ValueError(f"unknown region '{region}'; expected one of: {', '.join(regions.REGION_NAMES)}")
        stored = snapshot.get(record_id)
        body = regions.replace_region(stored.body, region, content)
        text = render_frontmatter(stored.record) + body
        record = parse_record_text(text, source=stored.rel_path)
        errors = validate_record(record, settings=self.settings, previous=stored.record, source=stored.rel_path)
        if errors:
            raise RecordRejected(record_id, errors)
        return self._commit(record_id, text, target=stored.path, previous=stored, snapshot=snapshot)

    def set_status(
        self,
        record_id: str,
        status: JourneyStatus | str,
        *,
        snapshot: RegistrySnapshot,
        owner: str | None = None,
        issue: str | None = None,
        replaced_by: str | None = None,
        status_reason: str | None = None,
    ) -> StoredRecord:
        stored = snapshot.get(record_id)
        update: dict[str, object] = {"status": JourneyStatus(status)}
        for key, value in (("owner", owner), ("issue", issue), ("replaced_by", replaced_by), ("status_reason", status_reason)):
            if value is not None:
                update[key] = value
        return self.upsert(stored.record.model_copy(update=update), snapshot=snapshot)

    def _commit(
        self,
        record_id: str,
        text: str,
        *,
        target: Path,
        previous: StoredRecord | None,
        snapshot: RegistrySnapshot,
    ) -> StoredRecord:
        rel_path = relative_posix(target, self.repo_root)
        if previous is not None and previous.text == text and previous.path == target:
            logger.debug("No change for %s; skipping write", record_id)
            return previous

        with _locked_file(self.ledger_path):
            current_hash = self._current_state_hash()
            if current_hash != snapshot.content_hash:
                logger.warning("Store changed since snapshot; refusing to write %s", record_id)
                raise IOConflict(
                    f"journey store changed since snapshot (expected {snapshot.content_hash[:12]}, "
                    f"found {current_hash[:12]}); re-read and retry",
                    file=rel_path,
                )
            atomic_write_text(target, text)
            if previous is not None and previous.path != target:
                previous.path.unlink()
                logger.info("Moved %s: %s -> %s", record_id, previous.rel_path, rel_path)
            self._bump_high_water(record_id)

        logger.info("Wrote %s", rel_path)
        record = parse_record_text(text, source=rel_path)
        return StoredRecord(record=record, path=target, rel_path=rel_path, text=text)

    def _bump_high_water(self, record_id: str) -> None:
        prefix, _, _ = record_id.rpartition("-")
        number = id_number(record_id, prefix)
        if number is None:
            return
        ledger = self._parse_ledger(self._read_ledger_text())
        if ledger.high_water.get(prefix, 0) >= number:
            return
        ledger.high_water[prefix] = number
        atomic_write_text(self.ledger_path, ledger.model_dump_json(indent=2) + "\n")
