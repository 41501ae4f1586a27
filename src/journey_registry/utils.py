from __future__ import annotations

import re
from datetime import UTC, datetime
from pathlib import Path


def slugify_name(name: str, *, max_length: int = 48) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]+", "-", name.lower()).strip("-")
    slug = re.sub(r"-{2,}", "-", slug)
    return slug[:max_length].rstrip("-") or "journey"


def utc_now_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def resolve_within_root(root: Path, relative: str) -> Path | None:
    """Resolve *relative* against *root*; ``None`` when it escapes the root."""
    candidate = Path(relative)
    if candidate.is_absolute():
        return None
    resolved_root = root.resolve()
    resolved = (resolved_root / candidate).resolve()
    try:
        resolved.relative_to(resolved_root)
    except ValueError:
        return None
    return resolved


def relative_posix(path: Path, root: Path) -> str:
    try:
        return path.resolve().relative_to(root.resolve()).as_posix()
    except ValueError:
        return path.as_posix()


def line_number_at(text: str, offset: int) -> int:
    """1-based line number of character *offset* in *text*."""
    return text.count("\n", 0, offset) + 1
