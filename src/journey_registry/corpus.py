from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Iterable

from .models import normalize_ac_id
from .utils import line_number_at, relative_posix, resolve_within_root

logger = logging.getLogger(__name__)

# test('title', ...), test.step("title", ...), test.describe(`title`, ...)
MARKER_RE = re.compile(
    r"(?<![\w$.])(test(?:\.(?:step|describe|only|skip|fixme))?)\s*\(\s*(['\"`])((?:\\.|(?!\2)[^\\])*)\2",
    re.DOTALL,
)
AC_REF_RE = re.compile(r"\bAC-(\d+)\b", re.IGNORECASE)
_BODY_OPENER_RE = re.compile(r"=>|\bfunction\b")


def tag_pattern(record_id: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![\w-])@{re.escape(record_id)}(?!\d)")


@dataclass(frozen=True)
class TestMarker:
    """One ``test(...)`` / ``test.step(...)`` call with its title and body."""

    kind: str
    title: str
    line: int
    body: str | None

    @property
    def ac_ids(self) -> list[str]:
        return [normalize_ac_id(f"AC-{number}") for number in AC_REF_RE.findall(self.title)]

    @property
    def is_describe(self) -> bool:
        return self.kind == "test.describe"


@dataclass
class Artifact:
    path: str
    text: str

    @cached_property
    def lines(self) -> list[str]:
        return self.text.splitlines()

    def has_tag(self, record_id: str) -> bool:
        return tag_pattern(record_id).search(self.text) is not None

    @cached_property
    def markers(self) -> list[TestMarker]:
        return find_markers(self.text)


def _skip_string(text: str, pos: int) -> int:
    quote = text[pos]
    idx = pos + 1
    while idx < len(text):
        char = text[idx]
        if char == "\\":
            idx += 2
            continue
        if char == quote:
            return idx + 1
        idx += 1
    return idx


def _match_brace(text: str, open_pos: int) -> int | None:
    """Index of the ``}`` closing the ``{`` at *open_pos*, skipping strings and comments."""
    depth = 0
    idx = open_pos
    while idx < len(text):
        char = text[idx]
        if char in "'\"`":
            idx = _skip_string(text, idx)
            continue
        if text.startswith("//", idx):
            newline = text.find("\n", idx)
            idx = len(text) if newline == -1 else newline
            continue
        if text.startswith("/*", idx):
            close = text.find("*/", idx + 2)
            idx = len(text) if close == -1 else close + 2
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return idx
        idx += 1
    return None


def _call_still_open(text: str, start: int, end: int) -> bool:
    depth = 0
    idx = start
    while idx < end:
        char = text[idx]
        if char in "'\"`":
            idx = _skip_string(text, idx)
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
        idx += 1
    return True


def find_markers(text: str) -> list[TestMarker]:
    markers: list[TestMarker] = []
    for match in MARKER_RE.finditer(text):
        body: str | None = None
        opener = _BODY_OPENER_RE.search(text, match.end())
        if opener is not None:
            open_pos = text.find("{", opener.end())
            # The callback must belong to this call, not to a later statement.
            if open_pos != -1 and _call_still_open(text, match.end(), opener.start()):
                close_pos = _match_brace(text, open_pos)
                if close_pos is not None:
                    body = text[open_pos + 1 : close_pos]
        markers.append(
            TestMarker(
                kind=match.group(1),
                title=match.group(3),
                line=line_number_at(text, match.start()),
                body=body,
            )
        )
    return markers


def verification_pattern(calls: Iterable[str]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(call) for call in sorted(set(calls), key=len, reverse=True))
    return re.compile(rf"(?<![\w$.])(?:{alternatives})(?:\.\w+)*\s*\(")


_COMMENT_RE = re.compile(r"//[^\n]*|/\*.*?\*/", re.DOTALL)


def strip_comments(code: str) -> str:
    return _COMMENT_RE.sub("", code)


def is_comment_line(line: str) -> bool:
    stripped = line.lstrip()
    return stripped.startswith(("//", "/*", "*"))


@dataclass
class ArtifactCorpus:
    """Read-only view over implementation artifacts under a repository root.

    Files are read lazily and cached; ``invalidate`` drops a cached file after
    an autofix rewrite.
    """

    root: Path
    globs: tuple[str, ...] = ()
    _cache: dict[str, Artifact | None] = field(default_factory=dict, repr=False)

    @staticmethod
    def key(rel_path: str) -> str:
        """Cache key for *rel_path*: POSIX separators, no leading `./`."""
        return Path(rel_path).as_posix()

    def escapes(self, rel_path: str) -> bool:
        return resolve_within_root(self.root, rel_path) is None

    def read(self, rel_path: str) -> Artifact | None:
        """Return the artifact at *rel_path*, or ``None`` when missing or outside the root."""
        key = self.key(rel_path)
        if key in self._cache:
            return self._cache[key]
        resolved = resolve_within_root(self.root, key)
        artifact: Artifact | None = None
        if resolved is not None and resolved.is_file():
            try:
                artifact = Artifact(path=key, text=resolved.read_text(encoding="utf-8"))
            except UnicodeDecodeError:
                logger.warning("Artifact %s is not valid UTF-8; treating as missing", key)
        self._cache[key] = artifact
        return artifact

    def path_for(self, rel_path: str) -> Path:
        resolved = resolve_within_root(self.root, rel_path)
        if resolved is None:
            raise ValueError(f"artifact path escapes repository root: {rel_path}")
        return resolved

    def invalidate(self, rel_path: str) -> None:
        self._cache.pop(self.key(rel_path), None)

    def discover(self) -> list[str]:
        """Relative paths of every artifact matching the configured globs, sorted."""
        found: set[str] = set()
        for pattern in self.globs:
            for path in self.root.glob(pattern):
                if path.is_file() and "node_modules" not in path.parts:
                    found.add(relative_posix(path, self.root))
        return sorted(found)

    def tagged_with(self, record_id: str) -> list[str]:
        tagged: list[str] = []
        for rel_path in self.discover():
            artifact = self.read(rel_path)
            if artifact is not None and artifact.has_tag(record_id):
                tagged.append(rel_path)
        return tagged
