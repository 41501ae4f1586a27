"""Named regions inside a Journey body.

A region is delimited by marker comments on their own lines::

    <!-- journey:begin acceptance-criteria -->
    - **AC-1**: ...
    <!-- journey:end acceptance-criteria -->

Only the text between the two markers is ever rewritten.  Everything outside
markers belongs to humans and is preserved byte for byte.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import SchemaError

INTENT = "intent"
ACCEPTANCE_CRITERIA = "acceptance-criteria"
PROCEDURAL_STEPS = "procedural-steps"
PRECONDITIONS = "preconditions"
OPEN_QUESTIONS = "open-questions"
VALIDATION_STATUS = "validation-status"

REGION_NAMES: tuple[str, ...] = (
    INTENT,
    ACCEPTANCE_CRITERIA,
    PROCEDURAL_STEPS,
    PRECONDITIONS,
    OPEN_QUESTIONS,
    VALIDATION_STATUS,
)

REGION_HEADINGS: dict[str, str] = {
    INTENT: "Intent",
    ACCEPTANCE_CRITERIA: "Acceptance Criteria",
    PROCEDURAL_STEPS: "Procedural Steps",
    PRECONDITIONS: "Preconditions",
    OPEN_QUESTIONS: "Open Questions",
    VALIDATION_STATUS: "Validation Status",
}

MARKER_RE = re.compile(r"^[ \t]*<!--\s*journey:(begin|end)\s+([a-z][a-z0-9-]*)\s*-->[ \t]*$", re.MULTILINE)


@dataclass(frozen=True)
class Region:
    name: str
    content: str
    # Offsets of the content between the marker lines (exclusive of both markers).
    content_start: int
    content_end: int


def begin_marker(name: str) -> str:
    return f"<!-- journey:begin {name} -->"


def end_marker(name: str) -> str:
    return f"<!-- journey:end {name} -->"


def find_regions(body: str, *, source: str | None = None) -> dict[str, Region]:
    """Locate every marked region.

    Raises:
        SchemaError: On nested, unterminated, mismatched or duplicated markers.
    """
    regions: dict[str, Region] = {}
    open_name: str | None = None
    open_content_start = 0
    for match in MARKER_RE.finditer(body):
        kind, name = match.group(1), match.group(2)
        line = body.count("\n", 0, match.start()) + 1
        if kind == "begin":
            if open_name is not None:
                raise SchemaError(
                    f"region '{name}' begins inside unterminated region '{open_name}'",
                    code="region-nested",
                    file=source,
                    line=line,
                )
            if name in regions:
                raise SchemaError(f"region '{name}' appears more than once", code="region-duplicate", file=source, line=line)
            open_name = name
            # Content starts after the newline that terminates the begin marker.
            open_content_start = match.end() + 1 if body[match.end() : match.end() + 1] == "\n" else match.end()
            continue
        if open_name != name:
            raise SchemaError(
                f"end marker for '{name}' does not close an open region",
                code="region-mismatch",
                file=source,
                line=line,
            )
        content_end = match.start()
        regions[name] = Region(
            name=name,
            content=body[open_content_start:content_end],
            content_start=open_content_start,
            content_end=content_end,
        )
        open_name = None
    if open_name is not None:
        raise SchemaError(f"region '{open_name}' is never closed", code="region-unterminated", file=source)
    return regions


def parse_regions(body: str, *, source: str | None = None) -> dict[str, str]:
    """Return ``{name: stripped content}`` for every marked region."""
    return {name: region.content.strip("\n") for name, region in find_regions(body, source=source).items()}


def render_region(name: str, content: str) -> str:
    inner = content.strip("\n")
    if inner:
        return f"{begin_marker(name)}\n{inner}\n{end_marker(name)}\n"
    return f"{begin_marker(name)}\n{end_marker(name)}\n"


def replace_region(body: str, name: str, content: str, *, heading: bool = True) -> str:
    """Return *body* with region *name* set to *content*.

    A missing region is appended at the end of the body, under its heading.
    """
    regions = find_regions(body)
    inner = content.strip("\n")
    region = regions.get(name)
    if region is not None:
        replacement = f"{inner}\n" if inner else ""
        return body[: region.content_start] + replacement + body[region.content_end :]

    parts = [body.rstrip("\n")] if body.strip() else []
    if heading:
        parts.append(f"## {REGION_HEADINGS.get(name, name)}")
    parts.append(render_region(name, inner).rstrip("\n"))
    return "\n\n".join(parts) + "\n"
