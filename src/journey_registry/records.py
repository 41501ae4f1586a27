from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any

import yaml
from pydantic import ValidationError

from . import regions
from .errors import SchemaError
from .models import AcceptanceCriterion, JourneyRecord
from .utils import slugify_name

logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)

_BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(.*\S)\s*$")
_AC_ITEM_RE = re.compile(r"^(?:\*\*)?(AC-\d+)(?:\*\*)?\s*(?:[:.)–-]\s*)?(.*)$", re.IGNORECASE)

_HEADER_FIELDS = frozenset(
    {
        "id",
        "title",
        "status",
        "tier",
        "actor",
        "scope",
        "owner",
        "issue",
        "replaced_by",
        "status_reason",
        "tags",
        "tests",
        "provenance",
    }
)
# camelCase spellings found in older records.
_HEADER_ALIASES = {"replacedBy": "replaced_by", "statusReason": "status_reason"}


def split_frontmatter(text: str, *, source: str | None = None) -> tuple[dict[str, Any], str]:
    match = FRONTMATTER_RE.match(text)
    if match is None:
        raise SchemaError("missing YAML frontmatter (file must start with '---')", code="frontmatter", file=source, line=1)
    try:
        header = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise SchemaError(f"invalid YAML frontmatter: {exc}", code="frontmatter", file=source, line=1) from exc
    if header is None:
        header = {}
    if not isinstance(header, dict):
        raise SchemaError("frontmatter must be a mapping", code="frontmatter", file=source, line=1)
    return header, text[match.end() :]


def _list_items(content: str) -> list[str]:
    items: list[str] = []
    for line in content.splitlines():
        match = _BULLET_RE.match(line)
        if match is not None:
            items.append(match.group(1))
        elif line.strip() and items:
            # Continuation line of the previous item.
            items[-1] = f"{items[-1]} {line.strip()}"
    return items


def parse_acceptance_criteria(content: str) -> list[AcceptanceCriterion]:
    """Parse the acceptance-criteria region.

    ``- **AC-2**: text`` carries an explicit id; a bare ``- text`` item gets the
    positional id ``AC-<n>`` and is marked implicit.
    """
    criteria: list[AcceptanceCriterion] = []
    for position, item in enumerate(_list_items(content), start=1):
        match = _AC_ITEM_RE.match(item)
        if match is not None:
            criteria.append(AcceptanceCriterion(id=match.group(1), text=match.group(2).strip()))
        else:
            criteria.append(AcceptanceCriterion(id=f"AC-{position}", text=item, explicit=False))
    return criteria


def parse_record_text(text: str, *, source: str | None = None) -> JourneyRecord:
    """Decode one Journey file into a record.

    Raises:
        SchemaError: On malformed frontmatter, malformed region markers or
            header values of the wrong type.
    """
    header, body = split_frontmatter(text, source=source)
    found = regions.parse_regions(body, source=source)

    data: dict[str, Any] = {}
    extensions: dict[str, Any] = {}
    for key, value in header.items():
        key = _HEADER_ALIASES.get(str(key), str(key))
        if key in _HEADER_FIELDS:
            data[key] = value
        else:
            extensions[key] = value
    for key in ("id", "title", "tier", "actor", "scope", "owner", "issue", "replaced_by", "status_reason"):
        # YAML reads `issue: 123` as an int and bare dates as date objects.
        if isinstance(data.get(key), (int, float, date)) and not isinstance(data.get(key), bool):
            data[key] = str(data[key])
    provenance = data.get("provenance")
    if isinstance(provenance, dict) and isinstance(provenance.get("at"), date):
        data["provenance"] = {**provenance, "at": provenance["at"].isoformat()}
    if data.get("tests") is None:
        data["tests"] = []
    if data.get("tags") is None:
        data["tags"] = []

    data.update(
        extensions=extensions,
        intent=found.get(regions.INTENT, "").strip(),
        acceptance_criteria=parse_acceptance_criteria(found.get(regions.ACCEPTANCE_CRITERIA, "")),
        procedural_steps=_list_items(found.get(regions.PROCEDURAL_STEPS, "")),
        preconditions=_list_items(found.get(regions.PRECONDITIONS, "")),
        open_questions=_list_items(found.get(regions.OPEN_QUESTIONS, "")),
        body=body,
    )
    try:
        return JourneyRecord.model_validate(data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise SchemaError(f"invalid record header: {problems}", code="header", file=source) from exc


def render_region_content(record: JourneyRecord, name: str) -> str:
    if name == regions.INTENT:
        return record.intent.strip()
    if name == regions.ACCEPTANCE_CRITERIA:
        lines = []
        for criterion in record.acceptance_criteria:
            if criterion.explicit:
                lines.append(f"- **{criterion.id}**: {criterion.text}")
            else:
                lines.append(f"- {criterion.text}")
        return "\n".join(lines)
    if name == regions.PROCEDURAL_STEPS:
        return "\n".join(f"{idx}. {step}" for idx, step in enumerate(record.procedural_steps, start=1))
    if name == regions.PRECONDITIONS:
        return "\n".join(f"- {item}" for item in record.preconditions)
    if name == regions.OPEN_QUESTIONS:
        return "\n".join(f"- {item}" for item in record.open_questions)
    raise KeyError(f"region '{name}' is not derived from record fields")


_RECORD_REGIONS = (
    regions.INTENT,
    regions.ACCEPTANCE_CRITERIA,
    regions.PROCEDURAL_STEPS,
    regions.PRECONDITIONS,
    regions.OPEN_QUESTIONS,
)


def render_frontmatter(record: JourneyRecord) -> str:
    dumped = yaml.safe_dump(record.header(), sort_keys=False, allow_unicode=True, default_flow_style=False, width=1000)
    return f"---\n{dumped}---\n"


def _new_body(record: JourneyRecord) -> str:
    sections = [f"# {record.title}".rstrip()]
    for name in (*_RECORD_REGIONS, regions.VALIDATION_STATUS):
        content = "" if name == regions.VALIDATION_STATUS else render_region_content(record, name)
        sections.append(f"## {regions.REGION_HEADINGS[name]}")
        sections.append(regions.render_region(name, content).rstrip("\n"))
    return "\n" + "\n\n".join(sections) + "\n"


def render_record_text(record: JourneyRecord) -> str:
    """Encode a record as frontmatter plus body.

    For a record read from disk only the managed regions change; a region that
    is absent from the body and empty on the record is not added.
    """
    if record.body is None:
        return render_frontmatter(record) + _new_body(record)

    body = record.body
    existing = regions.find_regions(body)
    for name in _RECORD_REGIONS:
        content = render_region_content(record, name)
        if name not in existing and not content:
            continue
        # Unchanged values keep their hand-written spelling.
        if name in existing and _region_value(name, existing[name].content) == _record_value(record, name):
            continue
        body = regions.replace_region(body, name, content)
    return render_frontmatter(record) + body


def _region_value(name: str, content: str) -> Any:
    if name == regions.INTENT:
        return content.strip()
    if name == regions.ACCEPTANCE_CRITERIA:
        return parse_acceptance_criteria(content)
    return _list_items(content)


def _record_value(record: JourneyRecord, name: str) -> Any:
    if name == regions.INTENT:
        return record.intent.strip()
    if name == regions.ACCEPTANCE_CRITERIA:
        return list(record.acceptance_criteria)
    if name == regions.PROCEDURAL_STEPS:
        return list(record.procedural_steps)
    if name == regions.PRECONDITIONS:
        return list(record.preconditions)
    return list(record.open_questions)


def record_filename(record_id: str, title: str) -> str:
    return f"{record_id}__{slugify_name(title)}.md"
