from __future__ import annotations

import re
from typing import Iterable


def id_number(record_id: str, prefix: str) -> int | None:
    """Numeric part of ``<prefix>-<digits>``, or ``None`` for other ids."""
    match = re.fullmatch(rf"{re.escape(prefix)}-(\d+)", record_id)
    if match is None:
        return None
    return int(match.group(1))


def format_id(prefix: str, number: int, width: int) -> str:
    if number < 1:
        raise ValueError(f"id number must be positive, got: {number}")
    digits = str(number)
    if len(digits) > width:
        raise ValueError(f"id space exhausted: {prefix}-{digits} does not fit in {width} digits")
    return f"{prefix}-{digits.zfill(width)}"


def allocate_id(existing_ids: Iterable[str], prefix: str, width: int, *, high_water: int = 0) -> str:
    """Next id after the highest number ever issued for *prefix*.

    Gaps left by missing records are never refilled.
    """
    highest = high_water
    for record_id in existing_ids:
        number = id_number(record_id, prefix)
        if number is not None and number > highest:
            highest = number
    return format_id(prefix, highest + 1, width)


def parse_id_list(value: str, *, prefix: str = "JRN", width: int = 4) -> list[str]:
    """Expand ``"JRN-0001,JRN-0003..JRN-0005"`` into a sorted, de-duplicated id list.

    Ranges are inclusive and may run in either direction.

    Raises:
        ValueError: On an empty list or a token that is not a valid id.
    """
    numbers: set[int] = set()
    for token in (part.strip() for part in value.split(",")):
        if not token:
            continue
        if ".." in token:
            start_token, _, end_token = token.partition("..")
            start = _required_number(start_token.strip(), prefix)
            end = _required_number(end_token.strip(), prefix)
            low, high = sorted((start, end))
            numbers.update(range(low, high + 1))
        else:
            numbers.add(_required_number(token, prefix))
    if not numbers:
        raise ValueError("journey id list is empty")
    return [format_id(prefix, number, width) for number in sorted(numbers)]


def _required_number(token: str, prefix: str) -> int:
    number = id_number(token, prefix)
    if number is None or number < 1:
        raise ValueError(f"invalid journey id: {token!r}")
    return number
