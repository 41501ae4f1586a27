import pytest

from journey_registry.ids import allocate_id, format_id, id_number, parse_id_list
from journey_registry.state_store import JourneyStore


def test_allocate_id_never_refills_gaps() -> None:
    existing = ["JRN-0001", "JRN-0002", "JRN-0003", "JRN-0005", "JRN-0006", "JRN-0007"]
    assert allocate_id(existing, "JRN", 4) == "JRN-0008"


def test_allocate_id_respects_high_water_and_prefix() -> None:
    assert allocate_id(["JRN-0002", "FLOW-0042"], "JRN", 4, high_water=9) == "JRN-0010"
    assert allocate_id([], "JRN", 4) == "JRN-0001"


def test_allocate_id_raises_when_width_is_exhausted() -> None:
    with pytest.raises(ValueError, match="exhausted"):
        allocate_id(["JRN-99"], "JRN", 2)


def test_format_id_and_id_number() -> None:
    assert format_id("JRN", 42, 4) == "JRN-0042"
    assert id_number("JRN-0042", "JRN") == 42
    assert id_number("FLOW-0042", "JRN") is None
    assert id_number("JRN-00x2", "JRN") is None


def test_parse_id_list_expands_ranges_in_either_direction() -> None:
    assert parse_id_list("JRN-0003..JRN-0001, JRN-0007,JRN-0002") == ["JRN-0001", "JRN-0002", "JRN-0003", "JRN-0007"]
    assert parse_id_list("JRN-1", width=4) == ["JRN-0001"]


@pytest.mark.parametrize("value", ["", " , ", "JRN-0001,bogus", "FLOW-0001", "JRN-0000"])
def test_parse_id_list_rejects_invalid_tokens(value: str) -> None:
    with pytest.raises(ValueError):
        parse_id_list(value)


def test_store_allocation_stays_monotonic_after_records_are_removed(store: JourneyStore, make_record) -> None:
    paths = []
    for idx in range(7):
        stored = store.upsert(make_record(title=f"Journey {idx}", status="proposed"), snapshot=store.snapshot())
        paths.append(stored.path)
    assert [path.name.split("__")[0] for path in paths][-1] == "JRN-0007"

    paths[3].unlink()
    assert store.allocate() == "JRN-0008"
    paths[6].unlink()
    assert store.allocate() == "JRN-0008"

    stored = store.upsert(make_record(title="Journey 8", status="proposed"), snapshot=store.snapshot())
    assert stored.record.id == "JRN-0008"
