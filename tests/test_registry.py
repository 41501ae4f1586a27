import json
from dataclasses import replace
from pathlib import Path

import pytest

from journey_registry.errors import SchemaError
from journey_registry.models import RegistryIndex
from journey_registry.registry import BANNER, generate, stale_generated, write_generated
from journey_registry.state_store import JourneyStore


@pytest.fixture
def populated(store: JourneyStore, make_record, write_artifact) -> JourneyStore:
    rel_path = write_artifact("tests/e2e/search.spec.ts", "test('AC-1: results @JRN-0003', async () => {});\n")
    store.upsert(make_record(title="Browse catalogue", tier="release", status="proposed"), snapshot=store.snapshot())
    store.upsert(make_record(title="Log in", status="clarified", owner="web-team"), snapshot=store.snapshot())
    store.upsert(make_record(title="Search products", tests=[rel_path]), snapshot=store.snapshot())
    store.upsert(make_record(title="Log out", status="defined"), snapshot=store.snapshot())
    return store


def test_generate_orders_backlog_by_tier_status_and_id(populated: JourneyStore) -> None:
    artifacts = generate(populated.snapshot(), populated.settings, generated_at="2026-01-01T00:00:00Z")
    backlog = artifacts.backlog

    assert BANNER in backlog
    assert "> Generated: 2026-01-01T00:00:00Z (content " in backlog
    expected_order = ("JRN-0004: Log out", "JRN-0002: Log in", "JRN-0003: Search products", "JRN-0001: Browse catalogue")
    positions = [backlog.index(marker) for marker in expected_order]
    assert positions == sorted(positions)
    assert "## Tier: smoke" in backlog and "## Tier: release" in backlog
    assert "| smoke | clarified | 2 |" in backlog
    assert "| **total** | | 4 |" in backlog
    assert "([journey](JRN-0002__log-in.md)) actor: registered user, owner: web-team" in backlog
    assert "tests: 1" in backlog

    index = json.loads(artifacts.index)
    assert index["banner"] == BANNER
    assert [entry["id"] for entry in index["journeys"]] == ["JRN-0001", "JRN-0002", "JRN-0003", "JRN-0004"]
    assert index["content_hash"] == artifacts.content_hash


def test_generate_is_deterministic_for_fixed_timestamp(populated: JourneyStore) -> None:
    first = generate(populated.snapshot(), populated.settings, generated_at="2026-01-01T00:00:00Z")
    second = generate(populated.snapshot(), populated.settings, generated_at="2026-01-01T00:00:00Z")
    assert first == second


def test_write_generated_is_idempotent(populated: JourneyStore) -> None:
    first = write_generated(populated)
    assert len(first.written) == 2
    backlog = first.backlog_path.read_bytes()
    index = first.index_path.read_bytes()

    second = write_generated(populated)

    assert second.written == []
    assert first.backlog_path.read_bytes() == backlog
    assert first.index_path.read_bytes() == index
    assert stale_generated(populated) == []


@pytest.mark.parametrize("corrupted", ["BACKLOG.md", "index.json"])
def test_write_generated_restores_corrupted_output(populated: JourneyStore, corrupted: str) -> None:
    write_generated(populated)
    expected = {name: (populated.journeys_dir / name).read_bytes() for name in ("BACKLOG.md", "index.json")}
    (populated.journeys_dir / corrupted).write_text("hand edited garbage\n", encoding="utf-8")

    assert stale_generated(populated) == [populated.journeys_dir / corrupted]
    result = write_generated(populated)

    assert result.written == [populated.journeys_dir / corrupted]
    for name, content in expected.items():
        assert (populated.journeys_dir / name).read_bytes() == content


def test_write_generated_restamps_after_record_change(populated: JourneyStore) -> None:
    first = write_generated(populated)
    before = RegistryIndex.model_validate_json(first.index_path.read_text(encoding="utf-8"))

    snapshot = populated.snapshot()
    record = snapshot.get("JRN-0004").record.model_copy(update={"owner": "web-team"})
    populated.upsert(record, snapshot=snapshot)
    write_generated(populated)

    after = RegistryIndex.model_validate_json(first.index_path.read_text(encoding="utf-8"))
    assert after.content_hash != before.content_hash
    assert after.journeys[3].owner == "web-team"


def test_generation_refuses_when_a_record_is_broken(populated: JourneyStore) -> None:
    (populated.journeys_dir / "JRN-0009__broken.md").write_text("---\nid: [unclosed\n---\n", encoding="utf-8")
    with pytest.raises(SchemaError, match="refusing to generate"):
        write_generated(populated)
    assert not (populated.journeys_dir / "BACKLOG.md").exists()


def test_staged_layout_links_include_status_directory(repo: Path, settings, make_record) -> None:
    store = JourneyStore(repo, replace(settings, layout="staged"))
    store.upsert(make_record(status="defined"), snapshot=store.snapshot())
    artifacts = generate(store.snapshot(), store.settings, generated_at="2026-01-01T00:00:00Z")
    assert "([journey](defined/JRN-0001__user-logs-in.md))" in artifacts.backlog
    assert json.loads(artifacts.index)["journeys"][0]["file"] == "defined/JRN-0001__user-logs-in.md"
