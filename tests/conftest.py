import os
from pathlib import Path
from typing import Any, Callable

import pytest

from journey_registry.models import AcceptanceCriterion, JourneyRecord, JourneyStatus
from journey_registry.settings import RegistrySettings
from journey_registry.state_store import JourneyStore

LOGIN_SPEC = """import { test, expect } from '@artk/core/fixtures';

test.describe('User logs in @JRN-0001', () => {
  test('AC-1: dashboard is shown after login', async ({ page }) => {
    await page.goto('/login');
    await page.getByLabel('Email').fill('user@example.com');
    await expect(page.getByRole('heading', { name: 'Dashboard' })).toBeVisible();
  });

  test('AC-2: session survives a reload', async ({ page }) => {
    await page.reload();
    await expect(page.getByRole('heading', { name: 'Dashboard' })).toBeVisible();
  });
});
"""


@pytest.fixture(autouse=True)
def _isolated_journey_env(monkeypatch: pytest.MonkeyPatch):
    for name in list(os.environ):
        if name.startswith("JOURNEY_"):
            monkeypatch.delenv(name)
    yield
    # load_dotenv writes straight into os.environ.
    for name in list(os.environ):
        if name.startswith("JOURNEY_"):
            os.environ.pop(name)


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    (tmp_path / "journeys").mkdir()
    (tmp_path / "tests" / "e2e").mkdir(parents=True)
    return tmp_path


@pytest.fixture
def settings() -> RegistrySettings:
    return RegistrySettings(lint_backend="fallback").normalized()


@pytest.fixture
def store(repo: Path, settings: RegistrySettings) -> JourneyStore:
    return JourneyStore(repo, settings)


@pytest.fixture
def make_record() -> Callable[..., JourneyRecord]:
    def _make(**overrides: Any) -> JourneyRecord:
        fields: dict[str, Any] = {
            "title": "User logs in",
            "status": JourneyStatus.CLARIFIED,
            "tier": "smoke",
            "actor": "registered user",
            "scope": "auth",
            "intent": "A returning user reaches their dashboard.",
            "acceptance_criteria": [
                AcceptanceCriterion(id="AC-1", text="Dashboard is shown after login"),
                AcceptanceCriterion(id="AC-2", text="Session survives a reload"),
            ],
            "procedural_steps": ["Open the login page", "Submit valid credentials"],
        }
        fields.update(overrides)
        return JourneyRecord(**fields)

    return _make


@pytest.fixture
def write_artifact(repo: Path) -> Callable[[str, str], str]:
    def _write(rel_path: str, text: str) -> str:
        path = repo / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return rel_path

    return _write


@pytest.fixture
def login_spec() -> str:
    return LOGIN_SPEC


@pytest.fixture
def login_journey(store: JourneyStore, make_record, write_artifact, login_spec: str) -> str:
    """JRN-0001 in status clarified, linked to a clean, tagged spec file."""
    rel_path = write_artifact("tests/e2e/login.spec.ts", login_spec)
    stored = store.upsert(make_record(tests=[rel_path]), snapshot=store.snapshot())
    assert stored.record.id == "JRN-0001"
    return stored.record.id
