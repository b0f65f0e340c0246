from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from switchboard import dates


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Fresh SQLite file per test and no ambient auth/provider configuration."""
    db_path = tmp_path / "switchboard.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    for name in (
        "DATABASE_URL",
        "SUPABASE_DATABASE_URL",
        "AUTH_TOKEN",
        "JWT_SECRET",
        "JWT_ISSUER",
        "JWT_AUDIENCE",
        "PROVIDER",
        "ROUTER_MARGIN",
        "MAX_TOOL_ROUNDS",
        "USAGE_TOKENS_PER_USER",
        "DEFAULT_AGENT_SLUG",
        "OPENROUTER_API_KEY",
        "OPENAI_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    yield db_path


@pytest.fixture(autouse=True)
def pinned_clock():
    """Tuesday 20 January 2026, 10:30."""
    dates.set_override(datetime(2026, 1, 20, 10, 30))
    yield
    dates.clear_override()
