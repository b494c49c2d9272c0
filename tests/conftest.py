"""Pytest configuration for test isolation.

Settings are read from ``TRUE_NORTH_*`` environment variables and the saved
state lives in a SQLite file whose URL comes from the environment too. A
developer's shell or ``.env`` must never leak into a test, so an autouse
fixture clears those variables and points the database at the test's own
temporary directory.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from true_north.persistence import dispose_engines

_ENV_PREFIXES = ("TRUE_NORTH_", "OPENAI_")


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    db_file = tmp_path / "true_north.db"
    monkeypatch.setenv("TRUE_NORTH_DATABASE_URL", f"sqlite+pysqlite:///{db_file}")
    yield
    dispose_engines()
