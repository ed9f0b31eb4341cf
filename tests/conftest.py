"""Shared test fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
import structlog

# Ensure tests don't accidentally call real APIs
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("GROQ_API_KEY", "test-key")
os.environ.setdefault("AIRTABLE_API_KEY", "test-key")

from prompt_evaluator.persistence.db import get_connection  # noqa: E402


@pytest.fixture(autouse=True)
def _default_logging(monkeypatch):
    """Keep structlog on its per-call defaults.

    ``setup_logging`` binds loggers to the stderr that is current when they
    are first used, and pytest swaps stderr per test. The CLI and the app
    lifespan call it, so it is disabled here and structlog is reset afterwards.
    """
    monkeypatch.setattr("run.setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr("prompt_evaluator.api.app.setup_logging", lambda *args, **kwargs: None)
    yield
    structlog.reset_defaults()


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "evaluator.db"


@pytest.fixture()
def db_conn(db_path: Path):
    """A fresh SQLite database with the schema applied."""
    conn = get_connection(db_path)
    yield conn
    conn.close()
