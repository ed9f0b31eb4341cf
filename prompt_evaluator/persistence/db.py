"""Relational store for prompts, datasets, evaluations and their results.

Supports two backends:
- **SQLite** (default): used for the CLI, tests and single-node deployments.
- **PostgreSQL**: used when DATABASE_URL starts with "postgresql://".

Repository code is written against ``?`` placeholders and goes through
``execute()``, which rewrites them for psycopg. Rows come back as mappings on
both backends (``sqlite3.Row`` / psycopg ``dict_row``).
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

import structlog

logger = structlog.get_logger(__name__)

DB_PATH = Path("data/evaluator.db")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS prompts (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT NOT NULL,
    meta_prompt     TEXT NOT NULL,
    user_id         TEXT,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS datasets (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT NOT NULL,
    description     TEXT,
    user_id         TEXT,
    item_count      INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS dataset_items (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    dataset_id      INTEGER NOT NULL REFERENCES datasets(id) ON DELETE CASCADE,
    input_type      TEXT NOT NULL DEFAULT 'text',
    input_text      TEXT,
    input_image     TEXT,
    input_pdf       TEXT,
    valid_response  TEXT NOT NULL,
    file_id         TEXT,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS evaluations (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    prompt_id       INTEGER NOT NULL REFERENCES prompts(id),
    dataset_id      INTEGER NOT NULL REFERENCES datasets(id),
    user_prompt     TEXT,
    final_prompt    TEXT,
    status          TEXT NOT NULL DEFAULT 'pending',
    score           INTEGER,
    metrics         TEXT,
    created_at      TEXT NOT NULL,
    completed_at    TEXT
);

CREATE TABLE IF NOT EXISTS evaluation_results (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    evaluation_id   INTEGER NOT NULL REFERENCES evaluations(id) ON DELETE CASCADE,
    dataset_item_id INTEGER NOT NULL REFERENCES dataset_items(id) ON DELETE CASCADE,
    generated_response TEXT,
    is_valid        INTEGER,
    score           INTEGER,
    feedback        TEXT,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_dataset ON dataset_items(dataset_id);
CREATE INDEX IF NOT EXISTS idx_evaluations_prompt ON evaluations(prompt_id);
CREATE INDEX IF NOT EXISTS idx_results_evaluation ON evaluation_results(evaluation_id);
"""

# PostgreSQL version uses SERIAL instead of AUTOINCREMENT and a real BOOLEAN
PG_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS prompts (
    id              SERIAL PRIMARY KEY,
    name            TEXT NOT NULL,
    meta_prompt     TEXT NOT NULL,
    user_id         TEXT,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS datasets (
    id              SERIAL PRIMARY KEY,
    name            TEXT NOT NULL,
    description     TEXT,
    user_id         TEXT,
    item_count      INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS dataset_items (
    id              SERIAL PRIMARY KEY,
    dataset_id      INTEGER NOT NULL REFERENCES datasets(id) ON DELETE CASCADE,
    input_type      TEXT NOT NULL DEFAULT 'text',
    input_text      TEXT,
    input_image     TEXT,
    input_pdf       TEXT,
    valid_response  TEXT NOT NULL,
    file_id         TEXT,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS evaluations (
    id              SERIAL PRIMARY KEY,
    prompt_id       INTEGER NOT NULL REFERENCES prompts(id),
    dataset_id      INTEGER NOT NULL REFERENCES datasets(id),
    user_prompt     TEXT,
    final_prompt    TEXT,
    status          TEXT NOT NULL DEFAULT 'pending',
    score           INTEGER,
    metrics         TEXT,
    created_at      TEXT NOT NULL,
    completed_at    TEXT
);

CREATE TABLE IF NOT EXISTS evaluation_results (
    id              SERIAL PRIMARY KEY,
    evaluation_id   INTEGER NOT NULL REFERENCES evaluations(id) ON DELETE CASCADE,
    dataset_item_id INTEGER NOT NULL REFERENCES dataset_items(id) ON DELETE CASCADE,
    generated_response TEXT,
    is_valid        BOOLEAN,
    score           INTEGER,
    feedback        TEXT,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_dataset ON dataset_items(dataset_id);
CREATE INDEX IF NOT EXISTS idx_evaluations_prompt ON evaluations(prompt_id);
CREATE INDEX IF NOT EXISTS idx_results_evaluation ON evaluation_results(evaluation_id);
"""


# ---------------------------------------------------------------------------
# Connection factory
# ---------------------------------------------------------------------------


def _is_pg_url(db_url: str) -> bool:
    return db_url.startswith("postgresql://") or db_url.startswith("postgres://")


def get_connection(db_url: str | Path | None = None):
    """Get a database connection.

    Routing logic:
    - If db_url starts with "postgresql://", returns a psycopg connection.
    - Otherwise, treats it as a SQLite file path (default: data/evaluator.db).

    For PostgreSQL, the psycopg package must be installed
    (the [postgres] optional dependency group).
    """
    url = str(db_url) if db_url else ""

    if _is_pg_url(url):
        return _get_pg_connection(url)

    return _get_sqlite_connection(db_url)


def _get_sqlite_connection(db_path: str | Path | None = None) -> sqlite3.Connection:
    """Open a SQLite connection. Auto-creates tables on first use."""
    path = Path(db_path) if db_path else DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    # API dependencies may open and close a connection on different threads
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    _ensure_sqlite_tables(conn)
    return conn


def _get_pg_connection(db_url: str):
    """Get a PostgreSQL connection via psycopg with a dict row factory."""
    try:
        import psycopg
        from psycopg.rows import dict_row
    except ImportError as exc:
        raise ImportError(
            "PostgreSQL support requires 'psycopg'. "
            "Install with: pip install -e '.[postgres]'"
        ) from exc

    conn = psycopg.connect(db_url, autocommit=True, row_factory=dict_row)
    _ensure_pg_tables(conn)
    logger.info("pg_connection_established", db_url=db_url[:30] + "...")
    return conn


# ---------------------------------------------------------------------------
# Table setup
# ---------------------------------------------------------------------------


def _ensure_sqlite_tables(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.commit()


def _ensure_pg_tables(conn) -> None:
    with conn.cursor() as cur:
        cur.execute(PG_SCHEMA_SQL)
    logger.info("pg_tables_ensured")


# ---------------------------------------------------------------------------
# Statement helpers
# ---------------------------------------------------------------------------


def is_sqlite(conn) -> bool:
    return isinstance(conn, sqlite3.Connection)


def execute(conn, sql: str, params: Sequence[Any] = ()):
    """Run one statement with ``?`` placeholders on either backend."""
    if not is_sqlite(conn):
        sql = sql.replace("?", "%s")
    return conn.execute(sql, tuple(params))


@contextmanager
def transaction(conn) -> Iterator[None]:
    """Group several statements into one atomic unit.

    Commits on success and rolls back if the block raises.
    """
    if is_sqlite(conn):
        with conn:
            yield
    else:
        with conn.transaction():
            yield
