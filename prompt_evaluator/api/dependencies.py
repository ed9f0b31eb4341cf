"""FastAPI dependency injection for the evaluator API.

Provides reusable dependencies for the database connection, the worker pool,
the PDF bucket, the generation client and the caller identity. Shared
instances are initialized once at startup and injected into route handlers
via FastAPI's Depends().
"""

from __future__ import annotations

from typing import Iterator

from fastapi import Header, HTTPException

from prompt_evaluator.api.queue import WorkerPool
from prompt_evaluator.clients.generation import GenerationClient
from prompt_evaluator.config import Settings
from prompt_evaluator.persistence.db import get_connection
from prompt_evaluator.storage.bucket import PdfBucket


# ---------------------------------------------------------------------------
# Singleton instances (initialized in app lifespan)
# ---------------------------------------------------------------------------

_settings: Settings | None = None
_worker_pool: WorkerPool | None = None
_bucket: PdfBucket | None = None
_generator: GenerationClient | None = None


def init_dependencies(
    settings: Settings,
    worker_pool: WorkerPool,
    bucket: PdfBucket,
    generator: GenerationClient,
) -> None:
    """Initialize shared dependency instances. Called once at app startup."""
    global _settings, _worker_pool, _bucket, _generator
    _settings = settings
    _worker_pool = worker_pool
    _bucket = bucket
    _generator = generator


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def get_app_settings() -> Settings:
    if _settings is None:
        raise HTTPException(status_code=500, detail="Settings not initialized")
    return _settings


def get_db() -> Iterator:
    """Open a connection for the duration of one request."""
    conn = get_connection(get_app_settings().database_url)
    try:
        yield conn
    finally:
        conn.close()


def get_worker_pool() -> WorkerPool:
    """Get the shared worker pool instance."""
    if _worker_pool is None:
        raise HTTPException(status_code=500, detail="Worker pool not initialized")
    return _worker_pool


def get_bucket() -> PdfBucket:
    if _bucket is None:
        raise HTTPException(status_code=500, detail="PDF bucket not initialized")
    return _bucket


def get_generation_client() -> GenerationClient:
    if _generator is None:
        raise HTTPException(status_code=500, detail="Generation client not initialized")
    return _generator


async def get_current_user_id(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> str | None:
    """Caller identity for ownership of created prompts and datasets.

    There is no authentication: the header is trusted as-is and falls back to
    the configured default (unset unless DEFAULT_USER_ID is provided).
    """
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    return get_app_settings().default_user_id
