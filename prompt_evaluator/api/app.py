"""FastAPI application for the meta-prompt evaluator.

Provides REST endpoints for prompt, dataset and evaluation management,
background evaluation runs, PDF storage, Airtable import and dashboard views.
All routes live under /api.

Usage:
    uvicorn prompt_evaluator.api.app:app --reload          # Development
    uvicorn prompt_evaluator.api.app:app --host 0.0.0.0    # Production (behind reverse proxy)
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager

import structlog
from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from prompt_evaluator.api.dependencies import get_worker_pool, init_dependencies
from prompt_evaluator.api.metrics import get_metrics_text
from prompt_evaluator.api.queue import WorkerPool
from prompt_evaluator.api.routes import (
    dashboard,
    datasets,
    evaluations,
    files,
    imports,
    llm,
    prompts,
)
from prompt_evaluator.api.schemas import HealthResponse
from prompt_evaluator.clients.generation import GenerationClient
from prompt_evaluator.clients.grading import GradingClient
from prompt_evaluator.config import get_evaluator_settings, get_settings
from prompt_evaluator.errors import (
    AirtableImportError,
    ConflictError,
    DocumentError,
    NotFoundError,
    ValidationFailure,
)
from prompt_evaluator.logging_config import setup_logging
from prompt_evaluator.persistence.db import get_connection
from prompt_evaluator.persistence.repository import fail_interrupted_evaluations
from prompt_evaluator.pipeline.runner import EvaluationPipeline
from prompt_evaluator.storage.bucket import PdfBucket

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# App lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize shared resources on startup, clean up on shutdown."""
    settings = get_settings()
    setup_logging(settings.log_level, json_output=settings.log_json)
    evaluator_settings = get_evaluator_settings()

    conn = get_connection(settings.database_url)
    try:
        fail_interrupted_evaluations(conn)
    finally:
        conn.close()

    bucket = PdfBucket(settings.bucket_dir)
    generator = GenerationClient(bucket)
    grader = GradingClient()
    pipeline = EvaluationPipeline(generator, grader, db_url=settings.database_url)
    worker_pool = WorkerPool(pipeline, max_workers=evaluator_settings.api.max_workers)

    init_dependencies(settings, worker_pool, bucket, generator)
    logger.info(
        "api_started",
        max_workers=worker_pool.max_workers,
        bucket_dir=str(bucket.root),
    )

    yield

    # Shutdown: cancel remaining runs
    await worker_pool.shutdown()
    logger.info("api_shutdown")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Meta-Prompt Evaluator API",
    description=(
        "REST API for authoring meta-prompts, running them against datasets "
        "and scoring the generated answers with an LLM grader."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

# CORS, configurable via the CORS_ORIGINS env var
cors_origins = os.environ.get("CORS_ORIGINS", "").split(",")
cors_origins = [o.strip() for o in cors_origins if o.strip()]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
@app.exception_handler(ValidationFailure)
@app.exception_handler(DocumentError)
@app.exception_handler(AirtableImportError)
async def bad_request_handler(request: Request, exc: Exception):
    logger.info("request_rejected", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request data", "errors": jsonable_encoder(errors)},
    )


# ---------------------------------------------------------------------------
# Health & Metrics
# ---------------------------------------------------------------------------

ops_router = APIRouter(tags=["ops"])


@ops_router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint for load balancers and monitoring."""
    pool: WorkerPool = get_worker_pool()
    return HealthResponse(
        status="healthy",
        queue_depth=pool.pending_count,
        active_workers=pool.active_count,
        max_workers=pool.max_workers,
    )


@ops_router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=get_metrics_text(),
        media_type="text/plain; charset=utf-8",
    )


for router in (
    prompts.router,
    datasets.router,
    evaluations.router,
    llm.router,
    files.router,
    imports.router,
    dashboard.router,
    ops_router,
):
    app.include_router(router, prefix="/api")
