"""Evaluation CRUD, run start and results endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from prompt_evaluator.api.dependencies import get_db, get_worker_pool
from prompt_evaluator.api.queue import WorkerPool
from prompt_evaluator.api.schemas import (
    ErrorResponse,
    EvaluationCreate,
    EvaluationStartedResponse,
    EvaluationUpdate,
    StartEvaluationRequest,
)
from prompt_evaluator.persistence import repository as repo
from prompt_evaluator.schemas.entities import Evaluation, EvaluationResult

router = APIRouter(tags=["evaluations"])

_NOT_FOUND = {404: {"model": ErrorResponse}}
_CONFLICT = {400: {"model": ErrorResponse}}


@router.post("/evaluations", response_model=Evaluation, status_code=201, responses=_NOT_FOUND)
async def create_evaluation(body: EvaluationCreate, conn=Depends(get_db)):
    return repo.create_evaluation(
        conn,
        prompt_id=body.prompt_id,
        dataset_id=body.dataset_id,
        user_prompt=body.user_prompt,
    )


@router.get("/evaluations", response_model=list[Evaluation])
async def list_evaluations(
    prompt_id: int | None = Query(default=None, alias="promptId"),
    conn=Depends(get_db),
):
    return repo.list_evaluations(conn, prompt_id=prompt_id)


@router.get("/evaluations/{evaluation_id}", response_model=Evaluation, responses=_NOT_FOUND)
async def get_evaluation(evaluation_id: int, conn=Depends(get_db)):
    """Current state of an evaluation; clients poll this while a run is in progress."""
    return repo.get_evaluation(conn, evaluation_id)


@router.put(
    "/evaluations/{evaluation_id}",
    response_model=Evaluation,
    responses={**_CONFLICT, **_NOT_FOUND},
)
async def update_evaluation(evaluation_id: int, body: EvaluationUpdate, conn=Depends(get_db)):
    """Edit an evaluation. Only pending or failed evaluations can be changed."""
    return repo.update_evaluation(conn, evaluation_id, **body.model_dump(exclude_none=True))


@router.delete(
    "/evaluations/{evaluation_id}",
    status_code=204,
    responses={**_CONFLICT, **_NOT_FOUND},
)
async def delete_evaluation(evaluation_id: int, conn=Depends(get_db)):
    repo.delete_evaluation(conn, evaluation_id)
    return Response(status_code=204)


@router.post(
    "/evaluations/{evaluation_id}/start",
    response_model=EvaluationStartedResponse,
    status_code=202,
    responses={**_CONFLICT, **_NOT_FOUND},
)
async def start_evaluation(
    evaluation_id: int,
    body: StartEvaluationRequest | None = None,
    conn=Depends(get_db),
    pool: WorkerPool = Depends(get_worker_pool),
):
    """Start (or re-run) an evaluation in the background.

    The evaluation moves to ``in_progress`` and loses its previous results
    before this returns; a second start while it is running is rejected.
    Poll GET /evaluations/{id} for completion.
    """
    user_prompt = body.user_prompt if body else None
    repo.begin_evaluation_run(conn, evaluation_id, user_prompt=user_prompt)
    pool.submit(evaluation_id)
    return EvaluationStartedResponse(id=evaluation_id)


@router.get(
    "/evaluations/{evaluation_id}/results",
    response_model=list[EvaluationResult],
    responses=_NOT_FOUND,
)
async def list_evaluation_results(evaluation_id: int, conn=Depends(get_db)):
    repo.get_evaluation(conn, evaluation_id)
    return repo.list_evaluation_results(conn, evaluation_id)
