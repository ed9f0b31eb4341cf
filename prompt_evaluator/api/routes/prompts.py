"""Prompt CRUD endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response

from prompt_evaluator.api.dependencies import get_current_user_id, get_db
from prompt_evaluator.api.schemas import ErrorResponse, PromptCreate, PromptUpdate
from prompt_evaluator.persistence import repository as repo
from prompt_evaluator.schemas.entities import Prompt

router = APIRouter(tags=["prompts"])

_NOT_FOUND = {404: {"model": ErrorResponse}}


@router.post("/prompts", response_model=Prompt, status_code=201)
async def create_prompt(
    body: PromptCreate,
    conn=Depends(get_db),
    user_id: str | None = Depends(get_current_user_id),
):
    return repo.create_prompt(conn, name=body.name, meta_prompt=body.meta_prompt, user_id=user_id)


@router.get("/prompts", response_model=list[Prompt])
async def list_prompts(
    user_id: str | None = Query(default=None, alias="userId"),
    conn=Depends(get_db),
):
    """List prompts, newest first. ``userId`` narrows to one owner."""
    return repo.list_prompts(conn, user_id=user_id)


@router.get("/prompts/{prompt_id}", response_model=Prompt, responses=_NOT_FOUND)
async def get_prompt(prompt_id: int, conn=Depends(get_db)):
    return repo.get_prompt(conn, prompt_id)


@router.put("/prompts/{prompt_id}", response_model=Prompt, responses=_NOT_FOUND)
async def update_prompt(prompt_id: int, body: PromptUpdate, conn=Depends(get_db)):
    return repo.update_prompt(conn, prompt_id, name=body.name, meta_prompt=body.meta_prompt)


@router.delete(
    "/prompts/{prompt_id}",
    status_code=204,
    responses={400: {"model": ErrorResponse}, **_NOT_FOUND},
)
async def delete_prompt(prompt_id: int, conn=Depends(get_db)):
    """Delete a prompt. Rejected with 400 while evaluations still use it."""
    repo.delete_prompt(conn, prompt_id)
    return Response(status_code=204)
