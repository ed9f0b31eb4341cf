"""Dashboard aggregate views."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from prompt_evaluator.api.dependencies import get_db
from prompt_evaluator.api.schemas import RecentActivity
from prompt_evaluator.persistence import repository as repo
from prompt_evaluator.schemas.entities import DashboardStats

router = APIRouter(tags=["dashboard"])


@router.get("/dashboard/stats", response_model=DashboardStats)
async def dashboard_stats(conn=Depends(get_db)):
    return repo.get_dashboard_stats(conn)


@router.get("/dashboard/recent", response_model=RecentActivity)
async def dashboard_recent(conn=Depends(get_db)):
    """The five most recently created prompts."""
    return RecentActivity(prompts=repo.list_recent_prompts(conn, limit=5))
