"""Structured JSON output schemas for LLM calls."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class GradeOutput(BaseModel):
    """Verdict returned by the grading model for one generated answer."""

    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(..., alias="isValid")
    score: int = Field(..., ge=0, le=100)
    feedback: str = ""
