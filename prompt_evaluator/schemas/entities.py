"""Domain entities: prompts, datasets, dataset items, evaluations and results.

Rows come out of the repository as snake_case dicts; the API serializes the
same models with camelCase keys (``metaPrompt``, ``isValid``, ...) so the
browser client keeps its wire format.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class InputType(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    PDF = "pdf"


class EvaluationStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# Statuses from which an evaluation may be edited via PUT.
EDITABLE_STATUSES = (EvaluationStatus.PENDING, EvaluationStatus.FAILED)

# Column holding the payload for each input kind.
PAYLOAD_FIELDS: dict[InputType, str] = {
    InputType.TEXT: "input_text",
    InputType.IMAGE: "input_image",
    InputType.PDF: "input_pdf",
}


class CamelModel(BaseModel):
    """Base model with camelCase aliases; accepts both spellings on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Prompt(CamelModel):
    id: int
    name: str
    meta_prompt: str
    user_id: str | None = None
    created_at: datetime | None = None


class Dataset(CamelModel):
    id: int
    name: str
    description: str | None = None
    user_id: str | None = None
    item_count: int = 0
    created_at: datetime | None = None


class DatasetItem(CamelModel):
    id: int
    dataset_id: int
    input_type: InputType = InputType.TEXT
    input_text: str | None = None
    input_image: str | None = None
    input_pdf: str | None = None
    valid_response: str
    file_id: str | None = None

    @property
    def payload(self) -> str | None:
        """The authoritative input for this item's kind."""
        return getattr(self, PAYLOAD_FIELDS[self.input_type])


class Evaluation(CamelModel):
    id: int
    prompt_id: int
    dataset_id: int
    user_prompt: str | None = None
    final_prompt: str | None = None
    status: EvaluationStatus = EvaluationStatus.PENDING
    score: int | None = None
    metrics: dict[str, Any] | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("metrics", mode="before")
    @classmethod
    def _decode_metrics(cls, value: Any) -> Any:
        # Stored as JSON text in both backends
        if isinstance(value, str):
            return json.loads(value) if value else None
        return value


class EvaluationResult(CamelModel):
    id: int
    evaluation_id: int
    dataset_item_id: int
    generated_response: str | None = None
    is_valid: bool | None = None
    score: int | None = None
    feedback: str | None = None


class DashboardStats(CamelModel):
    total_prompts: int = 0
    total_evaluations: int = 0
    average_score: float = 0.0
    data_elements: int = Field(default=0, description="Total dataset items")
