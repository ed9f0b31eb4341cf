"""Request/response Pydantic models for the API layer.

Bodies use camelCase keys on the wire; snake_case names are accepted too.
"""

from __future__ import annotations

from pydantic import Field, model_validator

from prompt_evaluator.schemas.entities import (
    PAYLOAD_FIELDS,
    CamelModel,
    InputType,
    Prompt,
)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class PromptCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    meta_prompt: str = Field(..., min_length=1)


class PromptUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    meta_prompt: str | None = Field(default=None, min_length=1)


class DatasetCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None


class DatasetUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None


class DatasetItemCreate(CamelModel):
    """A new dataset item. Exactly the payload matching ``inputType`` is kept."""

    dataset_id: int
    input_type: InputType = InputType.TEXT
    input_text: str | None = None
    input_image: str | None = None
    input_pdf: str | None = Field(default=None, description="Bucket file id")
    valid_response: str = Field(..., min_length=1)
    file_id: str | None = None

    @model_validator(mode="after")
    def _check_payload(self) -> DatasetItemCreate:
        field = PAYLOAD_FIELDS[self.input_type]
        if not getattr(self, field):
            raise ValueError(f"{field} is required when inputType is '{self.input_type.value}'")
        for other in PAYLOAD_FIELDS.values():
            if other != field:
                setattr(self, other, None)
        return self


class DatasetItemUpdate(CamelModel):
    input_type: InputType | None = None
    input_text: str | None = None
    input_image: str | None = None
    input_pdf: str | None = None
    valid_response: str | None = Field(default=None, min_length=1)
    file_id: str | None = None


class EvaluationCreate(CamelModel):
    prompt_id: int
    dataset_id: int
    user_prompt: str | None = None


class EvaluationUpdate(CamelModel):
    prompt_id: int | None = None
    dataset_id: int | None = None
    user_prompt: str | None = None


class StartEvaluationRequest(CamelModel):
    """Optional body of POST /evaluations/{id}/start."""

    user_prompt: str | None = Field(
        default=None,
        description="Replaces the stored fragment before the run when provided.",
    )


class FinalPromptRequest(CamelModel):
    meta_prompt: str = Field(..., min_length=1)
    user_prompt: str | None = None
    refine: bool = Field(
        default=False,
        description="Ask the LLM to polish the materialized prompt.",
    )


class LLMResponseRequest(CamelModel):
    processed_prompt: str = Field(..., min_length=1)


class PdfUploadRequest(CamelModel):
    pdf_data: str = Field(..., min_length=1, description="Base64 PDF or data URI")
    file_id: str | None = None


class AirtableImportRequest(CamelModel):
    airtable_url: str = Field(..., min_length=1)
    dataset_name: str | None = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class EvaluationStartedResponse(CamelModel):
    message: str = "Evaluation started"
    id: int


class FinalPromptResponse(CamelModel):
    final_prompt: str


class LLMResponse(CamelModel):
    llm_response: str


class PdfUploadResponse(CamelModel):
    file_id: str
    text_preview: str | None = None
    extraction_success: bool
    extraction_error: str | None = None


class PdfResponse(CamelModel):
    file_id: str
    pdf_data: str


class ImportOutcome(CamelModel):
    record_id: str
    status: str = Field(description="success | error")
    dataset_item_id: int | None = None
    message: str | None = None


class ImportedDataset(CamelModel):
    id: int
    name: str
    item_count: int


class AirtableImportResponse(CamelModel):
    dataset: ImportedDataset
    results: list[ImportOutcome]


class RecentActivity(CamelModel):
    prompts: list[Prompt]


class HealthResponse(CamelModel):
    """Health check response."""

    status: str = "healthy"
    queue_depth: int = 0
    active_workers: int = 0
    max_workers: int = 4
    version: str = "0.1.0"


class ErrorResponse(CamelModel):
    """Standard error response."""

    detail: str
    errors: list[dict] | None = None
