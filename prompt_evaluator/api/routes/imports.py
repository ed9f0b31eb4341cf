"""Airtable import endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from prompt_evaluator.api.dependencies import (
    get_app_settings,
    get_bucket,
    get_current_user_id,
    get_db,
)
from prompt_evaluator.api.schemas import (
    AirtableImportRequest,
    AirtableImportResponse,
    ErrorResponse,
)
from prompt_evaluator.config import Settings
from prompt_evaluator.integrations.airtable import AirtableImporter
from prompt_evaluator.storage.bucket import PdfBucket

router = APIRouter(tags=["imports"])


@router.post(
    "/import/airtable",
    response_model=AirtableImportResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def import_airtable(
    body: AirtableImportRequest,
    conn=Depends(get_db),
    bucket: PdfBucket = Depends(get_bucket),
    settings: Settings = Depends(get_app_settings),
    user_id: str | None = Depends(get_current_user_id),
):
    """Create a dataset from an Airtable table, one item per record."""
    importer = AirtableImporter(settings.airtable_api_key, bucket)
    outcome = await importer.import_dataset(
        conn,
        body.airtable_url,
        dataset_name=body.dataset_name,
        user_id=user_id,
    )
    return AirtableImportResponse.model_validate(outcome)
