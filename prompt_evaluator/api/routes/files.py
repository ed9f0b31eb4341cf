"""PDF bucket endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Response

from prompt_evaluator.api.dependencies import get_bucket
from prompt_evaluator.api.schemas import (
    ErrorResponse,
    PdfResponse,
    PdfUploadRequest,
    PdfUploadResponse,
)
from prompt_evaluator.errors import DocumentError
from prompt_evaluator.storage.bucket import PdfBucket
from prompt_evaluator.utils.prompt_text import preview

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["files"])


@router.post(
    "/pdf-upload",
    response_model=PdfUploadResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
)
async def upload_pdf(body: PdfUploadRequest, bucket: PdfBucket = Depends(get_bucket)):
    """Store a base64 PDF and check that its text can be extracted.

    The file is kept even when extraction fails; the response says why.
    """
    file_id = bucket.upload(body.pdf_data, body.file_id)
    try:
        text = await bucket.aextract_text(file_id)
    except DocumentError as exc:
        logger.warning("pdf_extraction_failed", file_id=file_id, error=str(exc))
        return PdfUploadResponse(
            file_id=file_id,
            extraction_success=False,
            extraction_error=str(exc),
        )
    return PdfUploadResponse(
        file_id=file_id,
        text_preview=preview(text, limit=200),
        extraction_success=True,
    )


@router.get("/pdf/{file_id}", response_model=PdfResponse, responses={404: {"model": ErrorResponse}})
async def get_pdf(file_id: str, bucket: PdfBucket = Depends(get_bucket)):
    return PdfResponse(file_id=file_id, pdf_data=bucket.get(file_id))


@router.delete("/pdf/{file_id}", status_code=204)
async def delete_pdf(file_id: str, bucket: PdfBucket = Depends(get_bucket)):
    bucket.delete(file_id)
    return Response(status_code=204)
