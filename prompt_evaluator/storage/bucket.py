"""Local filesystem bucket for PDF inputs of dataset items.

PDFs travel over the API as base64 strings (optionally as a
``data:application/pdf;base64,`` URI) and are stored as ``<file_id>.pdf``
under the bucket directory. Text extraction uses PyMuPDF.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import re
import secrets
from pathlib import Path

import fitz  # PyMuPDF
import structlog

from prompt_evaluator.errors import DocumentError, NotFoundError, ValidationFailure

logger = structlog.get_logger(__name__)

_DATA_URI_PREFIX = "data:application/pdf;base64,"
_FILE_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def generate_file_id(prefix: str = "pdf") -> str:
    return f"{prefix}_{secrets.token_hex(8)}"


class PdfBucket:
    """PDF blob store rooted at a local directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, file_id: str) -> Path:
        if not _FILE_ID_RE.match(file_id):
            raise ValidationFailure(
                f"Invalid file id {file_id!r}: use letters, digits, '_' or '-'."
            )
        return self._root / f"{file_id}.pdf"

    def upload(self, pdf_data: str, file_id: str | None = None) -> str:
        """Decode base64 PDF data and store it. Returns the file id."""
        if not pdf_data:
            raise ValidationFailure("PDF data is required")
        encoded = pdf_data.removeprefix(_DATA_URI_PREFIX)
        try:
            content = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationFailure(f"PDF data is not valid base64: {exc}") from exc
        return self.upload_bytes(content, file_id)

    def upload_bytes(self, content: bytes, file_id: str | None = None) -> str:
        if not content:
            raise ValidationFailure("PDF data is empty")
        file_id = file_id or generate_file_id()
        path = self._path(file_id)
        path.write_bytes(content)
        logger.info("pdf_stored", file_id=file_id, size=len(content))
        return file_id

    def get_bytes(self, file_id: str) -> bytes:
        path = self._path(file_id)
        if not path.exists():
            raise NotFoundError("PDF", file_id)
        return path.read_bytes()

    def get(self, file_id: str) -> str:
        """Return the stored PDF as a data URI."""
        encoded = base64.b64encode(self.get_bytes(file_id)).decode("ascii")
        return _DATA_URI_PREFIX + encoded

    def delete(self, file_id: str) -> bool:
        """Delete a stored PDF. Deleting a missing file is not an error."""
        path = self._path(file_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info("pdf_deleted", file_id=file_id)
        return True

    def extract_text(self, file_id: str) -> str:
        """Extract the text layer of a stored PDF, page by page."""
        content = self.get_bytes(file_id)
        try:
            with fitz.open(stream=content, filetype="pdf") as doc:
                pages = [page.get_text() for page in doc]
        except Exception as exc:  # PyMuPDF raises several error types for bad input
            raise DocumentError(f"Failed to read PDF {file_id}: {exc}") from exc

        text = "\n".join(p.strip() for p in pages if p.strip())
        if not text:
            raise DocumentError(f"PDF {file_id} has no extractable text")
        logger.debug("pdf_text_extracted", file_id=file_id, pages=len(pages), chars=len(text))
        return text

    async def aextract_text(self, file_id: str) -> str:
        """Extract text without blocking the event loop."""
        return await asyncio.to_thread(self.extract_text, file_id)
