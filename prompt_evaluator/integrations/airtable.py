"""Bulk import of dataset items from an Airtable table.

Each Airtable record becomes one dataset item in a freshly created dataset:
- a PDF attachment is downloaded into the bucket and stored as a ``pdf`` item,
- otherwise the text column becomes a ``text`` item.
The expected-output column is the item's valid response. Column names come
from the ``[airtable]`` table of evaluator.toml.

Usage:
    importer = AirtableImporter(api_key, bucket)
    outcome = await importer.import_dataset(conn, "https://airtable.com/appX/tblY")
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog

from prompt_evaluator.config import AirtableConfig, get_evaluator_settings
from prompt_evaluator.errors import AirtableImportError, NotFoundError
from prompt_evaluator.persistence import repository as repo
from prompt_evaluator.schemas.entities import InputType
from prompt_evaluator.storage.bucket import PdfBucket

logger = structlog.get_logger(__name__)


def parse_airtable_url(airtable_url: str) -> tuple[str, str]:
    """Return ``(base_id, table)`` from an Airtable share or API URL.

    The base is the path segment starting with ``app``. The table is the
    segment starting with ``tbl`` or, failing that, the segment after the base.
    """
    segments = [s for s in urlparse(airtable_url).path.split("/") if s]
    base_index = next((i for i, s in enumerate(segments) if s.startswith("app")), None)
    if base_index is None:
        raise AirtableImportError(f"No Airtable base id found in URL: {airtable_url}")

    base_id = segments[base_index]
    rest = segments[base_index + 1:]
    table = next((s for s in rest if s.startswith("tbl")), rest[0] if rest else None)
    if not table:
        raise AirtableImportError(f"No Airtable table found in URL: {airtable_url}")
    return base_id, table


class AirtableImporter:
    """Reads an Airtable table over its REST API and stores it as a dataset.

    Args:
        api_key: Airtable personal access token.
        bucket: Destination for downloaded PDF attachments.
        config: Column names and API location; defaults to evaluator.toml.
        transport: Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        api_key: str,
        bucket: PdfBucket,
        config: AirtableConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise AirtableImportError("AIRTABLE_API_KEY is not configured")
        self._api_key = api_key
        self._bucket = bucket
        self._config = config or get_evaluator_settings().airtable
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._config.timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def fetch_records(self, client: httpx.AsyncClient, airtable_url: str) -> list[dict]:
        """Fetch every record of the table, following Airtable's ``offset`` paging."""
        base_id, table = parse_airtable_url(airtable_url)
        url = f"{self._config.api_url.rstrip('/')}/{base_id}/{table}"
        headers = {"Authorization": f"Bearer {self._api_key}"}

        records: list[dict] = []
        params: dict[str, str] = {}
        while True:
            try:
                response = await client.get(url, headers=headers, params=params)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise AirtableImportError(
                    f"Airtable returned HTTP {exc.response.status_code}: {exc.response.text}"
                ) from exc
            except httpx.HTTPError as exc:
                raise AirtableImportError(f"Airtable request failed: {exc}") from exc

            payload = response.json()
            records.extend(payload.get("records", []))
            offset = payload.get("offset")
            if not offset:
                break
            params = {"offset": offset}

        logger.info("airtable_records_fetched", base_id=base_id, table=table, count=len(records))
        return records

    async def _download_pdf(self, client: httpx.AsyncClient, url: str) -> str:
        response = await client.get(url)
        response.raise_for_status()
        return self._bucket.upload_bytes(response.content)

    async def _import_record(
        self,
        conn,
        client: httpx.AsyncClient,
        dataset_id: int,
        record: dict[str, Any],
    ) -> dict[str, Any]:
        cfg = self._config
        record_id = record.get("id", "")
        fields = record.get("fields", {})

        expected = fields.get(cfg.expected_field)
        if not expected:
            return {"record_id": record_id, "status": "error", "message": "Missing expected output"}

        external_id = fields.get(cfg.file_id_field) or record_id
        attachments = fields.get(cfg.pdf_field) or []
        pdf_url = attachments[0].get("url") if attachments else None
        text = fields.get(cfg.text_field)

        if pdf_url:
            file_id = await self._download_pdf(client, pdf_url)
            item = repo.create_dataset_item(
                conn,
                dataset_id=dataset_id,
                input_type=InputType.PDF,
                input_pdf=file_id,
                valid_response=str(expected),
                file_id=str(external_id),
            )
        elif text:
            item = repo.create_dataset_item(
                conn,
                dataset_id=dataset_id,
                input_type=InputType.TEXT,
                input_text=str(text),
                valid_response=str(expected),
                file_id=str(external_id),
            )
        else:
            return {
                "record_id": record_id,
                "status": "error",
                "message": "Missing PDF or text input",
            }

        return {"record_id": record_id, "status": "success", "dataset_item_id": item.id}

    async def import_dataset(
        self,
        conn,
        airtable_url: str,
        dataset_name: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a dataset from the table and report the outcome per record.

        Raises:
            NotFoundError: the table has no records.
            AirtableImportError: the URL or the Airtable API call is unusable.
        """
        async with self._client() as client:
            records = await self.fetch_records(client, airtable_url)
            if not records:
                raise NotFoundError("Airtable records", airtable_url)

            now = datetime.now(timezone.utc).isoformat()
            _, table = parse_airtable_url(airtable_url)
            dataset = repo.create_dataset(
                conn,
                name=dataset_name or f"Airtable import {table}",
                description=f"Imported from Airtable on {now}",
                user_id=user_id,
            )

            results = []
            for record in records:
                try:
                    outcome = await self._import_record(conn, client, dataset.id, record)
                except Exception as exc:
                    logger.warning(
                        "airtable_record_failed",
                        record_id=record.get("id"),
                        error=str(exc),
                        exc_info=True,
                    )
                    outcome = {
                        "record_id": record.get("id", ""),
                        "status": "error",
                        "message": str(exc),
                    }
                results.append(outcome)

        dataset = repo.get_dataset(conn, dataset.id)
        logger.info(
            "airtable_import_done",
            dataset_id=dataset.id,
            imported=dataset.item_count,
            failed=len(results) - dataset.item_count,
        )
        return {
            "dataset": {"id": dataset.id, "name": dataset.name, "item_count": dataset.item_count},
            "results": results,
        }
