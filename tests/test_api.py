"""Tests for the HTTP API: routing, camelCase wire format and error mapping."""

from __future__ import annotations

import base64
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import fitz  # PyMuPDF
import pytest
from fastapi.testclient import TestClient

from prompt_evaluator.api.app import app
from prompt_evaluator.api.dependencies import get_generation_client, get_worker_pool
from prompt_evaluator.persistence import repository as repo
from prompt_evaluator.persistence.db import get_connection


@pytest.fixture()
def pool() -> MagicMock:
    pool = MagicMock()
    pool.pending_count = 0
    pool.active_count = 0
    pool.max_workers = 4
    return pool


@pytest.fixture()
def generator() -> MagicMock:
    generator = MagicMock()
    generator.refine_prompt = AsyncMock(return_value="You are a polished assistant.")
    generator.complete = AsyncMock(return_value="Paris")
    return generator


@pytest.fixture()
def db_file(tmp_path: Path) -> Path:
    return tmp_path / "api.db"


@pytest.fixture()
def client(tmp_path, db_file, monkeypatch, pool, generator):
    monkeypatch.setenv("DATABASE_URL", str(db_file))
    monkeypatch.setenv("BUCKET_DIR", str(tmp_path / "bucket"))
    app.dependency_overrides[get_worker_pool] = lambda: pool
    app.dependency_overrides[get_generation_client] = lambda: generator
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_prompt(client, **overrides) -> dict:
    body = {"name": "Echo", "metaPrompt": "Echo: {{user_prompt}}", **overrides}
    response = client.post("/api/prompts", json=body)
    assert response.status_code == 201
    return response.json()


def _create_dataset(client, name="Greetings") -> dict:
    response = client.post("/api/datasets", json={"name": name})
    assert response.status_code == 201
    return response.json()


def _create_item(client, dataset_id: int, text="hello", valid="hi") -> dict:
    response = client.post(
        "/api/dataset-items",
        json={"datasetId": dataset_id, "inputText": text, "validResponse": valid},
    )
    assert response.status_code == 201
    return response.json()


def _create_evaluation(client) -> dict:
    prompt = _create_prompt(client)
    dataset = _create_dataset(client)
    _create_item(client, dataset["id"])
    response = client.post(
        "/api/evaluations",
        json={"promptId": prompt["id"], "datasetId": dataset["id"], "userPrompt": "hello"},
    )
    assert response.status_code == 201
    return response.json()


# ===========================================================================
# Prompts
# ===========================================================================


class TestPromptRoutes:
    def test_create_uses_camel_case(self, client):
        prompt = _create_prompt(client)
        assert prompt["metaPrompt"] == "Echo: {{user_prompt}}"
        assert "createdAt" in prompt
        assert "meta_prompt" not in prompt

    def test_owner_from_header(self, client):
        response = client.post(
            "/api/prompts",
            json={"name": "Mine", "metaPrompt": "t"},
            headers={"X-User-Id": "alice"},
        )
        assert response.json()["userId"] == "alice"
        _create_prompt(client)

        listed = client.get("/api/prompts", params={"userId": "alice"}).json()
        assert [p["name"] for p in listed] == ["Mine"]

    def test_missing_fields_rejected_with_400(self, client):
        response = client.post("/api/prompts", json={"name": "No template"})
        assert response.status_code == 400
        body = response.json()
        assert body["detail"] == "Invalid request data"
        assert any("metaPrompt" in err["loc"] for err in body["errors"])

    def test_unknown_prompt_is_404(self, client):
        response = client.get("/api/prompts/999")
        assert response.status_code == 404
        assert response.json() == {"detail": "Prompt not found: 999"}

    def test_update_and_delete(self, client):
        prompt = _create_prompt(client)
        updated = client.put(f"/api/prompts/{prompt['id']}", json={"name": "Renamed"}).json()
        assert updated["name"] == "Renamed"
        assert updated["metaPrompt"] == prompt["metaPrompt"]

        assert client.delete(f"/api/prompts/{prompt['id']}").status_code == 204
        assert client.get(f"/api/prompts/{prompt['id']}").status_code == 404

    def test_delete_referenced_prompt_is_400(self, client):
        evaluation = _create_evaluation(client)
        response = client.delete(f"/api/prompts/{evaluation['promptId']}")
        assert response.status_code == 400


# ===========================================================================
# Datasets & items
# ===========================================================================


class TestDatasetRoutes:
    def test_item_count_follows_items(self, client):
        dataset = _create_dataset(client)
        first = _create_item(client, dataset["id"], text="a")
        _create_item(client, dataset["id"], text="b")
        assert client.get(f"/api/datasets/{dataset['id']}").json()["itemCount"] == 2

        client.delete(f"/api/dataset-items/{first['id']}")
        assert client.get(f"/api/datasets/{dataset['id']}").json()["itemCount"] == 1
        items = client.get(f"/api/datasets/{dataset['id']}/items").json()
        assert [i["inputText"] for i in items] == ["b"]

    def test_item_payload_must_match_type(self, client):
        dataset = _create_dataset(client)
        response = client.post(
            "/api/dataset-items",
            json={"datasetId": dataset["id"], "inputType": "image", "validResponse": "cat"},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid request data"

    def test_item_in_unknown_dataset_is_404(self, client):
        response = client.post(
            "/api/dataset-items",
            json={"datasetId": 42, "inputText": "x", "validResponse": "y"},
        )
        assert response.status_code == 404

    def test_update_item(self, client):
        dataset = _create_dataset(client)
        item = _create_item(client, dataset["id"])
        response = client.put(
            f"/api/dataset-items/{item['id']}", json={"validResponse": "hello back"}
        )
        assert response.status_code == 200
        assert response.json()["validResponse"] == "hello back"
        assert response.json()["inputText"] == "hello"

    def test_items_of_unknown_dataset_is_404(self, client):
        assert client.get("/api/datasets/77/items").status_code == 404


# ===========================================================================
# Evaluations
# ===========================================================================


class TestEvaluationRoutes:
    def test_created_pending(self, client):
        evaluation = _create_evaluation(client)
        assert evaluation["status"] == "pending"
        assert evaluation["userPrompt"] == "hello"
        assert evaluation["score"] is None

    def test_create_with_unknown_dataset_is_404(self, client):
        prompt = _create_prompt(client)
        response = client.post("/api/evaluations", json={"promptId": prompt["id"], "datasetId": 9})
        assert response.status_code == 404

    def test_start_returns_202_and_submits(self, client, pool):
        evaluation = _create_evaluation(client)

        response = client.post(
            f"/api/evaluations/{evaluation['id']}/start", json={"userPrompt": "bye"}
        )

        assert response.status_code == 202
        assert response.json() == {"message": "Evaluation started", "id": evaluation["id"]}
        pool.submit.assert_called_once_with(evaluation["id"])
        current = client.get(f"/api/evaluations/{evaluation['id']}").json()
        assert current["status"] == "in_progress"
        assert current["userPrompt"] == "bye"

    def test_start_without_body(self, client, pool):
        evaluation = _create_evaluation(client)
        response = client.post(f"/api/evaluations/{evaluation['id']}/start")
        assert response.status_code == 202
        assert client.get(f"/api/evaluations/{evaluation['id']}").json()["userPrompt"] == "hello"

    def test_second_start_rejected(self, client, pool):
        evaluation = _create_evaluation(client)
        client.post(f"/api/evaluations/{evaluation['id']}/start")

        response = client.post(f"/api/evaluations/{evaluation['id']}/start")

        assert response.status_code == 400
        assert "already in progress" in response.json()["detail"]
        assert pool.submit.call_count == 1

    def test_start_unknown_is_404(self, client, pool):
        assert client.post("/api/evaluations/123/start").status_code == 404
        pool.submit.assert_not_called()

    def test_edit_running_evaluation_rejected(self, client):
        evaluation = _create_evaluation(client)
        client.post(f"/api/evaluations/{evaluation['id']}/start")
        response = client.put(
            f"/api/evaluations/{evaluation['id']}", json={"userPrompt": "other"}
        )
        assert response.status_code == 400

    def test_delete_item_of_running_evaluation_rejected(self, client):
        evaluation = _create_evaluation(client)
        client.post(f"/api/evaluations/{evaluation['id']}/start")
        items = client.get(f"/api/datasets/{evaluation['datasetId']}/items").json()

        response = client.delete(f"/api/dataset-items/{items[0]['id']}")

        assert response.status_code == 400
        assert "evaluation in progress" in response.json()["detail"]
        assert len(client.get(f"/api/datasets/{evaluation['datasetId']}/items").json()) == 1

    def test_results_and_filter(self, client, db_file):
        evaluation = _create_evaluation(client)
        conn = get_connection(db_file)
        try:
            item = repo.list_dataset_items(conn, evaluation["datasetId"])[0]
            repo.save_evaluation_result(
                conn, evaluation["id"], item.id, "hi", True, 95, "Matches"
            )
        finally:
            conn.close()

        results = client.get(f"/api/evaluations/{evaluation['id']}/results").json()
        assert results[0]["isValid"] is True
        assert results[0]["datasetItemId"] == item.id

        listed = client.get("/api/evaluations", params={"promptId": evaluation["promptId"]})
        assert [e["id"] for e in listed.json()] == [evaluation["id"]]

    def test_delete(self, client):
        evaluation = _create_evaluation(client)
        assert client.delete(f"/api/evaluations/{evaluation['id']}").status_code == 204
        assert client.get(f"/api/evaluations/{evaluation['id']}").status_code == 404


# ===========================================================================
# LLM helpers
# ===========================================================================


class TestLLMRoutes:
    def test_final_prompt_substitutes_marker(self, client, generator):
        response = client.post(
            "/api/generate-final-prompt",
            json={"metaPrompt": "Answer {{user_prompt}}.", "userPrompt": "politely"},
        )
        assert response.json() == {"finalPrompt": "Answer politely."}
        generator.refine_prompt.assert_not_awaited()

    def test_final_prompt_refined(self, client, generator):
        response = client.post(
            "/api/generate-final-prompt",
            json={"metaPrompt": "Answer {{user_prompt}}.", "userPrompt": "x", "refine": True},
        )
        assert response.json() == {"finalPrompt": "You are a polished assistant."}

    def test_llm_response(self, client, generator):
        response = client.post(
            "/api/generate-llm-response", json={"processedPrompt": "Capital of France?"}
        )
        assert response.json() == {"llmResponse": "Paris"}
        generator.complete.assert_awaited_once_with("Capital of France?")


# ===========================================================================
# Files, dashboard, ops
# ===========================================================================


def _pdf_base64(text: str) -> str:
    doc = fitz.open()
    doc.new_page().insert_text((72, 72), text)
    content = doc.tobytes()
    doc.close()
    return base64.b64encode(content).decode()


class TestFileRoutes:
    def test_upload_get_delete(self, client):
        response = client.post("/api/pdf-upload", json={"pdfData": _pdf_base64("Invoice 42")})
        assert response.status_code == 201
        body = response.json()
        assert body["extractionSuccess"] is True
        assert "Invoice 42" in body["textPreview"]

        stored = client.get(f"/api/pdf/{body['fileId']}").json()
        assert stored["pdfData"].startswith("data:application/pdf;base64,")

        assert client.delete(f"/api/pdf/{body['fileId']}").status_code == 204
        assert client.get(f"/api/pdf/{body['fileId']}").status_code == 404

    def test_unreadable_pdf_is_kept_with_error(self, client):
        data = base64.b64encode(b"not a pdf").decode()
        body = client.post("/api/pdf-upload", json={"pdfData": data}).json()
        assert body["extractionSuccess"] is False
        assert body["extractionError"]

    def test_bad_base64_is_400(self, client):
        response = client.post("/api/pdf-upload", json={"pdfData": "%%%"})
        assert response.status_code == 400


class TestDashboardAndOps:
    def test_stats(self, client):
        _create_evaluation(client)
        stats = client.get("/api/dashboard/stats").json()
        assert stats == {
            "totalPrompts": 1,
            "totalEvaluations": 1,
            "averageScore": 0.0,
            "dataElements": 1,
        }

    def test_recent(self, client):
        for i in range(6):
            _create_prompt(client, name=f"p{i}")
        recent = client.get("/api/dashboard/recent").json()["prompts"]
        assert len(recent) == 5
        assert recent[0]["name"] == "p5"

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "healthy"
        assert body["maxWorkers"] == 4

    def test_metrics(self, client):
        response = client.get("/api/metrics")
        assert response.status_code == 200
        assert "evaluator_evaluations_started_total" in response.text
