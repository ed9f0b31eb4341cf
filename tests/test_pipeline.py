"""Tests for EvaluationPipeline with stubbed generation and grading clients."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from prompt_evaluator.errors import ConflictError
from prompt_evaluator.persistence import repository as repo
from prompt_evaluator.persistence.db import get_connection
from prompt_evaluator.pipeline.runner import MISSING_META_PROMPT, EvaluationPipeline
from prompt_evaluator.schemas.entities import EvaluationStatus
from prompt_evaluator.schemas.llm_outputs import GradeOutput


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _generator(side_effect) -> MagicMock:
    generator = MagicMock()
    generator.generate = AsyncMock(side_effect=side_effect)
    return generator


def _grader(side_effect) -> MagicMock:
    grader = MagicMock()
    grader.grade = AsyncMock(side_effect=side_effect)
    return grader


async def _echo(system_prompt, item):
    return f"{system_prompt} / {item.input_text}"


async def _grade_by_reference(generated, valid_response):
    if valid_response == "bad":
        return GradeOutput(is_valid=False, score=40, feedback="off target")
    return GradeOutput(is_valid=True, score=90, feedback="matches")


@pytest.fixture()
def conn(db_path: Path):
    connection = get_connection(db_path)
    yield connection
    connection.close()


def _seed(conn, template="Echo: {{user_prompt}}", fragment="hello", responses=("a", "b", "c")):
    prompt = repo.create_prompt(conn, name="Echo", meta_prompt=template)
    dataset = repo.create_dataset(conn, name="Inputs")
    items = [
        repo.create_dataset_item(
            conn, dataset_id=dataset.id, input_text=f"item {i}", valid_response=response
        )
        for i, response in enumerate(responses)
    ]
    evaluation = repo.create_evaluation(conn, prompt.id, dataset.id, user_prompt=fragment)
    repo.begin_evaluation_run(conn, evaluation.id)
    return prompt, dataset, items, evaluation


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


class TestCompletedRuns:
    @pytest.mark.asyncio
    async def test_one_failing_item_does_not_fail_run(self, conn, db_path):
        _, _, items, evaluation = _seed(conn, responses=("a", "b", "bad"))
        failing_id = items[1].id

        async def generate(system_prompt, item):
            if item.id == failing_id:
                raise RuntimeError("model unavailable")
            return await _echo(system_prompt, item)

        pipeline = EvaluationPipeline(
            _generator(generate), _grader(_grade_by_reference), db_url=str(db_path)
        )
        finished = await pipeline.run(evaluation.id)

        assert finished.status == EvaluationStatus.COMPLETED
        assert finished.final_prompt == "Echo: hello"
        # (90 + 0 + 40) / 3 = 43.33
        assert finished.score == 43
        assert finished.completed_at is not None
        assert finished.metrics["item_count"] == 3
        assert finished.metrics["valid_count"] == 1
        assert finished.metrics["failed_count"] == 1
        assert finished.metrics["accuracy"] == 33

        results = repo.list_evaluation_results(conn, evaluation.id)
        assert [r.dataset_item_id for r in results] == [i.id for i in items]
        assert results[0].generated_response == "Echo: hello / item 0"
        assert results[0].is_valid is True
        assert results[1].score == 0
        assert results[1].is_valid is False
        assert results[1].generated_response == "Error generating response: model unavailable"
        assert results[1].feedback == "Generation failed: model unavailable"
        assert results[2].score == 40

    @pytest.mark.asyncio
    async def test_generator_receives_final_prompt(self, conn, db_path):
        _, _, items, evaluation = _seed(conn, responses=("a",))
        generator = _generator(_echo)
        pipeline = EvaluationPipeline(generator, _grader(_grade_by_reference), str(db_path))

        await pipeline.run(evaluation.id)

        system_prompt, item = generator.generate.await_args.args
        assert system_prompt == "Echo: hello"
        assert item.id == items[0].id

    @pytest.mark.asyncio
    async def test_empty_dataset_completes_with_zero(self, conn, db_path):
        _, _, _, evaluation = _seed(conn, responses=())
        generator = _generator(_echo)
        pipeline = EvaluationPipeline(generator, _grader(_grade_by_reference), str(db_path))

        finished = await pipeline.run(evaluation.id)

        assert finished.status == EvaluationStatus.COMPLETED
        assert finished.score == 0
        assert finished.metrics["item_count"] == 0
        generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_grading_failure_keeps_generated_text(self, conn, db_path):
        _, _, _, evaluation = _seed(conn, responses=("a",))
        grader = _grader(ValueError("grading failed structured parsing"))
        pipeline = EvaluationPipeline(_generator(_echo), grader, str(db_path))

        finished = await pipeline.run(evaluation.id)

        assert finished.status == EvaluationStatus.COMPLETED
        assert finished.score == 0
        (result,) = repo.list_evaluation_results(conn, evaluation.id)
        assert result.generated_response == "Echo: hello / item 0"
        assert result.is_valid is False
        assert result.feedback.startswith("Grading failed:")

    @pytest.mark.asyncio
    async def test_rerun_replaces_results_and_uses_new_fragment(self, conn, db_path):
        _, _, _, evaluation = _seed(conn, responses=("a", "b"))
        pipeline = EvaluationPipeline(
            _generator(_echo), _grader(_grade_by_reference), str(db_path)
        )
        await pipeline.run(evaluation.id)

        repo.begin_evaluation_run(conn, evaluation.id, user_prompt="goodbye")
        finished = await pipeline.run(evaluation.id)

        assert finished.final_prompt == "Echo: goodbye"
        results = repo.list_evaluation_results(conn, evaluation.id)
        assert len(results) == 2
        assert all(r.generated_response.startswith("Echo: goodbye") for r in results)

    @pytest.mark.asyncio
    async def test_template_edit_picked_up_on_rerun(self, conn, db_path):
        prompt, _, _, evaluation = _seed(conn, responses=("a",))
        pipeline = EvaluationPipeline(
            _generator(_echo), _grader(_grade_by_reference), str(db_path)
        )
        await pipeline.run(evaluation.id)

        repo.update_prompt(conn, prompt.id, meta_prompt="Reply to {{user_prompt}} briefly")
        repo.begin_evaluation_run(conn, evaluation.id)
        finished = await pipeline.run(evaluation.id)

        assert finished.final_prompt == "Reply to hello briefly"

    @pytest.mark.asyncio
    async def test_item_delete_during_run_refused(self, conn, db_path):
        _, _, items, evaluation = _seed(conn, responses=("a", "b"))
        refused = []

        async def generate(system_prompt, item):
            if item.id == items[0].id:
                try:
                    repo.delete_dataset_item(conn, items[1].id)
                except ConflictError as exc:
                    refused.append(exc)
            return await _echo(system_prompt, item)

        pipeline = EvaluationPipeline(
            _generator(generate), _grader(_grade_by_reference), str(db_path)
        )
        finished = await pipeline.run(evaluation.id)

        assert len(refused) == 1
        assert finished.status == EvaluationStatus.COMPLETED
        results = repo.list_evaluation_results(conn, evaluation.id)
        assert [r.dataset_item_id for r in results] == [i.id for i in items]


# ---------------------------------------------------------------------------
# Failed runs
# ---------------------------------------------------------------------------


class TestFailedRuns:
    @pytest.mark.asyncio
    async def test_blank_template_fails_run(self, conn, db_path):
        _, _, _, evaluation = _seed(conn, template="   ")
        generator = _generator(_echo)
        pipeline = EvaluationPipeline(generator, _grader(_grade_by_reference), str(db_path))

        finished = await pipeline.run(evaluation.id)

        assert finished.status == EvaluationStatus.FAILED
        assert finished.metrics == {"error": MISSING_META_PROMPT}
        assert finished.score is None
        generator.generate.assert_not_awaited()
        assert repo.list_evaluation_results(conn, evaluation.id) == []

    @pytest.mark.asyncio
    async def test_storage_error_fails_run(self, conn, db_path, monkeypatch):
        _, _, _, evaluation = _seed(conn)

        def broken_list(conn, dataset_id):
            raise RuntimeError("disk I/O error")

        monkeypatch.setattr(repo, "list_dataset_items", broken_list)
        pipeline = EvaluationPipeline(
            _generator(_echo), _grader(_grade_by_reference), str(db_path)
        )

        finished = await pipeline.run(evaluation.id)

        assert finished.status == EvaluationStatus.FAILED
        assert finished.metrics == {"error": "disk I/O error"}
        assert finished.completed_at is not None

    @pytest.mark.asyncio
    async def test_failed_run_can_be_restarted(self, conn, db_path):
        prompt, _, _, evaluation = _seed(conn, template="")
        pipeline = EvaluationPipeline(
            _generator(_echo), _grader(_grade_by_reference), str(db_path)
        )
        failed = await pipeline.run(evaluation.id)
        assert failed.status == EvaluationStatus.FAILED

        repo.update_prompt(conn, prompt.id, meta_prompt="Echo: {{user_prompt}}")
        repo.begin_evaluation_run(conn, evaluation.id)
        finished = await pipeline.run(evaluation.id)

        assert finished.status == EvaluationStatus.COMPLETED
        assert finished.metrics.get("error") is None
