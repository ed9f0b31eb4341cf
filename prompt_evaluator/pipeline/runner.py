"""EvaluationPipeline: one run of a meta-prompt over a dataset.

The caller moves the evaluation to ``in_progress`` first (see
``repository.begin_evaluation_run``); ``run()`` then takes it to ``completed``
or ``failed``. Items are processed one at a time and each result is stored as
soon as it is graded, so a crash leaves the finished part visible.

A failure on one item (generation or grading) becomes a zero-score result for
that item and the run continues. Anything else fails the whole run.
"""

from __future__ import annotations

import structlog

from prompt_evaluator.api.metrics import (
    record_evaluation_finished,
    record_evaluation_started,
    record_item_failure,
)
from prompt_evaluator.clients.generation import GenerationClient
from prompt_evaluator.clients.grading import GradingClient
from prompt_evaluator.errors import NotFoundError, PipelineError
from prompt_evaluator.persistence import repository as repo
from prompt_evaluator.persistence.db import get_connection
from prompt_evaluator.pipeline.scoring import ItemOutcome, aggregate_score, build_metrics
from prompt_evaluator.schemas.entities import DatasetItem, Evaluation, EvaluationStatus
from prompt_evaluator.utils.prompt_text import materialize_prompt

logger = structlog.get_logger(__name__)

MISSING_META_PROMPT = "Missing meta prompt"


class EvaluationPipeline:
    """Runs evaluations against the store at ``db_url``.

    Args:
        generator: Produces an answer per dataset item.
        grader: Scores an answer against the item's valid response.
        db_url: SQLite path or PostgreSQL URL; each run opens its own connection.
    """

    def __init__(
        self,
        generator: GenerationClient,
        grader: GradingClient,
        db_url: str | None = None,
    ) -> None:
        self._generator = generator
        self._grader = grader
        self._db_url = db_url

    async def run(self, evaluation_id: int) -> Evaluation:
        """Execute an in-progress evaluation and return its final state."""
        conn = get_connection(self._db_url)
        try:
            await self._run(conn, evaluation_id)
            return repo.get_evaluation(conn, evaluation_id)
        finally:
            conn.close()

    async def _run(self, conn, evaluation_id: int) -> None:
        log = logger.bind(evaluation_id=evaluation_id)
        record_evaluation_started()

        try:
            evaluation = repo.get_evaluation(conn, evaluation_id)
            final_prompt = self._final_prompt(conn, evaluation)
            repo.set_final_prompt(conn, evaluation_id, final_prompt)

            repo.get_dataset(conn, evaluation.dataset_id)
            items = repo.list_dataset_items(conn, evaluation.dataset_id)
            log.info("evaluation_run_items", item_count=len(items))

            outcomes: list[ItemOutcome] = []
            for position, item in enumerate(items, start=1):
                outcome = await self._evaluate_item(conn, evaluation_id, final_prompt, item)
                outcomes.append(outcome)
                log.debug(
                    "evaluation_item_done",
                    position=position,
                    item_id=item.id,
                    score=outcome.score,
                    is_valid=outcome.is_valid,
                )

            score = aggregate_score([o.score for o in outcomes])
            repo.complete_evaluation(conn, evaluation_id, score, build_metrics(outcomes))
            record_evaluation_finished(EvaluationStatus.COMPLETED.value)

        except Exception as exc:
            log.error("evaluation_run_failed", error=str(exc), exc_info=True)
            repo.fail_evaluation(conn, evaluation_id, str(exc))
            record_evaluation_finished(EvaluationStatus.FAILED.value)

    def _final_prompt(self, conn, evaluation: Evaluation) -> str:
        """Materialize the prompt from the current template and fragment."""
        try:
            prompt = repo.get_prompt(conn, evaluation.prompt_id)
        except NotFoundError as exc:
            raise PipelineError(MISSING_META_PROMPT) from exc
        if not prompt.meta_prompt or not prompt.meta_prompt.strip():
            raise PipelineError(MISSING_META_PROMPT)
        return materialize_prompt(prompt.meta_prompt, evaluation.user_prompt)

    async def _evaluate_item(
        self,
        conn,
        evaluation_id: int,
        final_prompt: str,
        item: DatasetItem,
    ) -> ItemOutcome:
        try:
            generated = await self._generator.generate(final_prompt, item)
        except Exception as exc:
            logger.warning(
                "item_generation_failed",
                evaluation_id=evaluation_id,
                item_id=item.id,
                error=str(exc),
                exc_info=True,
            )
            record_item_failure("generation")
            return self._store(
                conn, evaluation_id, item,
                generated_response=f"Error generating response: {exc}",
                is_valid=False,
                score=0,
                feedback=f"Generation failed: {exc}",
                failed=True,
            )

        try:
            grade = await self._grader.grade(generated, item.valid_response)
        except Exception as exc:
            logger.warning(
                "item_grading_failed",
                evaluation_id=evaluation_id,
                item_id=item.id,
                error=str(exc),
                exc_info=True,
            )
            record_item_failure("grading")
            return self._store(
                conn, evaluation_id, item,
                generated_response=generated,
                is_valid=False,
                score=0,
                feedback=f"Grading failed: {exc}",
                failed=True,
            )

        return self._store(
            conn, evaluation_id, item,
            generated_response=generated,
            is_valid=grade.is_valid,
            score=grade.score,
            feedback=grade.feedback,
        )

    @staticmethod
    def _store(
        conn,
        evaluation_id: int,
        item: DatasetItem,
        *,
        generated_response: str,
        is_valid: bool,
        score: int,
        feedback: str,
        failed: bool = False,
    ) -> ItemOutcome:
        repo.save_evaluation_result(
            conn,
            evaluation_id=evaluation_id,
            dataset_item_id=item.id,
            generated_response=generated_response,
            is_valid=is_valid,
            score=score,
            feedback=feedback,
        )
        return ItemOutcome(
            dataset_item_id=item.id,
            score=score,
            is_valid=is_valid,
            failed=failed,
        )
