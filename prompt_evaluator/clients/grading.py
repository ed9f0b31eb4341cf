"""Grading client: LLM-as-a-judge comparing a generated answer to the reference.

Returns a ``GradeOutput`` (is_valid, score 0-100, feedback). The validity
threshold is stated in the grader prompt; the caller trusts the returned flag
and does not re-derive it from the score.
"""

from __future__ import annotations

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.runnables import Runnable

from prompt_evaluator.clients.generation import LLMFactory
from prompt_evaluator.config import get_evaluator_settings
from prompt_evaluator.models import create_llm
from prompt_evaluator.prompts.templates import GRADER_SYSTEM, GRADER_TASK
from prompt_evaluator.schemas.llm_outputs import GradeOutput
from prompt_evaluator.utils.structured_output import invoke_structured_with_fix

logger = structlog.get_logger(__name__)


class GradingClient:
    def __init__(
        self,
        llm_factory: LLMFactory = create_llm,
        valid_threshold: int | None = None,
    ) -> None:
        self._llm_factory = llm_factory
        self._valid_threshold = valid_threshold
        self._llm: Runnable | None = None
        self._fixer: Runnable | None = None

    @property
    def valid_threshold(self) -> int:
        if self._valid_threshold is not None:
            return self._valid_threshold
        return get_evaluator_settings().pipeline.valid_threshold

    async def grade(self, generated_response: str, valid_response: str) -> GradeOutput:
        """Score one answer. Raises ValueError if the verdict cannot be parsed."""
        if self._llm is None:
            self._llm = self._llm_factory("grading")
        if self._fixer is None:
            self._fixer = self._llm_factory("grading", temperature=0.0)

        messages = [
            SystemMessage(content=GRADER_SYSTEM.format(valid_threshold=self.valid_threshold)),
            HumanMessage(
                content=GRADER_TASK.format(
                    generated_response=generated_response,
                    valid_response=valid_response,
                )
            ),
        ]
        grade = await invoke_structured_with_fix(
            role="grading",
            messages=messages,
            schema=GradeOutput,
            llm=self._llm,
            fixer=self._fixer,
        )
        logger.debug("grading_done", score=grade.score, is_valid=grade.is_valid)
        return grade
