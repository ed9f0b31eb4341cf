"""JSON verdicts from chat models, with a fixer model for malformed output.

The grader is asked for a bare JSON object but models still wrap it in code
fences, add prose or drop fields. ``parse_structured`` accepts fenced JSON;
anything it rejects is sent to a low-temperature fixer together with the
schema and the most recent parse errors.
"""

from __future__ import annotations

import json
from typing import TypeVar

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.runnables import Runnable
from langchain_core.utils.json import parse_json_markdown
from pydantic import BaseModel

from prompt_evaluator.config import get_evaluator_settings
from prompt_evaluator.utils.prompt_text import message_text

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

FIXER_SYSTEM = (
    "You repair JSON. Reply with one JSON object that validates against the given "
    "schema and nothing else: no markdown, no commentary, no extra keys."
)


def parse_structured(content: str, schema: type[T]) -> T:
    """Parse (possibly fenced) JSON text into ``schema``.

    Raises:
        ValueError: not JSON, or JSON that fails validation.
    """
    return schema.model_validate(parse_json_markdown(content))


def _fixer_messages(schema: type[T], content: str, errors: list[str]) -> list:
    return [
        SystemMessage(content=FIXER_SYSTEM),
        HumanMessage(
            content=(
                f"Schema:\n{json.dumps(schema.model_json_schema())}\n\n"
                f"Output to repair:\n{content}\n\n"
                "Errors so far:\n" + "\n".join(f"- {e}" for e in errors)
            )
        ),
    ]


async def invoke_structured_with_fix(
    *,
    role: str,
    messages: list,
    schema: type[T],
    llm: Runnable,
    fixer: Runnable,
    max_attempts: int | None = None,
    memory_window: int | None = None,
) -> T:
    """Call ``llm`` once and parse its answer, repairing it with ``fixer`` as needed.

    ``max_attempts`` counts parses, so 2 means one fixer call at most.
    Defaults come from ``[json_fix]`` in evaluator.toml.

    Raises:
        ValueError: no parse succeeded within ``max_attempts``.
    """
    cfg = get_evaluator_settings().json_fix
    max_attempts = max_attempts or cfg.max_attempts
    memory_window = memory_window or cfg.memory_window

    content = message_text(await llm.ainvoke(messages))
    errors: list[str] = []
    while True:
        try:
            return parse_structured(content, schema)
        except ValueError as exc:
            errors.append(str(exc))
            logger.warning(
                "structured_output_invalid",
                role=role,
                attempt=len(errors),
                error=str(exc),
            )
            if len(errors) >= max_attempts:
                raise ValueError(
                    f"{role} failed structured parsing after {max_attempts} attempts. "
                    f"Last error: {exc}"
                ) from exc

        repaired = await fixer.ainvoke(
            _fixer_messages(schema, content, errors[-memory_window:])
        )
        content = message_text(repaired)
