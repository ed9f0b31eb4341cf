"""Generation client: answers dataset items with a materialized prompt.

The materialized prompt is the system message; the item's input is the user
message. Text inputs are sent as-is, image inputs go to the vision role as an
``image_url`` content part, and PDF inputs are converted to text first and then
follow the text path. Every answer passes through ``strip_code_fences``.
"""

from __future__ import annotations

from typing import Callable

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_core.runnables import Runnable

from prompt_evaluator.config import get_evaluator_settings
from prompt_evaluator.models import create_llm
from prompt_evaluator.prompts.templates import ASSISTANT_SYSTEM, REFINER_SYSTEM
from prompt_evaluator.schemas.entities import DatasetItem, InputType
from prompt_evaluator.storage.bucket import PdfBucket
from prompt_evaluator.utils.prompt_text import (
    materialize_prompt,
    message_text,
    preview,
    strip_code_fences,
)

logger = structlog.get_logger(__name__)

LLMFactory = Callable[..., Runnable]


class GenerationClient:
    """Wraps the generation, vision, refiner and assistant LLM roles.

    Args:
        bucket: PDF store used to extract the text of ``pdf`` items.
        llm_factory: Builds a Runnable for a role; defaults to ``create_llm``.
    """

    def __init__(self, bucket: PdfBucket, llm_factory: LLMFactory = create_llm) -> None:
        self._bucket = bucket
        self._llm_factory = llm_factory
        self._llms: dict[str, Runnable] = {}

    def _llm(self, role: str) -> Runnable:
        if role not in self._llms:
            self._llms[role] = self._llm_factory(role)
        return self._llms[role]

    async def _invoke(self, role: str, messages: list) -> str:
        response = await self._llm(role).ainvoke(messages)
        text = strip_code_fences(message_text(response))
        if not text:
            raise ValueError(f"{role} model returned an empty response")
        return text

    # -- dataset items -------------------------------------------------------

    async def generate(self, system_prompt: str, item: DatasetItem) -> str:
        """Answer one dataset item, dispatching on its input kind."""
        payload = item.payload
        if not payload:
            raise ValueError(
                f"Dataset item {item.id} has no {item.input_type.value} input"
            )

        logger.debug("generation_start", item_id=item.id, input_type=item.input_type.value)
        if item.input_type == InputType.IMAGE:
            return await self.generate_from_image(system_prompt, payload)
        if item.input_type == InputType.PDF:
            return await self.generate_from_document(system_prompt, payload)
        return await self.generate_from_text(system_prompt, payload)

    async def generate_from_text(self, system_prompt: str, text: str) -> str:
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=text),
        ]
        return await self._invoke("generation", messages)

    async def generate_from_image(self, system_prompt: str, image_url: str) -> str:
        vision_cfg = get_evaluator_settings().roles.vision
        messages = [
            SystemMessage(content=system_prompt),
            HumanMessage(
                content=[
                    {"type": "text", "text": vision_cfg.instruction},
                    {
                        "type": "image_url",
                        "image_url": {"url": image_url, "detail": vision_cfg.detail},
                    },
                ]
            ),
        ]
        return await self._invoke("vision", messages)

    async def generate_from_document(self, system_prompt: str, file_id: str) -> str:
        text = await self._bucket.aextract_text(file_id)
        logger.debug("document_text_ready", file_id=file_id, preview=preview(text))
        return await self.generate_from_text(system_prompt, text)

    # -- direct calls --------------------------------------------------------

    async def complete(self, prompt: str) -> str:
        """Send an arbitrary prompt to the assistant role."""
        messages = [
            SystemMessage(content=ASSISTANT_SYSTEM),
            HumanMessage(content=prompt),
        ]
        return await self._invoke("assistant", messages)

    async def refine_prompt(self, template: str, user_prompt: str | None) -> str:
        """Materialize a template, then have the refiner polish the result."""
        draft = materialize_prompt(template, user_prompt)
        messages = [
            SystemMessage(content=REFINER_SYSTEM),
            HumanMessage(content=draft),
        ]
        return await self._invoke("refiner", messages)
