"""Direct LLM endpoints: final prompt preview and free-form completion."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from prompt_evaluator.api.dependencies import get_generation_client
from prompt_evaluator.api.schemas import (
    FinalPromptRequest,
    FinalPromptResponse,
    LLMResponse,
    LLMResponseRequest,
)
from prompt_evaluator.clients.generation import GenerationClient
from prompt_evaluator.utils.prompt_text import materialize_prompt

router = APIRouter(tags=["llm"])


@router.post("/generate-final-prompt", response_model=FinalPromptResponse)
async def generate_final_prompt(
    body: FinalPromptRequest,
    generator: GenerationClient = Depends(get_generation_client),
):
    """Fill ``{{user_prompt}}`` in the template; with ``refine`` the LLM polishes it."""
    if body.refine:
        final_prompt = await generator.refine_prompt(body.meta_prompt, body.user_prompt)
    else:
        final_prompt = materialize_prompt(body.meta_prompt, body.user_prompt)
    return FinalPromptResponse(final_prompt=final_prompt)


@router.post("/generate-llm-response", response_model=LLMResponse)
async def generate_llm_response(
    body: LLMResponseRequest,
    generator: GenerationClient = Depends(get_generation_client),
):
    return LLMResponse(llm_response=await generator.complete(body.processed_prompt))
