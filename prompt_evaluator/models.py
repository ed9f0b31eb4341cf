"""Chat model factory for the evaluator's LLM roles.

Every role (generation, vision, grading, refiner, assistant) is served by
OpenAI first. Groq and a local Ollama server can be enabled in
``[providers]`` of evaluator.toml as fallbacks, tried in that order.

Each model is piped into a length check, so an empty answer counts as a
provider failure and ``with_fallbacks()`` moves on to the next provider.
"""

from __future__ import annotations

from typing import Any

import structlog
from langchain_core.runnables import Runnable, RunnableLambda
from langchain_openai import ChatOpenAI

from prompt_evaluator.config import (
    EvaluatorSettings,
    Settings,
    get_evaluator_settings,
    get_settings,
)
from prompt_evaluator.utils.prompt_text import message_text

logger = structlog.get_logger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def _make_length_validator(min_chars: int) -> RunnableLambda:
    """Runnable that passes a message through or raises ValueError when it is too short."""

    def _validate(response):  # noqa: ANN001
        length = len(message_text(response).strip())
        if length < min_chars:
            raise ValueError(
                f"Response too short ({length} chars, minimum {min_chars}). "
                "Falling back to next provider."
            )
        return response

    return RunnableLambda(_validate)


def _openai(model: str, sampling: dict[str, Any], settings: Settings, timeout: int) -> ChatOpenAI:
    extra: dict[str, Any] = {}
    if settings.openai_base_url:
        extra["base_url"] = settings.openai_base_url
    return ChatOpenAI(
        model=model,
        api_key=settings.openai_api_key,
        timeout=timeout,
        **sampling,
        **extra,
    )


def _groq(role: str, sampling: dict[str, Any], settings: Settings, cfg: EvaluatorSettings):
    from langchain_groq import ChatGroq

    model = cfg.get_groq_model(role)
    logger.debug("groq_fallback_configured", role=role, model=model)
    return ChatGroq(
        model=model,
        api_key=settings.groq_api_key,
        timeout=cfg.defaults.timeout,
        **sampling,
    )


def _ollama(role: str, sampling: dict[str, Any], cfg: EvaluatorSettings):
    from langchain_ollama import ChatOllama

    model = cfg.get_ollama_model(role)
    logger.debug("ollama_fallback_configured", role=role, model=model)
    options = {"temperature": sampling["temperature"]}
    # Ollama calls the token limit num_predict
    if "max_tokens" in sampling:
        options["num_predict"] = sampling["max_tokens"]
    return ChatOllama(
        model=model,
        base_url=cfg.providers.ollama.base_url or DEFAULT_OLLAMA_URL,
        **options,
    )


def create_llm(
    role: str,
    temperature: float | None = None,
    max_tokens: int | None = None,
    settings: Settings | None = None,
) -> Runnable:
    """Build the chat model for ``role``.

    Args:
        role: A ``[roles.*]`` table name from evaluator.toml.
        temperature: Overrides the role's temperature (the grading fixer uses 0.0).
        max_tokens: Overrides the role's token limit.
        settings: Environment settings; read from env/.env when omitted.

    Returns:
        ``model | length_check``, wrapped with fallbacks when any are enabled.
    """
    settings = settings or get_settings()
    cfg = get_evaluator_settings()

    sampling: dict[str, Any] = {
        "temperature": cfg.get_temperature(role) if temperature is None else temperature,
    }
    max_tokens = cfg.get_max_tokens(role) if max_tokens is None else max_tokens
    if max_tokens is not None:
        sampling["max_tokens"] = max_tokens

    check = _make_length_validator(cfg.defaults.min_response_length)
    primary = _openai(cfg.get_model(role), sampling, settings, cfg.defaults.timeout) | check

    fallbacks: list[Runnable] = []
    if cfg.providers.groq.enabled and settings.groq_api_key:
        fallbacks.append(_groq(role, sampling, settings, cfg) | check)
    if cfg.providers.ollama.enabled:
        fallbacks.append(_ollama(role, sampling, cfg) | check)

    if not fallbacks:
        return primary
    return primary.with_fallbacks(fallbacks)
