"""Application configuration using pydantic-settings.

Loads secrets and deployment settings from environment variables and .env file.
LLM role config (models, temperatures, token limits), pipeline policy and
fallback providers are loaded from evaluator.toml.

Priority: Environment variables (.env) > evaluator.toml > hardcoded defaults
"""

import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Evaluator settings from evaluator.toml
# ---------------------------------------------------------------------------


class RoleConfig(BaseModel):
    """Base configuration for a single LLM role."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    groq_model: str = ""     # Role-specific Groq model override
    ollama_model: str = ""   # Role-specific Ollama model override


class GenerationConfig(RoleConfig):
    """Answers a dataset item with the materialized prompt as system message."""

    temperature: float = 0.5
    max_tokens: int = 800


class VisionConfig(RoleConfig):
    """Answers image items. Must point at a vision-capable model."""

    temperature: float = 0.5
    max_tokens: int = 800
    instruction: str = "Please analyze this image."
    detail: str = "high"


class GradingConfig(RoleConfig):
    temperature: float = 0.2


class RefinerConfig(RoleConfig):
    temperature: float = 0.0
    max_tokens: int = 2048


class AssistantConfig(RoleConfig):
    temperature: float = 0.7
    max_tokens: int = 1000


class RolesTable(BaseModel):
    """The [roles] table from evaluator.toml."""

    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    vision: VisionConfig = Field(default_factory=VisionConfig)
    grading: GradingConfig = Field(default_factory=GradingConfig)
    refiner: RefinerConfig = Field(default_factory=RefinerConfig)
    assistant: AssistantConfig = Field(default_factory=AssistantConfig)


class DefaultsTable(BaseModel):
    """The [defaults] table from evaluator.toml."""

    model: str = "gpt-4o"
    timeout: int = 120
    min_response_length: int = 1


class PipelineTable(BaseModel):
    """The [pipeline] table from evaluator.toml."""

    valid_threshold: int = Field(default=70, ge=0, le=100)


class JsonFixConfig(BaseModel):
    """The [json_fix] table: retries for unparseable structured output."""

    max_attempts: int = 2
    memory_window: int = 3


class APIConfig(BaseModel):
    """The [api] table from evaluator.toml."""

    max_workers: int = 4


class AirtableConfig(BaseModel):
    """The [airtable] table: column names read from imported records."""

    api_url: str = "https://api.airtable.com/v0"
    file_id_field: str = "File ID"
    expected_field: str = "Expected Output"
    pdf_field: str = "PDF"
    text_field: str = "Input"
    timeout: float = 60.0


class ProviderConfig(BaseModel):
    """Configuration for a single fallback provider."""

    enabled: bool = False
    default_model: str = ""
    base_url: str = ""


class ProvidersTable(BaseModel):
    """The [providers] table from evaluator.toml."""

    groq: ProviderConfig = Field(default_factory=ProviderConfig)
    ollama: ProviderConfig = Field(default_factory=ProviderConfig)


class EvaluatorSettings(BaseModel):
    """Configuration loaded from evaluator.toml."""

    defaults: DefaultsTable = Field(default_factory=DefaultsTable)
    roles: RolesTable = Field(default_factory=RolesTable)
    pipeline: PipelineTable = Field(default_factory=PipelineTable)
    json_fix: JsonFixConfig = Field(default_factory=JsonFixConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    airtable: AirtableConfig = Field(default_factory=AirtableConfig)
    providers: ProvidersTable = Field(default_factory=ProvidersTable)

    def get_role_config(self, role: str) -> RoleConfig:
        """Get the config for a specific LLM role."""
        return getattr(self.roles, role, RoleConfig())

    def get_model(self, role: str) -> str:
        """Get the resolved model for a role (role-specific > defaults)."""
        return self.get_role_config(role).model or self.defaults.model

    def get_temperature(self, role: str) -> float:
        """Get the resolved temperature for a role."""
        role_cfg = self.get_role_config(role)
        if role_cfg.temperature is not None:
            return role_cfg.temperature
        return 0.7  # fallback

    def get_max_tokens(self, role: str) -> int | None:
        return self.get_role_config(role).max_tokens

    def get_groq_model(self, role: str) -> str:
        """Get Groq model: role-specific > providers.groq.default_model."""
        return self.get_role_config(role).groq_model or self.providers.groq.default_model

    def get_ollama_model(self, role: str) -> str:
        """Get Ollama model: role-specific > providers.ollama.default_model."""
        return self.get_role_config(role).ollama_model or self.providers.ollama.default_model


_EVALUATOR_SETTINGS_CACHE: EvaluatorSettings | None = None


def get_evaluator_settings() -> EvaluatorSettings:
    """Load and cache evaluator settings from evaluator.toml."""
    global _EVALUATOR_SETTINGS_CACHE
    if _EVALUATOR_SETTINGS_CACHE is not None:
        return _EVALUATOR_SETTINGS_CACHE

    toml_path = Path(__file__).parent.parent / "evaluator.toml"
    if toml_path.exists():
        with open(toml_path, "rb") as f:
            data = tomllib.load(f)
        _EVALUATOR_SETTINGS_CACHE = EvaluatorSettings.model_validate(data)
    else:
        _EVALUATOR_SETTINGS_CACHE = EvaluatorSettings()

    return _EVALUATOR_SETTINGS_CACHE


# ---------------------------------------------------------------------------
# Environment settings from .env (API keys, secrets, env-var overrides)
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API Keys
    openai_api_key: str
    groq_api_key: str = ""      # Groq fallback provider
    airtable_api_key: str = ""  # Only needed for /import/airtable

    openai_base_url: str | None = None

    # LangSmith (set LANGCHAIN_TRACING_V2=true to enable)
    langchain_tracing_v2: bool = False
    langchain_api_key: str | None = None
    langchain_project: str = "prompt-evaluator"

    # Storage
    database_url: str = "data/evaluator.db"
    bucket_dir: str = "MetaPromptEvaluatorBucket"

    # Owner recorded on created prompts/datasets when no X-User-Id header is sent
    default_user_id: str | None = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


def get_settings() -> Settings:
    """Create and return a Settings instance.

    Also exports LangSmith env vars so the LangChain SDK
    picks them up automatically for tracing.
    """
    settings = Settings()

    if settings.langchain_tracing_v2:
        os.environ.setdefault("LANGCHAIN_TRACING_V2", "true")
        if settings.langchain_api_key:
            os.environ.setdefault("LANGCHAIN_API_KEY", settings.langchain_api_key)
        os.environ.setdefault("LANGCHAIN_PROJECT", settings.langchain_project)

    return settings
