"""Provider catalog and the per-profile API settings record."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from pustakam.models.book import GenerationMode, Language

logger = logging.getLogger(__name__)

# Valid models per provider, first entry is the provider default
PROVIDER_MODELS: dict[str, list[str]] = {
    "cerebras": [
        "gpt-oss-120b",
        "qwen-3-235b-a22b-instruct-2507",
        "zai-glm-4.7",
        "llama-3.3-70b",
        "llama3.1-8b",
    ],
    "google": ["gemini-3-flash-preview", "gemini-2.5-flash", "gemma-3-27b-it"],
    "mistral": ["mistral-small-latest", "mistral-medium-latest", "mistral-large-latest"],
    "xai": ["grok-4.1", "grok-4.1-fast", "grok-4-fast"],
    "groq": [
        "llama-3.3-70b-versatile",
        "moonshotai/kimi-k2-instruct-0905",
        "groq/compound",
        "openai/gpt-oss-20b",
    ],
    "openrouter": [
        "arcee-ai/trinity-large-preview:free",
        "arcee-ai/trinity-mini:free",
        "tngtech/deepseek-r1t2-chimera:free",
        "cognitivecomputations/dolphin-mistral-24b-venice-edition:free",
    ],
    "cohere": ["command-a-03-2025", "command-r-plus-08-2024"],
    "longcat": [
        "LongCat-Flash-Thinking",
        "LongCat-Flash-Thinking-2601",
        "LongCat-Flash-Chat",
        "LongCat-Flash-Lite",
    ],
}

PROVIDER_DISPLAY_NAMES: dict[str, str] = {
    "cerebras": "Cerebras",
    "google": "Google Gemini",
    "mistral": "Mistral AI",
    "xai": "xAI",
    "groq": "Groq",
    "openrouter": "OpenRouter",
    "cohere": "Cohere",
    "longcat": "LongCat",
}

DEFAULT_PROVIDER = "cerebras"
DEFAULT_MODEL = PROVIDER_MODELS[DEFAULT_PROVIDER][0]


def provider_display_name(provider: str | None) -> str:
    return PROVIDER_DISPLAY_NAMES.get(provider or "", "AI")


class APISettings(BaseModel):
    """Provider credentials and the selected provider/model pair.

    Stored data is never rejected: unknown fields are dropped, an unknown
    provider falls back to the default provider and a model that the
    provider does not offer falls back to that provider's first model.
    """

    api_keys: dict[str, str] = Field(default_factory=dict)
    selected_provider: str = DEFAULT_PROVIDER
    selected_model: str = DEFAULT_MODEL
    default_generation_mode: GenerationMode = GenerationMode.STELLAR
    default_language: Language = Language.EN

    model_config = {"extra": "ignore"}

    @field_validator("api_keys", mode="before")
    @classmethod
    def _clean_api_keys(cls, value: Any) -> dict[str, str]:
        if not isinstance(value, dict):
            return {}
        return {
            str(provider): str(key)
            for provider, key in value.items()
            if provider in PROVIDER_MODELS and isinstance(key, str)
        }

    @field_validator("default_generation_mode", mode="before")
    @classmethod
    def _coerce_mode(cls, value: Any) -> Any:
        if isinstance(value, GenerationMode):
            return value
        if not isinstance(value, str) or value not in {m.value for m in GenerationMode}:
            logger.warning("Invalid default_generation_mode in settings: %r", value)
            return GenerationMode.STELLAR
        return value

    @field_validator("default_language", mode="before")
    @classmethod
    def _coerce_language(cls, value: Any) -> Any:
        if isinstance(value, Language):
            return value
        if not isinstance(value, str) or value not in {lang.value for lang in Language}:
            logger.warning("Invalid default_language in settings: %r", value)
            return Language.EN
        return value

    @field_validator("selected_provider", "selected_model", mode="before")
    @classmethod
    def _coerce_string(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @model_validator(mode="after")
    def _coerce_provider_model(self) -> APISettings:
        if self.selected_provider not in PROVIDER_MODELS:
            logger.warning("Invalid selected_provider in settings: %r", self.selected_provider)
            self.selected_provider = DEFAULT_PROVIDER
        models = PROVIDER_MODELS[self.selected_provider]
        if self.selected_model not in models:
            logger.warning(
                "Invalid model %r for provider %s, using %s",
                self.selected_model,
                self.selected_provider,
                models[0],
            )
            self.selected_model = models[0]
        return self

    def api_key_for(self, provider: str) -> str | None:
        """Return the stored key for ``provider`` or None when blank."""
        key = self.api_keys.get(provider, "").strip()
        return key or None
