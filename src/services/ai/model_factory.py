"""Build the ordered list of text-generation providers from settings.

This is the only place vendor SDK model classes are constructed. Usage:

    from services.ai.model_factory import build_providers

    providers = build_providers(settings, config.generation)
    orchestrator = GenerationOrchestrator(providers, config.generation)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, cast

from pydantic_ai.models import Model
from pydantic_ai.models.anthropic import AnthropicModel
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.models.openai import OpenAIModel
from pydantic_ai.providers.anthropic import AnthropicProvider
from pydantic_ai.providers.google import GoogleProvider
from pydantic_ai.providers.openai import OpenAIProvider

from core.config import GenerationConfig, Settings
from core.exceptions import ConfigurationError
from schemas.generation import ProviderUsed
from services.ai.providers import AgentProvider, MockProvider
from services.interfaces import TextGenerationProvider


if TYPE_CHECKING:
    from httpx import AsyncClient

logger = logging.getLogger(__name__)


def _create_openai_model(
    model_name: str, api_key: str, http_client: AsyncClient | None = None
) -> Model:
    provider = OpenAIProvider(api_key=api_key, http_client=http_client)
    return OpenAIModel(model_name, provider=provider)


def _create_anthropic_model(
    model_name: str, api_key: str, http_client: AsyncClient | None = None
) -> Model:
    provider = AnthropicProvider(api_key=api_key, http_client=http_client)
    return AnthropicModel(model_name, provider=provider)


def _create_gemini_model(
    model_name: str, api_key: str, http_client: AsyncClient | None = None
) -> Model:
    provider = GoogleProvider(api_key=api_key, http_client=http_client)
    return cast(Model, GoogleModel(model_name, provider=provider))


_BUILDERS: dict[str, tuple[ProviderUsed, Callable[..., Model]]] = {
    "openai": (ProviderUsed.OPENAI, _create_openai_model),
    "anthropic": (ProviderUsed.ANTHROPIC, _create_anthropic_model),
    "gemini": (ProviderUsed.GEMINI, _create_gemini_model),
}


def _credentials(settings: Settings, name: str) -> tuple[str | None, str]:
    if name == "openai":
        return settings.OPENAI_API_KEY, settings.OPENAI_MODEL
    if name == "anthropic":
        return settings.ANTHROPIC_API_KEY, settings.ANTHROPIC_MODEL
    return settings.GEMINI_API_KEY, settings.GEMINI_MODEL


def build_providers(
    settings: Settings,
    config: GenerationConfig,
    http_client: AsyncClient | None = None,
) -> list[TextGenerationProvider]:
    """Return providers in priority order.

    In mock mode this is just the offline ``MockProvider``. Otherwise each
    configured provider with an API key is built; providers without a key are
    skipped with a warning. An empty result is a configuration error.
    """
    if config.mock_mode:
        logger.info("Generation mock mode enabled; no provider calls will be made")
        return [MockProvider()]

    providers: list[TextGenerationProvider] = []
    for name in config.provider_order:
        api_key, model_name = _credentials(settings, name)
        if not api_key:
            logger.warning("No API key configured for provider %s; skipping it", name)
            continue
        provider_used, builder = _BUILDERS[name]
        model = builder(model_name, api_key, http_client)
        providers.append(
            AgentProvider(
                provider_used,
                model,
                model_name,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
            )
        )
        logger.info("Configured text provider %s with model %s", name, model_name)

    if not providers:
        raise ConfigurationError(
            "No text-generation provider is configured. Set at least one of "
            "OPENAI_API_KEY, ANTHROPIC_API_KEY or GEMINI_API_KEY, or enable "
            "GENERATION_MOCK_MODE."
        )
    return providers
