"""Tests for building the ordered provider list from settings."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from pydantic_ai import models

from core.config import GenerationConfig, Settings
from core.exceptions import ConfigurationError
from schemas.generation import ProviderUsed
from services.ai.model_factory import build_providers
from services.ai.providers import AgentProvider, MockProvider


# Block any real model requests in tests
models.ALLOW_MODEL_REQUESTS = False


def _settings(**keys: str | None) -> Settings:
    values = {"OPENAI_API_KEY": None, "ANTHROPIC_API_KEY": None, "GEMINI_API_KEY": None}
    values.update(keys)
    return Settings(**values)


@pytest.fixture
def builders():
    fakes = {
        "openai": (ProviderUsed.OPENAI, MagicMock(name="openai_builder")),
        "anthropic": (ProviderUsed.ANTHROPIC, MagicMock(name="anthropic_builder")),
        "gemini": (ProviderUsed.GEMINI, MagicMock(name="gemini_builder")),
    }
    with patch.dict("services.ai.model_factory._BUILDERS", fakes):
        yield fakes


class TestBuildProviders:
    """Provider order, key handling and mock mode."""

    def test_mock_mode_short_circuits(self, builders) -> None:
        providers = build_providers(_settings(OPENAI_API_KEY="sk-test"), GenerationConfig(mock_mode=True))

        assert len(providers) == 1
        assert isinstance(providers[0], MockProvider)
        builders["openai"][1].assert_not_called()

    def test_follows_configured_order(self, builders) -> None:
        settings = _settings(OPENAI_API_KEY="sk-test", GEMINI_API_KEY="g-test")

        providers = build_providers(settings, GenerationConfig(provider_order=("gemini", "openai")))

        assert [p.name for p in providers] == [ProviderUsed.GEMINI, ProviderUsed.OPENAI]
        assert all(isinstance(p, AgentProvider) for p in providers)
        assert providers[0].model_id == settings.GEMINI_MODEL
        builders["gemini"][1].assert_called_once_with(settings.GEMINI_MODEL, "g-test", None)

    def test_providers_without_keys_are_skipped(self, builders, caplog) -> None:
        providers = build_providers(_settings(ANTHROPIC_API_KEY="a-test"), GenerationConfig())

        assert [p.name for p in providers] == [ProviderUsed.ANTHROPIC]
        assert "No API key configured for provider openai" in caplog.text

    def test_no_usable_provider_is_a_configuration_error(self, builders) -> None:
        with pytest.raises(ConfigurationError):
            build_providers(_settings(), GenerationConfig())
