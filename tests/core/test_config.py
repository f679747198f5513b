"""Tests for settings parsing and pipeline configuration."""

import pytest
from pydantic import ValidationError

from core.config import PipelineConfig, Settings, get_settings


class TestSettings:
    def test_list_settings_accept_csv_and_json(self) -> None:
        settings = Settings(
            CORS_ORIGINS="http://a.example, http://b.example",
            ALLOWED_LINKS='["https://council.example.gov.au/plan"]',
        )

        assert settings.CORS_ORIGINS == ["http://a.example", "http://b.example"]
        assert settings.ALLOWED_LINKS == ["https://council.example.gov.au/plan"]

    def test_provider_order_is_normalised(self) -> None:
        assert Settings(PROVIDER_ORDER="Gemini,openai").PROVIDER_ORDER == ["gemini", "openai"]

    @pytest.mark.parametrize("order", ["openai,cohere", "openai,openai"])
    def test_invalid_provider_order(self, order: str) -> None:
        with pytest.raises(ValidationError):
            Settings(PROVIDER_ORDER=order)

    def test_invalid_environment(self, monkeypatch) -> None:
        get_settings.cache_clear()
        monkeypatch.setenv("ENVIRONMENT", "staging")
        try:
            with pytest.raises(ValueError):
                get_settings()
        finally:
            get_settings.cache_clear()

    def test_production_requires_mail_credentials(self, monkeypatch) -> None:
        get_settings.cache_clear()
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("EMAIL_PROVIDER", "azure")
        monkeypatch.delenv("AZURE_COMMUNICATION_CONNECTION_STRING", raising=False)
        try:
            with pytest.raises(RuntimeError):
                get_settings()
        finally:
            get_settings.cache_clear()


class TestPipelineConfig:
    def test_from_settings(self) -> None:
        settings = Settings(
            PROVIDER_ORDER="anthropic",
            GENERATION_MOCK_MODE=True,
            WORD_LIMIT=800,
            EXTRA_BANNED_PHRASES="travesty",
            RENDER_PRIMARY_ENABLED=False,
            DELIVERY_MAX_ATTEMPTS=5,
            BULK_BATCH_SIZE=25,
            EMAIL_SENDER_ADDRESS="noreply@example.org",
        )

        config = PipelineConfig.from_settings(settings)

        assert config.generation.provider_order == ("anthropic",)
        assert config.generation.mock_mode
        assert config.validation.word_limit == 800
        assert config.validation.extra_banned_phrases == ("travesty",)
        assert not config.render.primary_enabled
        assert config.delivery.max_attempts == 5
        assert config.delivery.bulk_batch_size == 25
        assert config.delivery.sender_address == "noreply@example.org"

    def test_defaults(self) -> None:
        config = PipelineConfig()

        assert config.generation.style_sample_mode == "tone"
        assert config.generation.custom_grounds_mode == "section_only"
        assert config.validation.word_limit == 2500
