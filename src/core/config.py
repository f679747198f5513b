"""Application settings and pipeline configuration."""

import json
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ProviderName = Literal["openai", "anthropic", "gemini"]
StyleSampleMode = Literal["tone", "verbatim"]
CustomGroundsMode = Literal["section_only", "prompt_and_section"]


def _split_list(v: object, field_name: str) -> list[str]:
    """Accept a list, a CSV string, or a JSON array string."""
    if isinstance(v, (list, tuple)):
        return [str(i).strip() for i in v if str(i).strip()]
    if isinstance(v, str):
        s = v.strip()
        if not s:
            return []
        if s.startswith("["):
            try:
                parsed = json.loads(s)
            except json.JSONDecodeError as e:
                raise ValueError(
                    f"{field_name} must be a CSV list or JSON array string"
                ) from e
            if not isinstance(parsed, list):
                raise ValueError(f"{field_name} JSON must be a list")
            return [str(i).strip() for i in parsed if str(i).strip()]
        return [i.strip() for i in s.split(",") if i.strip()]
    raise ValueError(f"Invalid {field_name} type; expected str or list[str]")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env"), env_file_encoding="utf-8")

    # App
    APP_NAME: str = "DA Submission Manager"
    ENVIRONMENT: str = "development"  # development | production | test
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: list[str] | str = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    # AI / LLM providers, tried in PROVIDER_ORDER
    PROVIDER_ORDER: list[str] | str = ["openai", "anthropic", "gemini"]
    GENERATION_MOCK_MODE: bool = False
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-sonnet-4-5"
    GEMINI_API_KEY: str | None = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GENERATION_TEMPERATURE: float = 0.05
    GENERATION_MAX_TOKENS: int = 4000
    PROVIDER_MAX_RETRIES: int = 2
    PROVIDER_RETRY_BASE_SECONDS: float = 1.0
    PROVIDER_RETRY_MAX_SECONDS: float = 8.0
    PROVIDER_TIMEOUT_SECONDS: float = 60.0
    PROVIDER_BREAKER_FAILURE_THRESHOLD: int = 5
    PROVIDER_BREAKER_SUCCESS_THRESHOLD: int = 2
    PROVIDER_BREAKER_COOLDOWN_SECONDS: float = 60.0
    PROVIDER_BREAKER_WINDOW_SECONDS: float = 300.0
    STYLE_SAMPLE_MODE: StyleSampleMode = "tone"
    CUSTOM_GROUNDS_MODE: CustomGroundsMode = "section_only"

    # Content policy
    WORD_LIMIT: int = 2500
    WORD_MIN_UTILIZATION: float = 0.1
    ALLOWED_LINKS: list[str] | str = []
    EXTRA_BANNED_PHRASES: list[str] | str = []

    # Rendering
    RENDER_PRIMARY_ENABLED: bool = True
    RENDER_TIMEOUT_SECONDS: float = 10.0
    RENDER_POOL_SIZE: int = 1

    # Concern templates: JSON object of key -> full concern text
    CONCERN_TEMPLATES_FILE: str | None = None

    # Background delivery poller
    SCHEDULER_ENABLED: bool = True

    # Email (Azure Communication Services)
    EMAIL_PROVIDER: str = "azure"  # azure | disabled
    AZURE_COMMUNICATION_CONNECTION_STRING: str | None = None
    EMAIL_SENDER_ADDRESS: str = "DoNotReply@example.org"
    EMAIL_REPLY_TO: str | None = None
    EMAIL_SEND_TIMEOUT_SECONDS: float = 30.0

    # Delivery queue
    DELIVERY_MAX_ATTEMPTS: int = 3
    DELIVERY_BACKOFF_BASE_SECONDS: float = 300.0
    DELIVERY_BACKOFF_MAX_SECONDS: float = 3600.0
    DELIVERY_POLL_INTERVAL_SECONDS: int = 60
    DELIVERY_POLL_BATCH: int = 10
    BULK_BATCH_SIZE: int = 50
    BULK_BATCH_DELAY_SECONDS: float = 1.0
    BULK_SEND_CONCURRENCY: int = 10

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: object) -> list[str]:
        """Allow list, CSV string, or JSON array string for CORS origins."""
        return _split_list(v, "CORS_ORIGINS")

    @field_validator("ALLOWED_LINKS", "EXTRA_BANNED_PHRASES", mode="before")
    @classmethod
    def assemble_string_lists(cls, v: object) -> list[str]:
        return _split_list(v, "list setting")

    @field_validator("PROVIDER_ORDER", mode="before")
    @classmethod
    def assemble_provider_order(cls, v: object) -> list[str]:
        names = [n.lower() for n in _split_list(v, "PROVIDER_ORDER")]
        unknown = [n for n in names if n not in {"openai", "anthropic", "gemini"}]
        if unknown:
            raise ValueError(f"Unknown providers in PROVIDER_ORDER: {unknown}")
        if len(set(names)) != len(names):
            raise ValueError("PROVIDER_ORDER must not repeat a provider")
        return names


@dataclass(frozen=True, slots=True)
class GenerationConfig:
    provider_order: tuple[str, ...] = ("openai", "anthropic", "gemini")
    mock_mode: bool = False
    max_retries: int = 2
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 8.0
    timeout_seconds: float = 60.0
    temperature: float = 0.05
    max_tokens: int = 4000
    breaker_failure_threshold: int = 5
    breaker_success_threshold: int = 2
    breaker_cooldown_seconds: float = 60.0
    breaker_window_seconds: float = 300.0
    style_sample_mode: StyleSampleMode = "tone"
    custom_grounds_mode: CustomGroundsMode = "section_only"


@dataclass(frozen=True, slots=True)
class ValidationConfig:
    word_limit: int = 2500
    min_utilization: float = 0.1
    allowed_links: tuple[str, ...] = ()
    extra_banned_phrases: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RenderConfig:
    primary_enabled: bool = True
    timeout_seconds: float = 10.0
    pool_size: int = 1


@dataclass(frozen=True, slots=True)
class DeliveryConfig:
    max_attempts: int = 3
    backoff_base_seconds: float = 300.0
    backoff_max_seconds: float = 3600.0
    poll_interval_seconds: int = 60
    poll_batch: int = 10
    bulk_batch_size: int = 50
    bulk_batch_delay_seconds: float = 1.0
    bulk_send_concurrency: int = 10
    sender_address: str = "DoNotReply@example.org"
    reply_to: str | None = None


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Explicit configuration threaded through the pipeline constructors."""

    generation: GenerationConfig = GenerationConfig()
    validation: ValidationConfig = ValidationConfig()
    render: RenderConfig = RenderConfig()
    delivery: DeliveryConfig = DeliveryConfig()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PipelineConfig":
        return cls(
            generation=GenerationConfig(
                provider_order=tuple(settings.PROVIDER_ORDER),
                mock_mode=settings.GENERATION_MOCK_MODE,
                max_retries=settings.PROVIDER_MAX_RETRIES,
                retry_base_seconds=settings.PROVIDER_RETRY_BASE_SECONDS,
                retry_max_seconds=settings.PROVIDER_RETRY_MAX_SECONDS,
                timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
                temperature=settings.GENERATION_TEMPERATURE,
                max_tokens=settings.GENERATION_MAX_TOKENS,
                breaker_failure_threshold=settings.PROVIDER_BREAKER_FAILURE_THRESHOLD,
                breaker_success_threshold=settings.PROVIDER_BREAKER_SUCCESS_THRESHOLD,
                breaker_cooldown_seconds=settings.PROVIDER_BREAKER_COOLDOWN_SECONDS,
                breaker_window_seconds=settings.PROVIDER_BREAKER_WINDOW_SECONDS,
                style_sample_mode=settings.STYLE_SAMPLE_MODE,
                custom_grounds_mode=settings.CUSTOM_GROUNDS_MODE,
            ),
            validation=ValidationConfig(
                word_limit=settings.WORD_LIMIT,
                min_utilization=settings.WORD_MIN_UTILIZATION,
                allowed_links=tuple(settings.ALLOWED_LINKS),
                extra_banned_phrases=tuple(settings.EXTRA_BANNED_PHRASES),
            ),
            render=RenderConfig(
                primary_enabled=settings.RENDER_PRIMARY_ENABLED,
                timeout_seconds=settings.RENDER_TIMEOUT_SECONDS,
                pool_size=settings.RENDER_POOL_SIZE,
            ),
            delivery=DeliveryConfig(
                max_attempts=settings.DELIVERY_MAX_ATTEMPTS,
                backoff_base_seconds=settings.DELIVERY_BACKOFF_BASE_SECONDS,
                backoff_max_seconds=settings.DELIVERY_BACKOFF_MAX_SECONDS,
                poll_interval_seconds=settings.DELIVERY_POLL_INTERVAL_SECONDS,
                poll_batch=settings.DELIVERY_POLL_BATCH,
                bulk_batch_size=settings.BULK_BATCH_SIZE,
                bulk_batch_delay_seconds=settings.BULK_BATCH_DELAY_SECONDS,
                bulk_send_concurrency=settings.BULK_SEND_CONCURRENCY,
                sender_address=settings.EMAIL_SENDER_ADDRESS,
                reply_to=settings.EMAIL_REPLY_TO,
            ),
        )


@lru_cache
def get_settings() -> Settings:
    env = os.getenv("ENVIRONMENT", "development").lower()
    if env not in {"development", "production", "test"}:
        raise ValueError("ENVIRONMENT must be 'development', 'production', or 'test'")

    if env == "production":
        env_file = ".env.prod"
    elif env == "development":
        env_file = ".env.dev"
    else:
        # test environment - no env file needed, use defaults
        env_file = ""

    # In production an email transport without credentials would silently
    # drop every submission, so fail fast instead.
    if env == "production" and not os.getenv("AZURE_COMMUNICATION_CONNECTION_STRING"):
        if os.getenv("EMAIL_PROVIDER", "azure").lower() == "azure":
            raise RuntimeError(
                "AZURE_COMMUNICATION_CONNECTION_STRING must be set in production"
            )

    # pydantic-settings supports _env_file at runtime; mypy doesn't type it.
    return Settings(_env_file=env_file or None)  # type: ignore[call-arg]
