"""Grounds generation across an ordered list of providers.

Providers are tried strictly in priority order. Each one gets
``1 + max_retries`` attempts with exponential backoff between them; once its
budget is spent (or it fails permanently) it is abandoned for the request and
the next provider is tried. Nothing runs in parallel.

Each provider also has a circuit breaker that outlives the request. While a
provider's breaker is open it is skipped without being called.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.config import GenerationConfig
from core.exceptions import AllProvidersExhausted, ConfigurationError
from core.observability import get_tracer
from schemas.generation import (
    AttemptRecord,
    GenerationRequest,
    GenerationResult,
    ProviderPrompt,
)
from services.ai.circuit_breaker import CircuitBreaker, CircuitState, Clock
from services.ai.exceptions import ProviderError, ProviderTransientError
from services.ai.prompts import SYSTEM_PROMPT, build_user_prompt
from services.ai.providers import extract_final_text
from services.interfaces import TextGenerationProvider


logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class GenerationOrchestrator:
    def __init__(
        self,
        providers: Sequence[TextGenerationProvider],
        config: GenerationConfig,
        *,
        sleep: SleepFn = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        if not providers:
            raise ConfigurationError("At least one text-generation provider is required")
        self._providers = list(providers)
        self._config = config
        self._sleep = sleep
        self._breakers = {
            str(p.name): CircuitBreaker(
                name=str(p.name),
                failure_threshold=config.breaker_failure_threshold,
                success_threshold=config.breaker_success_threshold,
                cooldown_seconds=config.breaker_cooldown_seconds,
                window_seconds=config.breaker_window_seconds,
                clock=clock,
            )
            for p in self._providers
        }

    @property
    def providers(self) -> list[TextGenerationProvider]:
        return list(self._providers)

    def breaker(self, provider: TextGenerationProvider) -> CircuitBreaker:
        return self._breakers[str(provider.name)]

    def build_prompt(self, request: GenerationRequest) -> ProviderPrompt:
        return ProviderPrompt(
            system=SYSTEM_PROMPT,
            user=build_user_prompt(
                request,
                style_sample_mode=self._config.style_sample_mode,
                custom_grounds_mode=self._config.custom_grounds_mode,
            ),
            request=request,
        )

    async def _attempt(
        self, provider: TextGenerationProvider, prompt: ProviderPrompt
    ) -> GenerationResult:
        name = str(provider.name)
        try:
            response = await asyncio.wait_for(
                provider.generate(prompt), timeout=self._config.timeout_seconds
            )
        except ProviderError:
            raise
        except TimeoutError as e:
            raise ProviderTransientError(
                f"No response within {self._config.timeout_seconds}s", provider=name
            ) from e
        except Exception as e:
            # Anything an adapter leaves untranslated counts as a transport failure
            raise ProviderTransientError(
                f"Unclassified provider error: {type(e).__name__}: {e}", provider=name
            ) from e
        text = extract_final_text(response.text, provider=name)
        return GenerationResult(
            provider_used=provider.name,
            model_id=response.model_id,
            raw_text=text,
            token_usage=response.token_usage,
            attempt_count=1,
        )

    async def _traced_attempt(
        self,
        provider: TextGenerationProvider,
        prompt: ProviderPrompt,
        attempt_no: int,
        attempts: list[AttemptRecord],
    ) -> GenerationResult:
        breaker = self.breaker(provider)
        budget = 1 + max(self._config.max_retries, 0)
        with tracer.start_as_current_span("generation.attempt") as attempt_span:
            attempt_span.set_attribute("generation.provider", str(provider.name))
            attempt_span.set_attribute("generation.model_id", provider.model_id)
            attempt_span.set_attribute("generation.attempt", attempt_no)
            try:
                result = await self._attempt(provider, prompt)
            except ProviderError as e:
                attempt_span.record_exception(e)
                breaker.record_failure()
                attempts.append(
                    AttemptRecord(
                        provider=provider.name,
                        model_id=provider.model_id,
                        attempt=attempt_no,
                        outcome=e.error_code,  # type: ignore[arg-type]
                        detail=e.message,
                    )
                )
                log = logger.warning if e.retryable else logger.error
                log(
                    "Provider %s (%s) attempt %d/%d failed [%s]: %s",
                    provider.name,
                    provider.model_id,
                    attempt_no,
                    budget,
                    e.error_code,
                    e.message,
                )
                raise

        breaker.record_success()
        attempts.append(
            AttemptRecord(
                provider=provider.name,
                model_id=result.model_id,
                attempt=attempt_no,
                outcome="success",
            )
        )
        return result

    async def _run_provider(
        self,
        provider: TextGenerationProvider,
        prompt: ProviderPrompt,
        attempts: list[AttemptRecord],
    ) -> GenerationResult:
        cfg = self._config
        breaker = self.breaker(provider)

        def should_retry(exc: BaseException) -> bool:
            return (
                isinstance(exc, ProviderError)
                and exc.retryable
                and breaker.state is not CircuitState.OPEN
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(1 + max(cfg.max_retries, 0)),
            wait=wait_exponential(multiplier=cfg.retry_base_seconds, max=cfg.retry_max_seconds),
            retry=retry_if_exception(should_retry),
            sleep=self._sleep,
            reraise=True,
        )
        result: GenerationResult | None = None
        async for attempt in retrying:
            with attempt:
                result = await self._traced_attempt(
                    provider, prompt, attempt.retry_state.attempt_number, attempts
                )
        if result is None:  # pragma: no cover - tenacity returns or reraises
            raise ProviderTransientError(
                "Retry loop ended without a result", provider=str(provider.name)
            )
        return result

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Return the first usable grounds text, or raise ``AllProvidersExhausted``."""
        prompt = self.build_prompt(request)
        attempts: list[AttemptRecord] = []

        def calls_made() -> int:
            return sum(1 for a in attempts if a.outcome != "circuit_open")

        with tracer.start_as_current_span("generation.generate") as span:
            span.set_attribute("generation.provider_count", len(self._providers))
            span.set_attribute("generation.concern_count", len(request.selected_concerns))

            for provider in self._providers:
                breaker = self.breaker(provider)
                if not breaker.allow():
                    attempts.append(
                        AttemptRecord(
                            provider=provider.name,
                            model_id=provider.model_id,
                            attempt=0,
                            outcome="circuit_open",
                            detail=f"Skipped; retry after {breaker.retry_after():.0f}s",
                        )
                    )
                    logger.warning("Skipping provider %s: circuit open", provider.name)
                    continue

                try:
                    result = await self._run_provider(provider, prompt, attempts)
                except ProviderError:
                    logger.warning("Abandoning provider %s for this request", provider.name)
                    continue

                span.set_attribute("generation.provider_used", str(provider.name))
                span.set_attribute("generation.attempt_count", calls_made())
                logger.info(
                    "Generated grounds with %s (%s) after %d attempt(s); "
                    "tokens prompt=%d completion=%d",
                    provider.name,
                    result.model_id,
                    calls_made(),
                    result.token_usage.prompt,
                    result.token_usage.completion,
                )
                return result.model_copy(
                    update={"attempt_count": calls_made(), "attempts": tuple(attempts)}
                )

            span.set_attribute("generation.attempt_count", calls_made())

        logger.error(
            "All %d text providers failed after %d attempts",
            len(self._providers),
            calls_made(),
        )
        raise AllProvidersExhausted(
            f"All providers failed after {calls_made()} attempts", attempts=attempts
        )
