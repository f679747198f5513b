"""Tests for provider fallback, retries and backoff in the orchestrator."""

from __future__ import annotations

import asyncio
import json

import pytest
from pydantic_ai import models
from pydantic_ai.messages import ModelMessage, ModelResponse, TextPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from core.config import GenerationConfig
from core.exceptions import AllProvidersExhausted, ConfigurationError
from schemas.generation import (
    GenerationMetadata,
    GenerationRequest,
    ProviderPrompt,
    ProviderResponse,
    ProviderUsed,
    SelectedConcern,
)
from services.ai.exceptions import (
    ProviderPermanentError,
    ProviderSchemaError,
    ProviderTransientError,
)
from services.ai.orchestrator import GenerationOrchestrator
from services.ai.providers import AgentProvider, MockProvider, extract_final_text


# Block any real model requests in tests
models.ALLOW_MODEL_REQUESTS = False


class ScriptedProvider:
    """Provider whose outcomes are scripted per call.

    Each entry is an exception instance to raise or a string to return as the
    raw model reply.
    """

    def __init__(self, name: ProviderUsed, script: list[object]) -> None:
        self.name = name
        self.model_id = f"{name}-test"
        self.script = list(script)
        self.calls = 0

    async def generate(self, prompt: ProviderPrompt) -> ProviderResponse:
        self.calls += 1
        outcome = self.script.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return ProviderResponse(text=str(outcome), model_id=self.model_id)


class SlowProvider:
    name = ProviderUsed.OPENAI
    model_id = "slow"

    def __init__(self) -> None:
        self.calls = 0

    async def generate(self, prompt: ProviderPrompt) -> ProviderResponse:
        self.calls += 1
        await asyncio.sleep(10)
        raise AssertionError("unreachable")  # pragma: no cover


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _request(**kwargs) -> GenerationRequest:
    defaults = {
        "metadata": GenerationMetadata(
            recipient="Chief Executive Officer",
            subject="Objection to Development Application COM/2025/271",
            application_number="COM/2025/271",
            site_address="940 Currumbin Creek Road",
        ),
        "approved_facts": "The site is zoned rural.",
        "selected_concerns": (
            SelectedConcern(key="traffic", full_text="Traffic on the creek road."),
        ),
    }
    defaults.update(kwargs)
    return GenerationRequest(**defaults)


def _config(**kwargs) -> GenerationConfig:
    defaults = {
        "max_retries": 2,
        "retry_base_seconds": 1.0,
        "retry_max_seconds": 3.0,
        "timeout_seconds": 5.0,
    }
    defaults.update(kwargs)
    return GenerationConfig(**defaults)


OK = json.dumps({"final_text": "Generated grounds."})


class TestFallback:
    """Providers are tried in order with their own retry budgets."""

    @pytest.mark.asyncio
    async def test_third_provider_succeeds_after_two_fail(self) -> None:
        a = ScriptedProvider(ProviderUsed.OPENAI, [ProviderTransientError("503")] * 3)
        b = ScriptedProvider(ProviderUsed.ANTHROPIC, [ProviderTransientError("timeout")] * 3)
        c = ScriptedProvider(ProviderUsed.GEMINI, [OK])
        sleep = SleepRecorder()
        orchestrator = GenerationOrchestrator([a, b, c], _config(), sleep=sleep)

        result = await orchestrator.generate(_request())

        assert result.provider_used is ProviderUsed.GEMINI
        assert result.raw_text == "Generated grounds."
        assert (a.calls, b.calls, c.calls) == (3, 3, 1)
        assert result.attempt_count == 7
        assert [r.outcome for r in result.attempts] == ["transient"] * 6 + ["success"]

    @pytest.mark.asyncio
    async def test_backoff_grows_and_is_capped(self) -> None:
        a = ScriptedProvider(ProviderUsed.OPENAI, [ProviderTransientError("503")] * 4)
        sleep = SleepRecorder()
        orchestrator = GenerationOrchestrator([a], _config(max_retries=3), sleep=sleep)

        with pytest.raises(AllProvidersExhausted):
            await orchestrator.generate(_request())

        # no sleep after the final attempt of a provider
        assert sleep.delays == [1.0, 2.0, 3.0]

    @pytest.mark.asyncio
    async def test_permanent_error_abandons_provider_immediately(self) -> None:
        a = ScriptedProvider(ProviderUsed.OPENAI, [ProviderPermanentError("HTTP 401")])
        b = ScriptedProvider(ProviderUsed.ANTHROPIC, [OK])
        sleep = SleepRecorder()
        orchestrator = GenerationOrchestrator([a, b], _config(), sleep=sleep)

        result = await orchestrator.generate(_request())

        assert a.calls == 1
        assert sleep.delays == []
        assert result.provider_used is ProviderUsed.ANTHROPIC
        assert [r.outcome for r in result.attempts] == ["permanent", "success"]

    @pytest.mark.asyncio
    async def test_schema_error_is_retried(self) -> None:
        a = ScriptedProvider(ProviderUsed.OPENAI, ["no json at all", OK])
        orchestrator = GenerationOrchestrator([a], _config(), sleep=SleepRecorder())

        result = await orchestrator.generate(_request())

        assert a.calls == 2
        assert [r.outcome for r in result.attempts] == ["schema", "success"]

    @pytest.mark.asyncio
    async def test_all_exhausted_carries_audit_trail(self) -> None:
        a = ScriptedProvider(ProviderUsed.OPENAI, [ProviderPermanentError("HTTP 403")])
        b = ScriptedProvider(ProviderUsed.GEMINI, [ProviderTransientError("503")] * 3)
        orchestrator = GenerationOrchestrator([a, b], _config(), sleep=SleepRecorder())

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await orchestrator.generate(_request())

        attempts = exc_info.value.attempts
        assert len(attempts) == 4
        assert [a.provider for a in attempts] == [ProviderUsed.OPENAI] + [ProviderUsed.GEMINI] * 3
        assert "openai" not in exc_info.value.user_message.lower()

    @pytest.mark.asyncio
    async def test_timeout_counts_as_transient(self) -> None:
        slow = SlowProvider()
        orchestrator = GenerationOrchestrator(
            [slow], _config(max_retries=1, timeout_seconds=0.01), sleep=SleepRecorder()
        )

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await orchestrator.generate(_request())

        assert slow.calls == 2
        assert {a.outcome for a in exc_info.value.attempts} == {"transient"}

    def test_requires_a_provider(self) -> None:
        with pytest.raises(ConfigurationError):
            GenerationOrchestrator([], _config())


class TestExtractFinalText:
    def test_prefers_final_text(self) -> None:
        raw = json.dumps({"final_text": "A", "body": "B"})
        assert extract_final_text(raw) == "A"

    def test_accepts_body_when_final_text_missing(self) -> None:
        assert extract_final_text('{"body": "B"}') == "B"

    def test_skips_prose_around_json(self) -> None:
        raw = 'Sure! Here you go:\n```json\n{"final_text": "Grounds"}\n```'
        assert extract_final_text(raw) == "Grounds"

    @pytest.mark.parametrize("raw", ["plain prose", '{"other": "x"}', '{"final_text": "  "}'])
    def test_schema_errors(self, raw: str) -> None:
        with pytest.raises(ProviderSchemaError):
            extract_final_text(raw, provider="openai")


class TestMockProvider:
    @pytest.mark.asyncio
    async def test_concerns_then_style_sample(self) -> None:
        request = _request(
            selected_concerns=(
                SelectedConcern(key="a", full_text="First concern."),
                SelectedConcern(key="b", full_text="Second concern."),
            ),
            style_sample="My own words.",
        )
        orchestrator = GenerationOrchestrator([MockProvider()], _config())

        result = await orchestrator.generate(request)

        assert result.provider_used is ProviderUsed.MOCK
        assert result.raw_text == "First concern.\n\nSecond concern.\n\nMy own words."

    @pytest.mark.asyncio
    async def test_is_deterministic(self) -> None:
        orchestrator = GenerationOrchestrator([MockProvider()], _config())
        first = await orchestrator.generate(_request())
        second = await orchestrator.generate(_request())
        assert first.raw_text == second.raw_text


class TestAgentProvider:
    """The pydantic-ai adapter, driven by a FunctionModel."""

    @pytest.mark.asyncio
    async def test_returns_model_output_and_prompt_reaches_model(self) -> None:
        seen: list[str] = []

        def reply(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            for message in messages:
                for part in message.parts:
                    content = getattr(part, "content", None)
                    if isinstance(content, str):
                        seen.append(content)
            return ModelResponse(parts=[TextPart(OK)])

        provider = AgentProvider(ProviderUsed.OPENAI, FunctionModel(reply), "function-model")
        orchestrator = GenerationOrchestrator([provider], _config(), sleep=SleepRecorder())

        result = await orchestrator.generate(_request())

        assert result.raw_text == "Generated grounds."
        assert result.model_id == "function-model"
        assert any("Traffic on the creek road." in s for s in seen)
        assert any('"final_text"' in s for s in seen)

    @pytest.mark.asyncio
    async def test_http_errors_are_classified(self) -> None:
        from pydantic_ai.exceptions import ModelHTTPError

        def unauthorised(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            raise ModelHTTPError(status_code=401, model_name="function", body="bad key")

        provider = AgentProvider(ProviderUsed.OPENAI, FunctionModel(unauthorised), "fn")
        prompt = GenerationOrchestrator([provider], _config()).build_prompt(_request())

        with pytest.raises(ProviderPermanentError):
            await provider.generate(prompt)

    @pytest.mark.asyncio
    async def test_server_errors_are_transient(self) -> None:
        from pydantic_ai.exceptions import ModelHTTPError

        def overloaded(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            raise ModelHTTPError(status_code=529, model_name="function", body="overloaded")

        provider = AgentProvider(ProviderUsed.ANTHROPIC, FunctionModel(overloaded), "fn")
        prompt = GenerationOrchestrator([provider], _config()).build_prompt(_request())

        with pytest.raises(ProviderTransientError):
            await provider.generate(prompt)

    @pytest.mark.asyncio
    async def test_connection_errors_fall_back_to_next_provider(self) -> None:
        from pydantic_ai.exceptions import ModelAPIError

        def unreachable(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            raise ModelAPIError(model_name="function", message="Connection error.")

        provider = AgentProvider(ProviderUsed.OPENAI, FunctionModel(unreachable), "fn")
        orchestrator = GenerationOrchestrator(
            [provider, MockProvider()], _config(), sleep=SleepRecorder()
        )

        result = await orchestrator.generate(_request())

        assert result.provider_used is ProviderUsed.MOCK
        assert [r.outcome for r in result.attempts] == ["transient"] * 3 + ["success"]
        assert "Connection error." in result.attempts[0].detail


class TestUnclassifiedErrors:
    @pytest.mark.asyncio
    async def test_raw_adapter_exception_is_retried_then_abandoned(self) -> None:
        a = ScriptedProvider(ProviderUsed.OPENAI, [RuntimeError("socket closed")] * 3)
        b = ScriptedProvider(ProviderUsed.GEMINI, [OK])
        orchestrator = GenerationOrchestrator([a, b], _config(), sleep=SleepRecorder())

        result = await orchestrator.generate(_request())

        assert a.calls == 3
        assert result.provider_used is ProviderUsed.GEMINI
        assert "RuntimeError: socket closed" in result.attempts[0].detail


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestCircuitBreaking:
    """A provider that keeps failing is skipped until its cool-down ends."""

    @pytest.mark.asyncio
    async def test_open_breaker_skips_provider_until_cooldown(self) -> None:
        a = ScriptedProvider(
            ProviderUsed.OPENAI, [ProviderPermanentError("HTTP 401")] * 2 + [OK]
        )
        b = ScriptedProvider(ProviderUsed.GEMINI, [OK] * 3)
        clock = FakeClock()
        config = _config(
            breaker_failure_threshold=2,
            breaker_success_threshold=1,
            breaker_cooldown_seconds=60.0,
        )
        orchestrator = GenerationOrchestrator([a, b], config, sleep=SleepRecorder(), clock=clock)

        await orchestrator.generate(_request())
        await orchestrator.generate(_request())
        skipped = await orchestrator.generate(_request())

        assert a.calls == 2
        assert skipped.provider_used is ProviderUsed.GEMINI
        assert [r.outcome for r in skipped.attempts] == ["circuit_open", "success"]
        assert skipped.attempt_count == 1

        clock.now += 60.0
        recovered = await orchestrator.generate(_request())

        assert a.calls == 3
        assert recovered.provider_used is ProviderUsed.OPENAI
        assert orchestrator.breaker(a).state == "closed"

    @pytest.mark.asyncio
    async def test_opening_mid_request_stops_retries(self) -> None:
        a = ScriptedProvider(ProviderUsed.OPENAI, [ProviderTransientError("503")] * 3)
        b = ScriptedProvider(ProviderUsed.GEMINI, [OK])
        orchestrator = GenerationOrchestrator(
            [a, b], _config(breaker_failure_threshold=2), sleep=SleepRecorder(), clock=FakeClock()
        )

        result = await orchestrator.generate(_request())

        assert a.calls == 2
        assert result.provider_used is ProviderUsed.GEMINI

    @pytest.mark.asyncio
    async def test_every_provider_open_is_exhaustion(self) -> None:
        a = ScriptedProvider(ProviderUsed.OPENAI, [ProviderPermanentError("HTTP 401")])
        orchestrator = GenerationOrchestrator(
            [a], _config(breaker_failure_threshold=1), sleep=SleepRecorder(), clock=FakeClock()
        )
        with pytest.raises(AllProvidersExhausted):
            await orchestrator.generate(_request())

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await orchestrator.generate(_request())

        assert a.calls == 1
        assert [r.outcome for r in exc_info.value.attempts] == ["circuit_open"]
