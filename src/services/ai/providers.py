"""Text-generation provider adapters.

Every adapter exposes the same small surface (``name``, ``model_id`` and
``generate``) and translates vendor failures into the provider error
taxonomy in ``services.ai.exceptions``. The orchestrator never sees a vendor
exception type.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelAPIError, ModelHTTPError, UnexpectedModelBehavior
from pydantic_ai.models import Model
from pydantic_ai.settings import ModelSettings

from schemas.generation import ProviderPrompt, ProviderResponse, ProviderUsed, TokenUsage
from services.ai.exceptions import (
    ProviderPermanentError,
    ProviderSchemaError,
    ProviderTransientError,
)


logger = logging.getLogger(__name__)

PRIMARY_TEXT_FIELD = "final_text"
SECONDARY_TEXT_FIELD = "body"

_TRANSIENT_STATUS = {408, 429}


def classify_http_status(status: int, message: str, provider: str) -> Exception:
    """Map an HTTP status from a provider to a transient or permanent error."""
    if status >= 500 or status in _TRANSIENT_STATUS:
        return ProviderTransientError(f"HTTP {status}: {message}", provider=provider)
    return ProviderPermanentError(f"HTTP {status}: {message}", provider=provider)


def _first_json_object(raw: str) -> dict[str, Any] | None:
    start = raw.find("{")
    while start != -1:
        try:
            obj, _ = json.JSONDecoder().raw_decode(raw, start)
        except json.JSONDecodeError:
            start = raw.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = raw.find("{", start + 1)
    return None


def extract_final_text(raw: str, provider: str = "unknown") -> str:
    """Pull the grounds text out of a model reply.

    The first JSON object in ``raw`` is read; ``final_text`` wins, ``body`` is
    accepted when ``final_text`` is missing or empty. Anything else is a
    schema error.
    """
    payload = _first_json_object(raw)
    if payload is None:
        raise ProviderSchemaError("Response contained no JSON object", provider=provider)

    for field in (PRIMARY_TEXT_FIELD, SECONDARY_TEXT_FIELD):
        value = payload.get(field)
        if isinstance(value, str) and value.strip():
            if field != PRIMARY_TEXT_FIELD:
                logger.warning(
                    "Provider %s answered with '%s' instead of '%s'",
                    provider,
                    field,
                    PRIMARY_TEXT_FIELD,
                )
            return value

    raise ProviderSchemaError(
        f"Response JSON had no usable '{PRIMARY_TEXT_FIELD}' or "
        f"'{SECONDARY_TEXT_FIELD}' field (keys: {sorted(payload)})",
        provider=provider,
    )


def _usage_tokens(usage: Any) -> TokenUsage:
    # Older pydantic-ai releases name these request/response tokens
    prompt = getattr(usage, "input_tokens", None) or getattr(usage, "request_tokens", None)
    completion = getattr(usage, "output_tokens", None) or getattr(
        usage, "response_tokens", None
    )
    return TokenUsage(prompt=prompt or 0, completion=completion or 0)


class AgentProvider:
    """Adapter running the prompt through a pydantic-ai ``Agent``."""

    def __init__(
        self,
        name: ProviderUsed,
        model: Model,
        model_id: str,
        *,
        temperature: float = 0.05,
        max_tokens: int = 4000,
    ) -> None:
        self.name = name
        self.model_id = model_id
        self._model = model
        self._settings = ModelSettings(temperature=temperature, max_tokens=max_tokens)

    async def generate(self, prompt: ProviderPrompt) -> ProviderResponse:
        agent = Agent(
            self._model,
            output_type=str,
            system_prompt=prompt.system,
            model_settings=self._settings,
        )
        provider = str(self.name)
        try:
            result = await agent.run(prompt.user)
        except ModelHTTPError as e:
            raise classify_http_status(e.status_code, str(e.body or e), provider) from e
        except ModelAPIError as e:
            raise ProviderTransientError(f"Provider API error: {e}", provider=provider) from e
        except UnexpectedModelBehavior as e:
            raise ProviderSchemaError(str(e), provider=provider) from e
        except httpx.TimeoutException as e:
            raise ProviderTransientError(f"Request timed out: {e}", provider=provider) from e
        except httpx.HTTPError as e:
            raise ProviderTransientError(f"Network error: {e}", provider=provider) from e

        return ProviderResponse(
            text=str(result.output),
            model_id=self.model_id,
            token_usage=_usage_tokens(result.usage()),
        )


class MockProvider:
    """Deterministic offline provider.

    Emits the selected concern texts in order followed by the style sample,
    separated by blank lines, wrapped in the same JSON contract as live
    providers.
    """

    name = ProviderUsed.MOCK
    model_id = "mock-deterministic"

    async def generate(self, prompt: ProviderPrompt) -> ProviderResponse:
        request = prompt.request
        parts = [c.full_text.strip() for c in request.selected_concerns if c.full_text.strip()]
        if request.style_sample:
            parts.append(request.style_sample.strip())
        if not parts and request.approved_facts.strip():
            parts.append(request.approved_facts.strip())
        text = "\n\n".join(parts)
        return ProviderResponse(
            text=json.dumps({PRIMARY_TEXT_FIELD: text}, ensure_ascii=False),
            model_id=self.model_id,
        )
