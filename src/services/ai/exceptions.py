"""Provider-level error taxonomy for text generation.

The orchestrator branches on the concrete class:

* ``ProviderTransientError`` - timeouts, network errors, 5xx/408/429; retried
  within the provider's budget.
* ``ProviderSchemaError`` - the model answered but no usable text field was
  found; retried exactly like a transient error but tagged separately so
  prompt/provider drift can be diagnosed.
* ``ProviderPermanentError`` - authentication, missing configuration or other
  4xx; the provider is abandoned for the request immediately.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, eq=False)
class ProviderError(Exception):
    """Base class for text-generation provider errors."""

    message: str
    error_code: str
    provider: str = "unknown"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.error_code}: {self.message}"

    @property
    def retryable(self) -> bool:
        return self.error_code in {"transient", "schema"}


class ProviderTransientError(ProviderError):
    def __init__(self, message: str = "Provider call failed", provider: str = "unknown") -> None:
        super().__init__(message=message, error_code="transient", provider=provider)


class ProviderSchemaError(ProviderError):
    def __init__(
        self,
        message: str = "Provider response had no usable text field",
        provider: str = "unknown",
    ) -> None:
        super().__init__(message=message, error_code="schema", provider=provider)


class ProviderPermanentError(ProviderError):
    def __init__(self, message: str = "Provider rejected the request", provider: str = "unknown") -> None:
        super().__init__(message=message, error_code="permanent", provider=provider)
