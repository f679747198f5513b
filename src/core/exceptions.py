"""Domain errors surfaced by the submission pipeline.

Every error carries a stable ``error_code`` for log tagging and a
``user_message`` that is safe to show to a submitter: it never names an AI
vendor, a rendering engine or includes a traceback.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class DomainError(Exception):
    """Base class for domain-specific errors."""

    error_code: str = "domain_error"
    user_message: str = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.user_message
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class ConfigurationError(DomainError):
    """Raised when the pipeline cannot be assembled from configuration."""

    error_code = "configuration_error"
    user_message = "The submission service is not configured correctly."


class AllProvidersExhausted(DomainError):
    """Every configured text-generation provider failed within its budget."""

    error_code = "generation_unavailable"
    user_message = (
        "We could not generate your submission right now. Please try again "
        "in a few minutes."
    )

    def __init__(self, message: str | None = None, attempts: Sequence[Any] = ()) -> None:
        super().__init__(message)
        self.attempts = list(attempts)


class ContentPolicyViolation(DomainError):
    """Generated or edited text broke one or more content rules.

    Never retried automatically: the submitter has to change the selected
    concerns or their own wording.
    """

    error_code = "content_policy_violation"
    user_message = "The submission text does not meet the content rules."

    def __init__(self, violations: Sequence[Any]) -> None:
        self.violations = list(violations)
        rules = ", ".join(sorted({getattr(v, "rule", str(v)) for v in self.violations}))
        super().__init__(f"Content rules violated: {rules}")


class RenderingFailed(DomainError):
    """Both the primary and the fallback rendering engines failed."""

    error_code = "rendering_failed"
    user_message = (
        "We could not create the PDF for your submission. Your text has been "
        "kept; please try finalising again."
    )


class NonEditableSectionError(DomainError):
    """An edit targeted a section that is derived from fixed identifiers."""

    error_code = "section_not_editable"
    user_message = "That part of the submission cannot be edited."

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Section '{key}' is not editable")


class DeliveryJobNotFound(DomainError):
    error_code = "delivery_job_not_found"
    user_message = "The requested email could not be found."


class CampaignNotFound(DomainError):
    error_code = "campaign_not_found"
    user_message = "The requested campaign could not be found."


class CampaignStateError(DomainError):
    error_code = "campaign_state_invalid"
    user_message = "The campaign cannot do that in its current state."


class SubmissionNotFound(DomainError):
    error_code = "submission_not_found"
    user_message = "The requested submission could not be found."


class SubmissionStateError(DomainError):
    error_code = "submission_state_invalid"
    user_message = "The submission is not ready for that step yet."
