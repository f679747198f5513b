"""Security configuration constants for the submission API.

This module centralizes security-related configuration including:
- Sensitive keys that should be sanitized from logs
- Error handling security settings
"""

# Keys redacted from structured log payloads. Submitter details are personal
# information and provider credentials must never reach the logs.
SENSITIVE_KEYS: set[str] = {
    # Credentials
    "password",
    "secret",
    "token",
    "authorization",
    "api_key",
    "connection_string",
    "x-api-key",
    "cookie",
    "set-cookie",
    # Submitter personal information
    "email",
    "recipient",
    "reply_to",
    "phone",
    "address",
    "postcode",
    "full_name",
    "first_name",
    "last_name",
    "signature",
}

# In production, error responses only contain these fields
PRODUCTION_ERROR_FIELDS: set[str] = {
    "correlation_id",
    "type",
    "code",
}

# Development error response fields (additional fields allowed in development)
DEVELOPMENT_ERROR_FIELDS: set[str] = PRODUCTION_ERROR_FIELDS | {
    "details",
    "traceback",
    "exception_type",
    "validation_errors",
}


def get_allowed_error_fields(environment: str) -> set[str]:
    """Get allowed error response fields based on environment.

    Args:
        environment: The application environment (production, development, test)

    Returns:
        Set of allowed field names for error responses
    """
    if environment == "production":
        return PRODUCTION_ERROR_FIELDS.copy()
    return DEVELOPMENT_ERROR_FIELDS.copy()


def is_sensitive_key(key: str) -> bool:
    """Check if a key should be considered sensitive and redacted."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)
