"""Observability configuration for Azure Monitor and OpenTelemetry.

Call ``configure_observability()`` before FastAPI is imported so HTTP and
database instrumentation is installed for every request.

PII guidance for custom spans:
- never put submitter names, e-mail or street addresses in span attributes
- never put generated grounds text or concern texts in span attributes
- provider ids, model ids, attempt numbers, engine names and job ids are fine

For production set ``ENABLE_OBSERVABILITY=true`` and
``APPLICATIONINSIGHTS_CONNECTION_STRING``; traces, metrics and logs are then
exported to Azure Monitor.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from opentelemetry import trace


logger = logging.getLogger(__name__)

_ENV_ENABLE_OBSERVABILITY = "ENABLE_OBSERVABILITY"
_ENV_APP_INSIGHTS_CONN_STRING = "APPLICATIONINSIGHTS_CONNECTION_STRING"
_ENV_OTEL_SERVICE_NAME = "OTEL_SERVICE_NAME"

_DEFAULT_SERVICE_NAME = "da-submission-manager"

# Paths to exclude from automatic tracing (reduce noise for health checks)
EXCLUDED_URLS = "health,health/,favicon.ico"


def _is_observability_enabled() -> bool:
    value = os.getenv(_ENV_ENABLE_OBSERVABILITY, "false").lower()
    return value in {"true", "1", "yes", "on"}


@lru_cache
def configure_observability() -> bool:
    """Configure OpenTelemetry with Azure Monitor.

    Returns:
        True if Azure Monitor export was configured, False otherwise.
    """
    if not _is_observability_enabled():
        logger.info(
            "Observability disabled. Set %s=true to enable Azure Monitor.",
            _ENV_ENABLE_OBSERVABILITY,
        )
        return False

    connection_string = os.getenv(_ENV_APP_INSIGHTS_CONN_STRING)
    if not connection_string:
        logger.warning(
            "Observability enabled but %s not set. Skipping Azure Monitor setup.",
            _ENV_APP_INSIGHTS_CONN_STRING,
        )
        return False

    try:
        # Optional extra: azure-monitor-opentelemetry
        from azure.monitor.opentelemetry import configure_azure_monitor
    except ImportError:
        logger.warning(
            "azure-monitor-opentelemetry package not installed. "
            "Install the 'monitor' extra to export telemetry."
        )
        return False

    service_name = os.getenv(_ENV_OTEL_SERVICE_NAME, _DEFAULT_SERVICE_NAME)
    os.environ.setdefault(_ENV_OTEL_SERVICE_NAME, service_name)
    os.environ.setdefault("OTEL_PYTHON_FASTAPI_EXCLUDED_URLS", EXCLUDED_URLS)
    configure_azure_monitor(connection_string=connection_string)
    logger.info("Azure Monitor observability configured for service '%s'", service_name)
    return True


def get_tracer(name: str) -> trace.Tracer:
    """Return an OpenTelemetry tracer.

    Without a configured SDK the OpenTelemetry API hands back a no-op tracer,
    so spans are free when observability is off.

    Example:
        tracer = get_tracer(__name__)
        with tracer.start_as_current_span("render.primary") as span:
            span.set_attribute("render.engine", "primary")
    """
    return trace.get_tracer(name)
