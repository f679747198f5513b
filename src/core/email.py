"""Mail transport over Azure Communication Services.

The Azure SDK is synchronous, so each send runs in a worker thread with a
hard timeout. Failures are classified for the delivery queue:
``MailTransientError`` is retried with backoff, ``MailPermanentError`` fails
the job at once.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from azure.communication.email import EmailClient
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ServiceRequestError,
    ServiceResponseError,
)

from core.config import Settings
from schemas.delivery import Attachment


_logger = logging.getLogger(__name__)

_TRANSIENT_STATUS = {408, 429}


class MailTransportError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MailTransientError(MailTransportError):
    """Timeouts, throttling and 5xx; worth trying again later."""


class MailPermanentError(MailTransportError):
    """Rejected outright (bad address, auth, other 4xx, transport disabled)."""


@dataclass(slots=True)
class EmailMessage:
    to: list[str]
    sender: str
    subject: str
    text: str
    html: str | None = None
    reply_to: str | None = None
    cc: list[str] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)


class MailTransport(Protocol):
    async def send(self, message: EmailMessage) -> str:
        """Send ``message`` and return the provider message id."""
        ...


def build_azure_payload(message: EmailMessage) -> dict[str, Any]:
    """Translate an ``EmailMessage`` into the ACS ``begin_send`` payload."""
    recipients: dict[str, Any] = {"to": [{"address": addr} for addr in message.to]}
    if message.cc:
        recipients["cc"] = [{"address": addr} for addr in message.cc]

    content: dict[str, Any] = {"subject": message.subject, "plainText": message.text}
    if message.html:
        content["html"] = message.html

    payload: dict[str, Any] = {
        "senderAddress": message.sender,
        "recipients": recipients,
        "content": content,
    }
    if message.reply_to:
        payload["replyTo"] = [{"address": message.reply_to}]
    if message.attachments:
        payload["attachments"] = [
            {
                "name": a.filename,
                "contentType": a.content_type,
                "contentInBase64": base64.b64encode(a.content).decode("ascii"),
            }
            for a in message.attachments
        ]
    return payload


class AzureEmailTransport:
    def __init__(
        self,
        connection_string: str | None = None,
        *,
        timeout_seconds: float = 30.0,
        client: EmailClient | None = None,
    ) -> None:
        if client is None:
            if not connection_string:
                raise ValueError("An ACS connection string or client is required")
            client = EmailClient.from_connection_string(connection_string)
        self._client = client
        self._timeout = timeout_seconds

    def _send_sync(self, payload: dict[str, Any]) -> str:
        poller = self._client.begin_send(payload)
        result = poller.result()
        status = str(result.get("status", "Succeeded"))
        if status.lower() != "succeeded":
            error = result.get("error") or {}
            raise MailTransientError(
                f"Send finished with status {status}: {error.get('message', 'unknown error')}"
            )
        return str(result.get("id", "unknown"))

    async def send(self, message: EmailMessage) -> str:
        payload = build_azure_payload(message)
        try:
            message_id = await asyncio.wait_for(
                asyncio.to_thread(self._send_sync, payload), timeout=self._timeout
            )
        except TimeoutError as err:
            raise MailTransientError(f"Send timed out after {self._timeout}s") from err
        except ClientAuthenticationError as err:
            raise MailPermanentError(f"Authentication failed: {err.message}") from err
        except HttpResponseError as err:
            status = err.status_code or 0
            _logger.warning("ACS send rejected (Status: %s): %s", status, err.message)
            if status >= 500 or status in _TRANSIENT_STATUS:
                raise MailTransientError(f"HTTP {status}: {err.message}") from err
            raise MailPermanentError(f"HTTP {status}: {err.message}") from err
        except (ServiceRequestError, ServiceResponseError) as err:
            raise MailTransientError(f"Network error: {err.message}") from err

        _logger.info("Email sent. Message ID: %s", message_id)
        return message_id


class DisabledTransport:
    """Used when no mail provider is configured; every send fails permanently."""

    async def send(self, message: EmailMessage) -> str:
        _logger.warning(
            "Email delivery is disabled. Message '%s' not sent.", message.subject
        )
        raise MailPermanentError("Email delivery is disabled")


def build_transport(settings: Settings) -> MailTransport:
    if settings.EMAIL_PROVIDER == "azure" and settings.AZURE_COMMUNICATION_CONNECTION_STRING:
        return AzureEmailTransport(
            settings.AZURE_COMMUNICATION_CONNECTION_STRING,
            timeout_seconds=settings.EMAIL_SEND_TIMEOUT_SECONDS,
        )
    _logger.warning(
        "AZURE_COMMUNICATION_CONNECTION_STRING is not configured. "
        "Email sending is disabled."
    )
    return DisabledTransport()
