"""Tests for the Azure Communication Services mail transport."""

from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import ClientAuthenticationError, HttpResponseError, ServiceRequestError

from core.config import Settings
from core.email import (
    AzureEmailTransport,
    DisabledTransport,
    EmailMessage,
    MailPermanentError,
    MailTransientError,
    build_azure_payload,
    build_transport,
)
from schemas.delivery import Attachment


def _message(**kwargs) -> EmailMessage:
    defaults = {
        "to": ["mail@council.example.gov.au"],
        "sender": "noreply@example.org",
        "subject": "Objection to Development Application COM/2025/271",
        "text": "Please find my submission attached.",
    }
    defaults.update(kwargs)
    return EmailMessage(**defaults)


def _client(result=None, error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.begin_send.side_effect = error
    else:
        poller = MagicMock()
        poller.result.return_value = result or {"id": "acs-1", "status": "Succeeded"}
        client.begin_send.return_value = poller
    return client


def _http_error(status: int) -> HttpResponseError:
    error = HttpResponseError(message=f"status {status}")
    error.status_code = status
    return error


class TestBuildAzurePayload:
    def test_minimal_message(self) -> None:
        payload = build_azure_payload(_message())

        assert payload == {
            "senderAddress": "noreply@example.org",
            "recipients": {"to": [{"address": "mail@council.example.gov.au"}]},
            "content": {
                "subject": "Objection to Development Application COM/2025/271",
                "plainText": "Please find my submission attached.",
            },
        }

    def test_full_message(self) -> None:
        payload = build_azure_payload(
            _message(
                html="<p>Attached.</p>",
                cc=["jordan@example.com"],
                reply_to="jordan@example.com",
                attachments=[Attachment(filename="objection.pdf", content=b"%PDF")],
            )
        )

        assert payload["recipients"]["cc"] == [{"address": "jordan@example.com"}]
        assert payload["replyTo"] == [{"address": "jordan@example.com"}]
        assert payload["content"]["html"] == "<p>Attached.</p>"
        assert payload["attachments"] == [
            {"name": "objection.pdf", "contentType": "application/pdf", "contentInBase64": "JVBERg=="}
        ]


class TestAzureEmailTransport:
    """Vendor errors are classified as transient or permanent."""

    @pytest.mark.asyncio
    async def test_success_returns_message_id(self) -> None:
        client = _client()
        transport = AzureEmailTransport(client=client)

        assert await transport.send(_message()) == "acs-1"
        client.begin_send.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_status_is_transient(self) -> None:
        transport = AzureEmailTransport(
            client=_client({"id": "x", "status": "Failed", "error": {"message": "busy"}})
        )
        with pytest.raises(MailTransientError, match="busy"):
            await transport.send(_message())

    @pytest.mark.asyncio
    async def test_auth_error_is_permanent(self) -> None:
        transport = AzureEmailTransport(client=_client(error=ClientAuthenticationError("bad key")))
        with pytest.raises(MailPermanentError):
            await transport.send(_message())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_throttling_and_server_errors_are_transient(self, status: int) -> None:
        transport = AzureEmailTransport(client=_client(error=_http_error(status)))
        with pytest.raises(MailTransientError):
            await transport.send(_message())

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 404])
    async def test_client_errors_are_permanent(self, status: int) -> None:
        transport = AzureEmailTransport(client=_client(error=_http_error(status)))
        with pytest.raises(MailPermanentError):
            await transport.send(_message())

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self) -> None:
        transport = AzureEmailTransport(client=_client(error=ServiceRequestError("reset")))
        with pytest.raises(MailTransientError):
            await transport.send(_message())

    def test_requires_connection_string_or_client(self) -> None:
        with pytest.raises(ValueError):
            AzureEmailTransport()


class TestBuildTransport:
    @pytest.mark.asyncio
    async def test_disabled_without_connection_string(self) -> None:
        transport = build_transport(Settings(EMAIL_PROVIDER="azure"))

        assert isinstance(transport, DisabledTransport)
        with pytest.raises(MailPermanentError):
            await transport.send(_message())

    def test_azure_with_connection_string(self) -> None:
        settings = Settings(
            EMAIL_PROVIDER="azure",
            AZURE_COMMUNICATION_CONNECTION_STRING="endpoint=https://x/;accesskey=abc",
        )
        with patch("core.email.EmailClient") as mock_client:
            transport = build_transport(settings)

        assert isinstance(transport, AzureEmailTransport)
        mock_client.from_connection_string.assert_called_once_with(
            "endpoint=https://x/;accesskey=abc"
        )
