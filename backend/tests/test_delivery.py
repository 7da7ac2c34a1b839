"""
Tests for outbound delivery: validation, MIME construction, the SMTP and
Mailgun transports, and transport selection.

SMTP is exercised against a patched aiosmtplib.SMTP; Mailgun against an
httpx.MockTransport. Nothing touches the network.
"""

import base64
from urllib.parse import parse_qs

import aiosmtplib
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from app.config import Settings
from app.errors import DeliveryError, ValidationError
from app.models.mail import OutboundMessage
from app.services.delivery import (
    MISSING_FIELDS_MESSAGE,
    MailgunDelivery,
    SmtpDelivery,
    address_list,
    build_delivery,
    build_mime_message,
)

SMTP_CLASS = "app.services.delivery.aiosmtplib.SMTP"

MAILGUN_SETTINGS = Settings(
    mailgun_api_key="key-123",
    mailgun_domain="mg.example.com",
    mailgun_from="bridge@mg.example.com",
)


def _make_message(**overrides) -> OutboundMessage:
    fields = {
        "username": "me@icloud.com",
        "password": "app-password",
        "to": "bob@example.com",
        "subject": "Hello",
        "text": "Hi Bob",
    }
    fields.update(overrides)
    return OutboundMessage(**fields)


def _make_smtp() -> MagicMock:
    smtp = MagicMock()
    smtp.connect = AsyncMock()
    smtp.login = AsyncMock()
    smtp.send_message = AsyncMock(return_value=({}, "OK"))
    smtp.quit = AsyncMock()
    smtp.is_connected = True
    return smtp


def _mailgun(handler) -> MailgunDelivery:
    return MailgunDelivery(MAILGUN_SETTINGS, transport=httpx.MockTransport(handler))


class TestAddressList:
    def test_comma_separated_string(self):
        assert address_list("a@x.com, b@y.com") == ["a@x.com", "b@y.com"]

    def test_list(self):
        assert address_list(["a@x.com", " b@y.com "]) == ["a@x.com", "b@y.com"]

    def test_empty(self):
        assert address_list(None) == []
        assert address_list("") == []
        assert address_list(" , ") == []


class TestBuildMimeMessage:
    """Test MIME construction for SMTP submission."""

    def test_plain_text(self):
        mime = build_mime_message(_make_message(), sender="me@icloud.com")

        assert mime.get_content_type() == "text/plain"
        assert mime["From"] == "me@icloud.com"
        assert mime["To"] == "bob@example.com"
        assert mime["Subject"] == "Hello"
        assert mime["Message-ID"].endswith("@icloud.com>")

    def test_html_makes_alternative(self):
        mime = build_mime_message(_make_message(html="<p>Hi</p>"), sender="me@icloud.com")

        assert mime.get_content_type() == "multipart/alternative"
        assert [p.get_content_type() for p in mime.get_payload()] == ["text/plain", "text/html"]

    def test_cc_header_and_no_bcc_header(self):
        """Bcc recipients never appear in the headers."""
        mime = build_mime_message(
            _make_message(cc=["carol@example.com"], bcc="secret@example.com"),
            sender="me@icloud.com",
        )

        assert mime["Cc"] == "carol@example.com"
        assert mime["Bcc"] is None
        assert "secret@example.com" not in mime.as_string()


class TestSmtpDelivery:
    """Test the SMTP transport."""

    @pytest.mark.asyncio
    async def test_missing_fields_fail_before_network(self):
        """No to/subject is rejected without opening a connection."""
        with patch(SMTP_CLASS) as smtp_cls:
            with pytest.raises(ValidationError) as exc_info:
                await SmtpDelivery(Settings()).send(_make_message(to=None))

        assert exc_info.value.message == MISSING_FIELDS_MESSAGE
        assert exc_info.value.status_code == 400
        smtp_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_subject(self):
        with patch(SMTP_CLASS) as smtp_cls:
            with pytest.raises(ValidationError):
                await SmtpDelivery(Settings()).send(_make_message(subject=""))

        smtp_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with patch(SMTP_CLASS) as smtp_cls:
            with pytest.raises(ValidationError) as exc_info:
                await SmtpDelivery(Settings()).send(_make_message(password=None))

        assert exc_info.value.message == "Missing username or password"
        smtp_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_sends_to_all_recipients(self):
        """To, Cc and Bcc all become envelope recipients."""
        smtp = _make_smtp()
        with patch(SMTP_CLASS, return_value=smtp) as smtp_cls:
            result = await SmtpDelivery(Settings()).send(
                _make_message(to="bob@example.com", cc="carol@example.com", bcc=["dave@example.com"])
            )

        smtp_cls.assert_called_once_with(
            hostname="smtp.mail.me.com", port=465, use_tls=True, timeout=60.0
        )
        smtp.connect.assert_awaited_once_with(timeout=30.0)
        smtp.login.assert_awaited_once_with("me@icloud.com", "app-password")
        _, kwargs = smtp.send_message.call_args
        assert kwargs["recipients"] == ["bob@example.com", "carol@example.com", "dave@example.com"]
        smtp.quit.assert_awaited_once()
        assert result.message_id.startswith("<")

    @pytest.mark.asyncio
    async def test_rejected_login(self):
        """Server rejection text is preserved in DeliveryError."""
        smtp = _make_smtp()
        smtp.login = AsyncMock(
            side_effect=aiosmtplib.SMTPAuthenticationError(535, "5.7.8 Authentication failed")
        )
        with patch(SMTP_CLASS, return_value=smtp):
            with pytest.raises(DeliveryError) as exc_info:
                await SmtpDelivery(Settings()).send(_make_message())

        assert exc_info.value.message == "5.7.8 Authentication failed"
        assert exc_info.value.status_code == 500
        smtp.send_message.assert_not_called()
        smtp.quit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        smtp = _make_smtp()
        smtp.connect = AsyncMock(side_effect=ConnectionRefusedError("refused"))
        smtp.is_connected = False
        with patch(SMTP_CLASS, return_value=smtp):
            with pytest.raises(DeliveryError):
                await SmtpDelivery(Settings()).send(_make_message())

        smtp.quit.assert_not_called()


class TestMailgunDelivery:
    """Test the HTTP provider transport."""

    @pytest.mark.asyncio
    async def test_posts_form_with_basic_auth(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(200, json={"id": "<20260301.1@mg.example.com>", "message": "Queued"})

        result = await _mailgun(handler).send(
            _make_message(**{"from": "me@example.com", "html": "<p>Hi</p>", "bcc": "x@example.com"})
        )

        request = captured["request"]
        assert request.method == "POST"
        assert str(request.url) == "https://api.mailgun.net/v3/mg.example.com/messages"
        expected = "Basic " + base64.b64encode(b"api:key-123").decode()
        assert request.headers["Authorization"] == expected

        form = parse_qs(request.content.decode())
        assert form["from"] == ["me@example.com"]
        assert form["to"] == ["bob@example.com"]
        assert form["subject"] == ["Hello"]
        assert form["text"] == ["Hi Bob"]
        assert form["html"] == ["<p>Hi</p>"]
        assert form["bcc"] == ["x@example.com"]
        assert result.message_id == "<20260301.1@mg.example.com>"

    @pytest.mark.asyncio
    async def test_sender_falls_back_to_username(self):
        captured = {}

        def handler(request):
            captured["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"id": "<1@mg>"})

        await _mailgun(handler).send(_make_message())

        assert captured["form"]["from"] == ["me@icloud.com"]

    @pytest.mark.asyncio
    async def test_sender_falls_back_to_configured_address(self):
        captured = {}

        def handler(request):
            captured["form"] = parse_qs(request.content.decode())
            return httpx.Response(200, json={"id": "<1@mg>"})

        await _mailgun(handler).send(_make_message(username=None, password=None))

        assert captured["form"]["from"] == ["bridge@mg.example.com"]

    @pytest.mark.asyncio
    async def test_provider_error_preserved(self):
        """The provider's error body becomes the DeliveryError message."""
        def handler(request):
            return httpx.Response(400, text="'to' parameter is not a valid address")

        with pytest.raises(DeliveryError) as exc_info:
            await _mailgun(handler).send(_make_message())

        assert exc_info.value.message == "'to' parameter is not a valid address"

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(DeliveryError) as exc_info:
            await _mailgun(handler).send(_make_message())

        assert "connection refused" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_validation_before_request(self):
        handler = MagicMock()

        with pytest.raises(ValidationError):
            await _mailgun(handler).send(_make_message(to=[]))

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_uses_provider_timeout(self):
        """Requests carry MAILGUN_TIMEOUT, not the SMTP timeouts."""
        captured = {}

        def handler(request):
            captured["timeout"] = request.extensions["timeout"]
            return httpx.Response(200, json={"id": "<1@mg>"})

        settings = MAILGUN_SETTINGS.model_copy(
            update={"mailgun_timeout": 7.5, "smtp_socket_timeout": 99.0, "smtp_connect_timeout": 99.0}
        )
        delivery = MailgunDelivery(settings, transport=httpx.MockTransport(handler))

        await delivery.send(_make_message())

        assert captured["timeout"] == {"connect": 7.5, "read": 7.5, "write": 7.5, "pool": 7.5}


class TestBuildDelivery:
    """Test transport selection by configuration presence."""

    def test_defaults_to_smtp(self):
        assert isinstance(build_delivery(Settings()), SmtpDelivery)

    def test_mailgun_when_key_and_domain(self):
        delivery = build_delivery(MAILGUN_SETTINGS)
        assert isinstance(delivery, MailgunDelivery)
        assert delivery.name == "mailgun"

    def test_key_without_domain_stays_smtp(self):
        assert isinstance(build_delivery(Settings(mailgun_api_key="key-123")), SmtpDelivery)
