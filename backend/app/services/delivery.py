"""
Outbound delivery.

One Delivery capability, two interchangeable transports:

  smtp     Authenticated SMTP submission over implicit TLS, using the
           caller's own username/password. From is the caller's username.
  mailgun  Mailgun HTTP API (POST {base_url}/{domain}/messages, Basic auth
           "api:<key>", form-encoded fields). From is the explicit "from"
           field, else the caller's username, else MAILGUN_FROM.

The transport is chosen once per process by configuration presence:
MAILGUN_API_KEY and MAILGUN_DOMAIN both set selects mailgun, anything else
selects smtp. Requests never choose.

Adding a new transport:
  1. Subclass Delivery and implement _deliver().
  2. Register it in _TRANSPORTS.
  3. Teach build_delivery() when to pick it.
"""

import logging
from abc import ABC, abstractmethod
from email.header import Header
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from functools import lru_cache
from typing import List, Optional, Union

import aiosmtplib
import httpx

from app.config import Settings, get_settings
from app.errors import DeliveryError, ValidationError
from app.models.mail import AddressField, OutboundMessage, SendResult

logger = logging.getLogger(__name__)

MISSING_FIELDS_MESSAGE = "Missing required fields: to, subject"


def address_list(value: AddressField) -> List[str]:
    """Accept "a@x, b@y" or ["a@x", "b@y"] and return clean addresses."""
    if not value:
        return []
    items = value if isinstance(value, list) else value.split(",")
    return [item.strip() for item in items if item and item.strip()]


def validate_outbound(message: OutboundMessage) -> None:
    """Fail fast, before any network call, when to or subject is missing."""
    if not address_list(message.to) or not message.subject:
        raise ValidationError(MISSING_FIELDS_MESSAGE)


def _header_value(value: str) -> Union[str, Header]:
    if any(ord(c) > 127 for c in value):
        return Header(value, "utf-8")
    return value


def build_mime_message(message: OutboundMessage, sender: str) -> MIMEText | MIMEMultipart:
    """
    Build the MIME message for SMTP submission.

    Plain text only, or multipart/alternative when html is present. Bcc is
    never written to the headers.
    """
    text = message.text or ""
    if message.html:
        mime = MIMEMultipart("alternative")
        mime.attach(MIMEText(text, "plain", "utf-8"))
        mime.attach(MIMEText(message.html, "html", "utf-8"))
    else:
        mime = MIMEText(text, "plain", "utf-8")

    domain = sender.rsplit("@", 1)[-1] if "@" in sender else None

    mime["From"] = sender
    mime["To"] = ", ".join(address_list(message.to))
    cc = address_list(message.cc)
    if cc:
        mime["Cc"] = ", ".join(cc)
    mime["Subject"] = _header_value(message.subject or "")
    mime["Date"] = formatdate(localtime=True)
    mime["Message-ID"] = make_msgid(domain=domain)
    return mime


class Delivery(ABC):
    """Send a composed message through one transport."""

    name = "base"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def send(self, message: OutboundMessage) -> SendResult:
        """
        Validate and deliver a message.

        Raises:
            ValidationError: to/subject (or transport-specific input) missing.
            DeliveryError: The transport rejected or failed the delivery;
                the provider's error text is preserved in the message.
        """
        validate_outbound(message)
        return await self._deliver(message)

    @abstractmethod
    async def _deliver(self, message: OutboundMessage) -> SendResult:
        ...


class SmtpDelivery(Delivery):
    """Authenticated SMTP submission with the caller's credentials."""

    name = "smtp"

    async def _deliver(self, message: OutboundMessage) -> SendResult:
        if not message.username or not message.password:
            raise ValidationError("Missing username or password")

        mime = build_mime_message(message, sender=message.username)
        recipients = (
            address_list(message.to) + address_list(message.cc) + address_list(message.bcc)
        )

        smtp = aiosmtplib.SMTP(
            hostname=self.settings.smtp_host,
            port=self.settings.smtp_port,
            use_tls=True,
            timeout=self.settings.smtp_socket_timeout,
        )

        logger.info(f"Sending email via SMTP to {len(recipients)} recipient(s)")
        try:
            await smtp.connect(timeout=self.settings.smtp_connect_timeout)
            await smtp.login(message.username, message.password)
            await smtp.send_message(mime, recipients=recipients)
        except (aiosmtplib.SMTPException, OSError) as exc:
            detail = getattr(exc, "message", None) or str(exc)
            logger.error(f"SMTP delivery failed: {detail}")
            raise DeliveryError(detail) from exc
        finally:
            if smtp.is_connected:
                try:
                    await smtp.quit()
                except Exception as e:
                    logger.warning(f"Error during SMTP disconnect: {e}")

        message_id = mime["Message-ID"]
        logger.info(f"Email sent successfully: {message_id}")
        return SendResult(message_id=message_id)


class MailgunDelivery(Delivery):
    """Delivery through the Mailgun HTTP API with a process-wide key."""

    name = "mailgun"

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(settings)
        self._transport = transport

    @property
    def endpoint(self) -> str:
        base = self.settings.mailgun_base_url.rstrip("/")
        return f"{base}/{self.settings.mailgun_domain}/messages"

    def _form(self, message: OutboundMessage) -> dict:
        sender = message.from_ or message.username or self.settings.mailgun_from
        if not sender:
            raise ValidationError("Missing sender address")

        form = {
            "from": sender,
            "to": ", ".join(address_list(message.to)),
            "subject": message.subject,
        }
        if message.text or not message.html:
            form["text"] = message.text or ""
        if message.html:
            form["html"] = message.html
        cc = address_list(message.cc)
        if cc:
            form["cc"] = ", ".join(cc)
        bcc = address_list(message.bcc)
        if bcc:
            form["bcc"] = ", ".join(bcc)
        return form

    async def _deliver(self, message: OutboundMessage) -> SendResult:
        form = self._form(message)
        timeout = httpx.Timeout(self.settings.mailgun_timeout)

        logger.info(f"Sending email via Mailgun domain {self.settings.mailgun_domain}")
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                response = await client.post(
                    self.endpoint,
                    auth=("api", self.settings.mailgun_api_key or ""),
                    data=form,
                )
        except httpx.HTTPError as exc:
            logger.error(f"Mailgun request failed: {exc}")
            raise DeliveryError(f"Mailgun request failed: {exc}") from exc

        if not response.is_success:
            logger.error(f"Mailgun rejected message ({response.status_code}): {response.text}")
            raise DeliveryError(response.text or f"Mailgun error {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        message_id = body.get("id") if isinstance(body, dict) else None
        logger.info(f"Email sent successfully: {message_id}")
        return SendResult(message_id=message_id)


# ---------------------------------------------------------------------------
# Registry and selection
# ---------------------------------------------------------------------------

_TRANSPORTS: dict[str, type[Delivery]] = {
    "smtp": SmtpDelivery,
    "mailgun": MailgunDelivery,
}


def build_delivery(settings: Settings) -> Delivery:
    """Pick the transport for this process from configuration presence."""
    name = "mailgun" if settings.uses_http_delivery else "smtp"
    return _TRANSPORTS[name](settings)


@lru_cache
def get_delivery() -> Delivery:
    """Process-wide Delivery, built on first use."""
    return build_delivery(get_settings())
