"""
Message normalization.

Turns the raw RFC 822 bytes of a fetched message into the records the API
returns:

  SUMMARY  uid, date, from, to, subject, preview, hasAttachments, flags
  FULL     summary fields plus cc, full text/html bodies and attachment
           metadata (filename, contentType, size)

The preview is the plain-text body cut at 200 characters, or the raw HTML
cut at 200 characters when there is no text part (markup is not stripped),
or "" when the message has neither.

Any failure raises ParseError. Callers working on a batch skip the message
and carry on; see app.services.assembler.normalize_batch.
"""

import logging
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import List, Optional, Union

from app.errors import ParseError
from app.models.mail import AttachmentMeta, MessageDetail, NormalizedMessage, RawMessage

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200
DEFAULT_SUBJECT = "(No Subject)"
DEFAULT_FROM = "Unknown"

_BODY_TYPES = ("text/plain", "text/html")


class DetailLevel(str, Enum):
    SUMMARY = "summary"
    FULL = "full"


def make_preview(text: str, html: str) -> str:
    """First PREVIEW_LENGTH characters of text, else of html, else ""."""
    if text:
        return text[:PREVIEW_LENGTH]
    if html:
        return html[:PREVIEW_LENGTH]
    return ""


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a Date header. Dates without a zone are taken as UTC so that every
    returned datetime is comparable. Returns None when missing or invalid.
    """
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _header(msg: EmailMessage, name: str) -> str:
    value = msg.get(name)
    return str(value).strip() if value is not None else ""


def _raw_header(msg: EmailMessage, name: str) -> str:
    # Unparsed value, so a malformed header cannot fail the whole message
    for key, value in msg.raw_items():
        if key.lower() == name:
            return str(value).strip()
    return ""


def _decode_part(part: EmailMessage) -> str:
    """Decode a leaf part to str using its declared charset."""
    payload = part.get_payload(decode=True)
    if isinstance(payload, bytes):
        charset = part.get_content_charset() or "utf-8"
        try:
            return payload.decode(charset, errors="replace")
        except LookupError:
            return payload.decode("utf-8", errors="replace")
    return str(payload) if payload else ""


def _attachment_meta(part: EmailMessage) -> AttachmentMeta:
    payload = part.get_payload(decode=True)
    return AttachmentMeta(
        filename=part.get_filename(),
        content_type=part.get_content_type(),
        size=len(payload) if isinstance(payload, bytes) else 0,
    )


def _walk_parts(msg: EmailMessage):
    """Return (text, html, attachments) for a parsed message."""
    text = ""
    html = ""
    attachments: List[AttachmentMeta] = []

    for part in msg.walk():
        if part.is_multipart():
            continue

        content_type = part.get_content_type()
        disposition = part.get_content_disposition()

        if disposition == "attachment" or content_type not in _BODY_TYPES:
            attachments.append(_attachment_meta(part))
        elif content_type == "text/plain" and not text:
            text = _decode_part(part)
        elif content_type == "text/html" and not html:
            html = _decode_part(part)

    return text, html, attachments


def parse_message(buffer: bytes) -> EmailMessage:
    """
    Parse raw bytes into an EmailMessage.

    Raises:
        ParseError: Empty input, or input without a single header field.
    """
    if not buffer or not buffer.strip():
        raise ParseError("Empty message")

    msg = BytesParser(policy=policy.default).parsebytes(buffer)
    if not msg.keys():
        raise ParseError("No header fields found")
    return msg


def normalize(
    raw: RawMessage,
    detail: DetailLevel = DetailLevel.SUMMARY,
) -> Union[NormalizedMessage, MessageDetail]:
    """
    Normalize one raw message.

    Args:
        raw: Fetched message bytes plus UID and flags.
        detail: SUMMARY for listings and search, FULL for single retrieval.

    Raises:
        ParseError: If the message cannot be parsed.
    """
    try:
        msg = parse_message(raw.buffer)
        text, html, attachments = _walk_parts(msg)

        fields = dict(
            uid=raw.uid,
            date=parse_date(_raw_header(msg, "date")),
            from_=_header(msg, "from") or DEFAULT_FROM,
            to=_header(msg, "to"),
            subject=_header(msg, "subject") or DEFAULT_SUBJECT,
            preview=make_preview(text, html),
            has_attachments=bool(attachments),
            flags=list(raw.flags),
        )

        if detail == DetailLevel.FULL:
            return MessageDetail(
                **fields,
                cc=_header(msg, "cc"),
                text=text,
                html=html,
                attachments=attachments,
            )
        return NormalizedMessage(**fields)

    except ParseError:
        raise
    except Exception as exc:
        raise ParseError(f"Could not parse message {raw.uid}: {exc}") from exc
