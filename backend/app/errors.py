"""
Error taxonomy for the bridge.

Every error carries the HTTP status the routers should answer with. The
message is the user-visible `error` string, so it must never contain
credentials.
"""

from fastapi import HTTPException


class MailBridgeError(Exception):
    """Base class for all bridge errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MailBridgeError):
    """Missing or malformed caller input."""

    status_code = 400


class AuthenticationError(MailBridgeError):
    """The IMAP server rejected the supplied credentials."""


class MailboxConnectionError(MailBridgeError):
    """The IMAP server could not be reached (socket, TLS or timeout)."""


class MailboxError(MailBridgeError):
    """A protocol command failed after the session was established."""


class FolderNotFoundError(MailBridgeError):
    """The requested folder does not exist or cannot be selected."""

    status_code = 404


class NotFoundError(MailBridgeError):
    """The requested message identifier is not present in the folder."""

    status_code = 404


class ParseError(MailBridgeError):
    """A single message could not be normalized. Never surfaced to callers."""


class DeliveryError(MailBridgeError):
    """The outbound transport rejected or failed to deliver a message."""


def to_http_exception(exc: MailBridgeError) -> HTTPException:
    """Translate a bridge error into the HTTPException a router raises."""
    return HTTPException(status_code=exc.status_code, detail=exc.message)
