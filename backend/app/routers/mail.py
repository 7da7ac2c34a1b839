"""
Mailbox and delivery endpoints.

Endpoints:
  GET  /mailboxes     flattened folder list
  GET  /emails        recent messages of a folder
  GET  /email/{uid}   one message in full detail
  GET  /search        criteria search
  POST /send          deliver a message through the configured transport

Every GET endpoint takes username/password in the query string and opens
its own IMAP session; nothing is shared between requests.
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.auth import get_credentials
from app.config import Settings, get_settings
from app.errors import MailBridgeError, to_http_exception
from app.models.mail import Credentials, OutboundMessage, SearchFilters
from app.services import mailbox as mailbox_service
from app.services.delivery import Delivery, get_delivery

logger = logging.getLogger(__name__)

router = APIRouter()


def _fail(action: str, exc: MailBridgeError) -> HTTPException:
    if exc.status_code >= 500:
        logger.error(f"{action} error: {exc.message}")
    else:
        logger.info(f"{action} rejected: {exc.message}")
    return to_http_exception(exc)


@router.get("/mailboxes")
async def get_mailboxes(
    credentials: Credentials = Depends(get_credentials),
    settings: Settings = Depends(get_settings),
):
    """List every folder of the account, flattened depth-first."""
    try:
        mailboxes = await mailbox_service.list_mailboxes(settings, credentials)
    except MailBridgeError as exc:
        raise _fail("Mailbox", exc) from exc

    return {
        "success": True,
        "mailboxes": [m.model_dump(by_alias=True) for m in mailboxes],
        "count": len(mailboxes),
    }


@router.get("/emails")
async def get_emails(
    mailbox: str = Query(mailbox_service.DEFAULT_MAILBOX),
    limit: int = Query(mailbox_service.DEFAULT_RECENT_LIMIT, ge=1, le=mailbox_service.MAX_LIMIT),
    credentials: Credentials = Depends(get_credentials),
    settings: Settings = Depends(get_settings),
):
    """
    Return the most recent messages of a folder, newest first.

    Messages from the last 30 days are preferred; folders with no recent
    mail fall back to their last `limit` messages.
    """
    try:
        listing = await mailbox_service.get_recent_emails(
            settings, credentials, mailbox=mailbox, limit=limit
        )
    except MailBridgeError as exc:
        raise _fail("Email fetch", exc) from exc

    return {"success": True, **listing.model_dump(by_alias=True, mode="json")}


@router.get("/email/{uid}")
async def get_email(
    uid: int,
    mailbox: str = Query(mailbox_service.DEFAULT_MAILBOX),
    credentials: Credentials = Depends(get_credentials),
    settings: Settings = Depends(get_settings),
):
    """Return one message with full bodies, cc and attachment metadata."""
    try:
        email = await mailbox_service.get_email(settings, credentials, uid, mailbox=mailbox)
    except MailBridgeError as exc:
        raise _fail("Email fetch", exc) from exc

    return {"success": True, "email": email.model_dump(by_alias=True, mode="json")}


@router.get("/search")
async def search(
    mailbox: str = Query(mailbox_service.DEFAULT_MAILBOX),
    query: Optional[str] = Query(None),
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = Query(None),
    subject: Optional[str] = Query(None),
    since: Optional[date] = Query(None),
    before: Optional[date] = Query(None),
    limit: int = Query(mailbox_service.DEFAULT_SEARCH_LIMIT, ge=1, le=mailbox_service.MAX_LIMIT),
    credentials: Credentials = Depends(get_credentials),
    settings: Settings = Depends(get_settings),
):
    """Search a folder; all supplied filters must match."""
    filters = SearchFilters(
        query=query,
        from_address=from_,
        to_address=to,
        subject=subject,
        since=since,
        before=before,
    )
    try:
        listing = await mailbox_service.search_emails(
            settings, credentials, filters, mailbox=mailbox, limit=limit
        )
    except MailBridgeError as exc:
        raise _fail("Search", exc) from exc

    payload = listing.model_dump(by_alias=True, mode="json")
    payload.pop("mailbox", None)
    return {"success": True, **payload}


@router.post("/send")
async def send(
    message: OutboundMessage,
    delivery: Delivery = Depends(get_delivery),
):
    """
    Deliver a message.

    to and subject are required. With SMTP delivery the caller's
    username/password authenticate the submission; with the HTTP provider
    the sender is "from", else username, else the configured fallback.
    """
    try:
        result = await delivery.send(message)
    except MailBridgeError as exc:
        raise _fail("Send", exc) from exc

    return {
        "success": True,
        "messageId": result.message_id,
        "message": "Email sent successfully",
    }
