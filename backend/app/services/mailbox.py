"""
Mailbox operations, one IMAP session per call.

Each function opens a session, runs its operation chain
(select -> locate -> fetch), releases the session and then normalizes what
was fetched. These are the entry points used by the HTTP routers and the
/mcp dispatcher.
"""

import logging
from typing import List, Optional

from app.config import Settings
from app.errors import MailboxError, NotFoundError, ParseError
from app.models.mail import (
    Credentials,
    MailboxNode,
    MessageDetail,
    MessageListing,
    RawMessage,
    SearchFilters,
)
from app.services.assembler import assemble, normalize_batch
from app.services.imap_session import open_session
from app.services.locator import locate_matching, locate_recent
from app.services.mailbox_tree import flatten
from app.services.normalizer import DetailLevel, normalize

logger = logging.getLogger(__name__)

DEFAULT_MAILBOX = "INBOX"
DEFAULT_RECENT_LIMIT = 20
DEFAULT_SEARCH_LIMIT = 50
MAX_LIMIT = 500


def _pick_requested(raw_messages: List[RawMessage], uid: int) -> Optional[RawMessage]:
    """
    Return the fetched record for `uid`, ignoring unsolicited FETCH updates
    (flag changes for other messages) that share the response.

    A record without a UID only counts when it carries a body.
    """
    for raw in raw_messages:
        if raw.uid == uid:
            return raw
    for raw in raw_messages:
        if raw.uid is None and raw.buffer:
            return raw.model_copy(update={"uid": uid})
    return None


async def list_mailboxes(settings: Settings, credentials: Credentials) -> List[MailboxNode]:
    """Return every folder of the account, flattened depth-first."""
    async with open_session(settings, credentials) as session:
        tree = await session.list_folder_tree()
    return flatten(tree)


async def get_recent_emails(
    settings: Settings,
    credentials: Credentials,
    mailbox: str = DEFAULT_MAILBOX,
    limit: int = DEFAULT_RECENT_LIMIT,
) -> MessageListing:
    """
    Return up to `limit` recent messages of a folder, newest first.

    total is the folder's message count, returned the number of messages
    that survived normalization.
    """
    async with open_session(settings, credentials) as session:
        status = await session.select_folder(mailbox)
        if status.total == 0:
            return MessageListing(mailbox=mailbox)

        selection = await locate_recent(
            session, status, limit, window_days=settings.recent_window_days
        )
        raw_messages = await session.fetch(selection.identifiers, by_uid=selection.by_uid)

    emails = assemble(normalize_batch(raw_messages), limit)
    return MessageListing(
        mailbox=mailbox,
        emails=emails,
        total=status.total,
        returned=len(emails),
    )


async def get_email(
    settings: Settings,
    credentials: Credentials,
    uid: int,
    mailbox: str = DEFAULT_MAILBOX,
) -> MessageDetail:
    """
    Return one message in full detail.

    Raises:
        NotFoundError: No message with that UID in the folder.
        MailboxError: The message exists but could not be parsed.
    """
    async with open_session(settings, credentials) as session:
        await session.select_folder(mailbox)
        raw_messages = await session.fetch([uid])

    raw = _pick_requested(raw_messages, uid)
    if raw is None:
        raise NotFoundError("Email not found")

    try:
        return normalize(raw, DetailLevel.FULL)
    except ParseError as exc:
        logger.warning(f"Could not parse message UID {uid}: {exc}")
        raise MailboxError(f"Email {uid} could not be parsed") from exc


async def search_emails(
    settings: Settings,
    credentials: Credentials,
    filters: Optional[SearchFilters] = None,
    mailbox: str = DEFAULT_MAILBOX,
    limit: int = DEFAULT_SEARCH_LIMIT,
) -> MessageListing:
    """
    Search a folder and return up to `limit` matches, newest first.

    total is the number of UIDs the server matched before truncation.
    """
    async with open_session(settings, credentials) as session:
        await session.select_folder(mailbox)
        selection = await locate_matching(session, filters, limit)
        if not selection.identifiers:
            return MessageListing(mailbox=mailbox)
        raw_messages = await session.fetch(selection.identifiers)

    emails = assemble(normalize_batch(raw_messages), limit)
    return MessageListing(
        mailbox=mailbox,
        emails=emails,
        total=selection.matched,
        returned=len(emails),
    )
