"""
Message selection.

Two intents decide which identifiers a request fetches:

Recency ("latest N")
    UID SEARCH SINCE <today - window> and keep the last N UIDs. UIDs grow
    with arrival order on most servers, so the tail of the result is taken as
    "most recent". This is an approximation: after a folder is renumbered the
    tail is not guaranteed to hold the newest mail.

    A folder with no mail inside the window would return nothing, so in that
    case the last N sequence positions are used instead
    (max(1, total - N + 1) .. total) and fetched by sequence number.

Criteria ("search")
    Caller filters become IMAP SEARCH keys, implicitly ANDed by the server.
    No filters means ALL. The last N UIDs are kept, which biases toward recent
    mail; it is not a relevance ranking.
"""

import logging
from datetime import date, timedelta
from typing import List, Optional

from app.models.mail import FolderStatus, MessageSelection, SearchFilters

logger = logging.getLogger(__name__)

RECENT_WINDOW_DAYS = 30

_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def imap_date(value: date) -> str:
    """Format a date as an IMAP search date, e.g. 05-Mar-2026."""
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year:04d}"


def quote_value(value: str) -> str:
    """Quote a free-text SEARCH argument."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_search_criteria(filters: Optional[SearchFilters]) -> List[str]:
    """
    Translate search filters into IMAP SEARCH tokens.

    Returns ["ALL"] when no filter is set.
    """
    criteria: List[str] = []
    if filters is not None:
        if filters.query:
            criteria.extend(["TEXT", quote_value(filters.query)])
        if filters.from_address:
            criteria.extend(["FROM", quote_value(filters.from_address)])
        if filters.to_address:
            criteria.extend(["TO", quote_value(filters.to_address)])
        if filters.subject:
            criteria.extend(["SUBJECT", quote_value(filters.subject)])
        if filters.since:
            criteria.extend(["SINCE", imap_date(filters.since)])
        if filters.before:
            criteria.extend(["BEFORE", imap_date(filters.before)])

    if not criteria:
        criteria = ["ALL"]

    return criteria


def sequence_tail(total: int, limit: int) -> List[int]:
    """The last `limit` sequence positions of a folder holding `total` messages."""
    if total <= 0 or limit <= 0:
        return []
    start = max(1, total - limit + 1)
    return list(range(start, total + 1))


async def locate_recent(
    session,
    status: FolderStatus,
    limit: int,
    window_days: int = RECENT_WINDOW_DAYS,
    today: Optional[date] = None,
) -> MessageSelection:
    """
    Choose the identifiers for a "latest N messages" request.

    Args:
        session: MailboxSession with the folder already selected.
        status: The FolderStatus returned by that selection.
        limit: Maximum number of identifiers to return.
        window_days: Lookback window for the SINCE search.
        today: Reference date, defaults to date.today().
    """
    if status.total == 0:
        return MessageSelection()

    since = (today or date.today()) - timedelta(days=window_days)
    uids = await session.search(["SINCE", imap_date(since)])
    recent = uids[-limit:] if uids else []

    if recent:
        return MessageSelection(identifiers=recent, by_uid=True, matched=len(uids))

    logger.info(
        f"No messages in the last {window_days} days of {status.name}; "
        f"falling back to the last {limit} sequence positions"
    )
    positions = sequence_tail(status.total, limit)
    return MessageSelection(identifiers=positions, by_uid=False, matched=len(positions))


async def locate_matching(
    session,
    filters: Optional[SearchFilters],
    limit: int,
) -> MessageSelection:
    """Choose the identifiers for a criteria search."""
    criteria = build_search_criteria(filters)
    uids = await session.search(criteria)
    return MessageSelection(identifiers=uids[-limit:] if uids else [], by_uid=True, matched=len(uids))
