"""
Raw message fetching.

aioimaplib hands back a FETCH response as a flat list mixing text lines and
literal payloads:

    b'1 FETCH (UID 42 FLAGS (\\Seen) BODY[] {2048}'
    bytearray(b'Return-Path: ...')          <- the literal
    b')'
    b'2 FETCH (FLAGS () BODY[] {512}'
    bytearray(b'...')
    b' UID 43)'                             <- some servers send UID last
    b'Fetch completed.'

parse_fetch_response() regroups that stream into one RawMessage per FETCH.
A message is only emitted once its group is closed, i.e. when the next
FETCH starts or the response ends.
"""

import logging
import re
from typing import Any, Iterable, List, Optional, Sequence

from app.errors import MailboxError
from app.models.mail import RawMessage

logger = logging.getLogger(__name__)

FETCH_WITH_BODY = "(UID FLAGS BODY.PEEK[])"
FETCH_HEADERS_ONLY = "(UID FLAGS BODY.PEEK[HEADER])"

_FETCH_START = re.compile(r"^\s*(\d+)\s+FETCH\s*\(", re.IGNORECASE)
_UID = re.compile(r"UID\s+(\d+)", re.IGNORECASE)
_FLAGS = re.compile(r"FLAGS\s*\(([^)]*)\)", re.IGNORECASE)
_LITERAL_MARKER = re.compile(r"\{(\d+)\}\s*$")


def response_text(response: Any) -> str:
    """Render an aioimaplib Response as a single diagnostic string."""
    parts = []
    for line in getattr(response, "lines", None) or []:
        if isinstance(line, (bytes, bytearray)):
            parts.append(bytes(line).decode("utf-8", errors="replace"))
        else:
            parts.append(str(line))
    return " ".join(p.strip() for p in parts if p.strip()) or str(getattr(response, "result", ""))


class _Group:
    def __init__(self, seq: int):
        self.seq = seq
        self.uid: Optional[int] = None
        self.flags: Optional[List[str]] = None
        self.chunks: List[bytes] = []

    def absorb(self, text: str) -> None:
        if self.uid is None:
            match = _UID.search(text)
            if match:
                self.uid = int(match.group(1))
        if self.flags is None:
            match = _FLAGS.search(text)
            if match:
                self.flags = match.group(1).split()

    def to_raw(self) -> RawMessage:
        return RawMessage(
            uid=self.uid,
            seq=self.seq,
            flags=self.flags or [],
            buffer=b"".join(self.chunks),
        )


def parse_fetch_response(lines: Iterable[Any]) -> List[RawMessage]:
    """Regroup an aioimaplib FETCH response into RawMessage records."""
    messages: List[RawMessage] = []
    current: Optional[_Group] = None
    expect_literal = False

    for item in lines:
        if current is not None and expect_literal and isinstance(item, (bytes, bytearray)):
            current.chunks.append(bytes(item))
            expect_literal = False
            continue

        text = bytes(item).decode("utf-8", errors="replace") if isinstance(
            item, (bytes, bytearray)
        ) else str(item)

        start = _FETCH_START.match(text)
        if start:
            if current is not None:
                messages.append(current.to_raw())
            current = _Group(int(start.group(1)))
        elif current is None:
            continue

        current.absorb(text)
        expect_literal = bool(_LITERAL_MARKER.search(text))

    if current is not None:
        messages.append(current.to_raw())

    return messages


def message_set(identifiers: Sequence[int]) -> str:
    return ",".join(str(i) for i in identifiers)


async def fetch_raw_messages(
    client: Any,
    identifiers: Sequence[int],
    *,
    by_uid: bool = True,
    include_body: bool = True,
) -> List[RawMessage]:
    """
    Fetch raw messages for one or many identifiers.

    Args:
        client: Logged-in aioimaplib client with a folder selected.
        identifiers: UIDs (by_uid=True) or sequence numbers (by_uid=False).
        include_body: Fetch the full RFC 822 message, otherwise headers only.

    Raises:
        MailboxError: If the server answers the FETCH with anything but OK.
    """
    if not identifiers:
        return []

    items = FETCH_WITH_BODY if include_body else FETCH_HEADERS_ONLY
    ids = message_set(identifiers)
    logger.debug(f"Fetching {len(identifiers)} message(s) (UID={by_uid})")

    if by_uid:
        response = await client.uid("fetch", ids, items)
    else:
        response = await client.fetch(ids, items)

    if response.result != "OK":
        raise MailboxError(f"Fetch failed: {response_text(response)}")

    return parse_fetch_response(response.lines)
