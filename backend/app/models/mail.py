"""
Pydantic models for mailbox listing, message retrieval and outbound delivery.

Field names are snake_case in Python and camelCase on the wire (aliases), so
responses keep the shape HTTP callers expect: hasChildren, hasAttachments,
contentType, messageId.

Models:
  Credentials: per-request IMAP/SMTP login, never persisted
  MailboxNode: one flattened folder
  FolderStatus: result of selecting a folder
  MessageSelection: identifiers chosen by the locator
  RawMessage: fetched bytes + protocol attributes (transient)
  NormalizedMessage: summary record used by listings and search
  MessageDetail: full record for single-message retrieval
  SearchFilters: criteria-intent filters
  OutboundMessage: body of POST /send and the send_email MCP method
  SendResult: delivery outcome
  McpRequest: POST /mcp envelope
  MessageListing: recent-messages or search result
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class Credentials(BaseModel):
    """Username/password pair supplied with a single request."""

    model_config = {"frozen": True}

    username: str
    password: str = Field(repr=False)


class MailboxNode(BaseModel):
    """A folder in the flattened mailbox listing. Immutable once built."""

    model_config = {"frozen": True, "populate_by_name": True}

    name: str
    path: str
    delimiter: Optional[str] = None
    flags: List[str] = []
    has_children: bool = Field(default=False, alias="hasChildren")


class FolderStatus(BaseModel):
    """Metadata returned by SELECT/EXAMINE."""

    model_config = {"populate_by_name": True}

    name: str
    total: int = 0
    uid_validity: Optional[int] = Field(default=None, alias="uidValidity")
    uid_next: Optional[int] = Field(default=None, alias="uidNext")


class MessageSelection(BaseModel):
    """
    Identifiers to fetch for one request.

    by_uid is False only for the sequence-number fallback of the recency
    intent. matched is the size of the search result before truncation.
    """

    identifiers: List[int] = []
    by_uid: bool = True
    matched: int = 0


class RawMessage(BaseModel):
    """Raw RFC 822 bytes plus the FETCH attributes that came with them."""

    uid: Optional[int] = None
    seq: Optional[int] = None
    flags: List[str] = []
    buffer: bytes = b""


class AttachmentMeta(BaseModel):
    """Attachment metadata only; content is never returned."""

    model_config = {"populate_by_name": True}

    filename: Optional[str] = None
    content_type: str = Field(alias="contentType")
    size: int = 0


class NormalizedMessage(BaseModel):
    """Summary-level view of a message, used by listings and search."""

    model_config = {"populate_by_name": True}

    uid: Optional[int] = None
    date: Optional[datetime] = None
    from_: str = Field(default="Unknown", alias="from")
    to: str = ""
    subject: str = "(No Subject)"
    preview: str = ""
    has_attachments: bool = Field(default=False, alias="hasAttachments")
    flags: List[str] = []


class MessageDetail(NormalizedMessage):
    """Full view of a single message: bodies, cc and attachment metadata."""

    cc: str = ""
    text: str = ""
    html: str = ""
    attachments: List[AttachmentMeta] = []


class SearchFilters(BaseModel):
    """Caller-supplied filters for the criteria intent. All optional, ANDed."""

    query: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    subject: Optional[str] = None
    since: Optional[date] = None
    before: Optional[date] = None


AddressField = Union[str, List[str], None]


class OutboundMessage(BaseModel):
    """
    A message to deliver.

    to and subject are required, but they are declared optional here so that
    their absence is reported by the delivery adapter with a single
    "Missing required fields" error instead of a schema error.
    """

    model_config = {"populate_by_name": True, "extra": "ignore"}

    username: Optional[str] = None
    password: Optional[str] = Field(default=None, repr=False)
    from_: Optional[str] = Field(default=None, alias="from")
    to: AddressField = None
    subject: Optional[str] = None
    text: Optional[str] = None
    html: Optional[str] = None
    cc: AddressField = None
    bcc: AddressField = None


class SendResult(BaseModel):
    model_config = {"populate_by_name": True}

    message_id: Optional[str] = Field(default=None, alias="messageId")


class McpRequest(BaseModel):
    """POST /mcp body: a method name and its parameters."""

    method: Optional[str] = None
    params: Dict[str, Any] = {}


class MessageListing(BaseModel):
    """Result of a recent-messages or search operation."""

    mailbox: str
    emails: List[NormalizedMessage] = []
    total: int = 0
    returned: int = 0
