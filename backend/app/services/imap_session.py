"""
Short-lived IMAP sessions.

One session serves exactly one request:

    async with open_session(settings, credentials) as session:
        status = await session.select_folder("INBOX")
        uids = await session.search(["ALL"])
        raw = await session.fetch(uids)

The context manager connects over TLS, waits for the greeting, logs in and,
whatever happens inside the block, sends LOGOUT exactly once on the way out.
There is no pooling: every request pays for its own connection.
"""

import asyncio
import logging
import re
import ssl
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, List, Optional, Sequence

import aioimaplib

from app.config import Settings
from app.errors import (
    AuthenticationError,
    FolderNotFoundError,
    MailBridgeError,
    MailboxConnectionError,
    MailboxError,
)
from app.models.mail import Credentials, FolderStatus, RawMessage
from app.services.fetcher import fetch_raw_messages, response_text
from app.services.mailbox_tree import build_folder_tree

logger = logging.getLogger(__name__)

# How long LOGOUT may take before the transport is simply dropped
_LOGOUT_TIMEOUT = 5.0


def quote_mailbox(mailbox: str) -> str:
    """
    Quote a mailbox name for IMAP commands.

    Per RFC 3501 a quoted string escapes backslashes and double quotes with a
    backslash. Quoting is valid for every name, so it is always applied.
    """
    escaped = mailbox.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _decode(line: Any) -> str:
    if isinstance(line, (bytes, bytearray)):
        return bytes(line).decode("utf-8", errors="replace")
    return str(line)


def parse_select_response(name: str, lines: Sequence[Any]) -> FolderStatus:
    """Extract EXISTS / UIDVALIDITY / UIDNEXT from a SELECT or EXAMINE reply."""
    status = FolderStatus(name=name)
    for line in lines:
        text = _decode(line)

        match = re.search(r"(\d+)\s+EXISTS", text, re.IGNORECASE)
        if match:
            status.total = int(match.group(1))

        match = re.search(r"UIDVALIDITY\s+(\d+)", text, re.IGNORECASE)
        if match:
            status.uid_validity = int(match.group(1))

        match = re.search(r"UIDNEXT\s+(\d+)", text, re.IGNORECASE)
        if match:
            status.uid_next = int(match.group(1))

    return status


def parse_search_response(lines: Sequence[Any]) -> List[int]:
    """
    Extract UIDs from a SEARCH reply.

    The last line is the tagged completion text and is ignored. UIDs are
    returned in ascending order.
    """
    uids: List[int] = []
    for line in list(lines)[:-1]:
        for token in _decode(line).split():
            if token.isdigit():
                uids.append(int(token))
    return sorted(uids)


class MailboxSession:
    """
    An authenticated IMAP connection scoped to one request.

    Obtain one through open_session(); the context manager owns closing it.
    """

    def __init__(self, client: Any, settings: Settings) -> None:
        self._client = client
        self.settings = settings
        self.selected: Optional[FolderStatus] = None
        self.closed = False

    async def _command(self, what: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except MailBridgeError:
            raise
        except Exception as exc:
            raise MailboxError(f"{what} failed: {exc}") from exc

    async def list_folder_tree(self) -> dict:
        """Return the nested folder tree from LIST "" "*"."""
        response = await self._command("LIST", self._client.list('""', "*"))
        if response.result != "OK":
            raise MailboxError(f"Failed to list mailboxes: {response_text(response)}")
        return build_folder_tree(response.lines)

    async def select_folder(self, name: str, readonly: bool = True) -> FolderStatus:
        """
        Select a folder (EXAMINE when readonly) and return its status.

        Raises:
            FolderNotFoundError: If the server refuses the folder.
        """
        quoted = quote_mailbox(name)
        if readonly:
            response = await self._command("EXAMINE", self._client.examine(quoted))
        else:
            response = await self._command("SELECT", self._client.select(quoted))

        if response.result != "OK":
            logger.info(f"Folder selection refused: {response_text(response)}")
            raise FolderNotFoundError(f"Mailbox not found: {name}")

        self.selected = parse_select_response(name, response.lines)
        logger.debug(f"Selected folder {name}: {self.selected.total} message(s)")
        return self.selected

    async def search(self, criteria: Sequence[str]) -> List[int]:
        """Run UID SEARCH with the given criteria tokens and return UIDs."""
        charset = None if all(c.isascii() for c in criteria) else "utf-8"
        response = await self._command(
            "SEARCH", self._client.uid_search(*criteria, charset=charset)
        )
        if response.result != "OK":
            raise MailboxError(f"Search failed: {response_text(response)}")
        return parse_search_response(response.lines)

    async def fetch(
        self,
        identifiers: Sequence[int],
        *,
        by_uid: bool = True,
        include_body: bool = True,
    ) -> List[RawMessage]:
        """Fetch raw messages for UIDs (or sequence numbers when by_uid=False)."""
        return await self._command(
            "FETCH",
            fetch_raw_messages(
                self._client, identifiers, by_uid=by_uid, include_body=include_body
            ),
        )

    async def close(self) -> None:
        """Send LOGOUT. Safe to call more than once; only the first call acts."""
        if self.closed:
            return
        self.closed = True
        await _release(self._client)


def _ssl_context(settings: Settings) -> Optional[ssl.SSLContext]:
    if settings.imap_verify_tls:
        return None
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


async def _release(client: Any) -> None:
    try:
        await asyncio.wait_for(client.logout(), timeout=_LOGOUT_TIMEOUT)
    except Exception as e:
        logger.warning(f"Error during logout: {e}")
        transport = getattr(getattr(client, "protocol", None), "transport", None)
        if transport is not None:
            transport.close()


async def _handshake(client: Any) -> None:
    # Socket and TLS errors surface from the connection task, not the greeting
    client_task = getattr(client, "_client_task", None)
    if client_task is not None:
        await client_task
    await client.wait_hello_from_server()


async def _connect(settings: Settings) -> Any:
    host, port = settings.imap_host, settings.imap_port
    logger.info(f"Connecting to {host}:{port}")

    try:
        client = aioimaplib.IMAP4_SSL(
            host=host,
            port=port,
            timeout=settings.imap_command_timeout,
            ssl_context=_ssl_context(settings),
        )
    except OSError as e:
        raise MailboxConnectionError(f"Failed to connect to {host}:{port}: {e}") from e

    try:
        await asyncio.wait_for(_handshake(client), timeout=settings.imap_connect_timeout)
    except asyncio.TimeoutError as e:
        await _release(client)
        raise MailboxConnectionError(f"Connection timed out to {host}:{port}") from e
    except OSError as e:
        await _release(client)
        raise MailboxConnectionError(f"Failed to connect to {host}:{port}: {e}") from e
    except Exception as e:
        await _release(client)
        raise MailboxConnectionError(f"Connection to {host}:{port} failed: {e}") from e

    return client


async def _login(client: Any, settings: Settings, credentials: Credentials) -> None:
    try:
        response = await asyncio.wait_for(
            client.login(credentials.username, credentials.password),
            timeout=settings.imap_connect_timeout,
        )
    except asyncio.TimeoutError as e:
        raise MailboxConnectionError("Login timed out") from e
    except OSError as e:
        raise MailboxConnectionError(f"Connection lost during login: {e}") from e
    except Exception as e:
        raise MailboxConnectionError(f"Login failed: {e}") from e

    if response.result != "OK":
        raise AuthenticationError(f"Authentication failed: {response_text(response)}")


@asynccontextmanager
async def open_session(
    settings: Settings, credentials: Credentials
) -> AsyncIterator[MailboxSession]:
    """
    Open an authenticated session and guarantee LOGOUT on exit.

    Raises:
        MailboxConnectionError: Connect/greeting failed or timed out.
        AuthenticationError: The server rejected the login.
    """
    client = await _connect(settings)
    try:
        await _login(client, settings, credentials)
    except BaseException:
        await _release(client)
        raise

    session = MailboxSession(client, settings)
    try:
        yield session
    finally:
        await session.close()
