"""
Mailbox Session
===============

One IMAP session per tool call: connect, login, select, commands, logout.

INV-SESSION-01: A session never outlives one tool call.
INV-SESSION-02: open() closes the connection itself if any step fails.
INV-SESSION-03: close() is idempotent and never raises.
INV-LIST-01: Header fetches use BODY.PEEK so \\Seen is untouched.
"""

from __future__ import annotations

import email
import logging
from collections.abc import Iterable
from email.header import decode_header
from typing import TYPE_CHECKING, Any

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError

from contracts import (
    AuthFailedError,
    ConnectionFailedError,
    FolderNode,
    FolderNotFoundError,
    MessageSummary,
    ProtocolError,
    ReadOnlySessionError,
    SessionState,
)
from src.imap_mcp.folders import build_tree

if TYPE_CHECKING:
    from src.imap_mcp.accounts import Account

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

SUMMARY_HEADERS = "FROM SUBJECT DATE MESSAGE-ID"
SUMMARY_FETCH = [b"FLAGS", f"BODY.PEEK[HEADER.FIELDS ({SUMMARY_HEADERS})]".encode()]
MESSAGE_ID_FETCH = [b"BODY.PEEK[HEADER.FIELDS (MESSAGE-ID)]"]


class MailboxSession:
    """
    A single stateful IMAP session bound to one account.

    Use :meth:`open` (or the context manager protocol) rather than calling
    the lifecycle steps by hand.
    """

    def __init__(self, account: Account, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.account = account
        self.timeout = timeout
        self.state: SessionState = SessionState.IDLE
        self.selected: str | None = None
        self.readonly: bool = True
        self._client: IMAPClient | None = None

    @classmethod
    def open(
        cls,
        account: Account,
        mailbox: str | None = None,
        readonly: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> MailboxSession:
        """
        Connect, authenticate and optionally select a mailbox.

        ERRORS:
        - ConnectionFailedError: network or TLS failure
        - AuthFailedError: login rejected
        - FolderNotFoundError: mailbox missing or not selectable
        """
        session = cls(account, timeout=timeout)
        try:
            session.connect()
            session.login()
            if mailbox is not None:
                session.select(mailbox, readonly=readonly)
        except BaseException:
            session.close()
            raise
        return session

    def __enter__(self) -> MailboxSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def connect(self) -> None:
        logger.debug(
            "Connecting to %s (%s:%d)", self.account.key, self.account.host, self.account.port
        )
        try:
            self._client = IMAPClient(
                self.account.host,
                port=self.account.port,
                ssl=self.account.use_ssl,
                timeout=self.timeout,
            )
        except Exception as e:
            raise ConnectionFailedError(
                f"Failed to connect to {self.account.host}:{self.account.port}: {e}"
            ) from e
        self.state = SessionState.CONNECTED

    def login(self) -> None:
        client = self._require_state(SessionState.CONNECTED)
        try:
            client.login(self.account.username, self.account.password)
        except OSError as e:
            raise ConnectionFailedError(f"Connection lost during login: {e}") from e
        except Exception as e:
            # Never echo credentials; the server message is enough
            raise AuthFailedError(f"Authentication failed for '{self.account.key}': {e}") from e
        self.state = SessionState.AUTHENTICATED

    def select(self, mailbox: str, readonly: bool = True) -> dict:
        client = self._require_state(SessionState.AUTHENTICATED, SessionState.SELECTED)
        try:
            info = client.select_folder(mailbox, readonly=readonly)
        except OSError as e:
            raise ConnectionFailedError(f"Connection lost selecting {mailbox}: {e}") from e
        except Exception as e:
            raise FolderNotFoundError(f"Folder not found or not selectable: {mailbox}") from e
        self.selected = mailbox
        self.readonly = readonly
        self.state = SessionState.SELECTED
        return info

    def close(self) -> None:
        """Log out. Safe to call any number of times, in any state."""
        if self.state is SessionState.CLOSED:
            return
        client, self._client = self._client, None
        self.state = SessionState.CLOSED
        self.selected = None
        if client is None:
            return
        try:
            client.logout()
        except Exception as e:
            logger.debug("Logout from %s failed: %s", self.account.key, e)

    def _require_state(self, *states: SessionState) -> IMAPClient:
        if self._client is None or self.state not in states:
            raise ProtocolError(
                f"Session for '{self.account.key}' is {self.state.value}, "
                f"expected {' or '.join(s.value for s in states)}"
            )
        return self._client

    def _require_selected(self) -> IMAPClient:
        return self._require_state(SessionState.SELECTED)

    def require_writable(self) -> IMAPClient:
        """Return the client only if a mailbox is selected read-write."""
        if self.state is not SessionState.SELECTED or self.readonly:
            raise ReadOnlySessionError(
                f"No read-write mailbox selected on '{self.account.key}'"
            )
        return self._require_selected()

    def _run(self, command: str, func, *args, **kwargs) -> Any:
        """Issue one IMAP command, mapping library failures onto the contract."""
        try:
            return func(*args, **kwargs)
        except OSError as e:
            raise ConnectionFailedError(f"Connection lost during {command}: {e}") from e
        except IMAPClientError as e:
            raise ProtocolError(f"{command} failed: {e}") from e

    def has_capability(self, capability: str) -> bool:
        client = self._require_state(SessionState.AUTHENTICATED, SessionState.SELECTED)
        return bool(self._run("CAPABILITY", client.has_capability, capability))

    def list_folders(self) -> list[FolderNode]:
        """
        Return the folder hierarchy.

        ERRORS:
        - ProtocolError: malformed LIST response
        """
        client = self._require_state(SessionState.AUTHENTICATED, SessionState.SELECTED)
        return build_tree(self._run("LIST", client.list_folders))

    def search(self, criteria: Any = "ALL") -> list[int]:
        """Search the selected mailbox; UIDs in server order."""
        client = self._require_selected()
        return list(self._run("SEARCH", client.search, criteria))

    def fetch_summaries(self, uids: Iterable[int]) -> list[MessageSummary]:
        """Fetch header summaries, in the order of uids. Unknown UIDs are skipped."""
        client = self._require_selected()
        uids = list(uids)
        if not uids:
            return []
        data = self._run("FETCH", client.fetch, uids, SUMMARY_FETCH)
        summaries = []
        for uid in uids:
            if uid in data:
                summaries.append(self._parse_summary(uid, data[uid]))
        return summaries

    def fetch_message_ids(self, uids: Iterable[int]) -> dict[int, str]:
        """Map each UID to its stripped Message-ID header ("" when absent)."""
        client = self._require_selected()
        uids = list(uids)
        if not uids:
            return {}
        data = self._run("FETCH", client.fetch, uids, MESSAGE_ID_FETCH)
        return {
            uid: _header_block(data[uid]).get("Message-ID", "").strip()
            for uid in uids
            if uid in data
        }

    def move(self, uids: list[int], folder: str) -> None:
        client = self.require_writable()
        self._run("MOVE", client.move, uids, folder)

    def copy(self, uids: list[int], folder: str) -> None:
        client = self.require_writable()
        self._run("COPY", client.copy, uids, folder)

    def add_flags(self, uids: list[int], flags: list[str]) -> None:
        client = self.require_writable()
        self._run("STORE", client.add_flags, uids, _encode_flags(flags))

    def remove_flags(self, uids: list[int], flags: list[str]) -> None:
        client = self.require_writable()
        self._run("STORE", client.remove_flags, uids, _encode_flags(flags))

    def expunge(self, uids: list[int] | None = None) -> None:
        """Expunge the selected mailbox, or only uids via UID EXPUNGE."""
        client = self.require_writable()
        if uids is None:
            self._run("EXPUNGE", client.expunge)
        else:
            self._run("UID EXPUNGE", client.expunge, uids)

    def _parse_summary(self, uid: int, data: dict) -> MessageSummary:
        msg = _header_block(data)
        flags = [f.decode() if isinstance(f, bytes) else f for f in data.get(b"FLAGS", ())]
        return MessageSummary(
            uid=uid,
            sender=_decode_header(msg.get("From", "")),
            subject=_decode_header(msg.get("Subject", "")),
            date=msg.get("Date", ""),
            message_id=msg.get("Message-ID", "").strip(),
            flags=flags,
        )


def _header_block(data: dict) -> email.message.Message:
    """Parse the BODY[HEADER...] item of one FETCH response entry."""
    raw = b""
    for key, value in data.items():
        if isinstance(key, bytes) and key.startswith(b"BODY[HEADER"):
            raw = value or b""
            break
    return email.message_from_bytes(raw)


def _encode_flags(flags: list[str]) -> list[bytes]:
    return [f.encode() if isinstance(f, str) else f for f in flags]


def _decode_header(header: str) -> str:
    """Decode RFC 2047 encoded header."""
    if not header:
        return ""

    decoded_parts = []
    for part, charset in decode_header(header):
        if isinstance(part, bytes):
            decoded_parts.append(part.decode(charset or "utf-8", errors="replace"))
        else:
            decoded_parts.append(part)
    return "".join(decoded_parts)
