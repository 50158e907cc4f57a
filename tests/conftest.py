"""
Shared fixtures: an account registry built from a fake environment and a
patched IMAPClient so no test touches the network.
"""

from unittest.mock import MagicMock, patch

import pytest

from src.imap_mcp.accounts import load_registry
from src.imap_mcp.operations import MailboxOperations

TEST_ENV = {
    "IMAP_ONECOM_USER": "dirk@example.com",
    "IMAP_ONECOM_PASSWORD": "secret123",
    "IMAP_ONECOM_DELIMITER": ".",
    "SMTP_ONECOM_HOST": "send.one.com",
    "SMTP_ONECOM_PORT": "465",
    "SMTP_ONECOM_FROM_NAME": "Dirk Example",
    "IMAP_GMX_USER": "someone@gmx.net",
    "IMAP_GMX_PASSWORD": "gmxsecret",
    # gmail has a user but no password: not configured
    "IMAP_GMAIL_USER": "someone@gmail.com",
}


def header_bytes(uid: int, message_id: str | None = None) -> bytes:
    """Raw header block as returned for BODY[HEADER.FIELDS (...)]."""
    message_id = message_id or f"<msg{uid}@example.com>"
    return (
        f"From: Sender {uid} <sender{uid}@example.com>\r\n"
        f"Subject: Test Subject {uid}\r\n"
        f"Date: Mon, 13 Jan 2026 10:00:00 +0000\r\n"
        f"Message-ID: {message_id}\r\n\r\n"
    ).encode()


def fetch_response(uids, flags=(), message_ids=None):
    message_ids = message_ids or {}
    return {
        uid: {
            b"SEQ": i + 1,
            b"FLAGS": tuple(flags),
            b"BODY[HEADER.FIELDS (FROM SUBJECT DATE MESSAGE-ID)]": header_bytes(
                uid, message_ids.get(uid)
            ),
        }
        for i, uid in enumerate(uids)
    }


@pytest.fixture
def message_ids():
    """Message-ID header per UID; unlisted UIDs get <msg{uid}@example.com>."""
    return {}


@pytest.fixture
def registry():
    """Registry with onecom and gmx configured, gmail incomplete."""
    return load_registry(environ=TEST_ENV, env_file=None)


@pytest.fixture
def capabilities():
    """Server capabilities; tests mutate this set to pick code paths."""
    return {"IMAP4REV1", "MOVE", "UIDPLUS"}


@pytest.fixture
def mock_imap_client(capabilities, message_ids):
    """Mock IMAPClient for testing without real IMAP server."""
    with patch("src.imap_mcp.session.IMAPClient") as mock:
        client = MagicMock()
        mock.return_value = client

        client.list_folders.return_value = [
            ((b"\\HasChildren",), b".", "INBOX"),
            ((b"\\HasNoChildren",), b".", "INBOX.Archive"),
            ((b"\\HasNoChildren", b"\\Sent"), b".", "INBOX.Sent"),
        ]
        client.select_folder.return_value = {
            b"UIDVALIDITY": 12345,
            b"UIDNEXT": 1000,
            b"EXISTS": 3,
        }
        client.search.return_value = [101, 102, 103]
        client.fetch.side_effect = lambda uids, data: fetch_response(uids, message_ids=message_ids)
        client.has_capability.side_effect = lambda cap: cap in capabilities

        yield mock


@pytest.fixture
def imap(mock_imap_client):
    """The client instance every session in the test receives."""
    return mock_imap_client.return_value


@pytest.fixture
def operations(registry):
    return MailboxOperations(registry, timeout=5)
