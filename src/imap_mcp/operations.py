"""
Mailbox Operations
==================

One method per MCP tool. Each call resolves the account, opens its own
session, runs its steps in order, closes the session, and returns a report
dict.

POST-REPORT-01: Every method returns {"success": bool, ...echoed inputs, ...}.
POST-REPORT-02: Failures carry "error" (message) and "code".
INV-REPORT-01: No exception escapes a method.
INV-SESSION-02: Sessions are closed on every path via ``with``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict
from typing import Any

from contracts import (
    ImapMCPError,
    InvalidArgumentError,
    MessageRef,
    PartialMutationError,
)
from src.imap_mcp import locator, mutations
from src.imap_mcp.accounts import AccountRegistry
from src.imap_mcp.folders import flatten
from src.imap_mcp.session import DEFAULT_TIMEOUT, MailboxSession
from src.imap_mcp.smtp import send_message

logger = logging.getLogger(__name__)

# Above this many UIDs, mark_unseen reports a count instead of the list.
UID_ECHO_LIMIT = 50
SAMPLE_FOLDER_COUNT = 10


def _compact(item: Any) -> dict:
    return {k: v for k, v in asdict(item).items() if v is not None}


class MailboxOperations:
    """Uniform entry point for every mailbox tool."""

    def __init__(
        self,
        registry: AccountRegistry,
        session_factory: Callable[..., MailboxSession] | None = None,
        submitter: Callable[..., Any] = send_message,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._registry = registry
        self._open_session = session_factory or MailboxSession.open
        self._submit = submitter
        self._timeout = timeout

    def _report(self, operation: str, echo: dict, func: Callable[[], dict]) -> dict:
        """Run func and fold its payload or failure into a report."""
        try:
            payload = func()
        except ImapMCPError as e:
            logger.info("%s failed [%s]: %s", operation, e.code, e)
            report = {"success": False, **echo, "error": str(e), "code": e.code}
            if isinstance(e, PartialMutationError):
                report["completed_steps"] = [s.value for s in e.completed_steps]
            return report
        except Exception as e:
            logger.exception("%s failed unexpectedly", operation)
            return {"success": False, **echo, "error": str(e), "code": ImapMCPError.code}
        return {"success": True, **echo, **payload}

    def _session(self, account: str, mailbox: str | None = None, readonly: bool = True):
        resolved = self._registry.resolve(account)
        return self._open_session(
            resolved, mailbox=mailbox, readonly=readonly, timeout=self._timeout
        )

    # -------------------------------------------------------------------------
    # Read-only tools
    # -------------------------------------------------------------------------

    def list_accounts(self) -> dict:
        """List configured accounts. Never opens a connection."""

        def run() -> dict:
            return {
                "accounts": [
                    {"key": a.key, "name": a.name, "host": a.host, "user": a.username}
                    for a in self._registry.configured()
                ]
            }

        return self._report("list_accounts", {}, run)

    def list_folders(self, account: str) -> dict:
        def run() -> dict:
            with self._session(account) as session:
                tree = session.list_folders()
            folders = flatten(tree, session.account.delimiter)
            logger.info("Listed %d folders for %s", len(folders), account)
            return {"folders": [asdict(f) for f in folders], "count": len(folders)}

        return self._report("list_folders", {"account": account}, run)

    def list_emails(
        self,
        account: str,
        folder: str = "INBOX",
        limit: int = 20,
        criteria: str = "ALL",
    ) -> dict:
        """Return the last `limit` messages matching criteria, oldest first."""

        def run() -> dict:
            if limit < 1:
                raise InvalidArgumentError(f"limit must be at least 1, got {limit}")
            if not criteria or not criteria.strip():
                raise InvalidArgumentError("criteria must not be empty")
            with self._session(account, mailbox=folder, readonly=True) as session:
                uids = session.search(criteria.strip())
                summaries = session.fetch_summaries(uids[-limit:])
            logger.info("Listed %d of %d emails in %s/%s", len(summaries), len(uids), account, folder)
            return {
                "total": len(uids),
                "returned": len(summaries),
                "emails": [asdict(s) for s in summaries],
            }

        echo = {"account": account, "folder": folder, "criteria": criteria}
        return self._report("list_emails", echo, run)

    def test_connection(self, account: str) -> dict:
        """Connect, authenticate and list folders as a health check."""

        def run() -> dict:
            with self._session(account) as session:
                tree = session.list_folders()
            folders = flatten(tree, session.account.delimiter)
            return {
                "message": "Connection successful",
                "folder_count": len(folders),
                "sample_folders": [f.name for f in folders[:SAMPLE_FOLDER_COUNT]],
            }

        return self._report("test_connection", {"account": account}, run)

    # -------------------------------------------------------------------------
    # Mutating tools
    # -------------------------------------------------------------------------

    def move_email(
        self,
        account: str,
        uid: int,
        target_folder: str,
        source_folder: str = "INBOX",
    ) -> dict:
        def run() -> dict:
            with self._session(account, mailbox=source_folder, readonly=False) as session:
                method = mutations.move_message(session, uid, target_folder)
            logger.info("Moved UID %d in %s from %s to %s", uid, account, source_folder, target_folder)
            return {"action": "moved", "method": method}

        echo = {
            "account": account,
            "uid": uid,
            "source_folder": source_folder,
            "target_folder": target_folder,
        }
        return self._report("move_email", echo, run)

    def move_by_message_id(
        self,
        account: str,
        message_id: str,
        target_folder: str,
        source_folder: str = "INBOX",
        strict: bool = False,
    ) -> dict:
        """Move a message located by its Message-ID header."""

        def run() -> dict:
            ref = MessageRef(message_id=message_id)
            with self._session(account, mailbox=source_folder, readonly=False) as session:
                uid = locator.resolve(session, ref, strict=strict)
                method = mutations.move_message(session, uid, target_folder)
            logger.info("Moved UID %d in %s from %s to %s", uid, account, source_folder, target_folder)
            return {"action": "moved", "uid": uid, "method": method}

        echo = {
            "account": account,
            "message_id": message_id,
            "source_folder": source_folder,
            "target_folder": target_folder,
        }
        return self._report("move_by_message_id", echo, run)

    def delete_email(self, account: str, uid: int, folder: str = "INBOX") -> dict:
        def run() -> dict:
            with self._session(account, mailbox=folder, readonly=False) as session:
                mutations.delete_message(session, uid)
            logger.info("Deleted UID %d in %s/%s", uid, account, folder)
            return {"action": "deleted"}

        return self._report("delete_email", {"account": account, "uid": uid, "folder": folder}, run)

    def bulk_move(
        self,
        account: str,
        uids: list[int],
        target_folder: str,
        source_folder: str = "INBOX",
    ) -> dict:
        """
        Move many messages in one session.

        Succeeds as a whole once the session is open; per-item failures are
        embedded in results.
        """

        def run() -> dict:
            mutations.check_bulk_size(uids)
            with self._session(account, mailbox=source_folder, readonly=False) as session:
                result = mutations.bulk_move(session, uids, target_folder)
            logger.info(
                "Bulk move in %s to %s: %d succeeded, %d failed",
                account,
                target_folder,
                result.succeeded,
                result.failed,
            )
            return {
                "action": "bulk_move",
                "total": result.total,
                "succeeded": result.succeeded,
                "failed": result.failed,
                "results": [_compact(r) for r in result.results],
            }

        echo = {"account": account, "source_folder": source_folder, "target_folder": target_folder}
        return self._report("bulk_move", echo, run)

    def set_flags(
        self,
        account: str,
        uids: list[int],
        flags: list[str],
        action: str = "add",
        folder: str = "INBOX",
    ) -> dict:
        def run() -> dict:
            with self._session(account, mailbox=folder, readonly=False) as session:
                mutations.set_flags(session, uids, flags, action)
            logger.info("Flags %s (%s) on %d emails in %s/%s", flags, action, len(uids), account, folder)
            return {"count": len(uids)}

        echo = {"account": account, "folder": folder, "uids": uids, "flags": flags, "action": action}
        return self._report("set_flags", echo, run)

    def mark_unseen(
        self,
        account: str,
        folder: str = "INBOX",
        uids: list[int] | None = None,
        all_messages: bool = False,
    ) -> dict:
        """Remove \\Seen from uids, or from every message when none are given."""

        def run() -> dict:
            with self._session(account, mailbox=folder, readonly=False) as session:
                targets = list(uids or [])
                if all_messages or not targets:
                    targets = session.search("ALL")
                if not targets:
                    return {"message": "No emails to mark as unseen", "count": 0}
                mutations.set_flags(session, targets, ["\\Seen"], "remove")
            logger.info("Marked %d emails unseen in %s/%s", len(targets), account, folder)
            return {
                "action": "marked_unseen",
                "count": len(targets),
                "uids": (
                    targets
                    if len(targets) <= UID_ECHO_LIMIT
                    else f"{len(targets)} emails (list truncated)"
                ),
            }

        return self._report("mark_unseen", {"account": account, "folder": folder}, run)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def send_email(
        self,
        account: str,
        to: str,
        subject: str,
        text: str = "",
        html: str | None = None,
        cc: str | None = None,
        bcc: str | None = None,
        reply_to: str | None = None,
    ) -> dict:
        def run() -> dict:
            resolved = self._registry.resolve(account)
            receipt = self._submit(
                resolved,
                to,
                subject,
                text=text,
                html=html,
                cc=cc,
                bcc=bcc,
                reply_to=reply_to,
                timeout=self._timeout,
            )
            return {
                "message_id": receipt.message_id,
                "accepted": receipt.accepted,
                "rejected": receipt.rejected,
            }

        return self._report("send_email", {"account": account, "to": to, "subject": subject}, run)
