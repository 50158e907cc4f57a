"""
Message Locator
===============

Resolves a MessageRef to a UID in the currently selected mailbox.

PRE-MOVE-02: Message-ID lookup is an exact header match, scoped to the
selected mailbox. SEARCH HEADER only does substring matching, so every
candidate is re-checked against its fetched header.
INV-MOVE-04: A lookup with zero matches raises before any mutation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from contracts import AmbiguousMatchError, MessageNotFoundError, MessageRef

if TYPE_CHECKING:
    from src.imap_mcp.session import MailboxSession

logger = logging.getLogger(__name__)


def find_by_message_id(session: MailboxSession, message_id: str) -> list[int]:
    """All UIDs in the selected mailbox whose Message-ID header equals message_id."""
    message_id = message_id.strip()
    candidates = session.search(["HEADER", "Message-ID", message_id])
    if not candidates:
        return []
    headers = session.fetch_message_ids(candidates)
    matches = [uid for uid in candidates if headers.get(uid) == message_id]
    if len(matches) < len(candidates):
        logger.debug(
            "Message-ID search in %s returned %d candidates, %d exact",
            session.selected,
            len(candidates),
            len(matches),
        )
    return matches


def resolve(session: MailboxSession, ref: MessageRef, strict: bool = False) -> int:
    """
    Return the UID a reference points at.

    UIDs pass through unchecked; the server rejects bad ones on use.
    Message-IDs need a search. Header uniqueness is not guaranteed, so
    several matches resolve to the first unless strict is set.

    ERRORS:
    - MessageNotFoundError: no exact match
    - AmbiguousMatchError: several matches and strict=True
    """
    if ref.uid is not None:
        return ref.uid

    uids = find_by_message_id(session, ref.message_id)
    if not uids:
        raise MessageNotFoundError(
            f"Email with Message-ID '{ref.message_id}' not found in {session.selected}"
        )
    if len(uids) > 1:
        if strict:
            raise AmbiguousMatchError(
                f"Message-ID '{ref.message_id}' matches {len(uids)} emails in "
                f"{session.selected}: {uids}"
            )
        logger.warning(
            "Message-ID matched %d emails in %s, using UID %d",
            len(uids),
            session.selected,
            uids[0],
        )
    return uids[0]
