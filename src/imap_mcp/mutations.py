"""
Mutation Executor
=================

Move, delete, bulk move and flag changes against an open session.

INV-MOVE-01 / INV-DELETE-01: Every mutation requires a read-write selection.
INV-MOVE-02: Native UID MOVE when advertised, else copy → \\Deleted → expunge.
INV-MOVE-03: A failure after the copy raises PartialMutationError naming the
completed steps. Nothing is rolled back.
INV-BULK-01: Item failures are recorded, never propagated.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from contracts import (
    MAX_BULK_ITEMS,
    BulkMoveResult,
    FlagAction,
    ImapMCPError,
    InvalidArgumentError,
    ItemResult,
    MutationStep,
    PartialMutationError,
    TooManyItemsError,
)

if TYPE_CHECKING:
    from src.imap_mcp.session import MailboxSession

logger = logging.getLogger(__name__)

DELETED = "\\Deleted"


def check_bulk_size(uids: list[int]) -> None:
    """Reject oversized bulk requests before any connection is made."""
    if len(uids) > MAX_BULK_ITEMS:
        raise TooManyItemsError(
            f"Too many items: {len(uids)} (maximum {MAX_BULK_ITEMS} per call)"
        )


def _expunge(session: MailboxSession, uid: int) -> None:
    # UID EXPUNGE leaves other \Deleted messages alone
    if session.has_capability("UIDPLUS"):
        session.expunge([uid])
    else:
        session.expunge()


def move_message(session: MailboxSession, uid: int, target_folder: str) -> str:
    """
    Move one message out of the selected mailbox.

    Returns the method used: ``"move"`` or ``"copy"``.
    """
    session.require_writable()
    if session.has_capability("MOVE"):
        session.move([uid], target_folder)
        return "move"

    session.copy([uid], target_folder)
    completed = [MutationStep.COPIED]
    try:
        session.add_flags([uid], [DELETED])
        completed.append(MutationStep.FLAGGED_DELETED)
        _expunge(session, uid)
    except ImapMCPError as e:
        steps = ", ".join(s.value for s in completed)
        raise PartialMutationError(
            f"Move of UID {uid} to {target_folder} interrupted after: {steps} ({e})",
            completed,
        ) from e
    return "copy"


def delete_message(session: MailboxSession, uid: int) -> None:
    """Flag one message \\Deleted and expunge it."""
    session.require_writable()
    session.add_flags([uid], [DELETED])
    try:
        _expunge(session, uid)
    except ImapMCPError as e:
        raise PartialMutationError(
            f"UID {uid} flagged \\Deleted but not expunged ({e})",
            [MutationStep.FLAGGED_DELETED],
        ) from e


def bulk_move(session: MailboxSession, uids: list[int], target_folder: str) -> BulkMoveResult:
    """
    Move each UID in turn, recording a per-item outcome.

    ERRORS:
    - TooManyItemsError: more than MAX_BULK_ITEMS uids (nothing issued)
    """
    check_bulk_size(uids)
    session.require_writable()

    results = []
    for uid in uids:
        try:
            move_message(session, uid, target_folder)
        except Exception as e:
            logger.warning("Bulk move of UID %s to %s failed: %s", uid, target_folder, e)
            results.append(ItemResult(uid=uid, success=False, error=str(e)))
        else:
            results.append(ItemResult(uid=uid, success=True))

    succeeded = sum(1 for r in results if r.success)
    return BulkMoveResult(
        target_folder=target_folder,
        total=len(uids),
        succeeded=succeeded,
        failed=len(uids) - succeeded,
        results=results,
    )


def set_flags(
    session: MailboxSession,
    uids: list[int],
    flags: list[str],
    action: FlagAction | str = FlagAction.ADD,
) -> None:
    """Add or remove flags on uids with a single STORE."""
    try:
        action = FlagAction(action)
    except ValueError as e:
        raise InvalidArgumentError(f"action must be 'add' or 'remove', got {action!r}") from e
    if not flags:
        raise InvalidArgumentError("At least one flag is required")

    session.require_writable()
    if not uids:
        return
    if action is FlagAction.ADD:
        session.add_flags(uids, flags)
    else:
        session.remove_flags(uids, flags)
