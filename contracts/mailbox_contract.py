"""
IMAP Mailbox MCP Server Contract
================================

MCP tools for AI agents to inspect and reorganise mailboxes on several
independently configured IMAP accounts, plus SMTP submission.

This contract defines the expected behavior of all public interfaces.
Implementation SHALL perform ONLY declared behaviors.

CONTRACT RULES:
- Every public tool declares PRE/POST/INV/ERRORS clauses
- Every test cites the clause IDs it enforces (TEST_CASES below)
- All mocks derive from the types declared here

AUTHORITY: This file is the SINGLE authoritative source for mailbox MCP behavior.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable


# =============================================================================
# DOMAIN TYPES
# =============================================================================

class SessionState(Enum):
    """Lifecycle of one mailbox session."""
    IDLE = "idle"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    SELECTED = "selected"
    CLOSED = "closed"


class FlagAction(Enum):
    """Direction of a flag change."""
    ADD = "add"
    REMOVE = "remove"


class MutationStep(Enum):
    """Steps of a non-atomic move or delete, in execution order."""
    COPIED = "copied"
    FLAGGED_DELETED = "flagged_deleted"
    EXPUNGED = "expunged"


@dataclass
class FolderNode:
    """One node of the hierarchical folder tree."""
    name: str
    delimiter: str | None
    attributes: tuple[str, ...] = ()
    children: list["FolderNode"] = field(default_factory=list)


@dataclass(frozen=True)
class FolderDescriptor:
    """Flattened folder entry with its full path."""
    name: str
    delimiter: str | None
    attributes: tuple[str, ...]


@dataclass(frozen=True)
class MessageRef:
    """
    Reference to a message: a session-scoped UID or a global Message-ID.

    Exactly one of the two must be set; a Message-ID must not be blank.
    """
    uid: int | None = None
    message_id: str | None = None

    def __post_init__(self) -> None:
        if (self.uid is None) == (self.message_id is None):
            raise InvalidArgumentError("MessageRef needs exactly one of uid or message_id")
        if self.message_id is not None and not self.message_id.strip():
            raise InvalidArgumentError("message_id must not be empty")


@dataclass(frozen=True)
class MessageSummary:
    """Selected header fields and flags of a message."""
    uid: int
    sender: str
    subject: str
    date: str
    message_id: str
    flags: list[str]


@dataclass(frozen=True)
class ItemResult:
    """Outcome of one item in a bulk operation."""
    uid: int
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class BulkMoveResult:
    """Aggregate outcome of a bulk move."""
    target_folder: str
    total: int
    succeeded: int
    failed: int
    results: list[ItemResult]


@dataclass(frozen=True)
class DeliveryReceipt:
    """What the SMTP server accepted for one submitted message."""
    message_id: str
    accepted: list[str]
    rejected: list[str]


# =============================================================================
# ERROR TYPES
# =============================================================================

class ImapMCPError(Exception):
    """Base error for all mailbox MCP operations."""
    code: str = "INTERNAL"


class ConfigurationError(ImapMCPError):
    """
    ERRORS-CONFIG-01: Environment holds an unusable value (e.g. non-numeric port).

    RECOVERY: Fatal at startup. Operator fixes the environment.
    """
    code = "CONFIGURATION_INVALID"


class NotConfiguredError(ImapMCPError):
    """
    ERRORS-ACCOUNT-01: Unknown account key, or account lacks user/password.

    RECOVERY: Agent should call imap_list_accounts for valid keys.
    """
    code = "NOT_CONFIGURED"


class ConnectionFailedError(ImapMCPError):
    """
    ERRORS-SESSION-01: Network unreachable, host not found, or TLS failure.

    RECOVERY: Retry later; the operation had no effect.
    """
    code = "CONNECTION_FAILED"


class AuthFailedError(ImapMCPError):
    """
    ERRORS-SESSION-02: Server rejected the configured credentials.

    RECOVERY: Operator must update the account credentials.
    """
    code = "AUTH_FAILED"


class FolderNotFoundError(ImapMCPError):
    """
    ERRORS-SESSION-03: Folder does not exist or is not selectable.

    RECOVERY: Agent should call imap_list_folders to get valid folder names.
    """
    code = "FOLDER_NOT_FOUND"


class ProtocolError(ImapMCPError):
    """
    ERRORS-SESSION-04: Server returned a malformed or unexpected response,
    or rejected a command.

    RECOVERY: Agent may retry; inspect the message for the server's reason.
    """
    code = "PROTOCOL_ERROR"


class ReadOnlySessionError(ImapMCPError):
    """
    ERRORS-MUTATE-01: Mutation attempted without a read-write selection.

    RECOVERY: Programming error; never reachable through the tools.
    """
    code = "READ_ONLY_SESSION"


class MessageNotFoundError(ImapMCPError):
    """
    ERRORS-LOCATE-01: No message with the given Message-ID in the folder.

    RECOVERY: Agent should list the folder; the message may have moved.
    """
    code = "NOT_FOUND"


class AmbiguousMatchError(ImapMCPError):
    """
    ERRORS-LOCATE-02: Strict lookup found several messages for one Message-ID.

    RECOVERY: Agent should act by UID instead.
    """
    code = "AMBIGUOUS_MATCH"


class TooManyItemsError(ImapMCPError):
    """
    ERRORS-BULK-01: Bulk request exceeds MAX_BULK_ITEMS.

    RECOVERY: Agent splits the request into batches.
    """
    code = "TOO_MANY_ITEMS"


class PartialMutationError(ImapMCPError):
    """
    ERRORS-MUTATE-02: A multi-step move/delete failed after some steps ran.

    RECOVERY: Message may exist in both folders or stay flagged \\Deleted
    until the next expunge. No automatic rollback.
    """
    code = "PARTIAL_MUTATION"

    def __init__(self, message: str, completed_steps: list[MutationStep]) -> None:
        super().__init__(message)
        self.completed_steps = completed_steps


class InvalidArgumentError(ImapMCPError):
    """
    ERRORS-TOOL-01: Tool arguments are structurally invalid.

    RECOVERY: Agent must correct the arguments.
    """
    code = "INVALID_ARGUMENT"


class SubmissionError(ImapMCPError):
    """
    ERRORS-SEND-01: SMTP connect, login, or submission failed.

    RECOVERY: Agent may retry; nothing was stored on the IMAP side.
    """
    code = "SUBMISSION_FAILED"


# Upper bound on caller-supplied UID lists for bulk tools.
MAX_BULK_ITEMS = 100


# =============================================================================
# SESSION CONTRACT
# =============================================================================

@runtime_checkable
class SessionContract(Protocol):
    """
    Mailbox session lifecycle (internal, used by every tool)

    SEQUENCE:
    IDLE → CONNECTED → AUTHENTICATED → SELECTED → {search|fetch|mutate}* → CLOSED

    PRE-SESSION-01: Account resolved from the registry (fully configured)

    POST-SESSION-01: open() returns a session in AUTHENTICATED or SELECTED state
    POST-SESSION-02: close() leaves the session in CLOSED state

    INV-SESSION-01 (One Operation): A session never outlives one tool call
    INV-SESSION-02 (Always Closed): Every tool call closes its session
                    exactly once, on success and on every error path
    INV-SESSION-03 (Idempotent Close): Closing twice has no further effect
    INV-SESSION-04 (No Pooling): No connection is shared between tool calls

    ERRORS:
    - CONNECTION_FAILED: Connect or TLS handshake failed
    - AUTH_FAILED: Login rejected
    - FOLDER_NOT_FOUND: Select failed
    - PROTOCOL_ERROR: Malformed response or rejected command
    """

    def close(self) -> None:
        """Log out and release the connection."""
        ...


# =============================================================================
# TOOL CONTRACTS
# =============================================================================

@runtime_checkable
class ListAccountsContract(Protocol):
    """
    Tool: imap_list_accounts

    PRE-ACCOUNTS-01: None

    POST-ACCOUNTS-01: Returns report with success and accounts
    POST-ACCOUNTS-02: Each account entry has key, name, host, user

    INV-ACCOUNTS-01 (Filtered): Accounts missing user or password are omitted
    INV-ACCOUNTS-02 (Offline): No network connection is opened
    INV-ACCOUNTS-03 (Secret): Passwords never appear in the report

    ERRORS: None
    """

    def list_accounts(self) -> dict:
        """List configured accounts."""
        ...


@runtime_checkable
class ListFoldersContract(Protocol):
    """
    Tool: imap_list_folders

    PRE-FOLDERS-01: account is a configured key

    POST-FOLDERS-01: Returns report with folders (full paths) and count
    POST-FOLDERS-02: Order is depth-first, parent before children,
                     siblings in server order
    POST-FOLDERS-03: A child's path equals parent path + delimiter + name

    INV-FOLDERS-01 (Mirror): No reordering, no deduplication
    INV-FOLDERS-02 (Read-Only): No mailbox is selected

    ERRORS:
    - NOT_CONFIGURED, CONNECTION_FAILED, AUTH_FAILED, PROTOCOL_ERROR
    """

    def list_folders(self, account: str) -> dict:
        """List folders of an account."""
        ...


@runtime_checkable
class ListEmailsContract(Protocol):
    """
    Tool: imap_list_emails

    PRE-LIST-01: account is a configured key
    PRE-LIST-02: limit >= 1

    POST-LIST-01: Returns report with total, returned, emails
    POST-LIST-02: emails are the last `limit` matches in server order
    POST-LIST-03: Each email has uid, from, subject, date, messageId, flags

    INV-LIST-01 (Read-Only): Folder selected read-only, headers fetched with
                 BODY.PEEK so \\Seen is untouched

    ERRORS:
    - NOT_CONFIGURED, CONNECTION_FAILED, AUTH_FAILED, FOLDER_NOT_FOUND,
      PROTOCOL_ERROR, INVALID_ARGUMENT
    """

    def list_emails(self, account: str, folder: str = "INBOX", limit: int = 20,
                    criteria: str = "ALL") -> dict:
        """List messages in a folder."""
        ...


@runtime_checkable
class MoveEmailContract(Protocol):
    """
    Tools: imap_move_email, imap_move_by_message_id

    PRE-MOVE-01: source_folder selectable read-write
    PRE-MOVE-02: message_id is non-blank; lookup keeps only messages whose
                 Message-ID header exactly equals it (SEARCH is a substring
                 match, so candidates are re-checked)

    POST-MOVE-01: Message present in target_folder, absent from source
    POST-MOVE-02: Report echoes account, uid, from, to (and messageId)

    INV-MOVE-01 (Read-Write): Source selected read-write before mutation
    INV-MOVE-02 (Native First): UID MOVE used when server advertises MOVE;
                 otherwise copy → \\Deleted → expunge
    INV-MOVE-03 (Visible Partial): Failure after copy reports completed steps
    INV-MOVE-04 (Lookup First): Zero Message-ID matches issues no mutation

    ERRORS:
    - NOT_FOUND: No message with that Message-ID
    - INVALID_ARGUMENT: Blank message_id (no session opened)
    - PARTIAL_MUTATION: Fallback sequence interrupted
    - FOLDER_NOT_FOUND, PROTOCOL_ERROR, NOT_CONFIGURED, CONNECTION_FAILED,
      AUTH_FAILED
    """

    def move_email(self, account: str, uid: int, target_folder: str,
                   source_folder: str = "INBOX") -> dict:
        """Move one message by UID."""
        ...

    def move_by_message_id(self, account: str, message_id: str, target_folder: str,
                           source_folder: str = "INBOX") -> dict:
        """Move one message by Message-ID."""
        ...


@runtime_checkable
class DeleteEmailContract(Protocol):
    """
    Tool: imap_delete_email

    POST-DELETE-01: Message flagged \\Deleted and expunged

    INV-DELETE-01 (Read-Write): Folder selected read-write before mutation
    INV-DELETE-02 (Targeted Expunge): UID EXPUNGE used when UIDPLUS is
                   advertised, so other \\Deleted messages survive

    ERRORS:
    - PARTIAL_MUTATION: Flagged but not expunged
    - FOLDER_NOT_FOUND, PROTOCOL_ERROR, NOT_CONFIGURED, CONNECTION_FAILED,
      AUTH_FAILED
    """

    def delete_email(self, account: str, uid: int, folder: str = "INBOX") -> dict:
        """Delete one message."""
        ...


@runtime_checkable
class BulkMoveContract(Protocol):
    """
    Tool: imap_bulk_move

    PRE-BULK-01: len(uids) <= MAX_BULK_ITEMS

    POST-BULK-01: results has exactly len(uids) entries, in input order
    POST-BULK-02: succeeded + failed == total == len(uids)
    POST-BULK-03: success is True whenever the session opened

    INV-BULK-01 (No Abort): One item's failure never stops the others
    INV-BULK-02 (Cap First): Oversized requests issue zero protocol commands
    INV-BULK-03 (Sequential): Items moved one at a time in one session

    ERRORS:
    - TOO_MANY_ITEMS, FOLDER_NOT_FOUND, NOT_CONFIGURED, CONNECTION_FAILED,
      AUTH_FAILED
    """

    def bulk_move(self, account: str, uids: list[int], target_folder: str,
                  source_folder: str = "INBOX") -> dict:
        """Move many messages by UID."""
        ...


@runtime_checkable
class FlagsContract(Protocol):
    """
    Tools: imap_set_flags, imap_mark_unseen

    POST-FLAGS-01: One STORE command per call
    POST-FLAGS-02: Adding then removing a flag restores the original set
    POST-FLAGS-03: mark_unseen with all=True (or no uids) targets every
                   message in the folder

    INV-FLAGS-01 (Targeted): Only the named flags change
    INV-FLAGS-02 (No Delete): No expunge is issued

    ERRORS:
    - INVALID_ARGUMENT, FOLDER_NOT_FOUND, PROTOCOL_ERROR, NOT_CONFIGURED,
      CONNECTION_FAILED, AUTH_FAILED
    """

    def set_flags(self, account: str, uids: list[int], flags: list[str],
                  action: str = "add", folder: str = "INBOX") -> dict:
        """Add or remove flags."""
        ...


@runtime_checkable
class SendEmailContract(Protocol):
    """
    Tool: smtp_send_email

    PRE-SEND-01: Account has SMTP settings

    POST-SEND-01: Report has messageId, accepted, rejected
    POST-SEND-02: Envelope recipients are to + cc + bcc; Bcc never appears
                  as a header

    INV-SEND-01 (Separate): No IMAP session is opened

    ERRORS:
    - NOT_CONFIGURED, SUBMISSION_FAILED
    """

    def send_email(self, account: str, to: str, subject: str, text: str = "") -> dict:
        """Send a message."""
        ...


@runtime_checkable
class ReportContract(Protocol):
    """
    Uniform report shape for every tool

    POST-REPORT-01: Every tool returns a dict with a boolean success
    POST-REPORT-02: On failure, error (message) and code are present

    INV-REPORT-01 (Contained): No exception escapes a tool call
    """


# =============================================================================
# TEST CASE INDEX (Traceability)
# =============================================================================

TEST_CASES = {
    # Session tests
    "test_session_open_selects_mailbox": {
        "contract": "SessionContract",
        "enforces": ["POST-SESSION-01"],
    },
    "test_session_connect_failure": {
        "contract": "SessionContract",
        "enforces": ["ERRORS: CONNECTION_FAILED"],
    },
    "test_session_auth_failure_closes": {
        "contract": "SessionContract",
        "enforces": ["ERRORS: AUTH_FAILED", "INV-SESSION-02"],
    },
    "test_session_select_failure_closes": {
        "contract": "SessionContract",
        "enforces": ["ERRORS: FOLDER_NOT_FOUND", "INV-SESSION-02"],
    },
    "test_session_close_idempotent": {
        "contract": "SessionContract",
        "enforces": ["POST-SESSION-02", "INV-SESSION-03"],
    },
    "test_every_operation_closes_once": {
        "contract": "SessionContract",
        "enforces": ["INV-SESSION-01", "INV-SESSION-02", "INV-SESSION-04"],
        "adversarial": True,
        "description": "Every tool, on success and failure, logs out exactly once",
    },
    "test_malformed_list_response": {
        "contract": "SessionContract",
        "enforces": ["ERRORS: PROTOCOL_ERROR"],
    },

    # Account tests
    "test_list_accounts_filters_unconfigured": {
        "contract": "ListAccountsContract",
        "enforces": ["POST-ACCOUNTS-01", "POST-ACCOUNTS-02", "INV-ACCOUNTS-01",
                     "INV-ACCOUNTS-02", "INV-ACCOUNTS-03"],
    },
    "test_unknown_account_not_configured": {
        "contract": "ListAccountsContract",
        "enforces": ["PRE-SESSION-01", "ERRORS: NOT_CONFIGURED"],
    },

    # Folder tests
    "test_flatten_depth_first": {
        "contract": "ListFoldersContract",
        "enforces": ["POST-FOLDERS-02", "POST-FOLDERS-03", "INV-FOLDERS-01"],
    },
    "test_list_folders_report": {
        "contract": "ListFoldersContract",
        "enforces": ["POST-FOLDERS-01", "INV-FOLDERS-02"],
    },

    # List tests
    "test_list_emails_last_n": {
        "contract": "ListEmailsContract",
        "enforces": ["POST-LIST-01", "POST-LIST-02", "POST-LIST-03"],
    },
    "test_list_emails_read_only": {
        "contract": "ListEmailsContract",
        "enforces": ["INV-LIST-01"],
        "adversarial": True,
        "description": "Verify read-only select and BODY.PEEK fetch",
    },

    # Move tests
    "test_move_native": {
        "contract": "MoveEmailContract",
        "enforces": ["POST-MOVE-01", "POST-MOVE-02", "INV-MOVE-01", "INV-MOVE-02"],
    },
    "test_move_fallback_partial": {
        "contract": "MoveEmailContract",
        "enforces": ["INV-MOVE-03", "ERRORS: PARTIAL_MUTATION"],
    },
    "test_move_by_message_id_not_found": {
        "contract": "MoveEmailContract",
        "enforces": ["PRE-MOVE-02", "INV-MOVE-04", "ERRORS: NOT_FOUND"],
        "adversarial": True,
        "description": "Zero matches issues no MOVE/COPY/STORE",
    },
    "test_move_by_message_id_substring_only": {
        "contract": "MoveEmailContract",
        "enforces": ["PRE-MOVE-02", "INV-MOVE-04"],
        "adversarial": True,
        "description": "A header that merely contains the value is not a match",
    },
    "test_move_by_message_id_blank": {
        "contract": "MoveEmailContract",
        "enforces": ["PRE-MOVE-02", "ERRORS: INVALID_ARGUMENT"],
        "adversarial": True,
        "description": "Blank Message-ID is rejected before connecting",
    },
    "test_message_id_exact_match_filters_candidates": {
        "contract": "MoveEmailContract",
        "enforces": ["PRE-MOVE-02"],
    },

    # Delete tests
    "test_delete_flags_and_expunges": {
        "contract": "DeleteEmailContract",
        "enforces": ["POST-DELETE-01", "INV-DELETE-01", "INV-DELETE-02"],
    },

    # Bulk tests
    "test_bulk_move_partial_failure": {
        "contract": "BulkMoveContract",
        "enforces": ["POST-BULK-01", "POST-BULK-02", "POST-BULK-03", "INV-BULK-01",
                     "INV-BULK-03"],
    },
    "test_bulk_move_over_cap": {
        "contract": "BulkMoveContract",
        "enforces": ["PRE-BULK-01", "INV-BULK-02", "ERRORS: TOO_MANY_ITEMS"],
        "adversarial": True,
        "description": "Oversized request never connects",
    },

    # Flag tests
    "test_set_flags_round_trip": {
        "contract": "FlagsContract",
        "enforces": ["POST-FLAGS-01", "POST-FLAGS-02", "INV-FLAGS-01", "INV-FLAGS-02"],
    },
    "test_mark_unseen_all": {
        "contract": "FlagsContract",
        "enforces": ["POST-FLAGS-03"],
    },

    # Send tests
    "test_send_email_receipt": {
        "contract": "SendEmailContract",
        "enforces": ["PRE-SEND-01", "POST-SEND-01", "POST-SEND-02", "INV-SEND-01"],
    },
    "test_send_email_failure": {
        "contract": "SendEmailContract",
        "enforces": ["ERRORS: SUBMISSION_FAILED"],
    },

    # Report tests
    "test_failure_report_shape": {
        "contract": "ReportContract",
        "enforces": ["POST-REPORT-01", "POST-REPORT-02", "INV-REPORT-01"],
    },
}
