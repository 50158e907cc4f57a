"""
Mailbox MCP Contract Index
==========================

AUTHORITY: This file is the SINGLE authoritative entrypoint for all
mailbox MCP contracts. Import from here, not from individual contract files.
"""

from contracts.mailbox_contract import (
    MAX_BULK_ITEMS,
    # Test Case Index
    TEST_CASES,
    AmbiguousMatchError,
    AuthFailedError,
    # Contracts (Protocols)
    BulkMoveContract,
    BulkMoveResult,
    ConfigurationError,
    ConnectionFailedError,
    DeleteEmailContract,
    DeliveryReceipt,
    FlagAction,
    FlagsContract,
    FolderDescriptor,
    FolderNode,
    FolderNotFoundError,
    # Error Types
    ImapMCPError,
    InvalidArgumentError,
    ItemResult,
    ListAccountsContract,
    ListEmailsContract,
    ListFoldersContract,
    MessageNotFoundError,
    MessageRef,
    MessageSummary,
    MoveEmailContract,
    MutationStep,
    NotConfiguredError,
    PartialMutationError,
    ProtocolError,
    ReadOnlySessionError,
    ReportContract,
    SendEmailContract,
    SessionContract,
    # Domain Types
    SessionState,
    SubmissionError,
    TooManyItemsError,
)

__all__ = [
    # Domain Types
    "SessionState",
    "FlagAction",
    "MutationStep",
    "FolderNode",
    "FolderDescriptor",
    "MessageRef",
    "MessageSummary",
    "ItemResult",
    "BulkMoveResult",
    "DeliveryReceipt",
    "MAX_BULK_ITEMS",
    # Error Types
    "ImapMCPError",
    "ConfigurationError",
    "NotConfiguredError",
    "ConnectionFailedError",
    "AuthFailedError",
    "FolderNotFoundError",
    "ProtocolError",
    "ReadOnlySessionError",
    "MessageNotFoundError",
    "AmbiguousMatchError",
    "TooManyItemsError",
    "PartialMutationError",
    "InvalidArgumentError",
    "SubmissionError",
    # Contracts
    "SessionContract",
    "ListAccountsContract",
    "ListFoldersContract",
    "ListEmailsContract",
    "MoveEmailContract",
    "DeleteEmailContract",
    "BulkMoveContract",
    "FlagsContract",
    "SendEmailContract",
    "ReportContract",
    # Test Traceability
    "TEST_CASES",
    # Functions
    "audit_contract_coverage",
]


def audit_contract_coverage() -> dict:
    """
    Audit which contract clauses have test coverage.

    Returns dict with:
    - covered: clauses with at least one test
    - uncovered: clauses with no tests
    - test_count: total tests defined
    """
    covered_clauses = set()
    for test_info in TEST_CASES.values():
        for clause in test_info.get("enforces", []):
            covered_clauses.add(clause)

    all_clauses = set()

    # Session clauses
    all_clauses.update(
        [
            "PRE-SESSION-01",
            "POST-SESSION-01",
            "POST-SESSION-02",
            "INV-SESSION-01",
            "INV-SESSION-02",
            "INV-SESSION-03",
            "INV-SESSION-04",
            "ERRORS: CONNECTION_FAILED",
            "ERRORS: AUTH_FAILED",
            "ERRORS: FOLDER_NOT_FOUND",
            "ERRORS: PROTOCOL_ERROR",
        ]
    )

    # Account and folder clauses
    all_clauses.update(
        [
            "POST-ACCOUNTS-01",
            "POST-ACCOUNTS-02",
            "INV-ACCOUNTS-01",
            "INV-ACCOUNTS-02",
            "INV-ACCOUNTS-03",
            "ERRORS: NOT_CONFIGURED",
            "POST-FOLDERS-01",
            "POST-FOLDERS-02",
            "POST-FOLDERS-03",
            "INV-FOLDERS-01",
            "INV-FOLDERS-02",
        ]
    )

    # Listing and mutation clauses
    all_clauses.update(
        [
            "POST-LIST-01",
            "POST-LIST-02",
            "POST-LIST-03",
            "INV-LIST-01",
            "PRE-MOVE-02",
            "POST-MOVE-01",
            "POST-MOVE-02",
            "INV-MOVE-01",
            "INV-MOVE-02",
            "INV-MOVE-03",
            "INV-MOVE-04",
            "ERRORS: NOT_FOUND",
            "ERRORS: INVALID_ARGUMENT",
            "ERRORS: PARTIAL_MUTATION",
            "POST-DELETE-01",
            "INV-DELETE-01",
            "INV-DELETE-02",
        ]
    )

    # Bulk and flag clauses
    all_clauses.update(
        [
            "PRE-BULK-01",
            "POST-BULK-01",
            "POST-BULK-02",
            "POST-BULK-03",
            "INV-BULK-01",
            "INV-BULK-02",
            "INV-BULK-03",
            "ERRORS: TOO_MANY_ITEMS",
            "POST-FLAGS-01",
            "POST-FLAGS-02",
            "POST-FLAGS-03",
            "INV-FLAGS-01",
            "INV-FLAGS-02",
        ]
    )

    # Send and report clauses
    all_clauses.update(
        [
            "PRE-SEND-01",
            "POST-SEND-01",
            "POST-SEND-02",
            "INV-SEND-01",
            "ERRORS: SUBMISSION_FAILED",
            "POST-REPORT-01",
            "POST-REPORT-02",
            "INV-REPORT-01",
        ]
    )

    uncovered = all_clauses - covered_clauses

    return {
        "covered": sorted(covered_clauses),
        "uncovered": sorted(uncovered),
        "test_count": len(TEST_CASES),
        "coverage_pct": round(len(covered_clauses) / len(all_clauses) * 100, 1),
    }
