"""
Session, Locator and Mutation Tests
===================================

Verifies the session lifecycle and the mutation executor against a mocked
IMAPClient. Every test cites the contract clauses it enforces.
"""

import pytest
from imapclient.exceptions import IMAPClientError, LoginError

from contracts import (
    MAX_BULK_ITEMS,
    AmbiguousMatchError,
    AuthFailedError,
    ConnectionFailedError,
    FolderNotFoundError,
    InvalidArgumentError,
    MessageNotFoundError,
    MessageRef,
    MutationStep,
    PartialMutationError,
    ProtocolError,
    ReadOnlySessionError,
    SessionState,
    TooManyItemsError,
)
from src.imap_mcp import locator, mutations
from src.imap_mcp.session import MESSAGE_ID_FETCH, SUMMARY_FETCH, MailboxSession


@pytest.fixture
def account(registry):
    return registry.resolve("onecom")


@pytest.fixture
def writable(mock_imap_client, account):
    """Session with INBOX selected read-write."""
    session = MailboxSession.open(account, mailbox="INBOX", readonly=False)
    yield session
    session.close()


# =============================================================================
# SESSION CONTRACT TESTS
# =============================================================================

class TestSessionContract:
    """Tests for the connect → login → select → close lifecycle."""

    def test_session_open_selects_mailbox(self, mock_imap_client, imap, account):
        """
        Contract: SessionContract
        Enforces: POST-SESSION-01
        """
        session = MailboxSession.open(account, mailbox="INBOX", readonly=True, timeout=5)

        mock_imap_client.assert_called_once_with(
            "imap.one.com", port=993, ssl=True, timeout=5
        )
        imap.login.assert_called_once_with("dirk@example.com", "secret123")
        imap.select_folder.assert_called_once_with("INBOX", readonly=True)
        assert session.state is SessionState.SELECTED
        assert session.selected == "INBOX"
        assert session.readonly is True

    def test_session_open_without_mailbox(self, mock_imap_client, imap, account):
        """
        Contract: SessionContract
        Enforces: POST-SESSION-01
        """
        session = MailboxSession.open(account)

        assert session.state is SessionState.AUTHENTICATED
        imap.select_folder.assert_not_called()

    def test_session_connect_failure(self, mock_imap_client, imap, account):
        """
        Contract: SessionContract
        Enforces: ERRORS: CONNECTION_FAILED
        """
        mock_imap_client.side_effect = OSError("Connection refused")

        with pytest.raises(ConnectionFailedError):
            MailboxSession.open(account, mailbox="INBOX")

        imap.login.assert_not_called()

    def test_session_auth_failure_closes(self, mock_imap_client, imap, account):
        """
        Contract: SessionContract
        Enforces: ERRORS: AUTH_FAILED, INV-SESSION-02
        """
        imap.login.side_effect = LoginError("[AUTHENTICATIONFAILED] Invalid credentials")

        with pytest.raises(AuthFailedError) as exc_info:
            MailboxSession.open(account, mailbox="INBOX")

        assert "secret123" not in str(exc_info.value)
        imap.select_folder.assert_not_called()
        imap.logout.assert_called_once()

    def test_session_select_failure_closes(self, mock_imap_client, imap, account):
        """
        Contract: SessionContract
        Enforces: ERRORS: FOLDER_NOT_FOUND, INV-SESSION-02
        """
        imap.select_folder.side_effect = IMAPClientError("select failed: NONEXISTENT")

        with pytest.raises(FolderNotFoundError):
            MailboxSession.open(account, mailbox="Nope")

        imap.logout.assert_called_once()

    def test_session_close_idempotent(self, mock_imap_client, imap, account):
        """
        Contract: SessionContract
        Enforces: POST-SESSION-02, INV-SESSION-03
        """
        session = MailboxSession.open(account, mailbox="INBOX")
        session.close()
        session.close()

        assert session.closed
        assert session.selected is None
        imap.logout.assert_called_once()

    def test_close_swallows_logout_error(self, mock_imap_client, imap, account):
        """
        Contract: SessionContract
        Enforces: INV-SESSION-03
        """
        imap.logout.side_effect = OSError("Broken pipe")

        with MailboxSession.open(account) as session:
            pass

        assert session.state is SessionState.CLOSED

    def test_commands_rejected_after_close(self, mock_imap_client, imap, account):
        """
        Contract: SessionContract
        Enforces: INV-SESSION-01
        """
        session = MailboxSession.open(account, mailbox="INBOX")
        session.close()

        with pytest.raises(ProtocolError):
            session.search("ALL")

    def test_connection_lost_mid_command(self, writable, imap):
        """
        Contract: SessionContract
        Enforces: ERRORS: CONNECTION_FAILED
        """
        imap.search.side_effect = OSError("timed out")

        with pytest.raises(ConnectionFailedError):
            writable.search("ALL")

    def test_fetch_summaries_peeks_headers(self, mock_imap_client, imap, account):
        """
        Contract: ListEmailsContract
        Enforces: INV-LIST-01, POST-LIST-03
        """
        with MailboxSession.open(account, mailbox="INBOX") as session:
            summaries = session.fetch_summaries([102, 101])

        imap.fetch.assert_called_once_with([102, 101], SUMMARY_FETCH)
        assert b"BODY.PEEK[HEADER.FIELDS (FROM SUBJECT DATE MESSAGE-ID)]" in SUMMARY_FETCH
        assert [s.uid for s in summaries] == [102, 101]
        assert summaries[0].sender == "Sender 102 <sender102@example.com>"
        assert summaries[0].subject == "Test Subject 102"
        assert summaries[0].message_id == "<msg102@example.com>"
        assert summaries[0].flags == []

    def test_fetch_summaries_skips_unknown(self, mock_imap_client, imap, account):
        """
        Contract: ListEmailsContract
        Enforces: POST-LIST-03
        """
        imap.fetch.side_effect = None
        imap.fetch.return_value = {}

        with MailboxSession.open(account, mailbox="INBOX") as session:
            assert session.fetch_summaries([999]) == []
            assert session.fetch_summaries([]) == []

    def test_mutation_requires_read_write(self, mock_imap_client, imap, account):
        """
        Contract: MoveEmailContract
        Enforces: INV-MOVE-01
        Adversarial: True
        """
        with MailboxSession.open(account, mailbox="INBOX", readonly=True) as session:
            with pytest.raises(ReadOnlySessionError):
                mutations.move_message(session, 101, "INBOX.Archive")
            with pytest.raises(ReadOnlySessionError):
                mutations.delete_message(session, 101)

        imap.move.assert_not_called()
        imap.add_flags.assert_not_called()


# =============================================================================
# LOCATOR TESTS
# =============================================================================

class TestMessageLocator:
    """Tests for UID / Message-ID resolution."""

    def test_uid_passes_through(self, writable, imap):
        """
        Contract: MoveEmailContract
        Enforces: PRE-MOVE-02
        """
        assert locator.resolve(writable, MessageRef(uid=42)) == 42
        imap.search.assert_not_called()

    def test_message_id_search(self, writable, imap, message_ids):
        """
        Contract: MoveEmailContract
        Enforces: PRE-MOVE-02
        """
        imap.search.return_value = [205]
        message_ids[205] = "<abc@example.com>"

        uid = locator.resolve(writable, MessageRef(message_id="<abc@example.com>"))

        assert uid == 205
        imap.search.assert_called_once_with(["HEADER", "Message-ID", "<abc@example.com>"])
        imap.fetch.assert_called_once_with([205], MESSAGE_ID_FETCH)
        assert b"BODY.PEEK[HEADER.FIELDS (MESSAGE-ID)]" in MESSAGE_ID_FETCH

    def test_message_id_exact_match_filters_candidates(self, writable, imap, message_ids):
        """
        Contract: MoveEmailContract
        Enforces: PRE-MOVE-02
        Adversarial: True
        """
        # SEARCH HEADER matches substrings, so the server returns all three
        imap.search.return_value = [11, 12, 13]
        message_ids.update(
            {
                11: "<xabc@example.com>",
                12: "<abc@example.com>",
                13: "<abc@example.com.evil>",
            }
        )

        uid = locator.resolve(writable, MessageRef(message_id="<abc@example.com>"), strict=True)

        assert uid == 12

    def test_message_id_substring_is_not_found(self, writable, imap, message_ids):
        """
        Contract: MoveEmailContract
        Enforces: PRE-MOVE-02, ERRORS: NOT_FOUND
        """
        imap.search.return_value = [101]
        message_ids[101] = "<xabc@example.com>"

        with pytest.raises(MessageNotFoundError):
            locator.resolve(writable, MessageRef(message_id="abc@example.com"))

    def test_message_id_surrounding_whitespace_ignored(self, writable, imap, message_ids):
        imap.search.return_value = [205]
        message_ids[205] = "<abc@example.com>"

        uid = locator.resolve(writable, MessageRef(message_id="  <abc@example.com> "))

        assert uid == 205
        imap.search.assert_called_once_with(["HEADER", "Message-ID", "<abc@example.com>"])

    def test_message_id_not_found(self, writable, imap):
        """
        Contract: MoveEmailContract
        Enforces: ERRORS: NOT_FOUND
        """
        imap.search.return_value = []

        with pytest.raises(MessageNotFoundError):
            locator.resolve(writable, MessageRef(message_id="<gone@example.com>"))

        imap.fetch.assert_not_called()

    def test_multiple_matches_first_wins(self, writable, imap, message_ids, caplog):
        """
        Contract: MoveEmailContract
        Enforces: PRE-MOVE-02
        """
        imap.search.return_value = [7, 9]
        message_ids.update({7: "<dup@example.com>", 9: "<dup@example.com>"})

        with caplog.at_level("WARNING"):
            uid = locator.resolve(writable, MessageRef(message_id="<dup@example.com>"))

        assert uid == 7
        assert "matched 2 emails" in caplog.text

    def test_multiple_matches_strict(self, writable, imap, message_ids):
        """
        Contract: MoveEmailContract
        Enforces: PRE-MOVE-02
        """
        imap.search.return_value = [7, 9]
        message_ids.update({7: "<dup@example.com>", 9: "<dup@example.com>"})

        with pytest.raises(AmbiguousMatchError):
            locator.resolve(writable, MessageRef(message_id="<dup@example.com>"), strict=True)

    def test_message_ref_needs_exactly_one(self):
        with pytest.raises(InvalidArgumentError):
            MessageRef()
        with pytest.raises(InvalidArgumentError):
            MessageRef(uid=1, message_id="<x@example.com>")

    @pytest.mark.parametrize("blank", ["", "   ", "\t"])
    def test_message_ref_rejects_blank_message_id(self, blank):
        with pytest.raises(InvalidArgumentError):
            MessageRef(message_id=blank)


# =============================================================================
# MUTATION EXECUTOR TESTS
# =============================================================================

class TestMutationExecutor:
    """Tests for move, delete, bulk move and flag changes."""

    def test_move_native(self, writable, imap):
        """
        Contract: MoveEmailContract
        Enforces: INV-MOVE-02
        """
        assert mutations.move_message(writable, 101, "INBOX.Archive") == "move"

        imap.move.assert_called_once_with([101], "INBOX.Archive")
        imap.copy.assert_not_called()
        imap.expunge.assert_not_called()

    def test_move_fallback_uidplus(self, writable, imap, capabilities):
        """
        Contract: MoveEmailContract
        Enforces: INV-MOVE-02, INV-DELETE-02
        """
        capabilities.discard("MOVE")

        assert mutations.move_message(writable, 101, "INBOX.Archive") == "copy"

        imap.move.assert_not_called()
        imap.copy.assert_called_once_with([101], "INBOX.Archive")
        imap.add_flags.assert_called_once_with([101], [b"\\Deleted"])
        imap.expunge.assert_called_once_with([101])

    def test_move_fallback_plain_expunge(self, writable, imap, capabilities):
        """
        Contract: MoveEmailContract
        Enforces: INV-MOVE-02
        """
        capabilities.difference_update({"MOVE", "UIDPLUS"})

        mutations.move_message(writable, 101, "INBOX.Archive")

        imap.expunge.assert_called_once_with()

    def test_move_fallback_partial(self, writable, imap, capabilities):
        """
        Contract: MoveEmailContract
        Enforces: INV-MOVE-03, ERRORS: PARTIAL_MUTATION
        """
        capabilities.discard("MOVE")
        imap.expunge.side_effect = IMAPClientError("EXPUNGE failed")

        with pytest.raises(PartialMutationError) as exc_info:
            mutations.move_message(writable, 101, "INBOX.Archive")

        assert exc_info.value.completed_steps == [
            MutationStep.COPIED,
            MutationStep.FLAGGED_DELETED,
        ]

    def test_move_fallback_copy_failure_is_not_partial(self, writable, imap, capabilities):
        """
        Contract: MoveEmailContract
        Enforces: INV-MOVE-03
        """
        capabilities.discard("MOVE")
        imap.copy.side_effect = IMAPClientError("[TRYCREATE] No such mailbox")

        with pytest.raises(ProtocolError) as exc_info:
            mutations.move_message(writable, 101, "Missing")

        assert not isinstance(exc_info.value, PartialMutationError)
        imap.add_flags.assert_not_called()

    def test_delete_flags_and_expunges(self, writable, imap):
        """
        Contract: DeleteEmailContract
        Enforces: POST-DELETE-01, INV-DELETE-02
        """
        mutations.delete_message(writable, 7)

        imap.add_flags.assert_called_once_with([7], [b"\\Deleted"])
        imap.expunge.assert_called_once_with([7])

    def test_delete_partial(self, writable, imap):
        """
        Contract: DeleteEmailContract
        Enforces: ERRORS: PARTIAL_MUTATION
        """
        imap.expunge.side_effect = IMAPClientError("EXPUNGE failed")

        with pytest.raises(PartialMutationError) as exc_info:
            mutations.delete_message(writable, 7)

        assert exc_info.value.completed_steps == [MutationStep.FLAGGED_DELETED]

    def test_bulk_move_partial_failure(self, writable, imap):
        """
        Contract: BulkMoveContract
        Enforces: POST-BULK-01, POST-BULK-02, INV-BULK-01, INV-BULK-03
        """

        def fake_move(uids, folder):
            if uids == [999]:
                raise IMAPClientError("UID 999 does not exist")

        imap.move.side_effect = fake_move

        result = mutations.bulk_move(writable, [101, 102, 999], "INBOX.Archive")

        assert result.total == 3
        assert result.succeeded == 2
        assert result.failed == 1
        assert [r.uid for r in result.results] == [101, 102, 999]
        assert [r.success for r in result.results] == [True, True, False]
        assert "999" in result.results[2].error
        assert [c.args[0] for c in imap.move.call_args_list] == [[101], [102], [999]]

    def test_bulk_move_over_cap(self, writable, imap):
        """
        Contract: BulkMoveContract
        Enforces: PRE-BULK-01, INV-BULK-02
        """
        with pytest.raises(TooManyItemsError):
            mutations.bulk_move(writable, list(range(MAX_BULK_ITEMS + 1)), "INBOX.Archive")

        imap.move.assert_not_called()

    def test_bulk_move_at_cap(self, writable, imap):
        """
        Contract: BulkMoveContract
        Enforces: POST-BULK-02
        """
        result = mutations.bulk_move(writable, list(range(1, MAX_BULK_ITEMS + 1)), "X")

        assert result.succeeded + result.failed == MAX_BULK_ITEMS

    def test_set_flags_single_store(self, writable, imap):
        """
        Contract: FlagsContract
        Enforces: POST-FLAGS-01, INV-FLAGS-02
        """
        mutations.set_flags(writable, [1, 2, 3], ["\\Flagged"], "add")
        mutations.set_flags(writable, [1, 2, 3], ["\\Flagged"], "remove")

        imap.add_flags.assert_called_once_with([1, 2, 3], [b"\\Flagged"])
        imap.remove_flags.assert_called_once_with([1, 2, 3], [b"\\Flagged"])
        imap.expunge.assert_not_called()

    def test_set_flags_invalid_action(self, writable, imap):
        """
        Contract: FlagsContract
        Enforces: ERRORS: INVALID_ARGUMENT
        """
        with pytest.raises(InvalidArgumentError):
            mutations.set_flags(writable, [1], ["\\Seen"], "toggle")
        with pytest.raises(InvalidArgumentError):
            mutations.set_flags(writable, [1], [], "add")

        imap.add_flags.assert_not_called()

    def test_set_flags_empty_uids(self, writable, imap):
        mutations.set_flags(writable, [], ["\\Seen"], "add")

        imap.add_flags.assert_not_called()
