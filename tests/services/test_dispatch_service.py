"""
DispatchService tests.

Verifies:
- Only Issued notes are dispatched, using the stored bytes
- Every attempt is logged and audited, including transport failures
- Recipients are validated before anything is sent
"""

from uuid import uuid4

import pytest

from notes_kernel.db.engine import session_scope
from notes_kernel.exceptions import (
    ArtifactNotFoundError,
    InvalidRecipientError,
    InvalidTransition,
    NoteNotFoundError,
    UnauthorizedTransitionError,
)
from notes_kernel.services.auditor_service import AuditorService
from notes_kernel.services.dispatch_service import validate_recipients

RECIPIENT = "claims@alpha-insurance.example.com"


class TestValidateRecipients:
    def test_strips_and_dedupes(self):
        assert validate_recipients([" a@b.com", "A@B.com", "c@d.org"]) == ("a@b.com", "c@d.org")

    def test_single_string(self):
        assert validate_recipients("a@b.com") == ("a@b.com",)

    @pytest.mark.parametrize("bad", ["not-an-email", "a@b", "a b@c.com", ""])
    def test_rejects_malformed(self, bad):
        with pytest.raises(InvalidRecipientError):
            validate_recipients([bad])

    def test_rejects_empty_list(self):
        with pytest.raises(InvalidRecipientError):
            validate_recipients([])


class TestDispatch:
    def test_sends_stored_bytes(self, dispatcher, issued_note, issuer, transport, artifact_store):
        result = dispatcher.dispatch(issued_note.id, [RECIPIENT], issuer)

        assert result.succeeded
        assert result.provider_message_id == "msg-1"
        assert result.artifact_hash == issued_note.artifact_hash
        assert result.recipients == (RECIPIENT,)

        sent = transport.sent[0]
        assert sent["attachment"] == artifact_store.get(issued_note.artifact_ref)
        assert sent["filename"] == "CN-2025-000001.txt"
        assert sent["subject"] == "Credit Note CN/2025/000001"
        assert "89,165.00" in sent["body"]

    def test_does_not_render(self, dispatcher, issued_note, issuer, renderer):
        calls = renderer.calls

        dispatcher.dispatch(issued_note.id, [RECIPIENT], issuer, subject="Your note")

        assert renderer.calls == calls

    def test_attempt_is_audited(self, dispatcher, issued_note, issuer, session_factory):
        dispatcher.dispatch(issued_note.id, [RECIPIENT], issuer)

        with session_scope(session_factory) as s:
            entry = AuditorService(s).get_trace("notes", issued_note.id).entries[-1]

        assert entry.action == "DISPATCH"
        assert entry.after["status"] == "sent"
        assert entry.after["artifact_hash"] == issued_note.artifact_hash
        assert entry.after["recipients"] == [RECIPIENT]

    def test_transport_failure_is_recorded(self, dispatcher, issued_note, issuer, transport):
        transport.fail_with = "mailbox unavailable"

        result = dispatcher.dispatch(issued_note.id, [RECIPIENT], issuer)

        assert not result.succeeded
        assert result.status == "failed"
        assert result.error_message == "mailbox unavailable"

    def test_transport_exception_is_recorded(self, dispatcher, issued_note, issuer, transport):
        transport.raise_with = ConnectionError("smtp down")

        result = dispatcher.dispatch(issued_note.id, [RECIPIENT], issuer)

        assert not result.succeeded
        assert result.error_message == "ConnectionError: smtp down"

    def test_history_newest_first(self, dispatcher, issued_note, issuer, clock, transport):
        transport.fail_with = "timeout"
        dispatcher.dispatch(issued_note.id, [RECIPIENT], issuer)
        clock.advance(300)
        transport.fail_with = None
        dispatcher.dispatch(issued_note.id, [RECIPIENT], issuer)

        history = dispatcher.list_dispatches(issued_note.id)

        assert [d.status for d in history] == ["sent", "failed"]

    def test_approved_note_cannot_be_dispatched(self, dispatcher, approved_note, issuer, transport):
        with pytest.raises(InvalidTransition, match="Only issued notes"):
            dispatcher.dispatch(approved_note.id, [RECIPIENT], issuer)

        assert transport.sent == []

    def test_missing_bytes(
        self, dispatcher, issued_note, issuer, artifact_store, transport, session_factory,
    ):
        artifact_store._blobs.pop(issued_note.artifact_ref)

        with pytest.raises(ArtifactNotFoundError):
            dispatcher.dispatch(issued_note.id, [RECIPIENT], issuer)

        assert transport.sent == []
        history = dispatcher.list_dispatches(issued_note.id)
        assert [d.status for d in history] == ["failed"]
        assert issued_note.artifact_ref in history[0].error_message

        with session_scope(session_factory) as s:
            entry = AuditorService(s).get_trace("notes", issued_note.id).entries[-1]
        assert entry.action == "DISPATCH"
        assert entry.after["status"] == "failed"
        assert entry.after["artifact_hash"] == issued_note.artifact_hash

    def test_unauthorized(self, dispatcher, issued_note, preparer):
        with pytest.raises(UnauthorizedTransitionError):
            dispatcher.dispatch(issued_note.id, [RECIPIENT], preparer)

    def test_unknown_note(self, dispatcher, issuer):
        with pytest.raises(NoteNotFoundError):
            dispatcher.dispatch(uuid4(), [RECIPIENT], issuer)

    def test_bad_recipient_sends_nothing(self, dispatcher, issued_note, issuer, transport):
        with pytest.raises(InvalidRecipientError):
            dispatcher.dispatch(issued_note.id, ["nobody"], issuer)

        assert transport.sent == []
        assert dispatcher.list_dispatches(issued_note.id) == []
