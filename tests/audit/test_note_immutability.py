"""
ORM immutability guard tests.

These bypass the lifecycle service and mutate rows directly, proving the
flush-time listeners block what the service would already refuse.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from notes_kernel.exceptions import ImmutabilityViolationError
from notes_kernel.models.audit_entry import AuditEntry
from notes_kernel.models.dispatch_log import DispatchLog
from notes_kernel.models.note import CoInsuranceShare, Note


class TestNoteGuards:
    def test_document_number_never_changes(self, session, draft_note):
        note = session.get(Note, draft_note.id)
        note.document_number = "CN/2025/999999"

        with pytest.raises(ImmutabilityViolationError, match="document_number"):
            session.flush()

    def test_draft_financials_may_change(self, session, draft_note):
        note = session.get(Note, draft_note.id)
        note.gross_premium = Decimal("5000.00")

        session.flush()

    def test_financials_frozen_after_approval(self, session, approved_note):
        note = session.get(Note, approved_note.id)
        note.gross_premium = Decimal("1.00")

        with pytest.raises(ImmutabilityViolationError, match="frozen"):
            session.flush()

    def test_status_cannot_regress(self, session, approved_note):
        note = session.get(Note, approved_note.id)
        note.status = "Draft"

        with pytest.raises(ImmutabilityViolationError, match="Status cannot move"):
            session.flush()

    def test_status_cannot_skip(self, session, draft_note):
        note = session.get(Note, draft_note.id)
        note.status = "Issued"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_issued_artifact_binding_is_write_once(self, session, issued_note):
        note = session.get(Note, issued_note.id)
        note.artifact_hash = "f" * 64

        with pytest.raises(ImmutabilityViolationError, match="Artifact binding"):
            session.flush()

    def test_admin_fields_editable_when_issued(self, session, issued_note):
        note = session.get(Note, issued_note.id)
        note.narration = "Remitted via transfer"

        session.flush()

    def test_notes_are_never_deleted(self, session, draft_note):
        session.delete(session.get(Note, draft_note.id))

        with pytest.raises(ImmutabilityViolationError, match="cannot be deleted"):
            session.flush()


class TestShareGuards:
    @pytest.fixture
    def coinsured_approved(self, lifecycle, cn_payload, preparer, approver):
        note = lifecycle.create_note(
            cn_payload(
                insurer_id=None,
                coinsurance=[
                    {"insurer_id": "INS-A", "percentage": "60"},
                    {"insurer_id": "INS-B", "percentage": "40"},
                ],
            ),
            preparer,
        )
        return lifecycle.approve_note(note.id, approver)

    def test_shares_cannot_be_added_after_draft(self, session, coinsured_approved):
        session.add(CoInsuranceShare(
            note_id=coinsured_approved.id,
            position=3,
            insurer_id="INS-C",
            percentage=Decimal("1"),
            amount=Decimal("1.00"),
        ))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_shares_are_never_edited_in_place(self, session, coinsured_approved):
        share = session.execute(
            select(CoInsuranceShare).where(CoInsuranceShare.note_id == coinsured_approved.id)
        ).scalars().first()
        share.amount = Decimal("0.01")

        with pytest.raises(ImmutabilityViolationError, match="replaced wholesale"):
            session.flush()

    def test_shares_cannot_be_removed_after_draft(self, session, coinsured_approved):
        share = session.execute(
            select(CoInsuranceShare).where(CoInsuranceShare.note_id == coinsured_approved.id)
        ).scalars().first()
        session.delete(share)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAppendOnlyRecords:
    def test_audit_entries_cannot_be_updated(self, session, draft_note):
        entry = session.execute(select(AuditEntry).limit(1)).scalar_one()
        entry.action = "APPROVE"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_audit_entries_cannot_be_deleted(self, session, draft_note):
        session.delete(session.execute(select(AuditEntry).limit(1)).scalar_one())

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_dispatch_logs_cannot_be_updated(self, session, issued_note, dispatcher, issuer):
        dispatcher.dispatch(issued_note.id, ["accounts@insurer.example.com"], issuer)
        log = session.execute(select(DispatchLog)).scalar_one()
        log.status = "failed"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
