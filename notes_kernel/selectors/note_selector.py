"""
Module: notes_kernel.selectors.note_selector
Responsibility: Read-only access to notes and their reminders.

Invariants enforced:
    - Returns NoteDTO / ReminderDTO, never ORM models.
    - Listing is newest first (created_at, then document number) and the
      page size is capped at MAX_LIMIT.
    - Nothing here renders or touches the artifact store.

Failure modes:
    - Returns None or an empty list when nothing matches.
"""

from uuid import UUID

from sqlalchemy import or_, select

from notes_kernel.domain.dtos import NoteDTO, ReminderDTO
from notes_kernel.models.note import Note
from notes_kernel.models.reminder import Reminder
from notes_kernel.selectors.base import BaseSelector


class NoteSelector(BaseSelector[Note]):
    """Queries over the notes table."""

    MAX_LIMIT = 100
    DEFAULT_LIMIT = 20

    def get(self, note_id: UUID) -> NoteDTO | None:
        note = self.session.get(Note, note_id)
        return NoteDTO.from_model(note) if note is not None else None

    def get_by_document_number(self, document_number: str) -> NoteDTO | None:
        note = self.session.execute(
            select(Note).where(Note.document_number == document_number.strip())
        ).scalar_one_or_none()
        return NoteDTO.from_model(note) if note is not None else None

    def list_notes(
        self,
        note_type: str | None = None,
        statuses: list[str] | None = None,
        client_id: str | None = None,
        insurer_id: str | None = None,
        search: str | None = None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
    ) -> list[NoteDTO]:
        """
        Filtered page of notes, newest first.

        ``search`` matches a substring of the document number or narration.
        ``limit`` is clamped to [1, MAX_LIMIT]; a negative offset counts as 0.
        """
        query = select(Note)
        if note_type:
            query = query.where(Note.note_type == note_type.upper())
        if statuses:
            query = query.where(Note.status.in_([getattr(s, "value", s) for s in statuses]))
        if client_id:
            query = query.where(Note.client_id == client_id)
        if insurer_id:
            query = query.where(Note.insurer_id == insurer_id)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(Note.document_number.ilike(pattern), Note.narration.ilike(pattern))
            )

        limit = max(1, min(limit, self.MAX_LIMIT))
        query = (
            query.order_by(Note.created_at.desc(), Note.document_number.desc())
            .limit(limit)
            .offset(max(0, offset))
        )
        return [NoteDTO.from_model(n) for n in self.session.execute(query).scalars()]

    def reminders_for(self, note_id: UUID) -> list[ReminderDTO]:
        reminders = self.session.execute(
            select(Reminder)
            .where(Reminder.note_id == note_id)
            .order_by(Reminder.due_date, Reminder.reminder_type)
        ).scalars().all()
        return [ReminderDTO.from_model(r) for r in reminders]
