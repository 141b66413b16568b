"""
Module: notes_kernel.models.reminder
Responsibility: Payment reminders scheduled when a Debit Note is issued.
Architecture position: Kernel > Models.

Reminders are written in the same transaction that moves the note to
Issued, so an Issued DN always has its reminders and an Approved one never
does.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from notes_kernel.db.base import Base, UUIDString


class Reminder(Base):
    """A follow-up owed on an issued note (e.g. RemitPremium, VATOnCommission)."""

    __tablename__ = "note_reminders"

    __table_args__ = (
        UniqueConstraint("note_id", "reminder_type", name="uq_reminder_type"),
        Index("idx_reminder_due", "due_date"),
    )

    note_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("notes.id"),
        nullable=False,
    )

    reminder_type: Mapped[str] = mapped_column(String(32), nullable=False)

    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Pending until an external process marks it done
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="Pending")

    def __repr__(self) -> str:
        return f"<Reminder {self.reminder_type} due={self.due_date} {self.status}>"
