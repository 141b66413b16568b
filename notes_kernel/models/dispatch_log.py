"""
Module: notes_kernel.models.dispatch_log
Responsibility: Append-only record of every attempt to deliver an issued
    note's artifact.
Architecture position: Kernel > Models.

Invariants enforced:
    - Rows are never updated or deleted (db/immutability.py).
    - artifact_hash is the hash bound to the note at the time of the attempt.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notes_kernel.db.base import Base, UUIDString
from notes_kernel.db.types import ContentHash


class DispatchStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class DispatchLog(Base):
    """Outcome of one delivery attempt."""

    __tablename__ = "dispatch_logs"

    __table_args__ = (
        Index("idx_dispatch_note", "note_id", "sent_at"),
    )

    note_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("notes.id"),
        nullable=False,
    )

    recipients: Mapped[list] = mapped_column(JSON, nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    artifact_hash: Mapped[ContentHash] = mapped_column(nullable=False)

    sent_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<DispatchLog {self.note_id} {self.status}>"
