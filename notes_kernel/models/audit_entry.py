"""
Module: notes_kernel.models.audit_entry
Responsibility: ORM persistence for the tamper-evident audit trail of note
    mutations, artifact events and dispatch attempts.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only; no UPDATE or DELETE (ORM listener in db/immutability.py).
    - hash = H(table_name | record_id | action | payload_hash | prev_hash).
      Validated by AuditorService.validate_chain().
    - seq is monotonically increasing, allocated by SequenceAllocator under
      the AUDIT category.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from notes_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions.

    Contract: Every member is produced by exactly one service operation.
    """

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    APPROVE = "APPROVE"
    ISSUE = "ISSUE"
    REGENERATE = "REGENERATE"
    ARTIFACT_BOUND = "ARTIFACT_BOUND"
    RENDER_FAILED = "RENDER_FAILED"
    ARTIFACT_VERIFIED = "ARTIFACT_VERIFIED"
    TAMPER_DETECTED = "TAMPER_DETECTED"
    DISPATCH = "DISPATCH"


class AuditEntry(Base):
    """
    One audit record, chained to its predecessor by hash.

    Contract:
        Rows are append-only.  before_snapshot / after_snapshot hold the
        JSON-safe state of the record around the mutation (either may be
        None: creation has no before, a dispatch attempt has no after state
        change and carries its outcome in after_snapshot).

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the first entry.

    Non-goals:
        - This model does NOT compute hashes; AuditorService does.
    """

    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_record", "table_name", "record_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "notes"
    table_name: Mapped[str] = mapped_column(String(50), nullable=False)

    record_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[str] = mapped_column(String(32), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    before_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Hash of canonical JSON {"before": ..., "after": ...}
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntry #{self.seq} {self.action} on {self.table_name}:{self.record_id}>"
