"""
AuditorService -- append-only, hash-chained audit trail.

Responsibility:
    Writes one AuditEntry for every note mutation, artifact event and
    dispatch attempt, and validates the chain on demand.

Architecture position:
    Kernel > Services -- called by NoteLifecycleService and DispatchService
    inside their own transactions.

Invariants enforced:
    - seq comes from SequenceAllocator (category AUDIT, year 0), never from
      max(seq) + 1.  Allocation locks the counter row, which also
      serializes concurrent writers of the chain so prev_hash is always
      the true predecessor.
    - hash = H(table_name | record_id | action | payload_hash | prev_hash).
    - payload_hash = H(canonical JSON of {"before": ..., "after": ...}).
    - Entries are never modified or deleted (db/immutability.py).

Failure modes:
    - AuditChainBrokenError from validate_chain() on any mismatch.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from notes_kernel.domain.clock import Clock, SystemClock
from notes_kernel.exceptions import AuditChainBrokenError
from notes_kernel.logging_config import get_logger
from notes_kernel.models.audit_entry import AuditAction, AuditEntry
from notes_kernel.services.sequence_service import SequenceAllocator
from notes_kernel.utils.hashing import hash_audit_entry, hash_payload

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: str
    occurred_at: datetime
    actor_id: UUID
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit entries for one record, oldest first."""

    table_name: str
    record_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> list[str]:
        return [entry.action for entry in self.entries]

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None


def _payload(before: dict | None, after: dict | None) -> dict:
    return {"before": before, "after": after}


class AuditorService:
    """
    Creates and validates audit entries.

    Contract:
        ``record()`` flushes one AuditEntry into the caller's session.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    NOTES_TABLE = "notes"

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceAllocator(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditEntry.hash).order_by(AuditEntry.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        table_name: str,
        record_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """
        Append one entry to the chain.

        Postconditions:
            - The entry is flushed with a fresh seq and linked to the
              previous entry's hash.
        """
        seq = self._sequences.allocate_audit_seq()
        prev_hash = self._get_last_hash()

        payload_hash = hash_payload(_payload(before, after))
        action_value = AuditAction(action).value
        entry_hash = hash_audit_entry(
            table_name=table_name,
            record_id=str(record_id),
            action=action_value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        entry = AuditEntry(
            seq=seq,
            table_name=table_name,
            record_id=record_id,
            action=action_value,
            actor_id=actor_id,
            before_snapshot=before,
            after_snapshot=after,
            occurred_at=self._clock.now(),
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=entry_hash,
        )
        self._session.add(entry)
        self._session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "table_name": table_name,
                "record_id": str(record_id),
                "action": action_value,
                "seq": seq,
            },
        )
        return entry

    def record_note(
        self,
        note_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
    ) -> AuditEntry:
        return self.record(self.NOTES_TABLE, note_id, action, actor_id, before, after)

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Checks, in seq order: the first entry has no predecessor; each
        entry's payload_hash matches its stored snapshots; each hash
        recomputes; each prev_hash equals the predecessor's hash.

        Raises:
            AuditChainBrokenError: At the first entry that fails.
        """
        entries = self._session.execute(
            select(AuditEntry).order_by(AuditEntry.seq)
        ).scalars().all()

        previous: AuditEntry | None = None
        for entry in entries:
            expected_prev = previous.hash if previous is not None else None
            if entry.prev_hash != expected_prev:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": entry.seq, "reason": "prev_hash_mismatch"},
                )
                raise AuditChainBrokenError(
                    entry.seq, expected_prev or "None", entry.prev_hash or "None",
                )

            payload_hash = hash_payload(
                _payload(entry.before_snapshot, entry.after_snapshot)
            )
            if payload_hash != entry.payload_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": entry.seq, "reason": "payload_hash_mismatch"},
                )
                raise AuditChainBrokenError(entry.seq, payload_hash, entry.payload_hash)

            expected_hash = hash_audit_entry(
                table_name=entry.table_name,
                record_id=str(entry.record_id),
                action=entry.action,
                payload_hash=entry.payload_hash,
                prev_hash=entry.prev_hash,
            )
            if entry.hash != expected_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"seq": entry.seq, "reason": "hash_mismatch"},
                )
                raise AuditChainBrokenError(entry.seq, expected_hash, entry.hash)

            previous = entry

        logger.info("audit_chain_validated", extra={"entry_count": len(entries)})
        return True

    def get_trace(self, table_name: str, record_id: UUID) -> AuditTrace:
        """All entries for one record, oldest first."""
        entries = self._session.execute(
            select(AuditEntry)
            .where(
                AuditEntry.table_name == table_name,
                AuditEntry.record_id == record_id,
            )
            .order_by(AuditEntry.seq)
        ).scalars().all()

        return AuditTrace(
            table_name=table_name,
            record_id=record_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=entry.seq,
                    action=entry.action,
                    occurred_at=entry.occurred_at,
                    actor_id=entry.actor_id,
                    before=entry.before_snapshot,
                    after=entry.after_snapshot,
                    hash=entry.hash,
                )
                for entry in entries
            ),
        )
