"""
DTOs -- immutable views of notes and their satellite records.

Responsibility:
    The read side, the renderer and the dispatch service see notes only
    through these frozen objects, never through ORM entities.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model()`` class methods are
    boundary converters invoked from the service and selector layers.

Invariants enforced:
    - Money fields are quantized to two places and percentages to four,
      whatever scale the database returned, so two views of the same row
      compare and render identically on every backend.
    - Datetimes are timezone-aware UTC (SQLite hands back naive values).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from notes_kernel.domain.calculator import Levies

if TYPE_CHECKING:
    from notes_kernel.models.dispatch_log import DispatchLog
    from notes_kernel.models.note import CoInsuranceShare, Note
    from notes_kernel.models.reminder import Reminder

_CENT = Decimal("0.01")
_PCT = Decimal("0.0001")


def _money(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(value).quantize(_CENT)


def _pct(value: Decimal) -> Decimal:
    return Decimal(value).quantize(_PCT)


def _aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ShareDTO:
    insurer_id: str
    percentage: Decimal
    amount: Decimal

    @classmethod
    def from_model(cls, share: CoInsuranceShare) -> ShareDTO:
        return cls(
            insurer_id=share.insurer_id,
            percentage=_pct(share.percentage),
            amount=_money(share.amount),
        )


@dataclass(frozen=True)
class NoteDTO:
    """Full snapshot of one note."""

    id: UUID
    document_number: str
    note_type: str
    status: str
    client_id: str
    policy_id: str
    insurer_id: str | None
    currency: str
    gross_premium: Decimal
    brokerage_pct: Decimal
    vat_pct: Decimal
    agent_commission_pct: Decimal
    levies: Levies
    total_levies: Decimal
    brokerage_amount: Decimal
    vat_on_brokerage: Decimal
    agent_commission_amount: Decimal
    net_brokerage: Decimal
    net_amount_due: Decimal
    shares: tuple[ShareDTO, ...]
    artifact_ref: str | None
    artifact_hash: str | None
    artifact_rendered_at: datetime | None
    prepared_by: UUID
    authorized_by: UUID | None
    issued_by: UUID | None
    payable_bank_account_id: str | None
    narration: str | None
    created_at: datetime
    updated_at: datetime
    approved_at: datetime | None
    issued_at: datetime | None
    version: int

    @property
    def sequence_year(self) -> int:
        return int(self.document_number.split("/")[1])

    @property
    def sequence_number(self) -> int:
        return int(self.document_number.split("/")[2])

    @property
    def has_artifact(self) -> bool:
        return self.artifact_ref is not None and self.artifact_hash is not None

    @classmethod
    def from_model(cls, note: Note) -> NoteDTO:
        return cls(
            id=note.id,
            document_number=note.document_number,
            note_type=note.note_type,
            status=note.status,
            client_id=note.client_id,
            policy_id=note.policy_id,
            insurer_id=note.insurer_id,
            currency=note.currency,
            gross_premium=_money(note.gross_premium),
            brokerage_pct=_pct(note.brokerage_pct),
            vat_pct=_pct(note.vat_pct),
            agent_commission_pct=_pct(note.agent_commission_pct),
            levies=Levies(
                niacom=_money(note.levy_niacom),
                ncrib=_money(note.levy_ncrib),
                ed_tax=_money(note.levy_ed_tax),
            ),
            total_levies=_money(note.total_levies),
            brokerage_amount=_money(note.brokerage_amount),
            vat_on_brokerage=_money(note.vat_on_brokerage),
            agent_commission_amount=_money(note.agent_commission_amount),
            net_brokerage=_money(note.net_brokerage),
            net_amount_due=_money(note.net_amount_due),
            shares=tuple(ShareDTO.from_model(s) for s in note.shares),
            artifact_ref=note.artifact_ref,
            artifact_hash=note.artifact_hash,
            artifact_rendered_at=_aware(note.artifact_rendered_at),
            prepared_by=note.prepared_by,
            authorized_by=note.authorized_by,
            issued_by=note.issued_by,
            payable_bank_account_id=note.payable_bank_account_id,
            narration=note.narration,
            created_at=_aware(note.created_at),
            updated_at=_aware(note.updated_at),
            approved_at=_aware(note.approved_at),
            issued_at=_aware(note.issued_at),
            version=note.version,
        )


@dataclass(frozen=True)
class ReminderDTO:
    id: UUID
    note_id: UUID
    reminder_type: str
    due_date: date
    status: str

    @classmethod
    def from_model(cls, reminder: Reminder) -> ReminderDTO:
        return cls(
            id=reminder.id,
            note_id=reminder.note_id,
            reminder_type=reminder.reminder_type,
            due_date=reminder.due_date,
            status=reminder.status,
        )


@dataclass(frozen=True)
class DispatchDTO:
    id: UUID
    note_id: UUID
    recipients: tuple[str, ...]
    subject: str
    status: str
    provider_message_id: str | None
    error_message: str | None
    artifact_hash: str
    sent_by: UUID
    sent_at: datetime

    @property
    def succeeded(self) -> bool:
        return self.status == "sent"

    @classmethod
    def from_model(cls, log: DispatchLog) -> DispatchDTO:
        return cls(
            id=log.id,
            note_id=log.note_id,
            recipients=tuple(log.recipients),
            subject=log.subject,
            status=log.status,
            provider_message_id=log.provider_message_id,
            error_message=log.error_message,
            artifact_hash=log.artifact_hash,
            sent_by=log.sent_by,
            sent_at=_aware(log.sent_at),
        )
