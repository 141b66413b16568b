"""
Module: notes_kernel.models.note
Responsibility: ORM persistence for Credit Notes, Debit Notes and their
    co-insurance shares.
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - document_number is UNIQUE and so is (note_type, sequence_year,
      sequence_number).  Both are written once at INSERT.
    - version is the SQLAlchemy version counter: every UPDATE carries
      "WHERE version = :expected", so a concurrent writer that committed
      first turns the later flush into StaleDataError.
    - Financial and identity columns are protected by ORM listeners in
      db/immutability.py once the note has left Draft.

Failure modes:
    - IntegrityError on duplicate document number (never expected: the
      sequence allocator owns numbering).
    - StaleDataError on a lost optimistic race.

Audit relevance:
    Every INSERT/UPDATE of a Note is paired with an AuditEntry written by the
    lifecycle service in the same transaction.  to_audit_dict() is the
    snapshot stored as before/after.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from notes_kernel.db.base import Base, UUIDString
from notes_kernel.db.types import ContentHash, Money, PartyRef, Percentage


class Note(Base):
    """
    One Credit Note (CN) or Debit Note (DN).

    Contract:
        Rows are inserted by NoteLifecycleService.create_note only, and their
        status only moves Draft -> Approved -> Issued.

    Guarantees:
        - document_number == "{note_type}/{sequence_year:04d}/{sequence_number:06d}".
        - Computed amount columns are consistent with the input columns under
          the staged two-decimal rounding rule.
        - shares is ordered by position and replaced wholesale.

    Non-goals:
        - This model does NOT validate parties; that happens before the
          creation transaction opens.
    """

    __tablename__ = "notes"

    __table_args__ = (
        UniqueConstraint("document_number", name="uq_note_document_number"),
        UniqueConstraint(
            "note_type", "sequence_year", "sequence_number",
            name="uq_note_sequence",
        ),
        Index("idx_note_status", "status"),
        Index("idx_note_client", "client_id"),
        Index("idx_note_insurer", "insurer_id"),
        Index("idx_note_created", "created_at"),
    )

    # Human-facing identifier, e.g. CN/2025/000042
    document_number: Mapped[str] = mapped_column(String(32), nullable=False)

    note_type: Mapped[str] = mapped_column(String(2), nullable=False)
    sequence_year: Mapped[int] = mapped_column(Integer, nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Registry references
    client_id: Mapped[PartyRef] = mapped_column(nullable=False)
    policy_id: Mapped[PartyRef] = mapped_column(nullable=False)
    insurer_id: Mapped[PartyRef | None] = mapped_column(nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Inputs
    gross_premium: Mapped[Money] = mapped_column(nullable=False)
    brokerage_pct: Mapped[Percentage] = mapped_column(nullable=False)
    vat_pct: Mapped[Percentage] = mapped_column(nullable=False)
    agent_commission_pct: Mapped[Percentage] = mapped_column(nullable=False)
    levy_niacom: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    levy_ncrib: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))
    levy_ed_tax: Mapped[Money] = mapped_column(nullable=False, default=Decimal("0"))

    # Computed breakdown
    total_levies: Mapped[Money] = mapped_column(nullable=False)
    brokerage_amount: Mapped[Money] = mapped_column(nullable=False)
    vat_on_brokerage: Mapped[Money] = mapped_column(nullable=False)
    agent_commission_amount: Mapped[Money] = mapped_column(nullable=False)
    net_brokerage: Mapped[Money] = mapped_column(nullable=False)
    net_amount_due: Mapped[Money] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(10), nullable=False, default="Draft")

    # Artifact binding
    artifact_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    artifact_hash: Mapped[ContentHash | None] = mapped_column(nullable=True)
    artifact_rendered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    # Actors
    prepared_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    authorized_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    issued_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Administrative metadata (editable in any status)
    payable_bank_account_id: Mapped[PartyRef | None] = mapped_column(nullable=True)
    narration: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    issued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    shares: Mapped[list["CoInsuranceShare"]] = relationship(
        back_populates="note",
        cascade="all, delete-orphan",
        order_by="CoInsuranceShare.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Note {self.document_number} status={self.status}>"

    def to_audit_dict(self) -> dict:
        """
        JSON-safe snapshot of the note for audit before/after fields.

        Postconditions: Decimals, UUIDs and datetimes are rendered as strings
            so the snapshot hashes identically on every database backend.
        """

        def _s(value):
            if value is None:
                return None
            if isinstance(value, Decimal):
                return format(value.normalize(), "f")
            if isinstance(value, datetime):
                return value.isoformat()
            return str(value)

        return {
            "document_number": self.document_number,
            "note_type": self.note_type,
            "status": self.status,
            "client_id": self.client_id,
            "policy_id": self.policy_id,
            "insurer_id": self.insurer_id,
            "currency": self.currency,
            "gross_premium": _money(self.gross_premium),
            "brokerage_pct": _s(self.brokerage_pct),
            "vat_pct": _s(self.vat_pct),
            "agent_commission_pct": _s(self.agent_commission_pct),
            "levies": {
                "niacom": _money(self.levy_niacom),
                "ncrib": _money(self.levy_ncrib),
                "ed_tax": _money(self.levy_ed_tax),
            },
            "total_levies": _money(self.total_levies),
            "brokerage_amount": _money(self.brokerage_amount),
            "vat_on_brokerage": _money(self.vat_on_brokerage),
            "agent_commission_amount": _money(self.agent_commission_amount),
            "net_brokerage": _money(self.net_brokerage),
            "net_amount_due": _money(self.net_amount_due),
            "shares": [
                {
                    "insurer_id": share.insurer_id,
                    "percentage": _s(share.percentage),
                    "amount": _money(share.amount),
                }
                for share in self.shares
            ],
            "artifact_ref": self.artifact_ref,
            "artifact_hash": self.artifact_hash,
            "prepared_by": _s(self.prepared_by),
            "authorized_by": _s(self.authorized_by),
            "issued_by": _s(self.issued_by),
            "payable_bank_account_id": self.payable_bank_account_id,
            "narration": self.narration,
            "approved_at": _s(self.approved_at),
            "issued_at": _s(self.issued_at),
        }


def _money(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(Decimal(value).quantize(Decimal("0.01")))


class CoInsuranceShare(Base):
    """
    One insurer's share of a co-insured Credit Note.

    Contract:
        Created atomically with its Note, replaced wholesale by an update
        while the Note is Draft, never modified in place.
    """

    __tablename__ = "coinsurance_shares"

    __table_args__ = (
        UniqueConstraint("note_id", "position", name="uq_share_position"),
        UniqueConstraint("note_id", "insurer_id", name="uq_share_insurer"),
        Index("idx_share_note", "note_id"),
    )

    note_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("notes.id"),
        nullable=False,
    )

    # Order as supplied by the caller
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    insurer_id: Mapped[PartyRef] = mapped_column(nullable=False)
    percentage: Mapped[Percentage] = mapped_column(nullable=False)
    amount: Mapped[Money] = mapped_column(nullable=False)

    note: Mapped[Note] = relationship(back_populates="shares")

    def __repr__(self) -> str:
        return f"<CoInsuranceShare {self.insurer_id} {self.percentage}%>"
