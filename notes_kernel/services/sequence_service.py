"""
SequenceAllocator -- per-(category, year) counters via locked rows.

Responsibility:
    Hands out the next integer in a (category, year) counter space: note
    numbers per (note type, calendar year) and the audit trail's global
    ordering sequence (category ``AUDIT``, perpetual year ``0``).

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by
    NoteLifecycleService (document numbers) and AuditorService (audit seq).

Invariants enforced:
    - Two concurrent callers for the same (category, year) never receive
      the same value.  PostgreSQL: ``SELECT ... FOR UPDATE`` on the counter
      row.  SQLite: the engine opens every transaction with BEGIN
      IMMEDIATE, so writers are serialized before the read.
    - The locked counter row is the only source of the next value; the
      aggregate-max-plus-one pattern is never used.
    - The increment belongs to the caller's transaction.  The consuming
      insert (the Note row) commits or rolls back together with it.

Known property:
    Values are dense under normal operation.  A transaction that rolls
    back after allocating releases its increment with it; a value that
    has been committed is never handed out again.  Gaps can only appear
    if a consumer commits the counter without its record, which the
    lifecycle service never does.

Failure modes:
    - IntegrityError on the concurrent first-use race is absorbed with a
      savepoint and a re-read.
    - OperationalError (lock timeout) propagates to the caller's retry
      loop.
"""

from sqlalchemy import BigInteger, Integer, String, UniqueConstraint, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from notes_kernel.db.base import Base
from notes_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Counter row for one (category, year).

    Created lazily on first allocation, never deleted; last_value never
    decreases.
    """

    __tablename__ = "sequence_counters"

    __table_args__ = (
        UniqueConstraint("category", "year", name="uq_sequence_category_year"),
    )

    # e.g. "CN", "DN", "AUDIT"
    category: Mapped[str] = mapped_column(String(20), nullable=False)

    year: Mapped[int] = mapped_column(Integer, nullable=False)

    last_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceAllocator:
    """
    Transactional sequence allocation.

    Contract:
        ``allocate(category, year)`` returns the next value for the pair.
        The caller must be inside a transaction and must persist the
        record that consumes the value in that same transaction.

    Guarantees:
        - First allocation for a pair returns 1.
        - Values for a pair are strictly increasing across committed
          transactions.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT reclaim values released by rolled-back transactions
          beyond what the rollback itself undoes.

    Usage:
        seq = SequenceAllocator(session).allocate("CN", 2025)
        session.add(Note(sequence_number=seq, ...))
        session.commit()
    """

    AUDIT = "AUDIT"
    AUDIT_YEAR = 0

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, category: str, year: int) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.category == category,
                SequenceCounter.year == year,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def allocate(self, category: str, year: int) -> int:
        """
        Return the next value for (category, year).

        Preconditions:
            - ``category`` is a non-empty string; ``year`` >= 0.
            - The caller is within an active database transaction.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously committed for this pair.
            - The counter row stays locked until the transaction ends.
        """
        if not category:
            raise ValueError("Sequence category must be non-empty")
        if year < 0:
            raise ValueError(f"Sequence year must be >= 0, got {year}")

        counter = self._locked_counter(category, year)

        if counter is None:
            # First use of this pair.  A concurrent creator may win the
            # insert; the savepoint keeps the rest of the transaction intact.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(category=category, year=year, last_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"category": category, "year": year, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"category": category, "year": year},
                )
                savepoint.rollback()
                counter = self._locked_counter(category, year)
                if counter is None:
                    raise

        counter.last_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"category": category, "year": year, "value": counter.last_value},
        )
        return counter.last_value

    def allocate_audit_seq(self) -> int:
        return self.allocate(self.AUDIT, self.AUDIT_YEAR)

    def current_value(self, category: str, year: int) -> int | None:
        """Last value handed out for the pair, or None if never used."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(
                SequenceCounter.category == category,
                SequenceCounter.year == year,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        return counter.last_value if counter else None
