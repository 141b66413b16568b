"""
NoteLifecycleService -- creation and Draft -> Approved -> Issued transitions.

Responsibility:
    The only writer of notes.  Creates notes (allocation, calculation,
    co-insurance split and insert in one transaction), applies updates,
    approves, issues, and re-renders or verifies artifacts.  Every mutation
    writes an AuditEntry in the same transaction.

Architecture position:
    Kernel > Services.  Owns transaction boundaries: each operation opens
    its own session from the injected factory, commits on success and
    rolls back on any failure.

Invariants enforced:
    - The sequence increment and the Note insert commit together or not
      at all.  A rolled-back create releases its number (a gap); a
      committed number is never handed out twice.
    - Every transition passes the capability policy, then re-reads the
      note under lock and checks its status.  No state is skipped and none
      regresses.
    - Financial inputs change only while the note is Draft.
    - Rendering never runs inside a transaction that changes status.  Issue
      renders the Issued projection first, then commits status and artifact
      binding in one short transaction that re-checks status and version.

Failure modes:
    - ValidationError family: malformed input, inactive parties.
    - NotFoundError family: unknown note or party.
    - InvalidTransition family: wrong status, UnauthorizedTransitionError,
      FinancialFieldsFrozenError, ConcurrencyConflict.
    - RenderFailure: issue could not produce an artifact; the note stays
      Approved.

Audit relevance:
    Actions written: CREATE, UPDATE, APPROVE, ISSUE, ARTIFACT_BOUND,
    RENDER_FAILED, REGENERATE, ARTIFACT_VERIFIED, TAMPER_DETECTED.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from notes_kernel.db.engine import session_scope
from notes_kernel.domain.calculator import Breakdown, Levies, compute_breakdown
from notes_kernel.domain.clock import Clock, SystemClock
from notes_kernel.domain.coinsurance import ShareAmount, ShareInput, split_shares
from notes_kernel.domain.dtos import NoteDTO
from notes_kernel.domain.lifecycle import (
    Actor,
    NoteOperation,
    NoteStatus,
    NoteType,
    transition_for,
)
from notes_kernel.domain.numbering import format_document_number
from notes_kernel.domain.ports import PartyKind, PartyRegistry
from notes_kernel.domain.requests import NoteRequest, NoteUpdate, check_insurer_rules
from notes_kernel.domain.settings import LifecycleSettings
from notes_kernel.exceptions import (
    ArtifactNotFoundError,
    ConcurrencyConflict,
    FinancialFieldsFrozenError,
    InvalidTransition,
    NoteNotFoundError,
    PartyInactiveError,
    PartyNotFoundError,
    RenderFailure,
)
from notes_kernel.logging_config import LogContext, get_logger
from notes_kernel.models.audit_entry import AuditAction
from notes_kernel.models.note import CoInsuranceShare, Note
from notes_kernel.models.reminder import Reminder
from notes_kernel.selectors.note_selector import NoteSelector
from notes_kernel.services.artifact_binder import ArtifactBinder, ArtifactBinding
from notes_kernel.services.auditor_service import AuditorService
from notes_kernel.services.sequence_service import SequenceAllocator

logger = get_logger("services.note_lifecycle")

_INPUT_FIELDS = (
    "client_id",
    "policy_id",
    "insurer_id",
    "gross_premium",
    "brokerage_pct",
    "vat_pct",
    "agent_commission_pct",
    "levy_niacom",
    "levy_ncrib",
    "levy_ed_tax",
)


@dataclass(frozen=True)
class RegenerationResult:
    """
    Outcome of ``regenerate_artifact``.

    ``rebound`` is True when the binding was replaced (Draft/Approved).
    For an Issued note the binding is never replaced and ``matches`` says
    whether a fresh render reproduced the stored hash.
    """

    note: NoteDTO
    rendered_hash: str
    rebound: bool
    matches: bool

    @property
    def tamper_detected(self) -> bool:
        return not self.rebound and not self.matches


def _apply_breakdown(note: Note, breakdown: Breakdown) -> None:
    note.gross_premium = breakdown.gross_premium
    note.brokerage_amount = breakdown.brokerage_amount
    note.vat_on_brokerage = breakdown.vat_on_brokerage
    note.agent_commission_amount = breakdown.agent_commission_amount
    note.net_brokerage = breakdown.net_brokerage
    note.total_levies = breakdown.total_levies
    note.net_amount_due = breakdown.net_amount_due


def _share_rows(amounts: list[ShareAmount]) -> list[CoInsuranceShare]:
    return [
        CoInsuranceShare(
            position=position,
            insurer_id=share.insurer_id,
            percentage=share.percentage,
            amount=share.amount,
        )
        for position, share in enumerate(amounts, start=1)
    ]


def _current_shares(note: Note) -> tuple[ShareInput, ...]:
    return tuple(ShareInput(s.insurer_id, Decimal(s.percentage)) for s in note.shares)


class NoteLifecycleService:
    """
    Orchestrates the note lifecycle.

    Contract:
        Every public operation takes the acting ``Actor`` (role and approval
        level come from the identity provider) and returns a frozen NoteDTO.

    Guarantees:
        - A rejected operation leaves the note, its shares and the sequence
          counters exactly as they were.
        - The loser of a race on the same note gets an InvalidTransition
          (usually ConcurrencyConflict), never a silent overwrite.

    Non-goals:
        - Does NOT deliver artifacts (see DispatchService).
        - Does NOT look up roles; it only consumes them.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        registry: PartyRegistry,
        binder: ArtifactBinder,
        settings: LifecycleSettings | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._registry = registry
        self._binder = binder
        self._settings = settings or LifecycleSettings()
        self._clock = clock or SystemClock()

    @property
    def settings(self) -> LifecycleSettings:
        return self._settings

    # =========================================================================
    # Reads
    # =========================================================================

    def get_note(self, note_id: UUID) -> NoteDTO:
        with session_scope(self._session_factory) as session:
            note = NoteSelector(session).get(note_id)
        if note is None:
            raise NoteNotFoundError(str(note_id))
        return note

    def get_note_by_number(self, document_number: str) -> NoteDTO:
        with session_scope(self._session_factory) as session:
            note = NoteSelector(session).get_by_document_number(document_number)
        if note is None:
            raise NoteNotFoundError(document_number)
        return note

    # =========================================================================
    # Create
    # =========================================================================

    def create_note(self, data: NoteRequest | Mapping[str, Any], actor: Actor) -> NoteDTO:
        """
        Create a Draft note.

        Preconditions:
            - ``actor`` may perform ``create``.
            - Every referenced party exists and is active.

        Postconditions:
            - The note, its shares and a CREATE audit entry are committed
              together with the sequence increment.
            - When ``render_on_create`` is set, an artifact is rendered
              afterwards on a best-effort basis; failure leaves the note
              without an artifact and writes RENDER_FAILED.

        Raises:
            UnauthorizedTransitionError, ValidationError, NotFoundError,
            ConcurrencyConflict (allocation contention after all retries).
        """
        with LogContext.bind(actor_id=actor.actor_id, operation=NoteOperation.CREATE.value):
            self._settings.capabilities.require(actor, NoteOperation.CREATE)
            request = data if isinstance(data, NoteRequest) else NoteRequest.from_dict(data)

            self._validate_parties(
                client_id=request.client_id,
                policy_id=request.policy_id,
                insurer_ids=[request.insurer_id] + [s.insurer_id for s in request.coinsurance],
                bank_account_id=request.payable_bank_account_id,
            )
            amounts = (
                split_shares(
                    request.gross_premium,
                    request.coinsurance,
                    self._settings.coinsurance_tolerance,
                )
                if request.coinsurance else []
            )

            note = self._insert_with_retry(request, amounts, actor)

            with LogContext.bind(note_id=note.id, document_number=note.document_number):
                logger.info(
                    "note_created",
                    extra={
                        "note_type": note.note_type,
                        "net_amount_due": str(note.net_amount_due),
                        "share_count": len(note.shares),
                    },
                )
                if self._settings.render_on_create:
                    note = self._bind_after_create(note, actor)
            return note

    def _insert_with_retry(
        self,
        request: NoteRequest,
        amounts: list[ShareAmount],
        actor: Actor,
    ) -> NoteDTO:
        year = self._clock.current_year()
        attempts = self._settings.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                with session_scope(self._session_factory) as session:
                    return self._insert_note(session, request, amounts, actor, year)
            except (OperationalError, IntegrityError) as exc:
                logger.warning(
                    "note_create_contention",
                    extra={
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "error": type(exc.orig).__name__ if exc.orig else type(exc).__name__,
                    },
                )
                if attempt < attempts:
                    time.sleep(self._settings.retry_backoff_seconds * attempt)

        raise ConcurrencyConflict(
            f"{request.note_type.value}/{year}",
            NoteOperation.CREATE.value,
            NoteStatus.DRAFT.value,
            "unallocated",
        )

    def _insert_note(
        self,
        session: Session,
        request: NoteRequest,
        amounts: list[ShareAmount],
        actor: Actor,
        year: int,
    ) -> NoteDTO:
        sequence = SequenceAllocator(session).allocate(request.note_type.value, year)
        now = self._clock.now()

        vat_pct = (
            request.vat_pct if request.vat_pct is not None
            else self._settings.default_vat_pct
        )
        commission_pct = (
            request.agent_commission_pct if request.agent_commission_pct is not None
            else self._settings.default_agent_commission_pct
        )
        breakdown = compute_breakdown(
            request.gross_premium,
            request.brokerage_pct,
            vat_pct,
            commission_pct,
            request.levies,
        )

        note = Note(
            document_number=format_document_number(request.note_type, year, sequence),
            note_type=request.note_type.value,
            sequence_year=year,
            sequence_number=sequence,
            client_id=request.client_id,
            policy_id=request.policy_id,
            insurer_id=request.insurer_id,
            currency=request.currency or self._settings.currency,
            brokerage_pct=request.brokerage_pct,
            vat_pct=vat_pct,
            agent_commission_pct=commission_pct,
            levy_niacom=request.levies.niacom,
            levy_ncrib=request.levies.ncrib,
            levy_ed_tax=request.levies.ed_tax,
            status=NoteStatus.DRAFT.value,
            prepared_by=actor.actor_id,
            payable_bank_account_id=request.payable_bank_account_id,
            narration=request.narration,
            created_at=now,
            updated_at=now,
        )
        _apply_breakdown(note, breakdown)
        note.shares = _share_rows(amounts)
        session.add(note)
        session.flush()

        AuditorService(session, self._clock).record_note(
            note.id, AuditAction.CREATE, actor.actor_id, after=note.to_audit_dict(),
        )
        return NoteDTO.from_model(note)

    def _bind_after_create(self, note: NoteDTO, actor: Actor) -> NoteDTO:
        """Best-effort initial render.  Never raises on render failure."""
        try:
            binding = self._binder.bind_artifact(note)
        except RenderFailure as exc:
            logger.warning("initial_render_failed", extra={"reason": str(exc)})
            self._record_render_failure(note, actor, NoteOperation.CREATE, exc)
            return note

        with session_scope(self._session_factory) as session:
            row = self._lock_note(session, note.id)
            if row.version != note.version or row.status != NoteStatus.DRAFT.value:
                logger.info(
                    "initial_artifact_discarded",
                    extra={"expected_version": note.version, "found_version": row.version},
                )
                return NoteDTO.from_model(row)
            self._attach_binding(session, row, binding, actor, AuditAction.ARTIFACT_BOUND)
            return NoteDTO.from_model(row)

    # =========================================================================
    # Update
    # =========================================================================

    def update_note(
        self,
        note_id: UUID,
        data: NoteUpdate | Mapping[str, Any],
        actor: Actor,
    ) -> NoteDTO:
        """
        Apply a partial update.

        Financial inputs (parties, amounts, percentages, levies, shares)
        change only in Draft and trigger a full recomputation; shares are
        replaced wholesale.  Administrative metadata may change in any
        status.  Supplying a financial field with its current value is not
        a change.

        Raises:
            FinancialFieldsFrozenError: A financial input would change
                outside Draft.
            UnauthorizedTransitionError, ValidationError, NotFoundError.
        """
        with LogContext.bind(
            actor_id=actor.actor_id, note_id=note_id, operation=NoteOperation.UPDATE.value,
        ):
            self._settings.capabilities.require(actor, NoteOperation.UPDATE, str(note_id))
            update = data if isinstance(data, NoteUpdate) else NoteUpdate.from_dict(data)
            changes = update.changes

            self._validate_parties(
                client_id=changes.get("client_id"),
                policy_id=changes.get("policy_id"),
                insurer_ids=[changes.get("insurer_id")]
                + [s.insurer_id for s in changes.get("coinsurance", ())],
                bank_account_id=changes.get("payable_bank_account_id"),
            )

            try:
                with session_scope(self._session_factory) as session:
                    note = self._lock_note(session, note_id)
                    financial = self._financial_diff(note, update.financial_changes)
                    admin = {
                        name: value for name, value in update.admin_changes.items()
                        if getattr(note, name) != value
                    }
                    if financial and note.status != NoteStatus.DRAFT.value:
                        raise FinancialFieldsFrozenError(
                            note.document_number, note.status, list(financial),
                        )
                    if not financial and not admin:
                        logger.debug("note_update_noop")
                        return NoteDTO.from_model(note)

                    before = note.to_audit_dict()
                    if financial:
                        self._apply_financial(session, note, financial)
                    for name, value in admin.items():
                        setattr(note, name, value)
                    note.updated_at = self._clock.now()
                    session.flush()

                    AuditorService(session, self._clock).record_note(
                        note.id, AuditAction.UPDATE, actor.actor_id,
                        before=before, after=note.to_audit_dict(),
                    )
                    result = NoteDTO.from_model(note)
            except StaleDataError:
                raise self._lost_race(note_id, NoteOperation.UPDATE, None) from None

            logger.info(
                "note_updated",
                extra={
                    "document_number": result.document_number,
                    "fields": sorted(financial) + sorted(admin),
                },
            )
            return result

    def _financial_diff(self, note: Note, changes: Mapping[str, Any]) -> dict[str, Any]:
        diff: dict[str, Any] = {}
        for name, value in changes.items():
            if name == "coinsurance":
                current = [(s.insurer_id, s.percentage) for s in _current_shares(note)]
                if current != [(s.insurer_id, s.percentage) for s in value]:
                    diff[name] = value
            elif getattr(note, name) != value:
                diff[name] = value
        return diff

    def _apply_financial(self, session: Session, note: Note, changes: Mapping[str, Any]) -> None:
        inputs = {name: getattr(note, name) for name in _INPUT_FIELDS}
        inputs.update({k: v for k, v in changes.items() if k != "coinsurance"})
        shares = changes.get("coinsurance", _current_shares(note))

        check_insurer_rules(NoteType(note.note_type), inputs["insurer_id"], shares)
        gross = Decimal(inputs["gross_premium"])
        amounts = (
            split_shares(gross, shares, self._settings.coinsurance_tolerance)
            if shares else []
        )
        breakdown = compute_breakdown(
            gross,
            Decimal(inputs["brokerage_pct"]),
            Decimal(inputs["vat_pct"]),
            Decimal(inputs["agent_commission_pct"]),
            Levies(
                niacom=Decimal(inputs["levy_niacom"]),
                ncrib=Decimal(inputs["levy_ncrib"]),
                ed_tax=Decimal(inputs["levy_ed_tax"]),
            ),
        )

        for name in _INPUT_FIELDS:
            setattr(note, name, inputs[name])
        _apply_breakdown(note, breakdown)

        # Amounts depend on gross, so any financial change replaces the
        # share rows.  Deletes must reach the database before the inserts.
        if note.shares or amounts:
            note.shares.clear()
            session.flush()
            note.shares.extend(_share_rows(amounts))

    # =========================================================================
    # Approve
    # =========================================================================

    def approve_note(self, note_id: UUID, actor: Actor) -> NoteDTO:
        """
        Draft -> Approved.

        Raises:
            UnauthorizedTransitionError: Role or approval level too low.
            InvalidTransition: The note is not Draft (including a concurrent
                approval that committed first).
        """
        with LogContext.bind(
            actor_id=actor.actor_id, note_id=note_id, operation=NoteOperation.APPROVE.value,
        ):
            try:
                with session_scope(self._session_factory) as session:
                    note = self._lock_note(session, note_id)
                    self._settings.capabilities.require(
                        actor, NoteOperation.APPROVE, note.document_number, note.status,
                    )
                    source, target = transition_for(NoteOperation.APPROVE)
                    self._expect_status(note, source, NoteOperation.APPROVE)

                    before = note.to_audit_dict()
                    now = self._clock.now()
                    note.status = target.value
                    note.authorized_by = actor.actor_id
                    note.approved_at = now
                    note.updated_at = now
                    session.flush()

                    AuditorService(session, self._clock).record_note(
                        note.id, AuditAction.APPROVE, actor.actor_id,
                        before=before, after=note.to_audit_dict(),
                    )
                    result = NoteDTO.from_model(note)
            except StaleDataError:
                raise self._lost_race(
                    note_id, NoteOperation.APPROVE, NoteStatus.DRAFT,
                ) from None

            logger.info(
                "note_approved",
                extra={"document_number": result.document_number},
            )
            return result

    # =========================================================================
    # Issue
    # =========================================================================

    def issue_note(self, note_id: UUID, actor: Actor) -> NoteDTO:
        """
        Approved -> Issued, binding the rendered artifact.

        Three steps:
            1. Check capability and status; snapshot the note.
            2. Render and store the Issued projection outside any
               transaction.
            3. Re-lock the note; if status or version moved, raise
               ConcurrencyConflict.  Otherwise commit status, issuer,
               artifact binding, reminders and the ISSUE audit entry.

        Raises:
            UnauthorizedTransitionError, InvalidTransition (not Approved),
            ConcurrencyConflict, RenderFailure (note stays Approved).
        """
        with LogContext.bind(
            actor_id=actor.actor_id, note_id=note_id, operation=NoteOperation.ISSUE.value,
        ):
            with session_scope(self._session_factory) as session:
                note = self._load_note(session, note_id)
                self._settings.capabilities.require(
                    actor, NoteOperation.ISSUE, note.document_number, note.status,
                )
                source, target = transition_for(NoteOperation.ISSUE)
                self._expect_status(note, source, NoteOperation.ISSUE)
                snapshot = NoteDTO.from_model(note)

            issued_at = self._clock.now()
            projection = replace(
                snapshot,
                status=target.value,
                issued_at=issued_at,
                issued_by=actor.actor_id,
            )

            try:
                binding = self._binder.bind_artifact(projection)
            except RenderFailure as exc:
                logger.error("issue_render_failed", extra={"reason": str(exc)})
                self._record_render_failure(snapshot, actor, NoteOperation.ISSUE, exc)
                raise

            try:
                with session_scope(self._session_factory) as session:
                    note = self._lock_note(session, note_id)
                    if (
                        note.status != source.value
                        or note.version != snapshot.version
                    ):
                        raise ConcurrencyConflict(
                            note.document_number,
                            NoteOperation.ISSUE.value,
                            source.value,
                            note.status,
                        )

                    before = note.to_audit_dict()
                    note.status = target.value
                    note.issued_at = issued_at
                    note.issued_by = actor.actor_id
                    note.artifact_ref = binding.ref
                    note.artifact_hash = binding.hash
                    note.artifact_rendered_at = issued_at
                    note.updated_at = issued_at
                    session.flush()

                    reminders = self._schedule_reminders(session, note, issued_at)
                    AuditorService(session, self._clock).record_note(
                        note.id, AuditAction.ISSUE, actor.actor_id,
                        before=before, after=note.to_audit_dict(),
                    )
                    result = NoteDTO.from_model(note)
            except StaleDataError:
                raise self._lost_race(
                    note_id, NoteOperation.ISSUE, NoteStatus.APPROVED,
                ) from None

            logger.info(
                "note_issued",
                extra={
                    "document_number": result.document_number,
                    "artifact_hash": result.artifact_hash,
                    "reminder_count": reminders,
                },
            )
            return result

    def _schedule_reminders(self, session: Session, note: Note, issued_at: datetime) -> int:
        rules = self._settings.reminders_for(note.note_type)
        for rule in rules:
            session.add(
                Reminder(
                    note_id=note.id,
                    reminder_type=rule.reminder_type,
                    due_date=issued_at.date() + timedelta(days=rule.due_in_days),
                    status="Pending",
                )
            )
        session.flush()
        return len(rules)

    # =========================================================================
    # Artifacts
    # =========================================================================

    def regenerate_artifact(self, note_id: UUID, actor: Actor) -> RegenerationResult:
        """
        Explicit re-render.

        Draft/Approved: the new artifact replaces the binding (REGENERATE).
        Issued: the fresh render is compared with the stored hash and the
        binding is left alone (ARTIFACT_VERIFIED or TAMPER_DETECTED).

        Raises:
            UnauthorizedTransitionError, NotFoundError, RenderFailure,
            ConcurrencyConflict (the note changed while rendering).
        """
        with LogContext.bind(
            actor_id=actor.actor_id, note_id=note_id, operation=NoteOperation.REGENERATE.value,
        ):
            with session_scope(self._session_factory) as session:
                note = self._load_note(session, note_id)
                self._settings.capabilities.require(
                    actor, NoteOperation.REGENERATE, note.document_number, note.status,
                )
                snapshot = NoteDTO.from_model(note)

            if snapshot.status == NoteStatus.ISSUED.value:
                return self._verify_issued(snapshot, actor)

            try:
                binding = self._binder.bind_artifact(snapshot)
            except RenderFailure as exc:
                logger.error("regenerate_render_failed", extra={"reason": exc.reason})
                self._record_render_failure(snapshot, actor, NoteOperation.REGENERATE, exc)
                raise

            try:
                with session_scope(self._session_factory) as session:
                    row = self._lock_note(session, note_id)
                    if row.version != snapshot.version:
                        raise ConcurrencyConflict(
                            row.document_number,
                            NoteOperation.REGENERATE.value,
                            snapshot.status,
                            row.status,
                        )
                    self._attach_binding(session, row, binding, actor, AuditAction.REGENERATE)
                    result = NoteDTO.from_model(row)
            except StaleDataError:
                raise self._lost_race(
                    note_id, NoteOperation.REGENERATE, NoteStatus(snapshot.status),
                ) from None

            return RegenerationResult(
                note=result, rendered_hash=binding.hash, rebound=True, matches=True,
            )

    def _verify_issued(self, snapshot: NoteDTO, actor: Actor) -> RegenerationResult:
        try:
            rendered_hash = self._binder.content_hash(snapshot)
        except RenderFailure as exc:
            logger.error("regenerate_render_failed", extra={"reason": exc.reason})
            self._record_render_failure(snapshot, actor, NoteOperation.REGENERATE, exc)
            raise
        matches = rendered_hash == snapshot.artifact_hash
        action = AuditAction.ARTIFACT_VERIFIED if matches else AuditAction.TAMPER_DETECTED

        with session_scope(self._session_factory) as session:
            AuditorService(session, self._clock).record_note(
                snapshot.id, action, actor.actor_id,
                after={
                    "document_number": snapshot.document_number,
                    "stored_hash": snapshot.artifact_hash,
                    "rendered_hash": rendered_hash,
                },
            )

        if matches:
            logger.info("artifact_verified", extra={"artifact_hash": rendered_hash})
        else:
            logger.critical(
                "artifact_tamper_detected",
                extra={"stored_hash": snapshot.artifact_hash, "rendered_hash": rendered_hash},
            )
        return RegenerationResult(
            note=snapshot, rendered_hash=rendered_hash, rebound=False, matches=matches,
        )

    def verify_stored_artifact(self, note_id: UUID) -> bool:
        """
        Re-hash the stored bytes of the bound artifact (no render).

        Raises:
            ArtifactNotFoundError: Nothing bound, or the bytes are missing.
        """
        note = self.get_note(note_id)
        if not note.has_artifact:
            raise ArtifactNotFoundError(None)
        intact = self._binder.verify_stored(note)
        if not intact:
            logger.critical(
                "stored_artifact_mismatch",
                extra={"document_number": note.document_number, "artifact_ref": note.artifact_ref},
            )
        return intact

    def _attach_binding(
        self,
        session: Session,
        note: Note,
        binding: ArtifactBinding,
        actor: Actor,
        action: AuditAction,
    ) -> None:
        before = note.to_audit_dict()
        now = self._clock.now()
        note.artifact_ref = binding.ref
        note.artifact_hash = binding.hash
        note.artifact_rendered_at = now
        note.updated_at = now
        session.flush()
        AuditorService(session, self._clock).record_note(
            note.id, action, actor.actor_id, before=before, after=note.to_audit_dict(),
        )

    def _record_render_failure(
        self,
        note: NoteDTO,
        actor: Actor,
        operation: NoteOperation,
        exc: RenderFailure,
    ) -> None:
        with session_scope(self._session_factory) as session:
            AuditorService(session, self._clock).record_note(
                note.id, AuditAction.RENDER_FAILED, actor.actor_id,
                after={
                    "document_number": note.document_number,
                    "operation": operation.value,
                    "reason": exc.reason,
                },
            )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate_parties(
        self,
        client_id: str | None,
        policy_id: str | None,
        insurer_ids: list[str | None],
        bank_account_id: str | None,
    ) -> None:
        """Registry pre-validation; runs before any transaction opens."""
        wanted: list[tuple[PartyKind, str | None]] = [
            (PartyKind.CLIENT, client_id),
            (PartyKind.POLICY, policy_id),
            *((PartyKind.INSURER, insurer_id) for insurer_id in insurer_ids),
            (PartyKind.BANK_ACCOUNT, bank_account_id),
        ]
        for kind, party_id in wanted:
            if party_id is None:
                continue
            record = self._registry.lookup(kind, party_id)
            if record is None:
                raise PartyNotFoundError(kind.value, party_id)
            if not record.is_active:
                raise PartyInactiveError(kind.value, party_id)

    def _load_note(self, session: Session, note_id: UUID) -> Note:
        note = session.get(Note, note_id)
        if note is None:
            raise NoteNotFoundError(str(note_id))
        return note

    def _lock_note(self, session: Session, note_id: UUID) -> Note:
        note = session.execute(
            select(Note)
            .where(Note.id == note_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if note is None:
            raise NoteNotFoundError(str(note_id))
        return note

    def _expect_status(self, note: Note, expected: NoteStatus, operation: NoteOperation) -> None:
        if note.status != expected.value:
            logger.warning(
                "invalid_transition_rejected",
                extra={"current_status": note.status, "expected_status": expected.value},
            )
            raise InvalidTransition(note.document_number, operation.value, note.status)

    def _lost_race(
        self,
        note_id: UUID,
        operation: NoteOperation,
        expected: NoteStatus | None,
    ) -> ConcurrencyConflict:
        current = self.get_note(note_id)
        logger.warning(
            "transition_lost_race",
            extra={"current_status": current.status, "found_version": current.version},
        )
        return ConcurrencyConflict(
            current.document_number,
            operation.value,
            expected.value if expected is not None else current.status,
            current.status,
        )
