"""
DispatchService -- record delivery attempts of issued notes.

Responsibility:
    Hands the stored artifact of an Issued note to the DispatchTransport
    port and records the outcome.  Transport itself is external.

Architecture position:
    Kernel > Services.  Owns its transaction boundaries, like
    NoteLifecycleService.

Invariants enforced:
    - Only Issued notes with a bound artifact are dispatched.
    - The bytes sent are the stored bytes; nothing is re-rendered.
    - Every attempt, successful or not, produces one DispatchLog row and
      one DISPATCH audit entry carrying the artifact hash.  That includes
      an attempt abandoned because the stored bytes are gone.

Failure modes:
    - InvalidRecipientError for a malformed or empty recipient list.
    - InvalidTransition if the note is not Issued.
    - ArtifactNotFoundError if the stored bytes are gone (recorded as a
      failed attempt first).
    - A transport failure is recorded, not raised.
"""

from __future__ import annotations

import re
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from notes_kernel.db.engine import session_scope
from notes_kernel.domain.clock import Clock, SystemClock
from notes_kernel.domain.dtos import DispatchDTO, NoteDTO
from notes_kernel.domain.lifecycle import Actor, CapabilityPolicy, NoteOperation, NoteStatus
from notes_kernel.domain.numbering import storage_stem
from notes_kernel.domain.ports import DispatchOutcome, DispatchTransport
from notes_kernel.exceptions import (
    ArtifactNotFoundError,
    InvalidRecipientError,
    InvalidTransition,
    NoteNotFoundError,
)
from notes_kernel.logging_config import LogContext, get_logger
from notes_kernel.models.audit_entry import AuditAction
from notes_kernel.models.dispatch_log import DispatchLog, DispatchStatus
from notes_kernel.models.note import Note
from notes_kernel.services.artifact_binder import ArtifactBinder
from notes_kernel.services.auditor_service import AuditorService

logger = get_logger("services.dispatch")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


def validate_recipients(recipients: Sequence[str]) -> tuple[str, ...]:
    """Strip, de-duplicate (order kept) and validate e-mail addresses."""
    if isinstance(recipients, str):
        recipients = [recipients]
    cleaned: list[str] = []
    for raw in recipients:
        address = str(raw).strip()
        if not EMAIL_PATTERN.match(address):
            raise InvalidRecipientError(address)
        if address.lower() not in (a.lower() for a in cleaned):
            cleaned.append(address)
    if not cleaned:
        raise InvalidRecipientError("")
    return tuple(cleaned)


class DispatchService:
    """
    Contract:
        ``dispatch()`` returns the recorded DispatchDTO whether the
        transport succeeded or not; check ``succeeded``.

    Non-goals:
        - Does NOT retry failed deliveries.
        - Does NOT implement transport.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        binder: ArtifactBinder,
        transport: DispatchTransport,
        capabilities: CapabilityPolicy | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._binder = binder
        self._transport = transport
        self._capabilities = capabilities or CapabilityPolicy.default()
        self._clock = clock or SystemClock()

    def dispatch(
        self,
        note_id: UUID,
        recipients: Sequence[str],
        actor: Actor,
        subject: str | None = None,
    ) -> DispatchDTO:
        with LogContext.bind(
            actor_id=actor.actor_id, note_id=note_id, operation=NoteOperation.DISPATCH.value,
        ):
            addresses = validate_recipients(recipients)

            with session_scope(self._session_factory) as session:
                note = session.get(Note, note_id)
                if note is None:
                    raise NoteNotFoundError(str(note_id))
                self._capabilities.require(
                    actor, NoteOperation.DISPATCH, note.document_number, note.status,
                )
                if note.status != NoteStatus.ISSUED.value:
                    raise InvalidTransition(
                        note.document_number,
                        NoteOperation.DISPATCH.value,
                        note.status,
                        reason=f"Only issued notes can be dispatched; "
                        f"{note.document_number} is {note.status}",
                    )
                snapshot = NoteDTO.from_model(note)

            if not snapshot.has_artifact:
                raise ArtifactNotFoundError(snapshot.artifact_ref)
            subject = subject or self._default_subject(snapshot)
            try:
                attachment = self._binder.load(snapshot)
            except ArtifactNotFoundError as exc:
                logger.error("dispatch_artifact_missing", extra={"artifact_ref": exc.artifact_ref})
                self._record(
                    snapshot, addresses, subject, actor,
                    DispatchOutcome(success=False, error=str(exc)),
                )
                raise

            outcome = self._send(snapshot, addresses, subject, attachment)
            result = self._record(snapshot, addresses, subject, actor, outcome)

            if result.succeeded:
                logger.info(
                    "note_dispatched",
                    extra={"recipient_count": len(addresses), "dispatch_id": str(result.id)},
                )
            else:
                logger.warning(
                    "note_dispatch_failed",
                    extra={"recipient_count": len(addresses), "error": outcome.error},
                )
            return result

    def _record(
        self,
        note: NoteDTO,
        recipients: tuple[str, ...],
        subject: str,
        actor: Actor,
        outcome: DispatchOutcome,
    ) -> DispatchDTO:
        """Persist one attempt as a DispatchLog row plus its DISPATCH audit entry."""
        with session_scope(self._session_factory) as session:
            log = DispatchLog(
                note_id=note.id,
                recipients=list(recipients),
                subject=subject,
                status=(DispatchStatus.SENT if outcome.success else DispatchStatus.FAILED).value,
                provider_message_id=outcome.provider_message_id,
                error_message=outcome.error,
                artifact_hash=note.artifact_hash,
                sent_by=actor.actor_id,
                sent_at=self._clock.now(),
            )
            session.add(log)
            session.flush()

            AuditorService(session, self._clock).record_note(
                note.id, AuditAction.DISPATCH, actor.actor_id,
                after={
                    "document_number": note.document_number,
                    "recipients": list(recipients),
                    "status": log.status,
                    "artifact_hash": note.artifact_hash,
                    "provider_message_id": outcome.provider_message_id,
                    "error": outcome.error,
                },
            )
            return DispatchDTO.from_model(log)

    def _send(
        self,
        note: NoteDTO,
        recipients: tuple[str, ...],
        subject: str,
        attachment: bytes,
    ) -> DispatchOutcome:
        filename = f"{storage_stem(note.document_number)}{self._extension(note)}"
        try:
            return self._transport.send(
                recipients=list(recipients),
                subject=subject,
                body=self._default_body(note),
                attachment=attachment,
                filename=filename,
                content_type=self._content_type(note),
            )
        except Exception as exc:
            logger.warning("transport_raised", exc_info=True)
            return DispatchOutcome(success=False, error=f"{type(exc).__name__}: {exc}")

    @staticmethod
    def _extension(note: NoteDTO) -> str:
        ref = note.artifact_ref or ""
        name = ref.rsplit("/", 1)[-1]
        return name[name.index("."):] if "." in name else ""

    def _content_type(self, note: NoteDTO) -> str:
        if self._extension(note) == ".pdf":
            return "application/pdf"
        return "text/plain; charset=utf-8"

    @staticmethod
    def _default_subject(note: NoteDTO) -> str:
        title = "Credit Note" if note.note_type == "CN" else "Debit Note"
        return f"{title} {note.document_number}"

    @staticmethod
    def _default_body(note: NoteDTO) -> str:
        return (
            f"Please find attached {note.document_number} "
            f"(net amount due {note.currency} {note.net_amount_due:,.2f})."
        )

    def list_dispatches(self, note_id: UUID) -> list[DispatchDTO]:
        """Dispatch attempts for a note, newest first."""
        with session_scope(self._session_factory) as session:
            logs = session.execute(
                select(DispatchLog)
                .where(DispatchLog.note_id == note_id)
                .order_by(DispatchLog.sent_at.desc(), DispatchLog.id.desc())
            ).scalars().all()
            return [DispatchDTO.from_model(log) for log in logs]
