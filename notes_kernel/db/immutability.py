"""
ORM-level immutability enforcement for notes, shares, audit entries and
dispatch logs.

The lifecycle service checks every rule below before it writes.  These
listeners are the second line: they fire on flush, before SQL reaches the
database, and catch any code path that mutates a row directly through the
ORM.

    session.flush()
         |
         v
    [before_update / before_delete] --> _check_*() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities:

Entity            | Rule
------------------|----------------------------------------------------------
AuditEntry        | Never updated, never deleted
DispatchLog       | Never updated, never deleted
Note              | Identity fields never change; status never regresses;
                  | financial fields frozen once the stored status left Draft;
                  | artifact binding write-once after issuance; never deleted
CoInsuranceShare  | Never updated; inserted/deleted only while the parent is Draft

"Stored status" is read from attribute history, so the Approved -> Issued
transition itself (which writes the artifact binding) passes, and every
change after it is blocked.

Usage:

    from notes_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once, at startup

Tests that must bypass enforcement call unregister_immutability_listeners().
"""

from sqlalchemy import event, select
from sqlalchemy.orm.attributes import get_history

from notes_kernel.exceptions import ImmutabilityViolationError
from notes_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

NOTE_IDENTITY_FIELDS = frozenset({
    "document_number",
    "note_type",
    "sequence_year",
    "sequence_number",
    "prepared_by",
    "created_at",
})

NOTE_FINANCIAL_FIELDS = frozenset({
    "client_id",
    "policy_id",
    "insurer_id",
    "currency",
    "gross_premium",
    "brokerage_pct",
    "vat_pct",
    "agent_commission_pct",
    "levy_niacom",
    "levy_ncrib",
    "levy_ed_tax",
    "total_levies",
    "brokerage_amount",
    "vat_on_brokerage",
    "agent_commission_amount",
    "net_brokerage",
    "net_amount_due",
})

NOTE_ARTIFACT_FIELDS = frozenset({
    "artifact_ref",
    "artifact_hash",
    "artifact_rendered_at",
})

_STATUS_RANK = {"Draft": 0, "Approved": 1, "Issued": 2}


def _violation(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_fields(target, names) -> list[str]:
    return sorted(name for name in names if get_history(target, name).has_changes())


def _status_value(status) -> str:
    return getattr(status, "value", status)


def _stored_status(target) -> str:
    """Status as it was loaded from the database, before pending changes."""
    history = get_history(target, "status")
    if history.deleted:
        return _status_value(history.deleted[0])
    return _status_value(target.status)


# =============================================================================
# Append-only records
# =============================================================================


def _check_audit_entry_update(mapper, connection, target):
    raise _violation(
        "AuditEntry", target.id, "UPDATE",
        "Audit entries are immutable and cannot be modified",
    )


def _check_audit_entry_delete(mapper, connection, target):
    raise _violation(
        "AuditEntry", target.id, "DELETE",
        "Audit entries cannot be deleted",
    )


def _check_dispatch_log_update(mapper, connection, target):
    raise _violation(
        "DispatchLog", target.id, "UPDATE",
        "Dispatch log rows are immutable and cannot be modified",
    )


def _check_dispatch_log_delete(mapper, connection, target):
    raise _violation(
        "DispatchLog", target.id, "DELETE",
        "Dispatch log rows cannot be deleted",
    )


# =============================================================================
# Notes
# =============================================================================


def _check_note_update(mapper, connection, target):
    """
    Enforce the note rules against attribute history.

    Order of checks:
        1. Identity fields (document number and its parts) never change.
        2. Status moves forward by exactly one step or not at all.
        3. Financial fields may change only while the stored status is Draft.
        4. The artifact binding is write-once once the stored status is Issued.
    """
    changed_identity = _changed_fields(target, NOTE_IDENTITY_FIELDS)
    if changed_identity:
        raise _violation(
            "Note", target.id, "UPDATE",
            f"Identity fields are immutable: {', '.join(changed_identity)}",
        )

    stored = _stored_status(target)
    status_history = get_history(target, "status")
    if status_history.added:
        new_status = _status_value(status_history.added[0])
        if _STATUS_RANK.get(new_status, -1) != _STATUS_RANK.get(stored, -1) + 1:
            raise _violation(
                "Note", target.id, "UPDATE",
                f"Status cannot move from {stored} to {new_status}",
            )

    if stored != "Draft":
        changed_financial = _changed_fields(target, NOTE_FINANCIAL_FIELDS)
        if changed_financial:
            raise _violation(
                "Note", target.id, "UPDATE",
                f"Financial fields are frozen in status {stored}: "
                f"{', '.join(changed_financial)}",
            )

    if stored == "Issued":
        changed_artifact = _changed_fields(target, NOTE_ARTIFACT_FIELDS)
        if changed_artifact:
            raise _violation(
                "Note", target.id, "UPDATE",
                "Artifact binding of an issued note cannot be replaced",
            )


def _check_note_delete(mapper, connection, target):
    raise _violation(
        "Note", target.id, "DELETE",
        "Notes are permanent records and cannot be deleted",
    )


# =============================================================================
# Co-insurance shares
# =============================================================================


def _parent_status(connection, note_id) -> str | None:
    from notes_kernel.models.note import Note

    return connection.execute(
        select(Note.status).where(Note.id == note_id)
    ).scalar()


def _check_share_insert(mapper, connection, target):
    status = _parent_status(connection, target.note_id)
    if status is not None and _status_value(status) != "Draft":
        raise _violation(
            "CoInsuranceShare", target.id, "INSERT",
            f"Shares can only be added while the note is Draft (is {status})",
        )


def _check_share_update(mapper, connection, target):
    raise _violation(
        "CoInsuranceShare", target.id, "UPDATE",
        "Shares are replaced wholesale, never modified in place",
    )


def _check_share_delete(mapper, connection, target):
    status = _parent_status(connection, target.note_id)
    if status is not None and _status_value(status) != "Draft":
        raise _violation(
            "CoInsuranceShare", target.id, "DELETE",
            f"Shares can only be removed while the note is Draft (is {status})",
        )


# =============================================================================
# Registration
# =============================================================================


def _listeners():
    from notes_kernel.models.audit_entry import AuditEntry
    from notes_kernel.models.dispatch_log import DispatchLog
    from notes_kernel.models.note import CoInsuranceShare, Note

    return [
        (AuditEntry, "before_update", _check_audit_entry_update),
        (AuditEntry, "before_delete", _check_audit_entry_delete),
        (DispatchLog, "before_update", _check_dispatch_log_update),
        (DispatchLog, "before_delete", _check_dispatch_log_delete),
        (Note, "before_update", _check_note_update),
        (Note, "before_delete", _check_note_delete),
        (CoInsuranceShare, "before_insert", _check_share_insert),
        (CoInsuranceShare, "before_update", _check_share_update),
        (CoInsuranceShare, "before_delete", _check_share_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that must violate the rules on purpose.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
