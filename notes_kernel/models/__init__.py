"""ORM models for the notes kernel."""

from notes_kernel.models.audit_entry import AuditAction, AuditEntry
from notes_kernel.models.dispatch_log import DispatchLog, DispatchStatus
from notes_kernel.models.note import CoInsuranceShare, Note
from notes_kernel.models.reminder import Reminder

__all__ = [
    "AuditAction",
    "AuditEntry",
    "CoInsuranceShare",
    "DispatchLog",
    "DispatchStatus",
    "Note",
    "Reminder",
]
