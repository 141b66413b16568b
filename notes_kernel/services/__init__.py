"""Kernel services: the only writers of notes, counters and the audit trail."""

from notes_kernel.services.artifact_binder import ArtifactBinder, ArtifactBinding
from notes_kernel.services.auditor_service import AuditorService, AuditTrace
from notes_kernel.services.dispatch_service import DispatchService
from notes_kernel.services.note_lifecycle_service import (
    NoteLifecycleService,
    RegenerationResult,
)
from notes_kernel.services.sequence_service import SequenceAllocator, SequenceCounter

__all__ = [
    "ArtifactBinder",
    "ArtifactBinding",
    "AuditTrace",
    "AuditorService",
    "DispatchService",
    "NoteLifecycleService",
    "RegenerationResult",
    "SequenceAllocator",
    "SequenceCounter",
]
