"""Shipped implementations of the renderer and artifact store ports."""

from notes_kernel.adapters.artifact_store import FilesystemArtifactStore, InMemoryArtifactStore
from notes_kernel.adapters.renderer import PlainTextNoteRenderer, ReportLabNoteRenderer

__all__ = [
    "FilesystemArtifactStore",
    "InMemoryArtifactStore",
    "PlainTextNoteRenderer",
    "ReportLabNoteRenderer",
]
