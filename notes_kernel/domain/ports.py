"""
Ports -- interfaces to the collaborators the engine consumes but does not
implement: the party/policy registry, the artifact renderer, artifact
storage and dispatch transport.

Architecture position:
    Kernel > Domain.  Protocols only; adapters live in
    ``notes_kernel.adapters`` (renderer, store) or are supplied by the host
    application (registry, transport).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Protocol, Sequence

from notes_kernel.domain.dtos import NoteDTO


class PartyKind(str, Enum):
    CLIENT = "client"
    POLICY = "policy"
    INSURER = "insurer"
    BANK_ACCOUNT = "bank_account"


@dataclass(frozen=True)
class PartyRecord:
    """What the engine needs to know about a registry entry."""

    party_id: str
    kind: PartyKind
    display_name: str
    is_active: bool = True


class PartyRegistry(Protocol):
    """Read-only registry lookups."""

    def lookup(self, kind: PartyKind, party_id: str) -> PartyRecord | None:
        """Return the record, or None if no such party exists."""
        ...


class ArtifactRenderer(Protocol):
    """
    Stateless renderer.

    Contract:
        The same NoteDTO and related records must produce the same bytes,
        otherwise re-rendering an Issued note cannot be used for tamper
        detection.
    """

    content_type: str
    extension: str

    def render(self, note: NoteDTO, related: Mapping[str, PartyRecord]) -> bytes:
        ...


class ArtifactStore(Protocol):
    """Byte storage for rendered artifacts."""

    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return the artifact reference."""
        ...

    def get(self, ref: str) -> bytes:
        """Return the stored bytes.  Raises ArtifactNotFoundError."""
        ...


@dataclass(frozen=True)
class DispatchOutcome:
    success: bool
    provider_message_id: str | None = None
    error: str | None = None


class DispatchTransport(Protocol):
    """Outbound delivery (e-mail or otherwise)."""

    def send(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        attachment: bytes,
        filename: str,
        content_type: str,
    ) -> DispatchOutcome:
        ...
