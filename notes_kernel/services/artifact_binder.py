"""
ArtifactBinder -- render, hash and store a note's artifact.

Responsibility:
    Given a note snapshot, ask the renderer for bytes, hash them and put
    them in the artifact store under a note- and content-addressed key.
    Returns the (reference, hash) pair; persisting it on the note is the
    lifecycle service's job.

Architecture position:
    Kernel > Services.  Holds no session: rendering is I/O-bound and must
    never run inside the transaction that commits a status change.

Invariants enforced:
    - Storage key is ``{TYPE}-{YEAR}-{SEQ}/{sha256}{ext}``; the same bytes
      always land at the same key, so repeated binds are idempotent.
    - Rendering happens only when a caller asks for it (create, issue,
      regenerate).  Nothing on the read path calls this class.

Failure modes:
    - RenderFailure wraps any renderer or store error.
    - ArtifactNotFoundError from verify_stored() if the bytes are gone.
"""

from dataclasses import dataclass
from typing import Callable

from notes_kernel.domain.dtos import NoteDTO
from notes_kernel.domain.numbering import storage_stem
from notes_kernel.domain.ports import (
    ArtifactRenderer,
    ArtifactStore,
    PartyKind,
    PartyRecord,
    PartyRegistry,
)
from notes_kernel.exceptions import NotesKernelError, RenderFailure
from notes_kernel.logging_config import get_logger
from notes_kernel.utils.hashing import hash_bytes

logger = get_logger("services.artifact_binder")


@dataclass(frozen=True)
class ArtifactBinding:
    ref: str
    hash: str
    content_type: str
    size: int


class ArtifactBinder:
    """
    Contract:
        ``bind_artifact(note)`` returns the same hash for the same note
        snapshot and the same registry data.

    Non-goals:
        - Does NOT write to the database.
    """

    def __init__(
        self,
        renderer: ArtifactRenderer,
        store: ArtifactStore,
        registry: PartyRegistry,
        hasher: Callable[[bytes], str] = hash_bytes,
    ):
        self._renderer = renderer
        self._store = store
        self._registry = registry
        self._hasher = hasher

    @property
    def store(self) -> ArtifactStore:
        return self._store

    def related_parties(self, note: NoteDTO) -> dict[str, PartyRecord]:
        """
        Registry records the renderer needs, keyed ``client``, ``policy``,
        ``insurer`` and ``insurer:<id>`` per co-insurer.
        Parties the registry no longer knows are left out.
        """
        wanted: list[tuple[str, PartyKind, str | None]] = [
            ("client", PartyKind.CLIENT, note.client_id),
            ("policy", PartyKind.POLICY, note.policy_id),
            ("insurer", PartyKind.INSURER, note.insurer_id),
        ]
        wanted.extend(
            (f"insurer:{share.insurer_id}", PartyKind.INSURER, share.insurer_id)
            for share in note.shares
        )
        related: dict[str, PartyRecord] = {}
        for key, kind, party_id in wanted:
            if party_id is None:
                continue
            record = self._registry.lookup(kind, party_id)
            if record is not None:
                related[key] = record
        return related

    def render(self, note: NoteDTO) -> bytes:
        """Render without storing.

        Raises:
            RenderFailure: If the renderer raises or returns no bytes.
        """
        try:
            data = self._renderer.render(note, self.related_parties(note))
        except NotesKernelError:
            raise
        except Exception as exc:
            raise RenderFailure(note.document_number, f"{type(exc).__name__}: {exc}") from exc
        if not data:
            raise RenderFailure(note.document_number, "renderer returned no content")
        return data

    def content_hash(self, note: NoteDTO) -> str:
        """Hash a fresh render of ``note`` without storing it."""
        return self._hasher(self.render(note))

    def bind_artifact(self, note: NoteDTO) -> ArtifactBinding:
        """
        Render, hash and store the artifact for ``note``.

        Postconditions:
            - The bytes are retrievable from the store by the returned ref.
        """
        data = self.render(note)
        digest = self._hasher(data)
        key = f"{storage_stem(note.document_number)}/{digest}{self._renderer.extension}"
        try:
            ref = self._store.put(key, data, self._renderer.content_type)
        except NotesKernelError:
            raise
        except Exception as exc:
            raise RenderFailure(
                note.document_number, f"store failed: {type(exc).__name__}: {exc}",
            ) from exc

        logger.info(
            "artifact_bound",
            extra={
                "document_number": note.document_number,
                "artifact_ref": ref,
                "artifact_hash": digest,
                "size": len(data),
            },
        )
        return ArtifactBinding(
            ref=ref,
            hash=digest,
            content_type=self._renderer.content_type,
            size=len(data),
        )

    def load(self, note: NoteDTO) -> bytes:
        """Stored bytes for the note's bound artifact.

        Raises:
            ArtifactNotFoundError: If nothing is bound or the bytes are gone.
        """
        return self._store.get(note.artifact_ref)

    def verify_stored(self, note: NoteDTO) -> bool:
        """Re-hash the stored bytes (no render) and compare with the binding."""
        return self._hasher(self.load(note)) == note.artifact_hash
