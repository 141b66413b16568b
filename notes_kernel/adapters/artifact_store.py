"""
Artifact stores.

Keys are relative, slash-separated paths produced by ArtifactBinder
(``CN-2025-000042/<sha256>.pdf``).  Writing the same key twice is a no-op
when the bytes match, which is always the case for content-addressed keys.
"""

import os
import threading
from pathlib import Path

from notes_kernel.exceptions import ArtifactNotFoundError
from notes_kernel.logging_config import get_logger

logger = get_logger("adapters.artifact_store")


def _check_key(key: str) -> str:
    parts = key.split("/")
    if not key or key.startswith("/") or any(p in ("", ".", "..") for p in parts):
        raise ValueError(f"Invalid artifact key: {key!r}")
    return key


class FilesystemArtifactStore:
    """Stores artifacts as files below ``root``; the ref is the relative key."""

    def __init__(self, root: str | os.PathLike):
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, ref: str) -> Path:
        return self._root.joinpath(*_check_key(ref).split("/"))

    def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path(key)
        if path.exists() and path.read_bytes() == data:
            return key
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so a reader never sees a partial file
        tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)
        logger.debug(
            "artifact_stored",
            extra={"ref": key, "size": len(data), "content_type": content_type},
        )
        return key

    def get(self, ref: str | None) -> bytes:
        if not ref:
            raise ArtifactNotFoundError(ref)
        path = self._path(ref)
        if not path.is_file():
            raise ArtifactNotFoundError(ref)
        return path.read_bytes()


class InMemoryArtifactStore:
    """Dict-backed store for tests and single-process tools."""

    def __init__(self):
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: str, data: bytes, content_type: str) -> str:
        _check_key(key)
        with self._lock:
            self._blobs[key] = bytes(data)
        return key

    def get(self, ref: str | None) -> bytes:
        with self._lock:
            if not ref or ref not in self._blobs:
                raise ArtifactNotFoundError(ref)
            return self._blobs[ref]

    def overwrite(self, ref: str, data: bytes) -> None:
        """Replace stored bytes in place.  Simulates tampering in tests."""
        with self._lock:
            if ref not in self._blobs:
                raise ArtifactNotFoundError(ref)
            self._blobs[ref] = bytes(data)

    def __len__(self) -> int:
        return len(self._blobs)
