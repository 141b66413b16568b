"""Utility functions for the notes kernel."""

from notes_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_entry,
    hash_bytes,
    hash_payload,
)

__all__ = [
    "canonicalize_json",
    "hash_audit_entry",
    "hash_bytes",
    "hash_payload",
]
