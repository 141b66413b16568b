"""
Deterministic hashing utilities.

Every hash the engine stores (artifact content hashes, audit payload hashes,
the audit chain) comes from this module, so the algorithm and the canonical
encoding are defined in one place.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _json_serializer(obj: Any) -> Any:
    """Encode Decimal, datetime, date, UUID and bytes for canonical JSON."""
    if isinstance(obj, Decimal):
        # Fixed-point, trailing zeros removed: 10.00 and 10 hash the same
        return format(obj.normalize(), "f")
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """
    Convert data to canonical JSON: sorted keys, no whitespace, stable
    encoding of the special types above.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_bytes(data: bytes) -> str:
    """Hex-encoded SHA-256 of raw bytes (64 characters)."""
    return hashlib.sha256(data).hexdigest()


def hash_payload(payload: Any) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    return hash_bytes(canonicalize_json(payload).encode("utf-8"))


def hash_audit_entry(
    table_name: str,
    record_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Chain hash for one audit entry.

    H(table_name | record_id | action | payload_hash | prev_hash), with the
    literal "GENESIS" standing in for the missing predecessor of the first
    entry.
    """
    components = [
        table_name,
        str(record_id),
        action,
        payload_hash,
        prev_hash or GENESIS,
    ]
    return hash_bytes("|".join(components).encode("utf-8"))
