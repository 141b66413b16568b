"""
Configuration Loader (``notes_config.loader``).

Responsibility
--------------
Loads the engine YAML file and parses it into the frozen dataclasses of
``notes_config.schema``.  Runtime callers go through
``notes_config.get_active_config()``.

Invariants enforced
-------------------
* No silent defaults for required keys: a missing key raises ``KeyError``.
* Out-of-range values (percentages outside [0, 100], negative tolerance,
  retries or due days, unknown operations or note types) raise
  ``ValueError``.
* ``compute_checksum`` is deterministic for identical documents.

Failure modes
-------------
* Missing YAML file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from notes_config.schema import (
    AllocationDef,
    ArtifactDef,
    CapabilityDef,
    CoInsuranceDef,
    DefaultRates,
    EngineConfig,
    ReminderDef,
)
from notes_kernel.db.types import PERCENTAGE_DECIMAL_PLACES, fits_percentage_scale

OPERATIONS = ("create", "update", "approve", "issue", "regenerate", "dispatch")
NOTE_TYPES = ("CN", "DN")
RENDERERS = ("pdf", "text")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its top-level mapping.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{name}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name}: expected a number, got {value!r}") from None


def parse_percentage(value: Any, name: str) -> Decimal:
    pct = parse_decimal(value, name)
    if not Decimal("0") <= pct <= Decimal("100"):
        raise ValueError(f"{name}: must be within [0, 100], got {pct}")
    if not fits_percentage_scale(pct):
        raise ValueError(
            f"{name}: at most {PERCENTAGE_DECIMAL_PLACES} decimal places, got {pct}"
        )
    return pct


def parse_non_negative_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{name}: expected a non-negative integer, got {value!r}")
    return value


def parse_defaults(data: dict[str, Any]) -> DefaultRates:
    return DefaultRates(
        vat_pct=parse_percentage(data["vat_pct"], "defaults.vat_pct"),
        agent_commission_pct=parse_percentage(
            data["agent_commission_pct"], "defaults.agent_commission_pct",
        ),
    )


def parse_coinsurance(data: dict[str, Any]) -> CoInsuranceDef:
    tolerance = parse_decimal(data["tolerance"], "coinsurance.tolerance")
    if tolerance < 0:
        raise ValueError(f"coinsurance.tolerance: must be >= 0, got {tolerance}")
    return CoInsuranceDef(tolerance=tolerance)


def parse_allocation(data: dict[str, Any]) -> AllocationDef:
    backoff = float(data["retry_backoff_seconds"])
    if backoff < 0:
        raise ValueError(f"allocation.retry_backoff_seconds: must be >= 0, got {backoff}")
    return AllocationDef(
        max_retries=parse_non_negative_int(data["max_retries"], "allocation.max_retries"),
        retry_backoff_seconds=backoff,
    )


def parse_artifacts(data: dict[str, Any]) -> ArtifactDef:
    renderer = str(data["renderer"])
    if renderer not in RENDERERS:
        raise ValueError(f"artifacts.renderer: expected one of {RENDERERS}, got {renderer!r}")
    return ArtifactDef(
        render_on_create=bool(data["render_on_create"]),
        renderer=renderer,
        company_name=str(data.get("company_name", "")),
    )


def parse_reminder(data: dict[str, Any]) -> ReminderDef:
    note_type = str(data["note_type"]).upper()
    if note_type not in NOTE_TYPES:
        raise ValueError(f"reminders.note_type: expected CN or DN, got {note_type!r}")
    return ReminderDef(
        note_type=note_type,
        reminder_type=str(data["reminder_type"]),
        due_in_days=parse_non_negative_int(data["due_in_days"], "reminders.due_in_days"),
    )


def parse_capability(operation: str, data: dict[str, Any]) -> CapabilityDef:
    if operation not in OPERATIONS:
        raise ValueError(f"capabilities: unknown operation {operation!r}")
    roles = data.get("roles") or []
    if not isinstance(roles, list):
        raise ValueError(f"capabilities.{operation}.roles: expected a list")
    return CapabilityDef(
        operation=operation,
        roles=tuple(str(role) for role in roles),
        min_approval_level=parse_non_negative_int(
            data["min_approval_level"], f"capabilities.{operation}.min_approval_level",
        ),
    )


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse a full configuration document.

    Raises:
        KeyError: A required key is missing.
        ValueError: A value is out of range or of the wrong kind.
    """
    currency = str(data["currency"]).upper()
    if len(currency) != 3 or not currency.isalpha():
        raise ValueError(f"currency: expected a 3-letter code, got {currency!r}")

    return EngineConfig(
        config_id=str(data["config_id"]),
        version=parse_non_negative_int(data["version"], "version"),
        currency=currency,
        defaults=parse_defaults(data["defaults"]),
        coinsurance=parse_coinsurance(data["coinsurance"]),
        allocation=parse_allocation(data["allocation"]),
        artifacts=parse_artifacts(data["artifacts"]),
        reminders=tuple(parse_reminder(r) for r in data.get("reminders") or []),
        capabilities=tuple(
            parse_capability(op, spec) for op, spec in sorted(data["capabilities"].items())
        ),
        checksum=compute_checksum(data),
    )
