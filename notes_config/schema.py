"""
Engine configuration schema.

Frozen dataclasses parsed from YAML by ``notes_config.loader``.  This is
the reviewable source form; ``notes_config.bridges`` turns it into the
kernel's ``LifecycleSettings``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class DefaultRates:
    vat_pct: Decimal
    agent_commission_pct: Decimal


@dataclass(frozen=True)
class CoInsuranceDef:
    tolerance: Decimal


@dataclass(frozen=True)
class AllocationDef:
    """Retry policy for transient contention while creating a note."""

    max_retries: int
    retry_backoff_seconds: float


@dataclass(frozen=True)
class ArtifactDef:
    render_on_create: bool
    renderer: str  # "pdf" or "text"
    company_name: str


@dataclass(frozen=True)
class ReminderDef:
    note_type: str
    reminder_type: str
    due_in_days: int


@dataclass(frozen=True)
class CapabilityDef:
    operation: str
    roles: tuple[str, ...]
    min_approval_level: int


@dataclass(frozen=True)
class EngineConfig:
    """
    Complete engine configuration.

    ``checksum`` is the SHA-256 of the canonical JSON of the raw YAML
    document and identifies the configuration in logs.
    """

    config_id: str
    version: int
    currency: str
    defaults: DefaultRates
    coinsurance: CoInsuranceDef
    allocation: AllocationDef
    artifacts: ArtifactDef
    reminders: tuple[ReminderDef, ...]
    capabilities: tuple[CapabilityDef, ...]
    checksum: str
