"""
Lifecycle settings -- the kernel-side shape of engine configuration.

The kernel never reads configuration files.  ``notes_config.bridges``
builds a LifecycleSettings from the loaded YAML; tests and embedded callers
may use ``LifecycleSettings()`` directly, whose defaults match the shipped
defaults.yaml.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from notes_kernel.domain.coinsurance import DEFAULT_TOLERANCE
from notes_kernel.domain.lifecycle import CapabilityPolicy, NoteType


@dataclass(frozen=True)
class ReminderRule:
    """Reminder created when a note of ``note_type`` is issued."""

    note_type: NoteType
    reminder_type: str
    due_in_days: int


DEFAULT_REMINDER_RULES: tuple[ReminderRule, ...] = (
    ReminderRule(NoteType.DN, "RemitPremium", 30),
    ReminderRule(NoteType.DN, "VATOnCommission", 30),
)


@dataclass(frozen=True)
class LifecycleSettings:
    currency: str = "NGN"
    default_vat_pct: Decimal = Decimal("7.5")
    default_agent_commission_pct: Decimal = Decimal("0")
    coinsurance_tolerance: Decimal = DEFAULT_TOLERANCE
    max_retries: int = 3
    retry_backoff_seconds: float = 0.05
    render_on_create: bool = True
    reminder_rules: tuple[ReminderRule, ...] = DEFAULT_REMINDER_RULES
    capabilities: CapabilityPolicy = field(default_factory=CapabilityPolicy.default)

    def reminders_for(self, note_type: NoteType | str) -> tuple[ReminderRule, ...]:
        note_type = NoteType(note_type)
        return tuple(rule for rule in self.reminder_rules if rule.note_type == note_type)
