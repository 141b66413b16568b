"""
Bridges from configuration to kernel inputs.

The kernel never imports ``notes_config``.  These helpers translate a
parsed ``EngineConfig`` into the plain kernel objects the services take:
``LifecycleSettings``, ``CapabilityPolicy`` and an ``ArtifactRenderer``.
"""

from __future__ import annotations

from notes_config.schema import EngineConfig
from notes_kernel.adapters.renderer import PlainTextNoteRenderer, ReportLabNoteRenderer
from notes_kernel.domain.lifecycle import CapabilityPolicy, CapabilityRule, NoteOperation, NoteType
from notes_kernel.domain.ports import ArtifactRenderer
from notes_kernel.domain.settings import LifecycleSettings, ReminderRule


def build_capability_policy(config: EngineConfig) -> CapabilityPolicy:
    return CapabilityPolicy.from_rules(
        CapabilityRule(
            operation=NoteOperation(cap.operation),
            roles=frozenset(cap.roles),
            min_approval_level=cap.min_approval_level,
        )
        for cap in config.capabilities
    )


def build_lifecycle_settings(config: EngineConfig) -> LifecycleSettings:
    """Translate an EngineConfig into the settings the lifecycle services take."""
    return LifecycleSettings(
        currency=config.currency,
        default_vat_pct=config.defaults.vat_pct,
        default_agent_commission_pct=config.defaults.agent_commission_pct,
        coinsurance_tolerance=config.coinsurance.tolerance,
        max_retries=config.allocation.max_retries,
        retry_backoff_seconds=config.allocation.retry_backoff_seconds,
        render_on_create=config.artifacts.render_on_create,
        reminder_rules=tuple(
            ReminderRule(NoteType(r.note_type), r.reminder_type, r.due_in_days)
            for r in config.reminders
        ),
        capabilities=build_capability_policy(config),
    )


def build_renderer(config: EngineConfig) -> ArtifactRenderer:
    if config.artifacts.renderer == "text":
        return PlainTextNoteRenderer()
    if config.artifacts.company_name:
        return ReportLabNoteRenderer(company_name=config.artifacts.company_name)
    return ReportLabNoteRenderer()
