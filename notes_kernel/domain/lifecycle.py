"""
Note lifecycle domain types (``notes_kernel.domain.lifecycle``).

Responsibility
--------------
Pure value objects for the Credit/Debit Note state machine and the
capability policy that decides who may drive each operation.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  No imports from ``db/``,
``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* ``NOTE_TRANSITIONS`` defines the only valid status transitions:
  Draft -> Approved -> Issued.  Issued is terminal; no state is skipped
  and none regresses.
* Role checks live in one table (``CapabilityPolicy``) keyed by
  operation, not in per-operation conditionals.  A missing rule denies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable
from uuid import UUID

from notes_kernel.exceptions import UnauthorizedTransitionError


# =========================================================================
# Types and statuses
# =========================================================================


class NoteType(str, Enum):
    """CN: owed by an insurer to the broker.  DN: owed by a client."""

    CN = "CN"
    DN = "DN"


class NoteStatus(str, Enum):
    """Note lifecycle states."""

    DRAFT = "Draft"
    APPROVED = "Approved"
    ISSUED = "Issued"


NOTE_TRANSITIONS: dict[NoteStatus, frozenset[NoteStatus]] = {
    NoteStatus.DRAFT: frozenset({NoteStatus.APPROVED}),
    NoteStatus.APPROVED: frozenset({NoteStatus.ISSUED}),
    NoteStatus.ISSUED: frozenset(),
}

TERMINAL_NOTE_STATUSES: frozenset[NoteStatus] = frozenset({NoteStatus.ISSUED})


class NoteOperation(str, Enum):
    """Operations subject to the capability policy."""

    CREATE = "create"
    UPDATE = "update"
    APPROVE = "approve"
    ISSUE = "issue"
    REGENERATE = "regenerate"
    DISPATCH = "dispatch"


# Operation -> (required current status, resulting status)
OPERATION_TRANSITIONS: dict[NoteOperation, tuple[NoteStatus, NoteStatus]] = {
    NoteOperation.APPROVE: (NoteStatus.DRAFT, NoteStatus.APPROVED),
    NoteOperation.ISSUE: (NoteStatus.APPROVED, NoteStatus.ISSUED),
}


def is_valid_transition(current: NoteStatus | str, target: NoteStatus | str) -> bool:
    """True iff ``target`` is a direct successor of ``current``."""
    return NoteStatus(target) in NOTE_TRANSITIONS[NoteStatus(current)]


def transition_for(operation: NoteOperation) -> tuple[NoteStatus, NoteStatus]:
    """Return (from_status, to_status) for a transition operation.

    Raises:
        KeyError: If the operation does not move the note between states.
    """
    return OPERATION_TRANSITIONS[operation]


# =========================================================================
# Actors and capabilities
# =========================================================================


@dataclass(frozen=True)
class Actor:
    """The caller as reported by the identity provider.

    The engine consumes ``role`` and ``approval_level``; it never derives
    them.
    """

    actor_id: UUID
    role: str
    approval_level: int = 0


@dataclass(frozen=True)
class CapabilityRule:
    """Who may perform one operation.

    An empty ``roles`` set admits any role; ``min_approval_level`` always
    applies.  Role names compare case-insensitively.
    """

    operation: NoteOperation
    roles: frozenset[str] = field(default_factory=frozenset)
    min_approval_level: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "operation", NoteOperation(self.operation))
        object.__setattr__(
            self, "roles", frozenset(role.strip().lower() for role in self.roles),
        )
        if self.min_approval_level < 0:
            raise ValueError(
                f"min_approval_level must be >= 0, got {self.min_approval_level}"
            )

    def permits(self, actor: Actor) -> bool:
        if self.roles and actor.role.strip().lower() not in self.roles:
            return False
        return actor.approval_level >= self.min_approval_level


@dataclass(frozen=True)
class CapabilityPolicy:
    """Capability table keyed by operation.

    Contract:
        ``require()`` is the single gate every service operation passes
        before it touches the database.
    """

    rules: tuple[CapabilityRule, ...]

    def __post_init__(self) -> None:
        seen: set[NoteOperation] = set()
        for rule in self.rules:
            if rule.operation in seen:
                raise ValueError(f"Duplicate capability rule for {rule.operation.value}")
            seen.add(rule.operation)

    @classmethod
    def from_rules(cls, rules: Iterable[CapabilityRule]) -> CapabilityPolicy:
        return cls(rules=tuple(rules))

    @classmethod
    def default(cls) -> CapabilityPolicy:
        """Approve by Admin/Underwriter (level 2), issue by Admin/Accounts (level 3)."""
        editors = frozenset({"Admin", "Underwriter", "Accounts", "Marketer"})
        return cls.from_rules([
            CapabilityRule(NoteOperation.CREATE, editors, 1),
            CapabilityRule(NoteOperation.UPDATE, editors, 1),
            CapabilityRule(NoteOperation.APPROVE, frozenset({"Admin", "Underwriter"}), 2),
            CapabilityRule(NoteOperation.ISSUE, frozenset({"Admin", "Accounts"}), 3),
            CapabilityRule(NoteOperation.REGENERATE, frozenset({"Admin", "Accounts"}), 3),
            CapabilityRule(
                NoteOperation.DISPATCH,
                frozenset({"Admin", "Accounts", "Underwriter"}),
                1,
            ),
        ])

    def rule_for(self, operation: NoteOperation | str) -> CapabilityRule | None:
        operation = NoteOperation(operation)
        for rule in self.rules:
            if rule.operation == operation:
                return rule
        return None

    def allows(self, actor: Actor, operation: NoteOperation | str) -> bool:
        rule = self.rule_for(operation)
        return rule is not None and rule.permits(actor)

    def require(
        self,
        actor: Actor,
        operation: NoteOperation | str,
        note_ref: str = "-",
        current_status: str = "-",
    ) -> None:
        """Raise UnauthorizedTransitionError unless ``actor`` may perform ``operation``."""
        if not self.allows(actor, operation):
            raise UnauthorizedTransitionError(
                operation=NoteOperation(operation).value,
                role=actor.role,
                approval_level=actor.approval_level,
                note_ref=note_ref,
                current_status=current_status,
            )
