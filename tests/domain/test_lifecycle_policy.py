"""State machine and capability policy tests."""

from uuid import uuid4

import pytest

from notes_kernel.domain.lifecycle import (
    NOTE_TRANSITIONS,
    TERMINAL_NOTE_STATUSES,
    Actor,
    CapabilityPolicy,
    CapabilityRule,
    NoteOperation,
    NoteStatus,
    is_valid_transition,
    transition_for,
)
from notes_kernel.exceptions import InvalidTransition, UnauthorizedTransitionError


def _actor(role: str, level: int) -> Actor:
    return Actor(actor_id=uuid4(), role=role, approval_level=level)


class TestStateMachine:
    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            (NoteStatus.DRAFT, NoteStatus.APPROVED, True),
            (NoteStatus.APPROVED, NoteStatus.ISSUED, True),
            (NoteStatus.DRAFT, NoteStatus.ISSUED, False),
            (NoteStatus.APPROVED, NoteStatus.DRAFT, False),
            (NoteStatus.ISSUED, NoteStatus.APPROVED, False),
            (NoteStatus.ISSUED, NoteStatus.DRAFT, False),
            (NoteStatus.DRAFT, NoteStatus.DRAFT, False),
        ],
    )
    def test_only_single_forward_steps(self, current, target, allowed):
        assert is_valid_transition(current, target) is allowed

    def test_accepts_plain_strings(self):
        assert is_valid_transition("Draft", "Approved")

    def test_issued_is_terminal(self):
        assert TERMINAL_NOTE_STATUSES == {NoteStatus.ISSUED}
        assert NOTE_TRANSITIONS[NoteStatus.ISSUED] == frozenset()

    def test_transition_for_operations(self):
        assert transition_for(NoteOperation.APPROVE) == (NoteStatus.DRAFT, NoteStatus.APPROVED)
        assert transition_for(NoteOperation.ISSUE) == (NoteStatus.APPROVED, NoteStatus.ISSUED)

    def test_non_transition_operation_has_no_entry(self):
        with pytest.raises(KeyError):
            transition_for(NoteOperation.UPDATE)


class TestDefaultCapabilities:
    policy = CapabilityPolicy.default()

    @pytest.mark.parametrize(
        "role,level,allowed",
        [
            ("Underwriter", 2, True),
            ("Admin", 2, True),
            ("Underwriter", 1, False),
            ("Accounts", 3, False),
            ("Marketer", 5, False),
        ],
    )
    def test_approve(self, role, level, allowed):
        assert self.policy.allows(_actor(role, level), NoteOperation.APPROVE) is allowed

    @pytest.mark.parametrize(
        "role,level,allowed",
        [
            ("Accounts", 3, True),
            ("Admin", 3, True),
            ("Accounts", 2, False),
            ("Underwriter", 3, False),
        ],
    )
    def test_issue(self, role, level, allowed):
        assert self.policy.allows(_actor(role, level), NoteOperation.ISSUE) is allowed

    def test_roles_compare_case_insensitively(self):
        assert self.policy.allows(_actor("  accounts ", 3), "issue")

    def test_require_raises_typed_error(self):
        with pytest.raises(UnauthorizedTransitionError) as exc_info:
            self.policy.require(
                _actor("Marketer", 1), NoteOperation.APPROVE,
                note_ref="CN/2025/000001", current_status="Draft",
            )

        err = exc_info.value
        assert isinstance(err, InvalidTransition)
        assert err.code == "INSUFFICIENT_APPROVAL_LEVEL"
        assert err.operation == "approve"
        assert err.role == "Marketer"
        assert err.note_ref == "CN/2025/000001"

    def test_every_operation_has_a_rule(self):
        for operation in NoteOperation:
            assert self.policy.rule_for(operation) is not None


class TestCustomPolicy:
    def test_empty_roles_admit_any_role(self):
        policy = CapabilityPolicy.from_rules([CapabilityRule(NoteOperation.CREATE, frozenset(), 0)])

        assert policy.allows(_actor("Anyone", 0), NoteOperation.CREATE)

    def test_operation_without_rule_is_denied(self):
        policy = CapabilityPolicy.from_rules([CapabilityRule(NoteOperation.CREATE, frozenset(), 0)])

        assert not policy.allows(_actor("Admin", 9), NoteOperation.ISSUE)

    def test_duplicate_rules_are_rejected(self):
        with pytest.raises(ValueError):
            CapabilityPolicy.from_rules([
                CapabilityRule(NoteOperation.ISSUE, frozenset({"Admin"}), 3),
                CapabilityRule(NoteOperation.ISSUE, frozenset({"Accounts"}), 3),
            ])

    def test_negative_level_is_rejected(self):
        with pytest.raises(ValueError):
            CapabilityRule(NoteOperation.ISSUE, frozenset({"Admin"}), -1)
