"""
Concurrency tests for allocation and transitions.

Numbers must be unique under concurrent creation, and when several callers
race the same transition exactly one wins; every loser gets an
InvalidTransition (plain or ConcurrencyConflict), never a silent success.

Run with: pytest tests/concurrency -v
Skip with: pytest -m "not slow_locks"
"""

import inspect
import re
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from notes_kernel.db.engine import session_scope
from notes_kernel.exceptions import InvalidTransition
from notes_kernel.services.auditor_service import AuditorService
from notes_kernel.services.sequence_service import SequenceAllocator

pytestmark = pytest.mark.slow_locks

WORKERS = 8


def _run_all(fn, count):
    """Call ``fn`` ``count`` times from a thread pool; collect results or errors."""
    outcomes = []
    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        futures = [pool.submit(fn) for _ in range(count)]
        for future in futures:
            try:
                outcomes.append(future.result())
            except Exception as exc:
                outcomes.append(exc)
    return outcomes


class TestAllocationImplementation:
    def test_allocator_locks_the_counter_row(self):
        source = Path(inspect.getfile(SequenceAllocator)).read_text()

        assert "with_for_update()" in source
        assert not re.search(r"func\.max\(", source)


class TestConcurrentCreation:
    def test_numbers_are_unique_and_dense(self, lifecycle, cn_payload, preparer):
        outcomes = _run_all(lambda: lifecycle.create_note(cn_payload(), preparer), 20)

        errors = [o for o in outcomes if isinstance(o, Exception)]
        assert errors == []
        numbers = sorted(o.sequence_number for o in outcomes)
        assert numbers == list(range(1, 21))

    def test_audit_chain_survives_contention(self, lifecycle, cn_payload, dn_payload, preparer,
                                             session_factory):
        payloads = [cn_payload(), dn_payload()] * 6
        outcomes = _run_all(lambda: lifecycle.create_note(payloads.pop(), preparer), 12)

        assert not [o for o in outcomes if isinstance(o, Exception)]
        with session_scope(session_factory) as s:
            assert AuditorService(s).validate_chain()


class TestTransitionRaces:
    def test_one_approval_wins(self, lifecycle, draft_note, approver):
        outcomes = _run_all(lambda: lifecycle.approve_note(draft_note.id, approver), 6)

        winners = [o for o in outcomes if not isinstance(o, Exception)]
        losers = [o for o in outcomes if isinstance(o, Exception)]
        assert len(winners) == 1
        assert len(losers) == 5
        assert all(isinstance(e, InvalidTransition) for e in losers)
        assert lifecycle.get_note(draft_note.id).status == "Approved"

    def test_one_issue_wins(self, lifecycle, approved_note, issuer, session_factory):
        outcomes = _run_all(lambda: lifecycle.issue_note(approved_note.id, issuer), 6)

        winners = [o for o in outcomes if not isinstance(o, Exception)]
        losers = [o for o in outcomes if isinstance(o, Exception)]
        assert len(winners) == 1
        assert all(isinstance(e, InvalidTransition) for e in losers)

        note = lifecycle.get_note(approved_note.id)
        assert note.status == "Issued"
        assert note.artifact_hash == winners[0].artifact_hash
        with session_scope(session_factory) as s:
            actions = AuditorService(s).get_trace("notes", approved_note.id).actions
        assert actions.count("ISSUE") == 1
