"""Pure domain layer: state machine, calculator, splitter, requests and ports."""

from notes_kernel.domain.calculator import Breakdown, Levies, compute_breakdown
from notes_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from notes_kernel.domain.coinsurance import ShareAmount, ShareInput, split_shares
from notes_kernel.domain.lifecycle import (
    NOTE_TRANSITIONS,
    Actor,
    CapabilityPolicy,
    CapabilityRule,
    NoteOperation,
    NoteStatus,
    NoteType,
)
from notes_kernel.domain.numbering import format_document_number, parse_document_number
from notes_kernel.domain.requests import NoteRequest, NoteUpdate

__all__ = [
    "Actor",
    "Breakdown",
    "CapabilityPolicy",
    "CapabilityRule",
    "Clock",
    "DeterministicClock",
    "Levies",
    "NOTE_TRANSITIONS",
    "NoteOperation",
    "NoteRequest",
    "NoteStatus",
    "NoteType",
    "NoteUpdate",
    "ShareAmount",
    "ShareInput",
    "SystemClock",
    "compute_breakdown",
    "format_document_number",
    "parse_document_number",
    "split_shares",
]
