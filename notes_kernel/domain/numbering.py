"""
Document numbers.

Format is bit-exact: ``{CN|DN}/{4-digit year}/{6-digit zero-padded sequence}``,
e.g. ``CN/2025/000042``.  Sequences beyond 999999 keep all their digits.
"""

import re

from notes_kernel.domain.lifecycle import NoteType

_PATTERN = re.compile(r"^(CN|DN)/(\d{4})/(\d{6,})$")


def format_document_number(note_type: NoteType | str, year: int, sequence: int) -> str:
    note_type = NoteType(note_type)
    if not 1000 <= year <= 9999:
        raise ValueError(f"Year must have four digits, got {year}")
    if sequence < 1:
        raise ValueError(f"Sequence must be >= 1, got {sequence}")
    return f"{note_type.value}/{year:04d}/{sequence:06d}"


def parse_document_number(document_number: str) -> tuple[NoteType, int, int]:
    """Split a document number into (type, year, sequence).

    Raises:
        ValueError: If the string is not a well-formed document number.
    """
    match = _PATTERN.match(document_number)
    if match is None:
        raise ValueError(f"Malformed document number: {document_number!r}")
    return NoteType(match.group(1)), int(match.group(2)), int(match.group(3))


def storage_stem(document_number: str) -> str:
    """``CN/2025/000042`` -> ``CN-2025-000042`` (safe as a path segment)."""
    note_type, year, sequence = parse_document_number(document_number)
    return f"{note_type.value}-{year:04d}-{sequence:06d}"
