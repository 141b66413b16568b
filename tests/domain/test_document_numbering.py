"""Document number format tests: {CN|DN}/{YYYY}/{NNNNNN}."""

import pytest

from notes_kernel.domain.lifecycle import NoteType
from notes_kernel.domain.numbering import (
    format_document_number,
    parse_document_number,
    storage_stem,
)


class TestFormat:
    @pytest.mark.parametrize(
        "note_type,year,seq,expected",
        [
            (NoteType.CN, 2025, 1, "CN/2025/000001"),
            (NoteType.DN, 2025, 42, "DN/2025/000042"),
            ("CN", 2026, 999999, "CN/2026/999999"),
        ],
    )
    def test_bit_exact_format(self, note_type, year, seq, expected):
        assert format_document_number(note_type, year, seq) == expected

    @pytest.mark.parametrize(
        "note_type,year,seq",
        [
            ("XX", 2025, 1),
            ("CN", 2025, 0),
            ("CN", 999, 1),
        ],
    )
    def test_rejects_out_of_range_parts(self, note_type, year, seq):
        with pytest.raises(ValueError):
            format_document_number(note_type, year, seq)


class TestParse:
    def test_parse_round_trip(self):
        assert parse_document_number("DN/2025/000042") == (NoteType.DN, 2025, 42)

    @pytest.mark.parametrize(
        "value", ["CN-2025-000001", "CN/25/000001", "CN/2025/1", "XN/2025/000001", ""],
    )
    def test_parse_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            parse_document_number(value)

    def test_sequence_beyond_six_digits_keeps_all_digits(self):
        assert format_document_number("CN", 2025, 1_000_000) == "CN/2025/1000000"
        assert parse_document_number("CN/2025/1000000") == (NoteType.CN, 2025, 1_000_000)

    def test_storage_stem_has_no_slashes(self):
        assert storage_stem("CN/2025/000042") == "CN-2025-000042"
