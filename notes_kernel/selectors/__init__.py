"""Read-only selectors."""

from notes_kernel.selectors.note_selector import NoteSelector

__all__ = ["NoteSelector"]
