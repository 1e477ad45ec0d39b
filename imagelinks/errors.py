"""
Exception hierarchy shared by the codec, scanner, rewriter and propagator.
"""

from __future__ import annotations


class ImageLinkError(RuntimeError):
    """Base exception for reference tracking errors."""


class ParseError(ImageLinkError):
    """A line could not be parsed as an image link."""


class UnrecognizedDialect(ParseError):
    """The line matches none of the Wiki, Markdown or HTML grammars."""

    def __init__(self, line: str):
        super().__init__(f"Unrecognized link format: {line!r}")
        self.line = line


class ConcurrentModification(ImageLinkError):
    """The live line diverged from the line the caller last observed."""

    def __init__(self, note_path: str, line_number: int, expected: str, actual: str):
        super().__init__(f"Line {line_number} of {note_path} changed since it was read")
        self.note_path = note_path
        self.line_number = line_number
        self.expected = expected
        self.actual = actual


class ValidationError(ImageLinkError):
    """Caller input was rejected before any write happened."""


class InvalidSizeFormat(ValidationError):
    """Display size input does not follow the `W` or `WxH` grammar or is out of range."""


class NoteIOError(ImageLinkError):
    """A note could not be read or written."""


class NotFound(ImageLinkError):
    """A note, line or reference no longer exists."""


class NoteNotFound(NotFound):
    def __init__(self, note_path: str):
        super().__init__(f"Note not found: {note_path}")
        self.note_path = note_path


class LineOutOfRange(NotFound):
    def __init__(self, note_path: str, line_number: int, line_count: int):
        super().__init__(
            f"Line {line_number} is out of range for {note_path} ({line_count} lines)"
        )
        self.note_path = note_path
        self.line_number = line_number


class OperationCancelled(ImageLinkError):
    """A long-running scan was cancelled between notes."""
