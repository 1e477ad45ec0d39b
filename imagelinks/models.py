"""
Shared pydantic models and enumerations used across the engine.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, Field

MUTATION_FIELDS = ("new_display_text", "new_width", "new_height", "new_target_path")


class Dialect(str, Enum):
    """Textual grammar used to reference an image from a note."""

    WIKI = "wiki"
    WIKI_NO_BANG = "wiki-no-bang"
    MARKDOWN = "markdown"
    HTML = "html"

    @property
    def is_wiki(self) -> bool:
        return self in (Dialect.WIKI, Dialect.WIKI_NO_BANG)


class HtmlAttribute(BaseModel):
    """An `<img>` attribute kept verbatim; `value` is None for bare attributes."""

    name: str
    value: Optional[str] = None
    quote: str = '"'


class HtmlFormat(BaseModel):
    """Formatting details of an `<img>` tag needed to rebuild it faithfully."""

    tag: str = "img"
    quote: str = '"'
    closing: str = ">"
    attributes: List[HtmlAttribute] = Field(default_factory=list)


class LinkParts(BaseModel):
    """Dialect-agnostic view of one image link."""

    dialect: Dialect
    target_path: str
    display_text: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    # Display text exactly as written in the source, escapes included.
    raw_display: Optional[str] = None
    # Markdown only: text after the target inside the parentheses, e.g. a title.
    trailer: Optional[str] = None
    html: Optional[HtmlFormat] = None

    @property
    def has_size(self) -> bool:
        return self.width is not None or self.height is not None


class LinkMatch(BaseModel):
    """A parsed link together with its character span inside the line."""

    parts: LinkParts
    start: int
    end: int

    def splice(self, line: str, replacement: str) -> str:
        return line[: self.start] + replacement + line[self.end :]


class ImageReference(BaseModel):
    """One line of one note that references an image."""

    note_path: str
    line_number: int
    dialect: Dialect
    raw_line: str
    parts: LinkParts
    start: int
    end: int

    @property
    def display_text(self) -> Optional[str]:
        return self.parts.display_text

    @property
    def link_text(self) -> str:
        return self.raw_line[self.start : self.end]


class RewriteRequest(BaseModel):
    """
    A single-line mutation.

    Mutation fields that are not set are passed through unchanged; a mutation field
    explicitly set to None clears the attribute (no caption, natural size).
    """

    note_path: str
    line_number: int
    expected_old_line: str
    new_display_text: Optional[str] = None
    new_width: Optional[int] = None
    new_height: Optional[int] = None
    new_target_path: Optional[str] = None
    image_path: Optional[str] = None
    image_name: Optional[str] = None
    image_hash: Optional[str] = None

    @classmethod
    def for_reference(cls, reference: ImageReference, **changes: object) -> "RewriteRequest":
        """Build a request addressed at the line a scan returned."""
        payload = {
            "note_path": reference.note_path,
            "line_number": reference.line_number,
            "expected_old_line": reference.raw_line,
        }
        payload.update(changes)
        return cls.model_validate(payload)

    @property
    def mutations(self) -> Set[str]:
        return {name for name in MUTATION_FIELDS if name in self.model_fields_set}

    def sets(self, field_name: str) -> bool:
        return field_name in self.model_fields_set


class RewriteStatus(str, Enum):
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class RewriteResult(BaseModel):
    """Outcome of rewriting one line."""

    note_path: str
    line_number: int
    status: RewriteStatus
    old_line: Optional[str] = None
    new_line: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class NoteRewriteResult(BaseModel):
    """Outcome of rewriting every matching line of one note during a batch."""

    note_path: str
    status: RewriteStatus
    lines: List[RewriteResult] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def changed_lines(self) -> List[int]:
        return [line.line_number for line in self.lines if line.status == RewriteStatus.CHANGED]


class RewriteSummary(BaseModel):
    """Aggregated counts for a batch of rewrites."""

    changed: int = 0
    unchanged: int = 0
    failed: int = 0
    cancelled: bool = False

    def register(self, status: RewriteStatus) -> None:
        if status == RewriteStatus.CHANGED:
            self.changed += 1
        elif status == RewriteStatus.UNCHANGED:
            self.unchanged += 1
        elif status == RewriteStatus.FAILED:
            self.failed += 1


class ReferencePolicy(str, Enum):
    """How to pick the authoritative note when an image has several referrers."""

    FIRST = "first"
    LATEST = "latest"
    PROMPT = "prompt"
    ALL = "all"


class OutcomeKind(str, Enum):
    SELECTED = "selected"
    NEEDS_USER_CHOICE = "needs-user-choice"
    ALL = "all"


class ResolverOutcome(BaseModel):
    kind: OutcomeKind
    selected: Optional[ImageReference] = None
    candidates: List[ImageReference] = Field(default_factory=list)


class ChangeKind(str, Enum):
    DISPLAY_TEXT = "display-text"
    SIZE = "size"
    PATH = "path"


class ChangeEvent(BaseModel):
    """Emitted after a line was rewritten; consumed by history and log stores."""

    kinds: List[ChangeKind]
    note_path: str
    line_number: int
    old_line: str
    new_line: str
    image_path: Optional[str] = None
    image_hash: Optional[str] = None
    old_display_text: Optional[str] = None
    new_display_text: Optional[str] = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
