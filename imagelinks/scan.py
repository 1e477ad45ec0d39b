"""
Reference scanning: walk the notes of a vault and find every line that references an image.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, cast

from markdown_it import MarkdownIt

from . import dialects, paths
from .errors import ImageLinkError, OperationCancelled
from .models import Dialect, ImageReference, LinkMatch
from .vault import NoteCorpus, VaultFiles

LOG = logging.getLogger(__name__)

MARKDOWN = MarkdownIt("commonmark")
CODE_TOKEN_TYPES = {"fence", "code_block"}
# Compared against the lower-cased note text.
LINK_MARKERS = ("[[", "![", "<img")
BACKTICK_RUN = re.compile(r"`+")


class ReferenceScanner:
    """Locate references to one image across every note of a corpus."""

    def __init__(self, corpus: NoteCorpus, skip_code_blocks: bool = True):
        self.corpus = corpus
        self.skip_code_blocks = skip_code_blocks

    def find_references(
        self,
        target_path: Optional[str],
        target_name: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[ImageReference]:
        """Return matches in file-then-line order; at most one per line."""
        if not target_path and not target_name:
            raise ValueError("target_path or target_name is required")
        if target_name is None and target_path:
            target_name = paths.basename(target_path)

        references: List[ImageReference] = []
        for note_path in self.corpus.list_notes():
            if cancel is not None and cancel.is_set():
                raise OperationCancelled("Reference scan cancelled")
            try:
                text = self.corpus.read(note_path)
            except ImageLinkError as exc:
                LOG.warning(
                    "Skipping unreadable note",
                    extra={"extra_payload": {"note_path": note_path, "error": str(exc)}},
                )
                continue
            references.extend(
                find_references_in_text(
                    note_path,
                    text,
                    target_path,
                    target_name,
                    skip_code_blocks=self.skip_code_blocks,
                )
            )

        LOG.debug(
            "Reference scan finished",
            extra={
                "extra_payload": {
                    "target_path": target_path,
                    "target_name": target_name,
                    "references": len(references),
                }
            },
        )
        return references

    def find_broken_links(
        self,
        image_extensions: Iterable[str],
        cancel: Optional[threading.Event] = None,
    ) -> List[ImageReference]:
        """
        Every image link whose target does not resolve to a file of the vault.

        The corpus must also list vault files (`VaultFiles`). External URLs are not
        checked; links are resolved the way Obsidian resolves them, so a bare file
        name is found in any folder.
        """
        extensions = {extension.lower().lstrip(".") for extension in image_extensions}
        corpus = cast(VaultFiles, self.corpus)
        files = paths.FileIndex(corpus.list_files(extensions))

        broken: List[ImageReference] = []
        for note_path in self.corpus.list_notes():
            if cancel is not None and cancel.is_set():
                raise OperationCancelled("Broken link scan cancelled")
            try:
                text = self.corpus.read(note_path)
            except ImageLinkError as exc:
                LOG.warning(
                    "Skipping unreadable note",
                    extra={"extra_payload": {"note_path": note_path, "error": str(exc)}},
                )
                continue
            broken.extend(
                broken_links_in_text(
                    note_path, text, files, extensions, skip_code_blocks=self.skip_code_blocks
                )
            )

        LOG.info(
            "Broken link scan finished",
            extra={"extra_payload": {"broken_links": len(broken)}},
        )
        return broken


def find_references_in_text(
    note_path: str,
    text: str,
    target_path: Optional[str],
    target_name: Optional[str],
    skip_code_blocks: bool = True,
) -> List[ImageReference]:
    if not has_link_marker(text):
        return []

    lines = text.split("\n")
    excluded = code_block_lines(text) if skip_code_blocks else set()
    references: List[ImageReference] = []
    for index, line in enumerate(lines):
        if index in excluded:
            continue
        match = match_line(line, note_path, target_path, target_name, skip_code_blocks)
        if match is None:
            continue
        references.append(
            ImageReference(
                note_path=note_path,
                line_number=index + 1,
                dialect=match.parts.dialect,
                raw_line=line,
                parts=match.parts,
                start=match.start,
                end=match.end,
            )
        )
    return references


def match_line(
    line: str,
    note_path: str,
    target_path: Optional[str],
    target_name: Optional[str],
    skip_inline_code: bool = True,
) -> Optional[LinkMatch]:
    """First link on the line, in dialect precedence order, that points at the image."""
    for match in links_outside_code(line, skip_inline_code):
        if paths.matches_image(match.parts, note_path, target_path, target_name):
            return match
    return None


def has_link_marker(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in LINK_MARKERS)


def links_outside_code(line: str, skip_inline_code: bool = True) -> List[LinkMatch]:
    """Links of the line in dialect precedence order, minus those inside inline code."""
    matches = dialects.find_links(line)
    if not skip_inline_code or not matches:
        return matches
    spans = inline_code_spans(line)
    if not spans:
        return matches
    return [
        match
        for match in matches
        if not any(start <= match.start < end for start, end in spans)
    ]


def code_block_lines(text: str) -> Set[int]:
    """Zero-based indexes of lines that belong to fenced or indented code blocks."""
    if "```" not in text and "~~~" not in text and "    " not in text and "\t" not in text:
        return set()
    excluded: Set[int] = set()
    for token in MARKDOWN.parse(text):
        if token.type in CODE_TOKEN_TYPES and token.map:
            excluded.update(range(token.map[0], token.map[1]))
    return excluded


def inline_code_spans(line: str) -> List[Tuple[int, int]]:
    """
    Character ranges of the inline code spans of one line.

    markdown-it decides which backtick runs open a code span (an unmatched backtick
    is plain text); its inline tokens carry no offsets, so each span is located by
    its opening run and the next run of the same length.
    """
    if "`" not in line:
        return []
    spans: List[Tuple[int, int]] = []
    cursor = 0
    for token in MARKDOWN.parseInline(line):
        for child in token.children or []:
            if child.type != "code_inline":
                continue
            span = _locate_code_span(line, len(child.markup), cursor)
            if span is None:
                return spans
            spans.append(span)
            cursor = span[1]
    return spans


def _locate_code_span(line: str, width: int, cursor: int) -> Optional[Tuple[int, int]]:
    opener: Optional[int] = None
    for run in BACKTICK_RUN.finditer(line, cursor):
        if opener is None:
            start = run.start()
            # An escaped backtick is literal; the rest of its run may still open.
            if start > 0 and line[start - 1] == "\\":
                start += 1
            if run.end() - start == width:
                opener = start
        elif run.end() - run.start() == width:
            return opener, run.end()
    return None


def broken_links_in_text(
    note_path: str,
    text: str,
    files: paths.FileIndex,
    image_extensions: Set[str],
    skip_code_blocks: bool = True,
) -> List[ImageReference]:
    if not has_link_marker(text):
        return []

    excluded = code_block_lines(text) if skip_code_blocks else set()
    broken: List[ImageReference] = []
    for index, line in enumerate(text.split("\n")):
        if index in excluded:
            continue
        for match in sorted(links_outside_code(line, skip_code_blocks), key=lambda item: item.start):
            parts = match.parts
            if paths.is_external(parts.target_path):
                continue
            if not paths.has_extension(parts, image_extensions):
                continue
            if files.resolve(parts, note_path) is not None:
                continue
            broken.append(
                ImageReference(
                    note_path=note_path,
                    line_number=index + 1,
                    dialect=parts.dialect,
                    raw_line=line,
                    parts=parts,
                    start=match.start,
                    end=match.end,
                )
            )
    return broken


def sort_by_recency(
    references: Sequence[ImageReference], corpus: NoteCorpus
) -> List[ImageReference]:
    """Presentation order: most recently modified note first, scan order within a note."""
    mtimes: Dict[str, float] = {}
    for reference in references:
        if reference.note_path not in mtimes:
            try:
                mtimes[reference.note_path] = corpus.mtime(reference.note_path)
            except ImageLinkError:
                mtimes[reference.note_path] = 0.0
    return sorted(references, key=lambda reference: -mtimes[reference.note_path])


def image_index_in_note(
    text: str,
    note_path: str,
    target_path: Optional[str],
    target_name: Optional[str],
    image_extensions: Iterable[str],
    skip_code_blocks: bool = True,
) -> Optional[int]:
    """
    Zero-based position of the image among all embedded images of the note.

    Plain Wiki links (no leading `!`) are not embeds and are not counted.
    """
    extensions = {extension.lower() for extension in image_extensions}
    excluded = code_block_lines(text) if skip_code_blocks else set()
    ordinal = 0
    for index, line in enumerate(text.split("\n")):
        if index in excluded:
            continue
        embeds = [
            match
            for match in links_outside_code(line, skip_code_blocks)
            if match.parts.dialect != Dialect.WIKI_NO_BANG
        ]
        for match in sorted(embeds, key=lambda item: item.start):
            if not paths.has_extension(match.parts, extensions):
                continue
            if paths.matches_image(match.parts, note_path, target_path, target_name):
                return ordinal
            ordinal += 1
    return None
