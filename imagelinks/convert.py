"""
Link format conversion: rewrite the target of every image link in the vault to one
style (`shortest`, `relative` or `absolute`), keeping captions, sizes and everything
else on the line.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from . import dialects, paths, scan
from .config import Settings
from .errors import ImageLinkError, ValidationError
from .models import LinkMatch, NoteRewriteResult, RewriteResult, RewriteStatus, RewriteSummary
from .rewrite import check_round_trip
from .vault import VaultFiles

LOG = logging.getLogger(__name__)

CONVERSION_STYLES = ("shortest", "relative", "absolute")


@dataclass
class LinkConversion:
    note_path: str
    line_number: int
    image_path: str
    old_link: str
    new_link: str


@dataclass
class ConversionResult:
    style: str
    summary: RewriteSummary
    conversions: List[LinkConversion] = field(default_factory=list)
    notes: List[NoteRewriteResult] = field(default_factory=list)

    def counts_by_note(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for conversion in self.conversions:
            counts[conversion.note_path] = counts.get(conversion.note_path, 0) + 1
        return counts


class LinkFormatConverter:
    """Convert image links note by note; one note failing never stops the others."""

    def __init__(
        self,
        corpus: VaultFiles,
        image_extensions: Iterable[str],
        skip_code_blocks: bool = True,
        dry_run: bool = False,
    ):
        self.corpus = corpus
        self.image_extensions: Set[str] = {
            extension.lower().lstrip(".") for extension in image_extensions
        }
        self.skip_code_blocks = skip_code_blocks
        self.dry_run = dry_run

    @classmethod
    def from_settings(cls, corpus: VaultFiles, settings: Settings) -> "LinkFormatConverter":
        return cls(
            corpus=corpus,
            image_extensions=settings.image_extensions,
            skip_code_blocks=settings.skip_code_blocks,
            dry_run=settings.dry_run,
        )

    def analyze(self, style: str, cancel: Optional[threading.Event] = None) -> List[LinkConversion]:
        """The conversions `convert` would make, without writing anything."""
        return self._run(style, cancel, write=False).conversions

    def convert(self, style: str, cancel: Optional[threading.Event] = None) -> ConversionResult:
        return self._run(style, cancel, write=not self.dry_run)

    # Processing --------------------------------------------------------------------

    def _run(self, style: str, cancel: Optional[threading.Event], write: bool) -> ConversionResult:
        if style not in CONVERSION_STYLES:
            raise ValidationError(
                f"Unknown link style {style!r}; expected one of {', '.join(CONVERSION_STYLES)}"
            )
        files = paths.FileIndex(self.corpus.list_files(self.image_extensions))
        result = ConversionResult(style=style, summary=RewriteSummary())

        for note_path in self.corpus.list_notes():
            if cancel is not None and cancel.is_set():
                result.summary.cancelled = True
                LOG.warning(
                    "Link conversion cancelled",
                    extra={"extra_payload": {"style": style, "next_note": note_path}},
                )
                break
            note_result, conversions = self._process_note(note_path, style, files, write)
            if note_result is None:
                continue
            result.notes.append(note_result)
            result.summary.register(note_result.status)
            if note_result.status == RewriteStatus.CHANGED:
                result.conversions.extend(conversions)

        LOG.info(
            "Link conversion summary",
            extra={
                "extra_payload": {
                    "style": style,
                    "notes_changed": result.summary.changed,
                    "notes_failed": result.summary.failed,
                    "links": len(result.conversions),
                    "written": write,
                }
            },
        )
        return result

    def _process_note(
        self, note_path: str, style: str, files: paths.FileIndex, write: bool
    ) -> Tuple[Optional[NoteRewriteResult], List[LinkConversion]]:
        try:
            text = self.corpus.read(note_path)
        except ImageLinkError as exc:
            LOG.error(
                "Failed to read note during link conversion",
                extra={"extra_payload": {"note_path": note_path, "error": str(exc)}},
            )
            failed = NoteRewriteResult(
                note_path=note_path, status=RewriteStatus.FAILED, error=str(exc)
            )
            return failed, []
        if not scan.has_link_marker(text):
            return None, []

        lines = text.split("\n")
        excluded = scan.code_block_lines(text) if self.skip_code_blocks else set()
        conversions: List[LinkConversion] = []
        line_results: List[RewriteResult] = []
        for index, line in enumerate(lines):
            if index in excluded:
                continue
            new_line, line_conversions = self._convert_line(note_path, index + 1, line, style, files)
            if not line_conversions:
                continue
            lines[index] = new_line
            conversions.extend(line_conversions)
            line_results.append(
                RewriteResult(
                    note_path=note_path,
                    line_number=index + 1,
                    status=RewriteStatus.CHANGED,
                    old_line=line,
                    new_line=new_line,
                )
            )

        if not conversions:
            return None, []
        if write:
            try:
                self.corpus.write(note_path, "\n".join(lines))
            except ImageLinkError as exc:
                LOG.error(
                    "Failed to write note during link conversion",
                    extra={"extra_payload": {"note_path": note_path, "error": str(exc)}},
                )
                return (
                    NoteRewriteResult(
                        note_path=note_path,
                        status=RewriteStatus.FAILED,
                        lines=line_results,
                        error=str(exc),
                    ),
                    conversions,
                )
            LOG.info(
                "Converted image links",
                extra={
                    "extra_payload": {
                        "note_path": note_path,
                        "style": style,
                        "links": len(conversions),
                    }
                },
            )
        return (
            NoteRewriteResult(note_path=note_path, status=RewriteStatus.CHANGED, lines=line_results),
            conversions,
        )

    def _convert_line(
        self,
        note_path: str,
        line_number: int,
        line: str,
        style: str,
        files: paths.FileIndex,
    ) -> Tuple[str, List[LinkConversion]]:
        planned: List[Tuple[LinkMatch, str, LinkConversion]] = []
        last_end = -1
        ordered = sorted(
            scan.links_outside_code(line, self.skip_code_blocks), key=lambda item: item.start
        )
        for match in ordered:
            if match.start < last_end:
                continue
            last_end = match.end
            converted = self._convert_link(note_path, line_number, line, match, style, files)
            if converted is not None:
                planned.append((match, converted.new_link, converted))

        # Right to left, so earlier spans stay valid while splicing.
        new_line = line
        for match, new_link, _ in reversed(planned):
            new_line = match.splice(new_line, new_link)
        return new_line, [conversion for _, _, conversion in planned]

    def _convert_link(
        self,
        note_path: str,
        line_number: int,
        line: str,
        match: LinkMatch,
        style: str,
        files: paths.FileIndex,
    ) -> Optional[LinkConversion]:
        parts = match.parts
        if paths.is_external(parts.target_path):
            return None
        if not paths.has_extension(parts, self.image_extensions):
            return None
        image_path = files.resolve(parts, note_path)
        if image_path is None:
            return None

        new_target = paths.retarget(
            parts,
            note_path,
            image_path,
            style,
            unique_name=files.is_unique_name(paths.basename(image_path)),
        )
        if new_target == parts.target_path:
            return None

        new_parts = parts.model_copy(update={"target_path": new_target})
        new_link = dialects.build_link(new_parts)
        try:
            check_round_trip(new_parts, new_link)
        except ValidationError as exc:
            LOG.warning(
                "Skipping link that would not survive conversion",
                extra={
                    "extra_payload": {
                        "note_path": note_path,
                        "line_number": line_number,
                        "error": str(exc),
                    }
                },
            )
            return None
        return LinkConversion(
            note_path=note_path,
            line_number=line_number,
            image_path=image_path,
            old_link=line[match.start : match.end],
            new_link=new_link,
        )
