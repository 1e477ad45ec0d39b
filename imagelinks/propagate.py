"""
Rename propagation: after an image is renamed or moved, rewrite the path component of
every link that references it, note by note.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from . import paths, scan
from .config import Settings
from .errors import ImageLinkError
from .models import (
    ChangeEvent,
    ImageReference,
    NoteRewriteResult,
    RewriteRequest,
    RewriteResult,
    RewriteStatus,
    RewriteSummary,
)
from .rewrite import IdentityProvider, ReferenceRewriter
from .vault import NoteCorpus

LOG = logging.getLogger(__name__)


@dataclass
class RenameResult:
    old_path: str
    new_path: str
    summary: RewriteSummary
    notes: List[NoteRewriteResult] = field(default_factory=list)


class RenamePropagator:
    """Rewrite references across the corpus; one note failing never stops the others."""

    def __init__(
        self,
        corpus: NoteCorpus,
        rewriter: ReferenceRewriter,
        skip_code_blocks: bool = True,
    ):
        self.corpus = corpus
        self.rewriter = rewriter
        self.skip_code_blocks = skip_code_blocks

    @classmethod
    def from_settings(
        cls,
        corpus: NoteCorpus,
        settings: Settings,
        rewriter: Optional[ReferenceRewriter] = None,
        identity_provider: Optional[IdentityProvider] = None,
    ) -> "RenamePropagator":
        if rewriter is None:
            rewriter = ReferenceRewriter.from_settings(corpus, settings, identity_provider)
        return cls(corpus=corpus, rewriter=rewriter, skip_code_blocks=settings.skip_code_blocks)

    @property
    def dry_run(self) -> bool:
        return self.rewriter.dry_run

    def propagate_rename(
        self,
        old_path: str,
        new_path: str,
        cancel: Optional[threading.Event] = None,
    ) -> List[NoteRewriteResult]:
        """Return one result per note that referenced the image."""
        return self.run(old_path, new_path, cancel=cancel).notes

    def run(
        self,
        old_path: str,
        new_path: str,
        cancel: Optional[threading.Event] = None,
    ) -> RenameResult:
        old_path = old_path.replace("\\", "/").lstrip("/")
        new_path = new_path.replace("\\", "/").lstrip("/")
        result = RenameResult(old_path=old_path, new_path=new_path, summary=RewriteSummary())
        if old_path == new_path:
            return result

        for note_path in self.corpus.list_notes():
            if cancel is not None and cancel.is_set():
                result.summary.cancelled = True
                LOG.warning(
                    "Rename propagation cancelled",
                    extra={"extra_payload": {"old_path": old_path, "next_note": note_path}},
                )
                break
            note_result = self._process_note(note_path, old_path, new_path)
            if note_result is None:
                continue
            result.notes.append(note_result)
            result.summary.register(note_result.status)

        LOG.info(
            "Rename propagation summary",
            extra={
                "extra_payload": {
                    "old_path": old_path,
                    "new_path": new_path,
                    "changed": result.summary.changed,
                    "unchanged": result.summary.unchanged,
                    "failed": result.summary.failed,
                    "dry_run": self.dry_run,
                }
            },
        )
        return result

    # Processing --------------------------------------------------------------------

    def _process_note(
        self, note_path: str, old_path: str, new_path: str
    ) -> Optional[NoteRewriteResult]:
        old_name = paths.basename(old_path)
        try:
            text = self.corpus.read(note_path)
        except ImageLinkError as exc:
            LOG.error(
                "Failed to read note during rename propagation",
                extra={"extra_payload": {"note_path": note_path, "error": str(exc)}},
            )
            return NoteRewriteResult(note_path=note_path, status=RewriteStatus.FAILED, error=str(exc))

        references = scan.find_references_in_text(
            note_path, text, old_path, old_name, skip_code_blocks=self.skip_code_blocks
        )
        if not references:
            return None

        lines = text.split("\n")
        line_results, events = self._rewrite_references(lines, references, old_path, new_path)
        changed = any(line.status == RewriteStatus.CHANGED for line in line_results)

        if not changed:
            failed = all(line.status == RewriteStatus.FAILED for line in line_results)
            return NoteRewriteResult(
                note_path=note_path,
                status=RewriteStatus.FAILED if failed else RewriteStatus.UNCHANGED,
                lines=line_results,
            )

        if self.dry_run:
            LOG.info(
                "Dry-run: would update references",
                extra={
                    "extra_payload": {
                        "note_path": note_path,
                        "lines": [line.line_number for line in line_results],
                    }
                },
            )
            return NoteRewriteResult(note_path=note_path, status=RewriteStatus.CHANGED, lines=line_results)

        try:
            self.corpus.write(note_path, "\n".join(lines))
        except ImageLinkError as exc:
            LOG.error(
                "Failed to write note during rename propagation",
                extra={"extra_payload": {"note_path": note_path, "error": str(exc)}},
            )
            return NoteRewriteResult(
                note_path=note_path,
                status=RewriteStatus.FAILED,
                lines=line_results,
                error=str(exc),
            )

        for event in events:
            self.rewriter.emit(event)
        LOG.info(
            "Updated image references",
            extra={
                "extra_payload": {
                    "note_path": note_path,
                    "old_path": old_path,
                    "new_path": new_path,
                    "lines": [
                        line.line_number
                        for line in line_results
                        if line.status == RewriteStatus.CHANGED
                    ],
                }
            },
        )
        return NoteRewriteResult(note_path=note_path, status=RewriteStatus.CHANGED, lines=line_results)

    def _rewrite_references(
        self,
        lines: List[str],
        references: List[ImageReference],
        old_path: str,
        new_path: str,
    ) -> Tuple[List[RewriteResult], List[ChangeEvent]]:
        line_results: List[RewriteResult] = []
        events: List[ChangeEvent] = []
        for reference in references:
            request = RewriteRequest.for_reference(
                reference,
                new_target_path=new_path,
                image_path=old_path,
                image_name=paths.basename(old_path),
            )
            try:
                line_result, event = self.rewriter.rewrite_lines(lines, request)
            except ImageLinkError as exc:
                LOG.warning(
                    "Failed to rewrite reference",
                    extra={
                        "extra_payload": {
                            "note_path": reference.note_path,
                            "line_number": reference.line_number,
                            "error": str(exc),
                        }
                    },
                )
                line_result = RewriteResult(
                    note_path=reference.note_path,
                    line_number=reference.line_number,
                    status=RewriteStatus.FAILED,
                    old_line=reference.raw_line,
                    error=str(exc),
                )
                event = None
            line_results.append(line_result)
            if event is not None:
                events.append(event)
        return line_results, events
