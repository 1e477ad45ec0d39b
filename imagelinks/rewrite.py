"""
Reference rewriting: change the display text, display size or target of one link on
one line of a note, leaving the rest of the line and the note untouched.

Rewrites use optimistic concurrency. The caller passes the line it last observed; the
live line is re-read immediately before the new line is built. A retried request
whose mutation is already present becomes a no-op, and a line that changed for other
reasons is rewritten from its current content instead of the stale copy.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Callable, Dict, List, Optional, Tuple

from . import dialects, paths, scan
from .config import Settings
from .errors import (
    ConcurrentModification,
    InvalidSizeFormat,
    LineOutOfRange,
    NotFound,
    UnrecognizedDialect,
    ValidationError,
)
from .models import (
    ChangeEvent,
    ChangeKind,
    Dialect,
    LinkMatch,
    LinkParts,
    RewriteRequest,
    RewriteResult,
    RewriteStatus,
)
from .vault import FileSystemCorpus, NoteCorpus

LOG = logging.getLogger(__name__)

SIZE_INPUT_PATTERN = re.compile(r"^(?P<width>\d+)(?:x(?P<height>\d+))?$")

ChangeListener = Callable[[ChangeEvent], None]
IdentityProvider = Callable[[str], Optional[str]]
NameCounter = Callable[[str], int]


# Size input ------------------------------------------------------------------------


def validate_dimension(value: int, label: str, max_size: int) -> int:
    if value <= 0:
        raise InvalidSizeFormat(f"{label} must be greater than 0, got {value}")
    if value > max_size:
        raise InvalidSizeFormat(f"{label} must not exceed {max_size}, got {value}")
    return value


def parse_size_input(text: str, max_size: int = 10000) -> Tuple[int, Optional[int]]:
    """Parse `W` or `WxH` as typed by a user."""
    match = SIZE_INPUT_PATTERN.match(text.strip())
    if not match:
        raise InvalidSizeFormat(f"Size must look like 300 or 300x200, got {text!r}")
    width = validate_dimension(int(match.group("width")), "width", max_size)
    height = None
    if match.group("height") is not None:
        height = validate_dimension(int(match.group("height")), "height", max_size)
    return width, height


def aspect_height(new_width: int, natural_width: int, natural_height: int) -> int:
    """Height that keeps the natural aspect ratio at `new_width`, rounded half up."""
    if natural_width <= 0 or natural_height <= 0:
        raise InvalidSizeFormat("natural image dimensions must be positive")
    return max(1, math.floor(new_width / natural_width * natural_height + 0.5))


def size_changes(
    text: str,
    max_size: int = 10000,
    natural_size: Optional[Tuple[int, int]] = None,
) -> Dict[str, Optional[int]]:
    """
    Request fields for a size typed by the user.

    A bare width clears the height, unless the natural size is given (aspect-ratio
    lock), in which case the height is derived from it. An empty input means
    natural size.
    """
    if not text.strip():
        return {"new_width": None, "new_height": None}
    width, height = parse_size_input(text, max_size)
    if height is None and natural_size is not None:
        height = validate_dimension(aspect_height(width, *natural_size), "height", max_size)
    return {"new_width": width, "new_height": height}


# Rewriter --------------------------------------------------------------------------


class ReferenceRewriter:
    """Apply `RewriteRequest`s to notes of a corpus."""

    def __init__(
        self,
        corpus: NoteCorpus,
        max_display_size: int = 10000,
        strict_concurrency: bool = False,
        link_path_style: str = "preserve",
        dry_run: bool = False,
        identity_provider: Optional[IdentityProvider] = None,
        name_counter: Optional[NameCounter] = None,
    ):
        self.corpus = corpus
        self.max_display_size = max_display_size
        self.strict_concurrency = strict_concurrency
        self.link_path_style = link_path_style
        self.dry_run = dry_run
        self.identity_provider = identity_provider
        self.name_counter = name_counter
        self._listeners: List[ChangeListener] = []

    @classmethod
    def from_settings(
        cls,
        corpus: NoteCorpus,
        settings: Settings,
        identity_provider: Optional[IdentityProvider] = None,
    ) -> "ReferenceRewriter":
        return cls(
            corpus=corpus,
            max_display_size=settings.max_display_size,
            strict_concurrency=settings.strict_concurrency,
            link_path_style=settings.link_path_style,
            dry_run=settings.dry_run,
            identity_provider=identity_provider,
            name_counter=(
                corpus.count_files_named if isinstance(corpus, FileSystemCorpus) else None
            ),
        )

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Public API --------------------------------------------------------------------

    def rewrite(self, request: RewriteRequest) -> Optional[str]:
        """Return the new line, or None when there was nothing to change."""
        result = self.apply(request)
        return result.new_line if result.status == RewriteStatus.CHANGED else None

    def apply(self, request: RewriteRequest) -> RewriteResult:
        self.validate(request)
        text = self.corpus.read(request.note_path)
        lines = text.split("\n")
        result, event = self.rewrite_lines(lines, request)
        if result.status != RewriteStatus.CHANGED:
            return result

        if self.dry_run:
            LOG.info(
                "Dry-run: would rewrite line",
                extra={"extra_payload": _result_payload(result)},
            )
            return result

        self.corpus.write(request.note_path, "\n".join(lines))
        LOG.info("Rewrote image reference", extra={"extra_payload": _result_payload(result)})
        if event is not None:
            self.emit(event)
        return result

    def validate(self, request: RewriteRequest) -> None:
        """Reject malformed input before anything is read or written."""
        for field_name, label in (("new_width", "width"), ("new_height", "height")):
            value = getattr(request, field_name)
            if value is not None:
                validate_dimension(value, label, self.max_display_size)
        if request.sets("new_target_path") and not (request.new_target_path or "").strip():
            raise ValidationError("new_target_path must not be empty")
        if not request.mutations:
            raise ValidationError("RewriteRequest does not change anything")

    def emit(self, event: ChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:  # pragma: no cover - listener failures are external
                LOG.error(
                    "Change listener failed",
                    extra={
                        "extra_payload": {
                            "note_path": event.note_path,
                            "line_number": event.line_number,
                            "error": str(exc),
                        }
                    },
                )

    # Line level --------------------------------------------------------------------

    def rewrite_lines(
        self, lines: List[str], request: RewriteRequest
    ) -> Tuple[RewriteResult, Optional[ChangeEvent]]:
        """
        Apply `request` to an in-memory copy of a note's lines.

        `lines` is modified in place when the result is CHANGED.
        """
        index = request.line_number - 1
        if index < 0 or index >= len(lines):
            raise LineOutOfRange(request.note_path, request.line_number, len(lines))

        warnings: List[str] = []
        live = lines[index]
        if live != request.expected_old_line:
            if self._already_applied(live, request):
                LOG.warning(
                    "Requested change is already present; treating as a retry",
                    extra={"extra_payload": _line_payload(request, live)},
                )
                return (
                    RewriteResult(
                        note_path=request.note_path,
                        line_number=request.line_number,
                        status=RewriteStatus.UNCHANGED,
                        old_line=live,
                        warnings=["change already applied"],
                    ),
                    None,
                )
            if self.strict_concurrency:
                raise ConcurrentModification(
                    request.note_path, request.line_number, request.expected_old_line, live
                )

            if self._select_link(live, request) is None:
                relocated = _locate_unique(lines, request.expected_old_line)
                if relocated is not None:
                    index = relocated
                    warnings.append(
                        f"line moved from {request.line_number} to {relocated + 1}; "
                        "rewrote it at its new position"
                    )
            if not warnings:
                warnings.append("line changed since it was read; rewrote its current content")
            LOG.warning(
                "Line diverged from the expected content",
                extra={"extra_payload": {**_line_payload(request, live), "warning": warnings[-1]}},
            )

        base = lines[index]
        match = self._select_link(base, request)
        if match is None:
            if not scan.links_outside_code(base):
                raise UnrecognizedDialect(base)
            raise NotFound(
                f"Line {index + 1} of {request.note_path} no longer references "
                f"{request.image_path or request.image_name}"
            )

        new_parts = self._apply_changes(match.parts, request, warnings)
        new_link = dialects.build_link(new_parts)
        check_round_trip(new_parts, new_link)
        new_line = match.splice(base, new_link)

        if new_line == base:
            return (
                RewriteResult(
                    note_path=request.note_path,
                    line_number=index + 1,
                    status=RewriteStatus.UNCHANGED,
                    old_line=base,
                    warnings=warnings,
                ),
                None,
            )

        lines[index] = new_line
        result = RewriteResult(
            note_path=request.note_path,
            line_number=index + 1,
            status=RewriteStatus.CHANGED,
            old_line=base,
            new_line=new_line,
            warnings=warnings,
        )
        return result, self._build_event(request, match.parts, new_parts, result)

    def _select_link(self, line: str, request: RewriteRequest) -> Optional[LinkMatch]:
        if request.image_path or request.image_name:
            return scan.match_line(line, request.note_path, request.image_path, request.image_name)
        links = scan.links_outside_code(line)
        return links[0] if links else None

    def _retarget(self, parts: LinkParts, note_path: str, new_path: str) -> str:
        unique_name = True
        if self.link_path_style == "shortest" and self.name_counter is not None:
            unique_name = self.name_counter(paths.basename(new_path)) <= 1
        return paths.retarget(parts, note_path, new_path, self.link_path_style, unique_name)

    def _already_applied(self, live: str, request: RewriteRequest) -> bool:
        match = self._select_link(live, request)
        if match is None and request.new_target_path:
            match = scan.match_line(live, request.note_path, request.new_target_path, None)
        if match is None:
            return False

        parts = match.parts
        if request.sets("new_display_text"):
            wanted = request.new_display_text
            current = parts.display_text
            if parts.dialect == Dialect.MARKDOWN:
                wanted, current = wanted or "", current or ""
            if current != wanted:
                return False
        if parts.dialect != Dialect.MARKDOWN:
            if request.sets("new_width") and parts.width != request.new_width:
                return False
            if request.sets("new_height") and parts.height != request.new_height:
                return False
        if request.new_target_path:
            if not paths.matches_image(parts, request.note_path, request.new_target_path, None):
                return False
            rewritten = self._retarget(parts, request.note_path, request.new_target_path)
            if rewritten != parts.target_path:
                return False
        return True

    def _apply_changes(
        self, parts: LinkParts, request: RewriteRequest, warnings: List[str]
    ) -> LinkParts:
        update: Dict[str, object] = {}
        if request.sets("new_display_text"):
            display = request.new_display_text
            if display is None and parts.dialect == Dialect.MARKDOWN:
                display = ""
            update["display_text"] = display

        if request.sets("new_width") or request.sets("new_height"):
            if parts.dialect == Dialect.MARKDOWN:
                warnings.append("Markdown links carry no display size; size change ignored")
                LOG.warning(
                    "Ignoring size change on a Markdown link",
                    extra={"extra_payload": _line_payload(request, request.expected_old_line)},
                )
            else:
                if request.sets("new_width"):
                    update["width"] = request.new_width
                    if request.new_width is None:
                        update["height"] = None
                if request.sets("new_height"):
                    update["height"] = request.new_height

        if request.new_target_path:
            update["target_path"] = self._retarget(
                parts, request.note_path, request.new_target_path
            )

        new_parts = parts.model_copy(update=update)
        if new_parts.dialect.is_wiki and new_parts.height is not None and new_parts.width is None:
            raise InvalidSizeFormat("Wiki links cannot carry a height without a width")
        return new_parts

    def _build_event(
        self,
        request: RewriteRequest,
        old: LinkParts,
        new: LinkParts,
        result: RewriteResult,
    ) -> ChangeEvent:
        kinds: List[ChangeKind] = []
        if old.display_text != new.display_text:
            kinds.append(ChangeKind.DISPLAY_TEXT)
        if (old.width, old.height) != (new.width, new.height):
            kinds.append(ChangeKind.SIZE)
        if old.target_path != new.target_path:
            kinds.append(ChangeKind.PATH)

        image_path = request.image_path
        image_hash = request.image_hash
        if image_hash is None and image_path and self.identity_provider is not None:
            image_hash = self.identity_provider(image_path)

        return ChangeEvent(
            kinds=kinds,
            note_path=request.note_path,
            line_number=result.line_number,
            old_line=result.old_line or "",
            new_line=result.new_line or "",
            image_path=image_path,
            image_hash=image_hash,
            old_display_text=old.display_text,
            new_display_text=new.display_text,
        )


def check_round_trip(parts: LinkParts, link: str) -> None:
    """A rebuilt link must parse back to the same parts, or the write is refused."""
    found = dialects.FINDERS[parts.dialect](link)
    reparsed = found[0].parts if found and found[0].start == 0 and found[0].end == len(link) else None
    if reparsed is not None:
        expected_display = parts.display_text
        actual_display = reparsed.display_text
        if parts.dialect == Dialect.MARKDOWN:
            expected_display, actual_display = expected_display or "", actual_display or ""
        if (
            reparsed.target_path == parts.target_path
            and actual_display == expected_display
            and reparsed.width == parts.width
            and reparsed.height == parts.height
        ):
            return
    raise ValidationError(f"Rebuilt link would not read back the same way: {link!r}")


def _locate_unique(lines: List[str], expected: str) -> Optional[int]:
    positions = [index for index, line in enumerate(lines) if line == expected]
    return positions[0] if len(positions) == 1 else None


def _line_payload(request: RewriteRequest, live: str) -> Dict[str, object]:
    return {
        "note_path": request.note_path,
        "line_number": request.line_number,
        "expected_line": request.expected_old_line,
        "live_line": live,
    }


def _result_payload(result: RewriteResult) -> Dict[str, object]:
    return {
        "note_path": result.note_path,
        "line_number": result.line_number,
        "old_line": result.old_line,
        "new_line": result.new_line,
    }
