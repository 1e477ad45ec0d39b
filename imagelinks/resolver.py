"""
Multi-reference resolution: pick the authoritative note when an image is referenced
from several notes, and derive an image name from that note's location.
"""

from __future__ import annotations

import posixpath
from typing import Callable, Sequence

from .errors import NotFound
from .models import ImageReference, OutcomeKind, ReferencePolicy, ResolverOutcome

MtimeLookup = Callable[[str], float]


def resolve_multi(
    references: Sequence[ImageReference],
    policy: ReferencePolicy,
    mtime: MtimeLookup,
) -> ResolverOutcome:
    """
    Apply `policy` to the references of one image.

    `references` must be in scanner order. A single reference is always selected.
    `prompt` never blocks: it hands the candidates back for an external choice.
    """
    candidates = list(references)
    if not candidates:
        raise NotFound("Image is not referenced by any note")
    if len(candidates) == 1:
        return ResolverOutcome(kind=OutcomeKind.SELECTED, selected=candidates[0], candidates=candidates)

    if policy == ReferencePolicy.FIRST:
        return ResolverOutcome(kind=OutcomeKind.SELECTED, selected=candidates[0], candidates=candidates)
    if policy == ReferencePolicy.LATEST:
        return ResolverOutcome(
            kind=OutcomeKind.SELECTED,
            selected=_latest(candidates, mtime),
            candidates=candidates,
        )
    if policy == ReferencePolicy.PROMPT:
        return ResolverOutcome(kind=OutcomeKind.NEEDS_USER_CHOICE, candidates=candidates)
    if policy == ReferencePolicy.ALL:
        return ResolverOutcome(kind=OutcomeKind.ALL, candidates=candidates)
    raise ValueError(f"Unknown reference policy: {policy}")


def _latest(candidates: Sequence[ImageReference], mtime: MtimeLookup) -> ImageReference:
    # Strictly greater keeps the earliest candidate on ties.
    mtimes = {}
    best = candidates[0]
    for candidate in candidates:
        if candidate.note_path not in mtimes:
            mtimes[candidate.note_path] = mtime(candidate.note_path)
        if mtimes[candidate.note_path] > mtimes[best.note_path]:
            best = candidate
    return best


def path_derived_name(note_path: str, image_name: str, ordinal: int, depth: int = 3) -> str:
    """
    Name an image after the note that references it.

    The last `depth` folders of the note are joined with `_`, followed by the
    one-based position of the image in the note and the image's extension:
    `Projects/Garden/Plan.md`, 2nd image `x.png` -> `Projects_Garden_2.png`.
    A note at the vault root contributes its file stem instead.
    """
    folders = [part for part in posixpath.dirname(note_path).split("/") if part]
    prefix = "_".join(folders[-depth:]) if depth > 0 and folders else ""
    if not prefix:
        prefix = posixpath.splitext(posixpath.basename(note_path))[0] or "image"
    _, extension = posixpath.splitext(image_name)
    return f"{prefix}_{ordinal + 1}{extension}"
