"""
Path helpers: normalise link targets, match them against an image, and retarget them.
"""

from __future__ import annotations

import html
import posixpath
import re
from typing import Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import quote, unquote

from .models import Dialect, LinkParts

SUFFIX_PATTERN = re.compile(r"[?#]")
PERCENT_ESCAPE_PATTERN = re.compile(r"%[0-9A-Fa-f]{2}")
EXTERNAL_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")
LINK_STYLES = ("preserve", "shortest", "relative", "absolute")


def basename(path: str) -> str:
    return path.replace("\\", "/").rstrip("/").split("/")[-1]


def note_folder(note_path: str) -> str:
    return posixpath.dirname(note_path.replace("\\", "/"))


def split_suffix(target: str) -> Tuple[str, str]:
    """Split `img.png?raw=1` or `img.png#frag` into the path and its suffix."""
    match = SUFFIX_PATTERN.search(target)
    if not match:
        return target, ""
    return target[: match.start()], target[match.start() :]


def _strip_angle(target: str) -> Tuple[str, bool]:
    if target.startswith("<") and target.endswith(">"):
        return target[1:-1], True
    return target, False


def normalize_target(target: str, dialect: Dialect) -> str:
    """Reduce a link target to a comparable vault-style path."""
    core, _ = _strip_angle(target.strip())
    if dialect == Dialect.HTML:
        core = html.unescape(core)
    core, _ = split_suffix(core)
    if not dialect.is_wiki:
        core = unquote(core)
    core = core.replace("\\", "/")
    while core.startswith("./"):
        core = core[2:]
    return core.lstrip("/")


def is_external(target: str) -> bool:
    """True for `https://...`, `data:...` and other targets with a URL scheme."""
    core, _ = _strip_angle(target.strip())
    return bool(EXTERNAL_PATTERN.match(core))


def has_extension(parts: LinkParts, extensions: Iterable[str]) -> bool:
    normalized = normalize_target(parts.target_path, parts.dialect)
    if "." not in basename(normalized):
        return False
    return normalized.rsplit(".", 1)[-1].lower() in extensions


def resolve_against_note(note_path: str, target: str) -> Optional[str]:
    """Resolve a relative target against the folder of the note that contains it."""
    joined = posixpath.normpath(posixpath.join(note_folder(note_path), target))
    if joined.startswith("../") or joined == "..":
        return None
    return joined.lstrip("/")


def matches_image(
    parts: LinkParts,
    note_path: str,
    target_path: Optional[str],
    target_name: Optional[str],
) -> bool:
    """
    Decide whether a parsed link points at the image.

    A link matches by exact equality with the image path or name, by resolving it
    relative to the note's folder, or, when the link is a bare file name, by equality
    with the image's terminal path segment. A link that names a folder is never
    matched on its file name alone.
    """
    normalized = normalize_target(parts.target_path, parts.dialect)
    if not normalized:
        return False

    wanted_paths = set()
    wanted_names = set()
    if target_path:
        clean_path = target_path.replace("\\", "/").lstrip("/")
        wanted_paths.add(clean_path)
        wanted_names.add(basename(clean_path))
    if target_name:
        wanted_paths.add(target_name)
        wanted_names.add(basename(target_name))

    if normalized in wanted_paths:
        return True
    resolved = resolve_against_note(note_path, normalized)
    if resolved is not None and resolved in wanted_paths:
        return True
    return "/" not in normalized and normalized in wanted_names


def relative_path(note_path: str, image_path: str) -> str:
    """Path from the note's folder to the image, using `../` where needed."""
    note_dir = note_folder(note_path)
    image_path = image_path.replace("\\", "/").lstrip("/")
    image_dir = posixpath.dirname(image_path)
    image_name = basename(image_path)
    if note_dir == image_dir:
        return image_name

    note_parts = note_dir.split("/") if note_dir else []
    image_parts = image_dir.split("/") if image_dir else []
    common = 0
    while (
        common < len(note_parts)
        and common < len(image_parts)
        and note_parts[common] == image_parts[common]
    ):
        common += 1

    segments = [".."] * (len(note_parts) - common) + image_parts[common:] + [image_name]
    return "/".join(segments)


def retarget(
    parts: LinkParts,
    note_path: str,
    new_path: str,
    style: str = "preserve",
    unique_name: bool = True,
) -> str:
    """
    Compute the replacement target for a link whose image now lives at `new_path`.

    With the `preserve` style a bare file name stays a bare file name, a `./` or `../`
    link stays relative to the note, and a vault path stays a vault path. `shortest`
    writes the file name alone unless another vault file shares it (`unique_name`),
    `relative` writes the path from the note's folder and `absolute` the vault path.
    Angle brackets, percent-encoding and `?query`/`#fragment` suffixes are carried over.
    """
    if style not in LINK_STYLES:
        raise ValueError(f"Unknown link style {style!r}; expected one of {', '.join(LINK_STYLES)}")
    original = parts.target_path
    core, angled = _strip_angle(original)
    core, suffix = split_suffix(core)
    new_path = new_path.replace("\\", "/").lstrip("/")

    if style == "absolute":
        replacement = new_path
    elif style == "relative":
        replacement = relative_path(note_path, new_path)
    elif style == "shortest":
        replacement = basename(new_path) if unique_name else new_path
    elif core.startswith("./") or core.startswith("../"):
        replacement = relative_path(note_path, new_path)
        if core.startswith("./") and not replacement.startswith("../"):
            replacement = f"./{replacement}"
    elif "/" not in core.replace("\\", "/"):
        replacement = basename(new_path)
    elif core.startswith("/"):
        replacement = f"/{new_path}"
    else:
        replacement = new_path

    if not parts.dialect.is_wiki and PERCENT_ESCAPE_PATTERN.search(core):
        replacement = quote(replacement, safe="/")
    elif parts.dialect == Dialect.MARKDOWN and " " in replacement and not angled:
        replacement = replacement.replace(" ", "%20")
    if parts.dialect == Dialect.HTML and "&amp;" in core:
        replacement = replacement.replace("&", "&amp;")

    replacement = f"{replacement}{suffix}"
    return f"<{replacement}>" if angled else replacement


class FileIndex:
    """Vault file paths, looked up the way Obsidian resolves link targets."""

    def __init__(self, files: Iterable[str]):
        self.files: Set[str] = set()
        self._by_name: Dict[str, List[str]] = {}
        for path in files:
            clean = path.replace("\\", "/").lstrip("/")
            self.files.add(clean)
            self._by_name.setdefault(basename(clean), []).append(clean)

    def __contains__(self, path: str) -> bool:
        return path in self.files

    def named(self, name: str) -> List[str]:
        return sorted(self._by_name.get(name, []))

    def is_unique_name(self, name: str) -> bool:
        return len(self._by_name.get(name, [])) <= 1

    def resolve(self, parts: LinkParts, note_path: str) -> Optional[str]:
        """
        Vault path of the file a link points at, or None when nothing matches.

        The note's folder is tried first, then the vault root, then (for bare names
        and partial paths) any file whose path ends with the target.
        """
        normalized = normalize_target(parts.target_path, parts.dialect)
        if not normalized:
            return None
        relative = resolve_against_note(note_path, normalized)
        if relative is not None and relative in self.files:
            return relative
        if normalized in self.files:
            return normalized

        candidates = self.named(basename(normalized))
        if "/" in normalized:
            candidates = [path for path in candidates if path.endswith(f"/{normalized}")]
        return candidates[0] if candidates else None
