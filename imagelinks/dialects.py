"""
Dialect codec: parse and build the three image link grammars.

Supported forms:

* Wiki      ``![[target|display|WxH]]`` (embed) and ``[[target|display]]`` (plain link)
* Markdown  ``![alt](target "optional title")``
* HTML      ``<img src="target" alt="..." width="W" height="H" ...>``

Every parser returns `LinkMatch` objects carrying the span of the link inside the line,
so callers can splice a rebuilt link back without touching the surrounding text.
Builders reproduce the original text for links that were not mutated.
"""

from __future__ import annotations

import html
import re
from typing import Callable, Dict, List, Optional

from .models import Dialect, HtmlAttribute, HtmlFormat, LinkMatch, LinkParts

SIZE_PATTERN = re.compile(r"^(?P<width>\d+)(?:x(?P<height>\d+))?$")
HTML_OPEN_PATTERN = re.compile(r"<(?P<tag>img)(?=[\s/>])", re.IGNORECASE)
HTML_ATTR_PATTERN = re.compile(
    r"""\s+(?P<name>[^\s"'<>/=]+)"""
    r"""(?:\s*=\s*(?:"(?P<dq>[^"]*)"|'(?P<sq>[^']*)'|(?P<uq>[^\s"'=<>`]+)))?"""
)
HTML_CLOSE_PATTERN = re.compile(r"\s*/?>")
MARKDOWN_UNESCAPE_PATTERN = re.compile(r"\\([\\\[\]()])")

HTML_SIZE_ATTRS = ("width", "height")


# Wiki ------------------------------------------------------------------------------


def find_wiki_links(line: str, with_bang: bool = True) -> List[LinkMatch]:
    """Return every Wiki link of the requested variant, left to right."""
    matches: List[LinkMatch] = []
    position = 0
    while True:
        open_at = line.find("[[", position)
        if open_at < 0:
            break
        close_at = line.find("]]", open_at + 2)
        if close_at < 0:
            break
        inner = line[open_at + 2 : close_at]
        if "[" in inner or "]" in inner:
            position = open_at + 1
            continue
        has_bang = open_at > 0 and line[open_at - 1] == "!"
        if has_bang == with_bang:
            parts = _parse_wiki_inner(inner, Dialect.WIKI if with_bang else Dialect.WIKI_NO_BANG)
            if parts is not None:
                start = open_at - 1 if has_bang else open_at
                matches.append(LinkMatch(parts=parts, start=start, end=close_at + 2))
        position = close_at + 2
    return matches


def parse_wiki(line: str, with_bang: bool = True) -> Optional[LinkParts]:
    matches = find_wiki_links(line, with_bang=with_bang)
    return matches[0].parts if matches else None


def _parse_wiki_inner(inner: str, dialect: Dialect) -> Optional[LinkParts]:
    segments = inner.split("|")
    target = segments[0]
    if not target.strip():
        return None

    rest = segments[1:]
    width: Optional[int] = None
    height: Optional[int] = None
    if rest:
        size_match = SIZE_PATTERN.match(rest[-1])
        if size_match:
            rest = rest[:-1]
            width = int(size_match.group("width"))
            if size_match.group("height") is not None:
                height = int(size_match.group("height"))

    # Everything between the target and the size is the caption, pipes included.
    display = "|".join(rest) if rest else None
    return LinkParts(
        dialect=dialect,
        target_path=target,
        display_text=display,
        width=width,
        height=height,
        raw_display=display,
    )


def build_wiki(parts: LinkParts, with_bang: bool = True) -> str:
    content = parts.target_path
    if parts.display_text is not None:
        content += f"|{parts.display_text}"
    if parts.width is not None:
        content += f"|{format_size(parts.width, parts.height)}"
    prefix = "!" if with_bang else ""
    return f"{prefix}[[{content}]]"


# Markdown --------------------------------------------------------------------------


def find_markdown_links(line: str) -> List[LinkMatch]:
    matches: List[LinkMatch] = []
    position = 0
    while True:
        start = line.find("![", position)
        if start < 0:
            break
        match = _scan_markdown(line, start)
        if match is None:
            position = start + 2
            continue
        matches.append(match)
        position = match.end
    return matches


def parse_markdown(line: str) -> Optional[LinkParts]:
    matches = find_markdown_links(line)
    return matches[0].parts if matches else None


def _scan_markdown(line: str, start: int) -> Optional[LinkMatch]:
    length = len(line)
    index = start + 2
    while index < length:
        char = line[index]
        if char == "\\" and index + 1 < length:
            index += 2
            continue
        if char == "]":
            break
        index += 1
    else:
        return None

    alt_raw = line[start + 2 : index]
    if index + 1 >= length or line[index + 1] != "(":
        return None

    dest_start = index + 2
    dest_end = _find_destination_end(line, dest_start)
    if dest_end is None:
        return None

    destination = line[dest_start:dest_end]
    target, trailer = _split_destination(destination)
    if not target:
        return None

    parts = LinkParts(
        dialect=Dialect.MARKDOWN,
        target_path=target,
        display_text=unescape_markdown(alt_raw),
        raw_display=alt_raw,
        trailer=trailer or None,
    )
    return LinkMatch(parts=parts, start=start, end=dest_end + 1)


def _find_destination_end(line: str, position: int) -> Optional[int]:
    length = len(line)
    if position < length and line[position] == "<":
        close_angle = line.find(">", position)
        if close_angle < 0:
            return None
        closing = line.find(")", close_angle)
        return closing if closing >= 0 else None

    depth = 0
    index = position
    quote: Optional[str] = None
    while index < length:
        char = line[index]
        if char == "\\" and index + 1 < length:
            index += 2
            continue
        if quote:
            if char == quote:
                quote = None
        elif char == '"' and depth == 0 and index > position and line[index - 1].isspace():
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            if depth == 0:
                return index
            depth -= 1
        index += 1
    return None


def _split_destination(destination: str) -> tuple[str, str]:
    """Split a Markdown destination into the target and any trailing title text."""
    if destination.startswith("<"):
        close_angle = destination.find(">")
        return destination[: close_angle + 1], destination[close_angle + 1 :]
    match = re.match(r"\S+", destination)
    if not match:
        return "", destination
    return match.group(0), destination[match.end() :]


def unescape_markdown(text: str) -> str:
    return MARKDOWN_UNESCAPE_PATTERN.sub(r"\1", text)


def escape_markdown(text: str) -> str:
    # Backslashes first, or the escapes added below would be doubled.
    return text.replace("\\", "\\\\").replace("]", "\\]").replace("(", "\\(")


def build_markdown(parts: LinkParts) -> str:
    alt = parts.display_text or ""
    if parts.raw_display is not None and unescape_markdown(parts.raw_display) == alt:
        alt_text = parts.raw_display
    else:
        alt_text = escape_markdown(alt)
    return f"![{alt_text}]({parts.target_path}{parts.trailer or ''})"


# HTML ------------------------------------------------------------------------------


def find_html_links(line: str) -> List[LinkMatch]:
    matches: List[LinkMatch] = []
    for opening in HTML_OPEN_PATTERN.finditer(line):
        if matches and opening.start() < matches[-1].end:
            continue
        match = _scan_html(line, opening)
        if match is not None:
            matches.append(match)
    return matches


def parse_html(line: str) -> Optional[LinkParts]:
    matches = find_html_links(line)
    return matches[0].parts if matches else None


def _scan_html(line: str, opening: re.Match[str]) -> Optional[LinkMatch]:
    position = opening.end()
    attributes: List[HtmlAttribute] = []
    while True:
        close_match = HTML_CLOSE_PATTERN.match(line, position)
        if close_match:
            break
        attr_match = HTML_ATTR_PATTERN.match(line, position)
        if not attr_match:
            return None
        attributes.append(_attribute_from_match(attr_match))
        position = attr_match.end()

    src: Optional[HtmlAttribute] = None
    alt: Optional[HtmlAttribute] = None
    sizes: Dict[str, int] = {}
    others: List[HtmlAttribute] = []
    for attribute in attributes:
        lowered = attribute.name.lower()
        if lowered == "src" and src is None:
            src = attribute
        elif lowered == "alt" and alt is None:
            alt = attribute
        elif (
            lowered in HTML_SIZE_ATTRS
            and lowered not in sizes
            and attribute.value is not None
            and attribute.value.isdigit()
        ):
            sizes[lowered] = int(attribute.value)
        else:
            others.append(attribute)

    if src is None or not src.value:
        return None

    html_format = HtmlFormat(
        tag=opening.group("tag"),
        quote=src.quote or '"',
        closing=close_match.group(0),
        attributes=others,
    )
    parts = LinkParts(
        dialect=Dialect.HTML,
        target_path=src.value,
        display_text=html.unescape(alt.value or "") if alt is not None else None,
        raw_display=alt.value if alt is not None else None,
        width=sizes.get("width"),
        height=sizes.get("height"),
        html=html_format,
    )
    return LinkMatch(parts=parts, start=opening.start(), end=close_match.end())


def _attribute_from_match(match: re.Match[str]) -> HtmlAttribute:
    name = match.group("name")
    if match.group("dq") is not None:
        return HtmlAttribute(name=name, value=match.group("dq"), quote='"')
    if match.group("sq") is not None:
        return HtmlAttribute(name=name, value=match.group("sq"), quote="'")
    if match.group("uq") is not None:
        return HtmlAttribute(name=name, value=match.group("uq"), quote="")
    return HtmlAttribute(name=name, value=None, quote="")


def escape_html_alt(text: str, quote: str) -> str:
    escaped = text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    if quote == '"':
        return escaped.replace('"', "&quot;")
    if quote == "'":
        return escaped.replace("'", "&#39;")
    return escaped


def build_html(
    parts: LinkParts,
    other_attrs: Optional[List[HtmlAttribute]] = None,
    quote: Optional[str] = None,
    closing: Optional[str] = None,
) -> str:
    """
    Emit `src, alt, width, height` in the src quote, then the remaining attributes with
    their own quotes.

    A numeric size on the parts replaces any same-named attribute kept verbatim (for
    example `width="50%"`), so the tag never carries the name twice.
    """
    html_format = parts.html or HtmlFormat()
    others = html_format.attributes if other_attrs is None else other_attrs
    quote = quote or html_format.quote
    closing = closing or html_format.closing

    replaced = {name for name in HTML_SIZE_ATTRS if getattr(parts, name) is not None}
    if replaced:
        others = [attribute for attribute in others if attribute.name.lower() not in replaced]

    pieces = [f"src={quote}{parts.target_path}{quote}"]
    if parts.display_text is not None:
        pieces.append(f"alt={quote}{_html_alt_text(parts, quote)}{quote}")
    if parts.width is not None:
        pieces.append(f"width={quote}{parts.width}{quote}")
    if parts.height is not None:
        pieces.append(f"height={quote}{parts.height}{quote}")
    for attribute in others:
        if attribute.value is None:
            pieces.append(attribute.name)
        else:
            pieces.append(f"{attribute.name}={attribute.quote}{attribute.value}{attribute.quote}")
    return f"<{html_format.tag} {' '.join(pieces)}{closing}"


def _html_alt_text(parts: LinkParts, quote: str) -> str:
    raw = parts.raw_display
    if raw is not None and quote not in raw and html.unescape(raw) == parts.display_text:
        return raw
    return escape_html_alt(parts.display_text or "", quote)


# Dispatch --------------------------------------------------------------------------

FINDERS: Dict[Dialect, Callable[[str], List[LinkMatch]]] = {
    Dialect.WIKI: lambda line: find_wiki_links(line, with_bang=True),
    Dialect.WIKI_NO_BANG: lambda line: find_wiki_links(line, with_bang=False),
    Dialect.MARKDOWN: find_markdown_links,
    Dialect.HTML: find_html_links,
}

BUILDERS: Dict[Dialect, Callable[[LinkParts], str]] = {
    Dialect.WIKI: lambda parts: build_wiki(parts, with_bang=True),
    Dialect.WIKI_NO_BANG: lambda parts: build_wiki(parts, with_bang=False),
    Dialect.MARKDOWN: build_markdown,
    Dialect.HTML: build_html,
}

# Wiki syntax can appear inside what otherwise looks like brackets, so order matters.
PRECEDENCE = (Dialect.WIKI, Dialect.WIKI_NO_BANG, Dialect.MARKDOWN, Dialect.HTML)


def find_links(line: str) -> List[LinkMatch]:
    """Every link on the line, grouped by dialect in precedence order."""
    matches: List[LinkMatch] = []
    for dialect in PRECEDENCE:
        matches.extend(FINDERS[dialect](line))
    return matches


def parse_link(line: str) -> Optional[LinkMatch]:
    for dialect in PRECEDENCE:
        found = FINDERS[dialect](line)
        if found:
            return found[0]
    return None


def build_link(parts: LinkParts) -> str:
    return BUILDERS[parts.dialect](parts)


def format_size(width: int, height: Optional[int]) -> str:
    return f"{width}x{height}" if height is not None else str(width)
