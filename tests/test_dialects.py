from __future__ import annotations

import pytest

from imagelinks import dialects
from imagelinks.models import Dialect


@pytest.mark.parametrize(
    "link",
    [
        "![[cat.png]]",
        "![[cat.png|Cat]]",
        "![[cat.png|Cat|100x50]]",
        "![[cat.png|100]]",
        "![[cat.png|]]",
        "![[cat.png|a|b]]",
        "[[cat.png|Cat]]",
        "![alt](cat.png)",
        "![](img/cat%20one.png)",
        r'![a \] b](<my cat.png> "Title")',
        '<img src="cat.png" alt="A &amp; B" width="10" height="20">',
        "<img src='cat.png' alt='x' width='5' class='c' />",
        '<img src="cat.png" width="50%">',
        '<img src="cat.png" width="300">',
        r"![C:\\dir\\](cat.png)",
    ],
)
def test_build_reproduces_parsed_link(link):
    match = dialects.parse_link(link)

    assert match is not None
    assert (match.start, match.end) == (0, len(link))
    assert dialects.build_link(match.parts) == link


def test_wiki_display_and_size_segments():
    parts = dialects.parse_wiki("![[img/cat.png|A | B|640x480]]")

    assert parts.target_path == "img/cat.png"
    assert parts.display_text == "A | B"
    assert (parts.width, parts.height) == (640, 480)


def test_wiki_empty_display_differs_from_absent():
    assert dialects.parse_wiki("![[cat.png|]]").display_text == ""
    assert dialects.parse_wiki("![[cat.png]]").display_text is None


def test_wiki_height_without_width_stays_display_text():
    parts = dialects.parse_wiki("![[cat.png|x200]]")

    assert parts.width is None and parts.height is None
    assert parts.display_text == "x200"
    assert dialects.build_link(parts) == "![[cat.png|x200]]"


def test_plain_wiki_link_is_its_own_dialect():
    match = dialects.parse_link("see [[cat.png]] here")

    assert match.parts.dialect == Dialect.WIKI_NO_BANG
    assert match.start == 4


def test_wiki_takes_precedence_over_markdown():
    match = dialects.parse_link("![b](b.png) ![[a.png]]")

    assert match.parts.dialect == Dialect.WIKI
    assert match.parts.target_path == "a.png"


def test_line_without_link_is_not_parsed():
    assert dialects.parse_link("Just some text [with] (brackets)") is None
    assert dialects.find_links("![[ ]] and ![]()") == []


def test_markdown_title_and_angle_destination():
    match = dialects.find_markdown_links('x ![Cat](<my cat.png> "A title") y')[0]

    assert match.parts.target_path == "<my cat.png>"
    assert match.parts.trailer == ' "A title"'
    assert match.parts.display_text == "Cat"


def test_markdown_destination_with_parentheses():
    match = dialects.find_markdown_links("![x](img/cat(1).png) after")[0]

    assert match.parts.target_path == "img/cat(1).png"
    assert match.end == len("![x](img/cat(1).png)")


def test_markdown_new_alt_is_escaped():
    parts = dialects.parse_markdown("![old](cat.png)")
    rebuilt = dialects.build_link(parts.model_copy(update={"display_text": "a]b(c"}))

    assert rebuilt == r"![a\]b\(c](cat.png)"
    assert dialects.parse_markdown(rebuilt).display_text == "a]b(c"


def test_html_alt_change_keeps_attributes_and_quotes():
    match = dialects.parse_link('<img src="cat.png" alt="old" class="x">')
    rebuilt = dialects.build_link(match.parts.model_copy(update={"display_text": "new"}))

    assert rebuilt == '<img src="cat.png" alt="new" class="x">'


def test_html_alt_escapes_quote_character():
    match = dialects.parse_link("<img src='cat.png'>")
    rebuilt = dialects.build_link(match.parts.model_copy(update={"display_text": "it's <b>"}))

    assert rebuilt == "<img src='cat.png' alt='it&#39;s &lt;b&gt;'>"
    assert dialects.parse_html(rebuilt).display_text == "it's <b>"


def test_html_attribute_order_is_normalised_once():
    original = '<img class="x" height="20" src="cat.png" alt="Cat">'
    first = dialects.build_link(dialects.parse_link(original).parts)
    second = dialects.build_link(dialects.parse_link(first).parts)

    assert first == '<img src="cat.png" alt="Cat" height="20" class="x">'
    assert second == first


def test_html_non_numeric_size_is_kept_verbatim():
    parts = dialects.parse_html('<img src="cat.png" width="50%" height="20">')

    assert parts.width is None
    assert parts.height == 20
    assert [attribute.name for attribute in parts.html.attributes] == ["width"]


def test_html_without_src_is_ignored():
    assert dialects.parse_html('<img alt="nothing">') is None


def test_several_links_on_one_line_keep_their_spans():
    line = "![[a.png]] text ![[b.png|B]]"
    matches = dialects.find_wiki_links(line)

    assert [m.parts.target_path for m in matches] == ["a.png", "b.png"]
    assert line[matches[1].start : matches[1].end] == "![[b.png|B]]"


def test_html_width_only_tag_keeps_natural_height():
    parts = dialects.parse_html('<img src="cat.png" alt="Cat" width="300">')

    assert (parts.width, parts.height) == (300, None)
    assert dialects.build_link(parts) == '<img src="cat.png" alt="Cat" width="300">'


@pytest.mark.parametrize(
    "original, update, expected",
    [
        ('<img src="cat.png" width="50%">', {"width": 100}, '<img src="cat.png" width="100">'),
        ('<img src="cat.png" WIDTH="50%">', {"width": 100}, '<img src="cat.png" width="100">'),
        (
            '<img src="cat.png" width="50%" height="auto" class="c">',
            {"height": 40},
            '<img src="cat.png" height="40" width="50%" class="c">',
        ),
    ],
)
def test_numeric_size_replaces_verbatim_html_size(original, update, expected):
    parts = dialects.parse_html(original)

    rebuilt = dialects.build_link(parts.model_copy(update=update))

    assert rebuilt == expected


def test_markdown_alt_with_backslashes_round_trips():
    parts = dialects.parse_markdown("![old](cat.png)")
    rebuilt = dialects.build_link(parts.model_copy(update={"display_text": "C:\\dir\\"}))

    assert rebuilt == r"![C:\\dir\\](cat.png)"
    assert dialects.parse_markdown(rebuilt).display_text == "C:\\dir\\"


def test_markdown_escaped_backslash_is_unescaped():
    assert dialects.parse_markdown(r"![a\\b \] c](cat.png)").display_text == "a\\b ] c"
