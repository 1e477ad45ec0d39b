from __future__ import annotations

import os
import threading

import pytest

from imagelinks import scan
from imagelinks.errors import OperationCancelled
from imagelinks.models import Dialect
from imagelinks.scan import ReferenceScanner


def test_find_references_across_dialects(corpus):
    references = ReferenceScanner(corpus).find_references("img/cat.png")

    assert [(ref.note_path, ref.line_number, ref.dialect) for ref in references] == [
        ("Html.md", 3, Dialect.HTML),
        ("Markdown.md", 3, Dialect.MARKDOWN),
        ("Wiki.md", 3, Dialect.WIKI),
    ]
    assert references[2].link_text == "![[img/cat.png|Cat|100]]"
    assert references[2].display_text == "Cat"


def test_hidden_folders_and_code_blocks_are_skipped(corpus):
    references = ReferenceScanner(corpus).find_references("img/cat.png")

    assert all(not ref.note_path.startswith(".obsidian") for ref in references)
    assert all(ref.note_path != "Projects/Garden/Plan.md" for ref in references)


def test_code_blocks_can_be_included(corpus):
    references = ReferenceScanner(corpus, skip_code_blocks=False).find_references("img/cat.png")

    assert ("Projects/Garden/Plan.md", 6) in [(ref.note_path, ref.line_number) for ref in references]


def test_fenced_lines_are_excluded():
    text = "```\n![[cat.png]]\n```\n![[cat.png]]\n"
    references = scan.find_references_in_text("a.md", text, "cat.png", None)

    assert [ref.line_number for ref in references] == [4]


def test_inline_code_is_excluded():
    line = "`![[cat.png]]` and ![[cat.png|real]]"
    match = scan.match_line(line, "a.md", "cat.png", None)

    assert match.parts.display_text == "real"


def test_first_matching_link_on_a_line_wins():
    text = "![[dog.png]] ![[cat.png|one]] ![[cat.png|two]]"
    references = scan.find_references_in_text("a.md", text, "img/cat.png", None)

    assert len(references) == 1
    assert references[0].display_text == "one"
    assert references[0].start == len("![[dog.png]] ")


def test_same_name_in_another_folder_is_not_a_reference():
    references = scan.find_references_in_text("a.md", "![[other/cat.png]]", "img/cat.png", None)

    assert references == []


def test_crlf_lines_keep_their_carriage_return():
    references = scan.find_references_in_text("a.md", "intro\r\n![[cat.png]]\r\n", "cat.png", None)

    assert references[0].line_number == 2
    assert references[0].raw_line == "![[cat.png]]\r"


def test_name_defaults_to_last_path_segment(corpus):
    (corpus.vault_root / "Bare.md").write_text("![[cat.png]]\n", encoding="utf-8")

    references = ReferenceScanner(corpus).find_references("img/cat.png")

    assert "Bare.md" in [ref.note_path for ref in references]


def test_scan_requires_a_target(corpus):
    with pytest.raises(ValueError):
        ReferenceScanner(corpus).find_references(None, None)


def test_scan_stops_when_cancelled(corpus):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        ReferenceScanner(corpus).find_references("img/cat.png", cancel=cancel)


def test_sort_by_recency_puts_newest_note_first(corpus, sample_vault):
    os.utime(sample_vault / "Html.md", (1_000, 1_000))
    os.utime(sample_vault / "Markdown.md", (3_000, 3_000))
    os.utime(sample_vault / "Wiki.md", (2_000, 2_000))
    references = ReferenceScanner(corpus).find_references("img/cat.png")

    ordered = scan.sort_by_recency(references, corpus)

    assert [ref.note_path for ref in ordered] == ["Markdown.md", "Wiki.md", "Html.md"]


def test_image_index_counts_embedded_images_only():
    text = "![[a.png]]\n[[notes.md]] [[b.png]]\n![b](b.png) ![[cat.png]]\n"

    index = scan.image_index_in_note(text, "n.md", "cat.png", None, ["png"])

    assert index == 2


def test_image_index_is_none_when_absent():
    assert scan.image_index_in_note("![[a.png]]", "n.md", "cat.png", None, ["png"]) is None


def test_html_tag_case_does_not_hide_a_reference():
    references = scan.find_references_in_text("a.md", '<Img src="cat.png" alt="x">\n', "cat.png", None)

    assert [(ref.line_number, ref.dialect) for ref in references] == [(1, Dialect.HTML)]


def test_lone_backtick_does_not_open_inline_code():
    references = scan.find_references_in_text("a.md", "Press ` to open ![[cat.png]]", "cat.png", None)

    assert len(references) == 1


@pytest.mark.parametrize(
    "line, spans",
    [
        ("`a` b `c`", [(0, 3), (6, 9)]),
        ("``a ` b`` c", [(0, 9)]),
        ("one ` two", []),
        ("\\`literal and `code`", [(14, 20)]),
        ("no code here", []),
    ],
)
def test_inline_code_spans(line, spans):
    assert scan.inline_code_spans(line) == spans


def test_link_inside_double_backtick_span_is_excluded():
    assert scan.match_line("``![[cat.png]]`` text", "a.md", "cat.png", None) is None
    assert scan.match_line("``a ` b`` ![[cat.png]]", "a.md", "cat.png", None) is not None


def test_find_broken_links(corpus, sample_vault):
    (sample_vault / "Broken.md").write_text(
        "![[img/missing.png]]\n"
        "![gone](img/gone.jpg) ![ok](img/dog.png)\n"
        '<img src="https://example.com/x.png">\n'
        "`![[nope.png]]` and [[Some note]]\n"
        "![[cat.png]]\n",
        encoding="utf-8",
    )

    broken = ReferenceScanner(corpus).find_broken_links(["png", "jpg"])

    assert [(ref.note_path, ref.line_number, ref.parts.target_path) for ref in broken] == [
        ("Broken.md", 1, "img/missing.png"),
        ("Broken.md", 2, "img/gone.jpg"),
    ]
    assert broken[1].link_text == "![gone](img/gone.jpg)"
