from __future__ import annotations

import threading

import pytest

from imagelinks.convert import LinkFormatConverter
from imagelinks.errors import ValidationError
from imagelinks.models import RewriteStatus
from imagelinks.vault import FileSystemCorpus

EXTENSIONS = ["png", "jpg"]


def _converter(corpus, **options) -> LinkFormatConverter:
    return LinkFormatConverter(corpus, EXTENSIONS, **options)


def test_shortest_style_converts_every_dialect(corpus, sample_vault):
    result = _converter(corpus).convert("shortest")

    assert result.counts_by_note() == {
        "Html.md": 1,
        "Markdown.md": 1,
        "Projects/Garden/Plan.md": 1,
        "Wiki.md": 1,
    }
    assert (result.summary.changed, result.summary.failed) == (4, 0)
    assert (sample_vault / "Wiki.md").read_text(encoding="utf-8") == (
        "# Wiki\n\nA cat: ![[cat.png|Cat|100]]\n"
    )
    assert (sample_vault / "Markdown.md").read_text(encoding="utf-8") == (
        '# Markdown\n\n![A cat](cat.png "Title")\n'
    )
    assert (sample_vault / "Html.md").read_text(encoding="utf-8") == (
        '# Html\n\n<p><img src="cat.png" alt="Cat" width="100"></p>\n'
    )


def test_code_blocks_are_not_converted(corpus, sample_vault):
    _converter(corpus).convert("shortest")

    assert (sample_vault / "Projects" / "Garden" / "Plan.md").read_text(encoding="utf-8") == (
        "# Plan\n\n![[dog.png]]\n\n```\n![[img/cat.png]]\n```\n"
    )


def test_relative_style_walks_up_from_the_note(corpus, sample_vault):
    result = _converter(corpus).convert("relative")

    assert [(c.note_path, c.old_link, c.new_link) for c in result.conversions] == [
        ("Projects/Garden/Plan.md", "![[img/dog.png]]", "![[../../img/dog.png]]"),
    ]


def test_absolute_style_restores_vault_paths(empty_vault):
    (empty_vault / "img").mkdir()
    (empty_vault / "img" / "cat.png").write_bytes(b"png")
    (empty_vault / "a.md").write_text("![[cat.png|Cat]] and ![x](cat.png)\n", encoding="utf-8")
    corpus = FileSystemCorpus(empty_vault, retry_attempts=1)

    result = _converter(corpus).convert("absolute")

    assert len(result.conversions) == 2
    assert (empty_vault / "a.md").read_text(encoding="utf-8") == (
        "![[img/cat.png|Cat]] and ![x](img/cat.png)\n"
    )


def test_ambiguous_names_keep_their_folder(empty_vault):
    for folder in ("img", "other"):
        (empty_vault / folder).mkdir()
        (empty_vault / folder / "cat.png").write_bytes(b"png")
    (empty_vault / "a.md").write_text("![[img/cat.png]] ![[other/cat.png]]\n", encoding="utf-8")
    corpus = FileSystemCorpus(empty_vault, retry_attempts=1)

    result = _converter(corpus).convert("shortest")

    assert result.conversions == []
    assert result.notes == []


def test_broken_and_external_links_are_left_alone(empty_vault):
    text = "![[missing.png]] ![web](https://example.com/cat.png) [[Other note]]\n"
    (empty_vault / "a.md").write_text(text, encoding="utf-8")
    corpus = FileSystemCorpus(empty_vault, retry_attempts=1)

    assert _converter(corpus).analyze("absolute") == []


def test_analyze_does_not_write(corpus, sample_vault):
    before = (sample_vault / "Wiki.md").read_text(encoding="utf-8")

    conversions = _converter(corpus).analyze("shortest")

    assert len(conversions) == 4
    assert conversions[-1].image_path == "img/cat.png"
    assert conversions[-1].line_number == 3
    assert (sample_vault / "Wiki.md").read_text(encoding="utf-8") == before


def test_dry_run_reports_without_writing(corpus, sample_vault):
    before = (sample_vault / "Markdown.md").read_text(encoding="utf-8")

    result = _converter(corpus, dry_run=True).convert("shortest")

    assert result.summary.changed == 4
    assert (sample_vault / "Markdown.md").read_text(encoding="utf-8") == before


def test_converting_twice_changes_nothing(corpus):
    _converter(corpus).convert("shortest")

    assert _converter(corpus).convert("shortest").conversions == []


def test_failed_write_is_recorded(corpus, sample_vault, monkeypatch):
    original_write = corpus.write

    def write(note_path, text):
        if note_path == "Html.md":
            raise ValidationError("refused")
        original_write(note_path, text)

    monkeypatch.setattr(corpus, "write", write)

    result = _converter(corpus).convert("shortest")

    statuses = {note.note_path: note.status for note in result.notes}
    assert statuses["Html.md"] == RewriteStatus.FAILED
    assert statuses["Wiki.md"] == RewriteStatus.CHANGED
    assert "Html.md" not in result.counts_by_note()
    assert "img/cat.png" in (sample_vault / "Html.md").read_text(encoding="utf-8")


def test_unknown_style_is_rejected(corpus):
    with pytest.raises(ValidationError):
        _converter(corpus).convert("preserve")


def test_cancelled_conversion_is_marked(corpus):
    cancel = threading.Event()
    cancel.set()

    result = _converter(corpus).convert("shortest", cancel=cancel)

    assert result.summary.cancelled is True
    assert result.conversions == []
