from __future__ import annotations

from pathlib import Path

import pytest

from imagelinks.vault import FileSystemCorpus


@pytest.fixture()
def sample_vault(tmp_path: Path) -> Path:
    vault = tmp_path / "vault"
    images = vault / "img"
    images.mkdir(parents=True)
    (images / "cat.png").write_bytes(b"\x89PNG\r\n")
    (images / "dog.png").write_bytes(b"\x89PNG\r\n")
    (vault / "Projects" / "Garden").mkdir(parents=True)
    (vault / ".obsidian").mkdir()

    (vault / "Wiki.md").write_text(
        "# Wiki\n\nA cat: ![[img/cat.png|Cat|100]]\n",
        encoding="utf-8",
    )
    (vault / "Markdown.md").write_text(
        '# Markdown\n\n![A cat](img/cat.png "Title")\n',
        encoding="utf-8",
    )
    (vault / "Html.md").write_text(
        '# Html\n\n<p><img src="img/cat.png" alt="Cat" width="100"></p>\n',
        encoding="utf-8",
    )
    (vault / "Projects" / "Garden" / "Plan.md").write_text(
        "# Plan\n\n![[img/dog.png]]\n\n```\n![[img/cat.png]]\n```\n",
        encoding="utf-8",
    )
    (vault / ".obsidian" / "workspace.md").write_text("![[img/cat.png]]\n", encoding="utf-8")

    return vault


@pytest.fixture()
def corpus(sample_vault: Path) -> FileSystemCorpus:
    return FileSystemCorpus(sample_vault, retry_attempts=1)


@pytest.fixture()
def empty_vault(tmp_path: Path) -> Path:
    vault = tmp_path / "notes"
    vault.mkdir()
    return vault
