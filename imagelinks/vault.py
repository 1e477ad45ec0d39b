"""
Note corpus access: the contract the engine reads and writes notes through, and its
filesystem implementation for an Obsidian vault on disk.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Protocol

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from .errors import NoteIOError, NoteNotFound

LOG = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"


class NoteCorpus(Protocol):
    """Accessor over the set of notes; paths are vault-relative POSIX strings."""

    def list_notes(self) -> List[str]: ...

    def read(self, note_path: str) -> str: ...

    def write(self, note_path: str, text: str) -> None: ...

    def mtime(self, note_path: str) -> float: ...


class VaultFiles(NoteCorpus, Protocol):
    """A corpus that can also list the non-note files of the vault."""

    def list_files(self, extensions: Optional[Iterable[str]] = None) -> List[str]: ...


class NoteRetryableError(NoteIOError):
    """Transient I/O failure that is worth another attempt."""


class FileSystemCorpus:
    """Markdown notes stored under a vault directory."""

    def __init__(self, vault_root: Path, retry_attempts: int = 3):
        self.vault_root = vault_root.resolve()
        self._retryer = Retrying(
            stop=stop_after_attempt(retry_attempts),
            wait=wait_exponential_jitter(initial=0.05, max=1),
            retry=retry_if_exception_type(NoteRetryableError),
            reraise=True,
        )

    def list_notes(self) -> List[str]:
        notes: List[str] = []
        for path in sorted(self.vault_root.rglob(f"*{NOTE_SUFFIX}")):
            relative = path.relative_to(self.vault_root)
            if _should_skip_path(relative) or not path.is_file():
                continue
            notes.append(relative.as_posix())
        return notes

    def list_files(self, extensions: Optional[Iterable[str]] = None) -> List[str]:
        """Vault-relative paths of every file, optionally limited to some extensions."""
        wanted = None
        if extensions is not None:
            wanted = {extension.lower().lstrip(".") for extension in extensions}
        files: List[str] = []
        for path in sorted(self.vault_root.rglob("*")):
            relative = path.relative_to(self.vault_root)
            if _should_skip_path(relative) or not path.is_file():
                continue
            if wanted is not None and path.suffix.lstrip(".").lower() not in wanted:
                continue
            files.append(relative.as_posix())
        return files

    def count_files_named(self, name: str) -> int:
        return sum(1 for path in self.list_files() if path.rsplit("/", 1)[-1] == name)

    def read(self, note_path: str) -> str:
        path = self.resolve(note_path)
        if not path.is_file():
            raise NoteNotFound(note_path)
        return self._retryer(lambda: self._read_file(note_path, path))

    def write(self, note_path: str, text: str) -> None:
        path = self.resolve(note_path)
        if not path.is_file():
            raise NoteNotFound(note_path)
        self._retryer(lambda: self._write_file(note_path, path, text))

    def mtime(self, note_path: str) -> float:
        path = self.resolve(note_path)
        try:
            return path.stat().st_mtime
        except FileNotFoundError as exc:
            raise NoteNotFound(note_path) from exc

    def resolve(self, note_path: str) -> Path:
        """Map a vault-relative note path to a file, refusing paths outside the vault."""
        candidate = (self.vault_root / note_path).resolve()
        try:
            candidate.relative_to(self.vault_root)
        except ValueError as exc:
            raise NoteNotFound(note_path) from exc
        return candidate

    def relative(self, path: Path) -> str:
        return path.resolve().relative_to(self.vault_root).as_posix()

    # File access -------------------------------------------------------------------

    def _read_file(self, note_path: str, path: Path) -> str:
        try:
            # newline="" keeps CRLF endings intact so untouched lines stay byte-identical.
            with path.open("r", encoding="utf-8", newline="") as handle:
                return handle.read()
        except FileNotFoundError as exc:
            raise NoteNotFound(note_path) from exc
        except UnicodeDecodeError as exc:
            raise NoteIOError(f"Note is not valid UTF-8: {note_path}") from exc
        except OSError as exc:
            LOG.warning(
                "Transient read failure",
                extra={"extra_payload": {"note_path": note_path, "error": str(exc)}},
            )
            raise NoteRetryableError(f"Failed to read {note_path}: {exc}") from exc

    def _write_file(self, note_path: str, path: Path, text: str) -> None:
        try:
            with path.open("w", encoding="utf-8", newline="") as handle:
                handle.write(text)
        except FileNotFoundError as exc:
            raise NoteNotFound(note_path) from exc
        except OSError as exc:
            LOG.warning(
                "Transient write failure",
                extra={"extra_payload": {"note_path": note_path, "error": str(exc)}},
            )
            raise NoteRetryableError(f"Failed to write {note_path}: {exc}") from exc


def _should_skip_path(relative: Path) -> bool:
    return any(part.startswith(".") for part in relative.parts)
