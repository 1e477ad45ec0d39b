"""
Rename/move event source: watch the vault with watchdog and propagate image renames.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .propagate import RenamePropagator, RenameResult
from .vault import FileSystemCorpus

LOG = logging.getLogger(__name__)

ResultCallback = Callable[[RenameResult], None]


class RenameWatcher(FileSystemEventHandler):
    """
    Turn `on_moved` events for images into rename propagation.

    The same (old, new) pair arriving again within `dedup_seconds` is ignored, which
    absorbs the duplicate events some platforms and sync tools emit for one move.
    """

    def __init__(
        self,
        corpus: FileSystemCorpus,
        propagator: RenamePropagator,
        image_extensions: Iterable[str],
        dedup_seconds: float = 2.0,
        on_result: Optional[ResultCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.corpus = corpus
        self.propagator = propagator
        self.image_extensions = {extension.lower().lstrip(".") for extension in image_extensions}
        self.dedup_seconds = dedup_seconds
        self.on_result = on_result
        self._clock = clock
        self._recent: Dict[Tuple[str, str], float] = {}
        self._lock = threading.Lock()

    def on_moved(self, event: FileSystemEvent) -> None:
        source = Path(os.fsdecode(event.src_path))
        destination = Path(os.fsdecode(event.dest_path))
        if event.is_directory:
            for old_path, new_path in self._directory_moves(source, destination):
                self.handle_rename(old_path, new_path)
            return

        pair = self._relative_pair(source, destination)
        if pair is None or not self._is_image(pair[1]):
            return
        self.handle_rename(*pair)

    def handle_rename(self, old_path: str, new_path: str) -> Optional[RenameResult]:
        with self._lock:
            if self._is_duplicate(old_path, new_path):
                LOG.debug(
                    "Ignoring duplicate rename event",
                    extra={"extra_payload": {"old_path": old_path, "new_path": new_path}},
                )
                return None
            LOG.info(
                "Image moved; updating references",
                extra={"extra_payload": {"old_path": old_path, "new_path": new_path}},
            )
            result = self.propagator.run(old_path, new_path)

        if self.on_result is not None:
            self.on_result(result)
        return result

    def _is_duplicate(self, old_path: str, new_path: str) -> bool:
        now = self._clock()
        key = (old_path, new_path)
        last_seen = self._recent.get(key)
        self._recent[key] = now
        expiry = max(self.dedup_seconds * 2.5, 1.0)
        for stale in [item for item, seen in self._recent.items() if now - seen > expiry]:
            del self._recent[stale]
        return last_seen is not None and now - last_seen < self.dedup_seconds

    def _relative_pair(self, source: Path, destination: Path) -> Optional[Tuple[str, str]]:
        try:
            return self.corpus.relative(source), self.corpus.relative(destination)
        except ValueError:
            LOG.debug(
                "Ignoring move outside the vault",
                extra={"extra_payload": {"src": str(source), "dest": str(destination)}},
            )
            return None

    def _directory_moves(self, source: Path, destination: Path) -> List[Tuple[str, str]]:
        moves: List[Tuple[str, str]] = []
        if not destination.is_dir():
            return moves
        for path in sorted(destination.rglob("*")):
            if not path.is_file():
                continue
            pair = self._relative_pair(source / path.relative_to(destination), path)
            if pair is not None and self._is_image(pair[1]):
                moves.append(pair)
        return moves

    def _is_image(self, path: str) -> bool:
        return Path(path).suffix.lstrip(".").lower() in self.image_extensions


def start_watching(watcher: RenameWatcher) -> Observer:
    """Schedule the watcher recursively on the vault and start the observer thread."""
    observer = Observer()
    observer.schedule(watcher, str(watcher.corpus.vault_root), recursive=True)
    observer.start()
    LOG.info(
        "Watching vault for image moves",
        extra={"extra_payload": {"vault_root": str(watcher.corpus.vault_root)}},
    )
    return observer
