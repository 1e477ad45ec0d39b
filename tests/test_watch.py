from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from imagelinks.models import RewriteSummary
from imagelinks.propagate import RenameResult
from imagelinks.watch import RenameWatcher


@dataclass
class FakeMoveEvent:
    src_path: str
    dest_path: str
    is_directory: bool = False
    event_type: str = "moved"


class RecordingPropagator:
    def __init__(self) -> None:
        self.calls: List[Tuple[str, str]] = []

    def run(self, old_path, new_path, cancel=None):
        self.calls.append((old_path, new_path))
        return RenameResult(old_path=old_path, new_path=new_path, summary=RewriteSummary())


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _watcher(corpus, clock=None, on_result=None):
    propagator = RecordingPropagator()
    watcher = RenameWatcher(
        corpus,
        propagator,
        ["png", "jpg"],
        dedup_seconds=2.0,
        on_result=on_result,
        clock=clock or FakeClock(),
    )
    return watcher, propagator


def test_image_move_is_propagated(corpus, sample_vault):
    results = []
    watcher, propagator = _watcher(corpus, on_result=results.append)

    watcher.on_moved(
        FakeMoveEvent(str(sample_vault / "img" / "cat.png"), str(sample_vault / "img" / "kitty.png"))
    )

    assert propagator.calls == [("img/cat.png", "img/kitty.png")]
    assert results[0].new_path == "img/kitty.png"


def test_non_image_moves_are_ignored(corpus, sample_vault):
    watcher, propagator = _watcher(corpus)

    watcher.on_moved(FakeMoveEvent(str(sample_vault / "Wiki.md"), str(sample_vault / "Wiki2.md")))

    assert propagator.calls == []


def test_moves_outside_the_vault_are_ignored(corpus, sample_vault, tmp_path):
    watcher, propagator = _watcher(corpus)

    watcher.on_moved(FakeMoveEvent(str(sample_vault / "img" / "cat.png"), str(tmp_path / "cat.png")))

    assert propagator.calls == []


def test_duplicate_events_are_suppressed(corpus):
    clock = FakeClock()
    watcher, propagator = _watcher(corpus, clock=clock)

    assert watcher.handle_rename("img/cat.png", "img/kitty.png") is not None
    clock.now += 0.5
    assert watcher.handle_rename("img/cat.png", "img/kitty.png") is None
    clock.now += 5.0
    assert watcher.handle_rename("img/cat.png", "img/kitty.png") is not None

    assert len(propagator.calls) == 2


def test_directory_move_relinks_contained_images(corpus, sample_vault):
    moved = sample_vault / "media"
    (sample_vault / "img").rename(moved)
    watcher, propagator = _watcher(corpus)

    watcher.on_moved(FakeMoveEvent(str(sample_vault / "img"), str(moved), is_directory=True))

    assert propagator.calls == [
        ("img/cat.png", "media/cat.png"),
        ("img/dog.png", "media/dog.png"),
    ]
