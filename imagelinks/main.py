"""
Application entry point: find, rewrite and relink image references from the command line.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from .config import Settings, load_settings
from .convert import CONVERSION_STYLES, ConversionResult, LinkFormatConverter
from .errors import ImageLinkError
from .logging_setup import configure_change_log, configure_logging, log_change_event
from .models import ImageReference, OutcomeKind, RewriteRequest, RewriteStatus
from .propagate import RenamePropagator, RenameResult
from .reports import write_rename_report
from .resolver import path_derived_name, resolve_multi
from .rewrite import ReferenceRewriter, size_changes
from .scan import ReferenceScanner, image_index_in_note, sort_by_recency
from .vault import FileSystemCorpus
from .watch import RenameWatcher, start_watching

LOG = logging.getLogger(__name__)


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="imagelinks",
        description="Track and rewrite image links in an Obsidian vault.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    find = commands.add_parser("find", help="List every note line that references an image.")
    find.add_argument("image", help="Vault-relative path of the image.")
    find.add_argument("--name", help="File name to match when it differs from the path's last segment.")
    find.add_argument("--recent", action="store_true", help="Show the most recently edited notes first.")
    find.add_argument(
        "--suggest-name",
        action="store_true",
        help="Pick the authoritative note and print a name derived from its folders.",
    )

    set_cmd = commands.add_parser("set", help="Change the display text or size of one link.")
    set_cmd.add_argument("note", help="Vault-relative path of the note.")
    set_cmd.add_argument("line", type=int, help="One-based line number.")
    set_cmd.add_argument("--expect", required=True, help="The line as it was last seen.")
    set_cmd.add_argument("--image", help="Vault path of the image when the line holds several links.")
    text_group = set_cmd.add_mutually_exclusive_group()
    text_group.add_argument("--text", help="New display text.")
    text_group.add_argument("--no-text", action="store_true", help="Remove the display text.")
    set_cmd.add_argument("--size", help="New size as W or WxH; an empty value restores natural size.")

    relink = commands.add_parser("relink", help="Rewrite links after an image moved.")
    relink.add_argument("old", help="Previous vault-relative path of the image.")
    relink.add_argument("new", help="New vault-relative path of the image.")
    relink.add_argument("--move", action="store_true", help="Also move the image file on disk.")
    relink.add_argument("--report-dir", type=Path, help="Write a Markdown report to this directory.")

    convert = commands.add_parser(
        "convert", help="Rewrite every image link in the vault to one path style."
    )
    convert.add_argument("style", choices=CONVERSION_STYLES, help="Target link style.")
    convert.add_argument(
        "--plan", action="store_true", help="List the conversions without changing any note."
    )

    commands.add_parser("broken", help="List image links whose target file does not exist.")
    commands.add_parser("watch", help="Watch the vault and relink images as they move.")
    return parser.parse_args(argv)


# Commands --------------------------------------------------------------------------


def create_rewriter(corpus: FileSystemCorpus, settings: Settings) -> ReferenceRewriter:
    rewriter = ReferenceRewriter.from_settings(corpus, settings)
    if settings.change_log_path is not None:
        rewriter.add_listener(log_change_event)
    return rewriter


def run_find(args: argparse.Namespace, settings: Settings, corpus: FileSystemCorpus) -> int:
    scanner = ReferenceScanner(corpus, skip_code_blocks=settings.skip_code_blocks)
    references = scanner.find_references(args.image, args.name)
    shown = sort_by_recency(references, corpus) if args.recent else references
    for reference in shown:
        print(f"{reference.note_path}:{reference.line_number}: {reference.link_text}")

    if args.suggest_name and references:
        print(suggest_name(references, args.image, args.name, settings, corpus))
    LOG.info(
        "Reference lookup finished",
        extra={"extra_payload": {"image": args.image, "references": len(references)}},
    )
    return 0


def suggest_name(
    references: List[ImageReference],
    image: str,
    name: Optional[str],
    settings: Settings,
    corpus: FileSystemCorpus,
) -> str:
    outcome = resolve_multi(references, settings.multiple_references, corpus.mtime)
    if outcome.kind != OutcomeKind.SELECTED or outcome.selected is None:
        notes = ", ".join(sorted({reference.note_path for reference in outcome.candidates}))
        return f"Several notes reference this image ({outcome.kind.value}): {notes}"

    note_path = outcome.selected.note_path
    ordinal = image_index_in_note(
        corpus.read(note_path),
        note_path,
        image,
        name,
        settings.image_extensions,
        skip_code_blocks=settings.skip_code_blocks,
    )
    suggested = path_derived_name(
        note_path, name or Path(image).name, ordinal or 0, settings.path_naming_depth
    )
    return f"Suggested name: {suggested} (from {note_path})"


def run_set(args: argparse.Namespace, settings: Settings, corpus: FileSystemCorpus) -> int:
    changes = {}
    if args.no_text:
        changes["new_display_text"] = None
    elif args.text is not None:
        changes["new_display_text"] = args.text
    if args.size is not None:
        changes.update(size_changes(args.size, settings.max_display_size))
    if args.image:
        changes["image_path"] = args.image

    request = RewriteRequest.model_validate(
        {
            "note_path": args.note,
            "line_number": args.line,
            "expected_old_line": args.expect,
            **changes,
        }
    )
    rewriter = create_rewriter(corpus, settings)
    result = rewriter.apply(request)
    for warning in result.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    if result.status == RewriteStatus.CHANGED:
        print(result.new_line)
    else:
        print("No change.")
    return 0


def run_relink(args: argparse.Namespace, settings: Settings, corpus: FileSystemCorpus) -> int:
    if args.move and not settings.dry_run:
        move_image(corpus, args.old, args.new)

    propagator = RenamePropagator.from_settings(
        corpus, settings, rewriter=create_rewriter(corpus, settings)
    )
    result = propagator.run(args.old, args.new)
    print_rename_result(result)

    if args.report_dir is not None:
        report_path = write_rename_report([result], args.report_dir, dry_run=settings.dry_run)
        if report_path:
            LOG.info(
                "Rename report written",
                extra={"extra_payload": {"report_path": str(report_path)}},
            )
    return 1 if result.summary.failed else 0


def move_image(corpus: FileSystemCorpus, old_path: str, new_path: str) -> None:
    source = corpus.vault_root / old_path
    destination = corpus.vault_root / new_path
    if not source.is_file():
        raise FileNotFoundError(f"Image not found: {old_path}")
    if destination.exists():
        raise FileExistsError(f"Destination already exists: {new_path}")
    destination.parent.mkdir(parents=True, exist_ok=True)
    source.rename(destination)
    LOG.info(
        "Moved image",
        extra={"extra_payload": {"old_path": old_path, "new_path": new_path}},
    )


def print_rename_result(result: RenameResult) -> None:
    for note in result.notes:
        if note.status == RewriteStatus.CHANGED:
            lines = ", ".join(str(number) for number in note.changed_lines)
            print(f"updated {note.note_path} (lines {lines})")
        elif note.status == RewriteStatus.FAILED:
            print(f"failed {note.note_path}: {note.error or 'see log'}", file=sys.stderr)
    summary = result.summary
    print(f"{summary.changed} updated, {summary.unchanged} unchanged, {summary.failed} failed")


def run_convert(args: argparse.Namespace, settings: Settings, corpus: FileSystemCorpus) -> int:
    converter = LinkFormatConverter.from_settings(corpus, settings)
    if args.plan:
        for conversion in converter.analyze(args.style):
            print(
                f"{conversion.note_path}:{conversion.line_number}: "
                f"{conversion.old_link} -> {conversion.new_link}"
            )
        return 0

    result = converter.convert(args.style)
    print_conversion_result(result)
    return 1 if result.summary.failed else 0


def print_conversion_result(result: ConversionResult) -> None:
    for note_path, count in result.counts_by_note().items():
        print(f"converted {count} link(s) in {note_path}")
    for note in result.notes:
        if note.status == RewriteStatus.FAILED:
            print(f"failed {note.note_path}: {note.error or 'see log'}", file=sys.stderr)
    summary = result.summary
    print(
        f"{len(result.conversions)} links converted in {summary.changed} notes, "
        f"{summary.failed} failed"
    )


def run_broken(settings: Settings, corpus: FileSystemCorpus) -> int:
    scanner = ReferenceScanner(corpus, skip_code_blocks=settings.skip_code_blocks)
    broken = scanner.find_broken_links(settings.image_extensions)
    for reference in broken:
        print(f"{reference.note_path}:{reference.line_number}: {reference.link_text}")
    print(f"{len(broken)} broken image links")
    return 0


def run_watch(settings: Settings, corpus: FileSystemCorpus) -> int:
    propagator = RenamePropagator.from_settings(
        corpus, settings, rewriter=create_rewriter(corpus, settings)
    )
    watcher = RenameWatcher(
        corpus,
        propagator,
        settings.image_extensions,
        dedup_seconds=settings.rename_dedup_seconds,
        on_result=print_rename_result,
    )
    observer = start_watching(watcher)
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        observer.stop()
        LOG.info("Watcher stopped.")
    observer.join()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])

    settings = load_settings()
    configure_logging(settings.log_level)
    if settings.change_log_path is not None:
        configure_change_log(settings.change_log_path)
    corpus = FileSystemCorpus(settings.vault_path, retry_attempts=settings.io_retry_attempts)

    try:
        if args.command == "find":
            return run_find(args, settings, corpus)
        if args.command == "set":
            return run_set(args, settings, corpus)
        if args.command == "relink":
            return run_relink(args, settings, corpus)
        if args.command == "convert":
            return run_convert(args, settings, corpus)
        if args.command == "broken":
            return run_broken(settings, corpus)
        return run_watch(settings, corpus)
    except (ImageLinkError, OSError) as exc:
        LOG.error(
            "Command failed",
            extra={"extra_payload": {"command": args.command, "error": str(exc)}},
        )
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
