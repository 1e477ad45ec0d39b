"""
Markdown reports for rename batches.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from .models import RewriteStatus
from .propagate import RenameResult


def render_rename_report(results: Iterable[RenameResult], dry_run: bool = False) -> List[str]:
    results = list(results)
    title = "# Image Rename Plan" if dry_run else "# Image Renames"
    lines = [
        title,
        "",
        f"Generated at {datetime.now(tz=timezone.utc).isoformat()}",
        "",
        f"Renamed images: {len(results)}",
        "",
    ]
    for result in results:
        summary = result.summary
        lines.extend(
            [
                f"## `{result.old_path}`",
                "",
                f"- New path: `{result.new_path}`",
                f"- Notes updated: {summary.changed}",
                f"- Notes unchanged: {summary.unchanged}",
                f"- Notes failed: {summary.failed}",
            ]
        )
        if summary.cancelled:
            lines.append("- Cancelled before every note was visited")
        for note in result.notes:
            if note.status == RewriteStatus.CHANGED:
                changed = ", ".join(str(number) for number in note.changed_lines)
                lines.append(f"  - `{note.note_path}` lines {changed}")
            elif note.status == RewriteStatus.FAILED:
                reason = note.error or "; ".join(
                    line.error for line in note.lines if line.error
                )
                lines.append(f"  - `{note.note_path}` failed: {reason}")
        lines.append("")
    return lines


def write_rename_report(
    results: Iterable[RenameResult], directory: Path, dry_run: bool = False
) -> Optional[Path]:
    results = list(results)
    if not results:
        return None
    directory.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(tz=timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    prefix = "rename_plan" if dry_run else "renames"
    report_path = directory / f"{prefix}_{timestamp}.md"
    report_path.write_text("\n".join(render_rename_report(results, dry_run)), encoding="utf-8")
    return report_path
