"""Derived artifacts written next to the chapter files: M3U playlist and JSON index.

Both are rebuilt from a SplitResult on every run and are never read back.
"""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger

from .formatting import whole_seconds
from .models import ChapterFileResult
from .sanitize import sanitize

log = logger.bind(stage="artifacts")


def _ordered(chapter_files: list[ChapterFileResult]) -> list[ChapterFileResult]:
    return sorted(chapter_files, key=lambda cf: cf.chapter_number)


def write_playlist(
    chapter_files: list[ChapterFileResult], output_dir: Path, book_title: str,
) -> Path:
    """Write ``<book>.m3u`` with one EXTINF entry per chapter file.

    Entries are relative file names so the directory can be moved.
    """
    path = output_dir / sanitize(f"{book_title}.m3u")
    lines = ["#EXTM3U", f"#PLAYLIST:{book_title}"]
    for cf in _ordered(chapter_files):
        lines.append(f"#EXTINF:{whole_seconds(cf.duration_ms)},{cf.title}")
        lines.append(cf.output_path.name)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    log.info(f"Playlist written: {path.name} ({len(chapter_files)} entries)")
    return path


def build_index(chapter_files: list[ChapterFileResult], book_title: str) -> dict:
    ordered = _ordered(chapter_files)
    return {
        "book_title": book_title,
        "chapter_count": len(ordered),
        "total_duration_ms": sum(cf.duration_ms for cf in ordered),
        "chapters": [
            {
                "number": cf.chapter_number,
                "title": cf.title,
                "filename": cf.output_path.name,
                "start_ms": cf.start_time_ms,
                "duration_ms": cf.duration_ms,
            }
            for cf in ordered
        ],
    }


def write_index(
    chapter_files: list[ChapterFileResult], output_dir: Path, book_title: str,
) -> Path:
    """Write ``<book>.chapters.json`` describing every chapter file."""
    path = output_dir / sanitize(f"{book_title}.chapters.json")
    path.write_text(
        json.dumps(build_index(chapter_files, book_title), indent=2, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )
    log.info(f"Index written: {path.name}")
    return path
