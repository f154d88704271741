"""Chapter validation -- pure functions over in-memory chapter lists.

Every function returns a new list or result object and never mutates its
input. Chapter numbers in messages refer to canonical (start-sorted) order.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import replace

from loguru import logger

from .models import ChapterGap, ChapterRecord, GapReport, ValidationResult

log = logger.bind(stage="validator")

GAP_TOLERANCE_MS = 1000
SHORT_CHAPTER_MS = 30_000
LONG_CHAPTER_MS = 14_400_000
MIN_COVERAGE_PCT = 90.0
SIGNIFICANT_GAP_TOTAL_MS = 10_000
MAX_TITLE_LENGTH = 200
ELLIPSIS = "…"

_ILLEGAL_TITLE_CHARS = re.compile(r'[<>:"/\\|?*]')
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_RESERVED_NAMES = re.compile(r"^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])$", re.IGNORECASE)


def sort_by_start_time(chapters: Sequence[ChapterRecord]) -> list[ChapterRecord]:
    """Stable sort by start, ties broken by shorter length first."""
    return sorted(chapters, key=lambda c: (c.start_offset_ms, c.length_ms))


def _check_geometry(chapters: Sequence[ChapterRecord], result: ValidationResult) -> None:
    for i, chapter in enumerate(chapters, start=1):
        if chapter.start_offset_ms < 0:
            result.add_error(
                f'Chapter {i} "{chapter.title}" has negative start time: '
                f"{chapter.start_offset_ms}ms"
            )
        if chapter.length_ms <= 0:
            result.add_error(
                f'Chapter {i} "{chapter.title}" has non-positive length: '
                f"{chapter.length_ms}ms"
            )


def validate_sequence(chapters: Sequence[ChapterRecord]) -> ValidationResult:
    """Check ordering, negative starts, non-positive lengths and overlaps.

    Overlap between sorted neighbours i and i+1 is reported when
    ``start[i] + len[i] > start[i+1]``, with the exact overlap in ms.
    """
    result = ValidationResult()
    if not chapters:
        result.add_error("No chapters provided for validation")
        return result

    ordered = sort_by_start_time(chapters)
    if [c.start_offset_ms for c in chapters] != [c.start_offset_ms for c in ordered]:
        result.warnings.append("Chapters are not in chronological order by start time")

    _check_geometry(ordered, result)

    for i, (current, following) in enumerate(zip(ordered, ordered[1:]), start=1):
        if current.end_ms > following.start_offset_ms:
            overlap = current.end_ms - following.start_offset_ms
            result.add_error(
                f'Chapter {i} "{current.title}" overlaps with chapter {i + 1} '
                f'"{following.title}" by {overlap}ms'
            )

    return result


def validate_timing(
    chapters: Sequence[ChapterRecord], total_duration_ms: int | None = None,
) -> ValidationResult:
    """Check chapter lengths and, if known, coverage of the audio duration."""
    result = ValidationResult()
    if not chapters:
        result.add_error("No chapters provided for timing validation")
        return result

    ordered = sort_by_start_time(chapters)
    _check_geometry(ordered, result)

    last_end = 0
    for i, chapter in enumerate(ordered, start=1):
        if 0 < chapter.length_ms < SHORT_CHAPTER_MS:
            result.warnings.append(
                f'Chapter {i} "{chapter.title}" is very short: '
                f"{round(chapter.length_ms / 1000)}s"
            )
        if chapter.length_ms > LONG_CHAPTER_MS:
            result.warnings.append(
                f'Chapter {i} "{chapter.title}" is very long: '
                f"{chapter.length_ms / 3_600_000:.1f}h"
            )
        last_end = max(last_end, chapter.end_ms)

    if total_duration_ms is not None:
        if last_end > total_duration_ms:
            result.add_error(
                f"Chapters extend {last_end - total_duration_ms}ms beyond audio "
                f"file duration ({total_duration_ms}ms)"
            )
        if total_duration_ms > 0:
            coverage = last_end / total_duration_ms * 100
            if coverage < MIN_COVERAGE_PCT:
                missing_s = round((total_duration_ms - last_end) / 1000)
                result.warnings.append(
                    f"Chapters only cover {coverage:.1f}% of the audio file. "
                    f"Missing {missing_s}s of content"
                )

    return result


def detect_gaps(chapters: Sequence[ChapterRecord]) -> GapReport:
    """Report silence longer than GAP_TOLERANCE_MS between sorted neighbours."""
    report = GapReport()
    ordered = sort_by_start_time(chapters)

    for i, (current, following) in enumerate(zip(ordered, ordered[1:])):
        gap_ms = following.start_offset_ms - current.end_ms
        if gap_ms > GAP_TOLERANCE_MS:
            report.gaps.append(
                ChapterGap(
                    after_index=i,
                    gap_start_ms=current.end_ms,
                    gap_end_ms=following.start_offset_ms,
                    duration_ms=gap_ms,
                    description=(
                        f'{round(gap_ms / 1000)}s gap between "{current.title}" '
                        f'and "{following.title}"'
                    ),
                )
            )
            report.total_gap_ms += gap_ms

    return report


def normalize_title(title: str, index: int) -> str:
    """Make one chapter title filesystem-safe. ``index`` is 0-based."""
    text = _ILLEGAL_TITLE_CHARS.sub("", title)
    text = _CONTROL_CHARS.sub(" ", text)
    text = re.sub(r"\s+", " ", text)
    text = text.strip(" .")

    if not text:
        text = f"Chapter {index + 1}"

    if len(text) > MAX_TITLE_LENGTH:
        text = text[: MAX_TITLE_LENGTH - 1].rstrip(" .") + ELLIPSIS

    if _RESERVED_NAMES.match(text):
        text = f"{text}_chapter"

    return text


def normalize_titles(chapters: Sequence[ChapterRecord]) -> list[ChapterRecord]:
    """Return copies of ``chapters`` with normalized titles. Idempotent."""
    return [
        replace(chapter, title=normalize_title(chapter.title, i))
        for i, chapter in enumerate(chapters)
    ]


def validate_all(
    chapters: Sequence[ChapterRecord], total_duration_ms: int | None = None,
) -> ValidationResult:
    """Run every check and merge errors and warnings.

    An empty list yields a single "no chapters" error and no warnings.
    """
    if not chapters:
        result = ValidationResult()
        result.add_error("No chapters provided for validation")
        return result

    sequence = validate_sequence(chapters)
    timing = validate_timing(chapters, total_duration_ms)
    gaps = detect_gaps(chapters)

    errors = list(sequence.errors)
    # Geometry errors are reported by both checks; keep one copy
    errors.extend(e for e in timing.errors if e not in errors)
    combined = ValidationResult(
        is_valid=sequence.is_valid and timing.is_valid,
        errors=errors,
        warnings=sequence.warnings + timing.warnings,
    )

    combined.warnings.extend(gap.description for gap in gaps.gaps)
    if gaps.total_gap_ms > SIGNIFICANT_GAP_TOTAL_MS:
        combined.warnings.append(
            f"Total gap duration is significant: {round(gaps.total_gap_ms / 1000)}s "
            f"across {len(gaps.gaps)} gaps"
        )

    log.debug(
        f"validate_all: {len(chapters)} chapters, {len(combined.errors)} errors, "
        f"{len(combined.warnings)} warnings"
    )
    return combined
