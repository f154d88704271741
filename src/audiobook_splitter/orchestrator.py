"""Split orchestrator -- validates a chapter list against an audio file and
cuts it into one file per chapter.

State machine:

    PREFLIGHT -> PREPARE -> EXECUTE -> AGGREGATE -> SUCCESS | PARTIAL_FAILURE
        |           |
        +-----------+--> ABORTED   (nothing written)

PREFLIGHT and PREPARE failures abort the job with zero partial output.
From EXECUTE on, every failure is scoped to a chapter: it becomes a
"Chapter N: ..." entry in SplitResult.errors and the job carries on.
Anything unexpected before EXECUTE is recorded as a fatal error and the job
is ABORTED. ``split`` always returns a SplitResult; it never raises for job
failures.
"""

from __future__ import annotations

import dataclasses
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .concurrency import (
    available_space,
    calculate_concurrency,
    estimate_required_space,
    run_in_batches,
)
from .config import SplitterConfig
from .cutter import AudioCutter
from .errors import (
    AudioIOError,
    SplitCancelledError,
    SplitterError,
    TagError,
    ValidationError,
)
from .formatting import format_bytes, format_time
from .models import (
    OUTPUT_FORMATS,
    SUPPORTED_INPUT_EXTENSIONS,
    TERMINAL_STATES,
    AudioInfo,
    BookMetadata,
    ChapterFileResult,
    ChapterRecord,
    SplitJob,
    SplitResult,
    SplitState,
)
from .sanitize import generate_chapter_filename
from .tagger import Tagger, build_chapter_tags, fetch_cover
from .validator import normalize_titles, sort_by_start_time, validate_all

log = logger.bind(stage="orchestrator")


@dataclass(frozen=True)
class ProgressEvent:
    """Side-channel progress report; never part of the result data."""

    chapter_number: int
    total_chapters: int
    title: str
    status: str  # cutting | done | skipped | dry-run | failed | tag-warning
    percent: float | None = None


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class _ChapterOutcome:
    file: ChapterFileResult | None = None
    error: str | None = None
    warning: str | None = None


class SplitOrchestrator:
    """Drives one SplitJob through preflight, preparation, cutting and tagging.

    Attributes:
        config: Splitter configuration (tool paths, limits, tolerances)
        cutter: AudioCutter used for probing and cutting
        tagger: Tagger used for per-chapter metadata
        concurrency: Fixed batch width; None derives it from CPU and memory
    """

    def __init__(
        self,
        config: SplitterConfig | None = None,
        cutter: AudioCutter | None = None,
        tagger: Tagger | None = None,
        concurrency: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self.config = config or SplitterConfig()
        self.cutter = cutter or AudioCutter(
            ffmpeg_bin=self.config.ffmpeg_bin,
            ffprobe_bin=self.config.ffprobe_bin,
            timeout=self.config.cut_timeout_seconds,
        )
        self.tagger = tagger or Tagger()
        if concurrency is not None and concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.concurrency = concurrency
        self.on_progress = on_progress
        self.state = SplitState.PREFLIGHT
        self._cancelled = threading.Event()
        self._preflight_done = threading.Event()

    # -- Public API --

    def cancel(self) -> bool:
        """Ask the job to stop. Only honoured before preflight completes.

        Returns True if the request was accepted.
        """
        if self._preflight_done.is_set():
            log.warning("Cancel ignored: preflight already completed")
            return False
        self._cancelled.set()
        log.info("Cancellation requested")
        return True

    def split(self, job: SplitJob) -> SplitResult:
        """Run the whole pipeline for ``job`` and return the aggregated result."""
        result = SplitResult(total_chapters=len(job.chapters))
        try:
            return self._run(job, result)
        finally:
            # Reset so a reused orchestrator starts clean; an earlier cancel() is consumed
            self._cancelled.clear()
            self._preflight_done.clear()

    def _run(self, job: SplitJob, result: SplitResult) -> SplitResult:
        log.info(
            f"Splitting '{job.book_title}' into {len(job.chapters)} chapters "
            f"(dry_run={job.dry_run}, overwrite={job.overwrite})"
        )

        try:
            self._set_state(SplitState.PREFLIGHT, result)
            self.preflight(job, result)
            self._set_state(SplitState.PREPARE, result)
            chapters, metadata = self.prepare(job)

            self._set_state(SplitState.EXECUTE, result)
            outcomes = self.execute(job, chapters, metadata)
        except (ValidationError, AudioIOError, SplitCancelledError) as e:
            return self._abort(result, e)
        except Exception as e:
            log.exception(f"Unexpected error in state {self.state}")
            result.errors.append(f"Fatal error during split operation: {e}")
            self._set_state(SplitState.ABORTED, result)
            return result

        self._set_state(SplitState.AGGREGATE, result)
        return self._aggregate(result, outcomes)

    # -- PREFLIGHT --

    def preflight(self, job: SplitJob, result: SplitResult) -> AudioInfo:
        """Check tools, input, chapter geometry and disk space. Writes nothing.

        Raises:
            ValidationError: missing tool, unsupported format, invalid
                chapters, or not enough free space
            AudioIOError: input missing, unreadable, empty or not audio
            SplitCancelledError: cancel() was called
        """
        self._check_cancelled()

        tools = self.cutter.check_available()
        missing = [name for name, ok in tools.items() if not ok]
        if missing:
            raise ValidationError(
                f"Required tools not available: {', '.join(missing)}. "
                f"Please ensure ffmpeg and ffprobe are installed."
            )

        self._check_input(job.input_path)
        if job.output_format not in OUTPUT_FORMATS:
            raise ValidationError(
                f"Unsupported output format '{job.output_format}'. "
                f"Supported formats: {', '.join(sorted(OUTPUT_FORMATS))}"
            )

        self._check_cancelled()
        info = self.cutter.probe(job.input_path)
        log.debug(
            f"Input duration {format_time(info.duration_ms)}, "
            f"size {format_bytes(info.size_bytes)}"
        )

        validation = validate_all(job.chapters, info.duration_ms)
        for warning in validation.warnings:
            log.warning(warning)
        result.warnings.extend(validation.warnings)
        if not validation.is_valid:
            raise ValidationError("Chapter validation failed", validation.errors)

        required = estimate_required_space(info.size_bytes, self.config.disk_space_multiplier)
        free = available_space(job.output_dir)
        if free is not None and free < required:
            raise ValidationError(
                f"Insufficient disk space. Available: {format_bytes(free)}, "
                f"Estimated needed: {format_bytes(required)}"
            )
        if free is not None:
            log.info(f"Disk space check: {format_bytes(free)} free, {format_bytes(required)} needed")

        self._check_cancelled()
        self._preflight_done.set()
        return info

    def _check_input(self, path: Path) -> None:
        if not path.exists():
            raise AudioIOError(f"Input file not found: {path}")
        if not path.is_file():
            raise AudioIOError(f"Path is not a file: {path}")
        if not os.access(path, os.R_OK):
            raise AudioIOError(f"Input file is not readable: {path}")
        if path.stat().st_size == 0:
            raise AudioIOError(f"File is empty: {path}")
        if path.suffix.lower() not in SUPPORTED_INPUT_EXTENSIONS:
            raise ValidationError(
                f"Unsupported audio file format: {path.name}. Supported formats: "
                f"{', '.join(sorted(SUPPORTED_INPUT_EXTENSIONS))}"
            )

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise SplitCancelledError("Split cancelled before preflight completed")

    # -- PREPARE --

    def prepare(self, job: SplitJob) -> tuple[list[ChapterRecord], BookMetadata | None]:
        """Create the output directory and fix canonical chapter order/titles.

        Dry runs skip every filesystem write, including the directory.
        """
        if not job.dry_run:
            try:
                job.output_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise AudioIOError(
                    f"Failed to create output directory {job.output_dir}: {e}"
                ) from e

        chapters = normalize_titles(sort_by_start_time(job.chapters))

        metadata = job.metadata
        if metadata and metadata.cover_url and not metadata.cover_image and not job.dry_run:
            cover = fetch_cover(metadata.cover_url)
            if cover:
                data, mime = cover
                metadata = dataclasses.replace(metadata, cover_image=data, cover_mime=mime)

        return chapters, metadata

    # -- EXECUTE --

    def batch_width(self) -> int:
        if self.concurrency is not None:
            return self.concurrency
        if self.config.max_parallel_cuts > 0:
            return self.config.max_parallel_cuts
        return calculate_concurrency(
            cap=self.config.concurrency_cap,
            memory_threshold=self.config.memory_pressure_threshold,
        )

    def execute(
        self,
        job: SplitJob,
        chapters: list[ChapterRecord],
        metadata: BookMetadata | None,
    ) -> list[_ChapterOutcome]:
        """Cut and tag every chapter in sequential bounded batches."""
        total = len(chapters)
        width = self.batch_width()
        log.info(f"Cutting {total} chapters, batch width {width}")

        def worker(item: tuple[int, ChapterRecord]) -> _ChapterOutcome:
            number, chapter = item
            return self._process_chapter_safe(job, chapter, number, total, metadata)

        def batch_done(index: int, outcomes: list[_ChapterOutcome]) -> None:
            failed = sum(1 for o in outcomes if o.error)
            log.debug(f"Batch {index + 1} settled: {len(outcomes) - failed} ok, {failed} failed")

        return run_in_batches(
            list(enumerate(chapters, start=1)), worker, width, on_batch_done=batch_done,
        )

    def _process_chapter_safe(
        self,
        job: SplitJob,
        chapter: ChapterRecord,
        number: int,
        total: int,
        metadata: BookMetadata | None,
    ) -> _ChapterOutcome:
        """Chapter boundary: any failure becomes an error string, never a raise."""
        try:
            return self._process_chapter(job, chapter, number, total, metadata)
        except (SplitterError, OSError) as e:
            message = f"Chapter {number}: {e}"
            log.error(message)
            self._emit(number, total, chapter.title, "failed")
            return _ChapterOutcome(error=message)
        except Exception as e:
            message = f"Chapter {number}: {e}"
            log.exception(f"Unexpected error on chapter {number}")
            self._emit(number, total, chapter.title, "failed")
            return _ChapterOutcome(error=message)

    def _process_chapter(
        self,
        job: SplitJob,
        chapter: ChapterRecord,
        number: int,
        total: int,
        metadata: BookMetadata | None,
    ) -> _ChapterOutcome:
        fmt = job.output_format
        filename = generate_chapter_filename(job.book_title, number, chapter.title, fmt, total)
        output_path = job.output_dir / filename
        file_result = ChapterFileResult(
            chapter_number=number,
            title=chapter.title,
            output_path=output_path,
            start_time_ms=chapter.start_offset_ms,
            duration_ms=chapter.length_ms,
        )

        if not job.overwrite and output_path.exists():
            log.info(f"Skipping chapter {number}: file already exists: {filename}")
            self._emit(number, total, chapter.title, "skipped")
            return _ChapterOutcome(file=dataclasses.replace(file_result, skipped=True))

        if job.dry_run:
            log.info(f"[DRY-RUN] Would write chapter {number}: {filename}")
            self._emit(number, total, chapter.title, "dry-run")
            return _ChapterOutcome(file=file_result)

        self._emit(number, total, chapter.title, "cutting", 0.0)
        self.cutter.cut(
            job.input_path,
            output_path,
            chapter.start_offset_ms,
            chapter.length_ms,
            on_progress=lambda pct: self._emit(number, total, chapter.title, "cutting", pct),
        )

        if not output_path.is_file() or output_path.stat().st_size == 0:
            raise AudioIOError(f"Output file missing or empty after cut: {filename}")

        warnings = []
        duration_warning = self._verify_duration(output_path, chapter.length_ms, number)
        if duration_warning:
            warnings.append(duration_warning)

        if self.tagger.supports(fmt):
            tags = build_chapter_tags(job.book_title, chapter, number, total, metadata)
            try:
                self.tagger.apply(tags, output_path)
            except TagError as e:
                warnings.append(f"Chapter {number}: metadata not written: {e}")
                log.warning(warnings[-1])
                self._emit(number, total, chapter.title, "tag-warning")

        self._emit(number, total, chapter.title, "done", 100.0)
        return _ChapterOutcome(file=file_result, warning="; ".join(warnings) or None)

    def _verify_duration(self, output_path: Path, expected_ms: int, number: int) -> str | None:
        if not self.config.verify_output_duration:
            return None
        try:
            actual_ms = self.cutter.probe(output_path).duration_ms
        except AudioIOError as e:
            return f"Chapter {number}: could not verify duration: {e}"
        drift = abs(actual_ms - expected_ms)
        if drift > self.config.duration_tolerance_ms:
            message = (
                f"Chapter {number}: duration {actual_ms}ms differs from expected "
                f"{expected_ms}ms by {drift}ms"
            )
            log.warning(message)
            return message
        return None

    # -- AGGREGATE --

    def _aggregate(self, result: SplitResult, outcomes: list[_ChapterOutcome]) -> SplitResult:
        for outcome in outcomes:
            if outcome.file is not None:
                result.chapter_files.append(outcome.file)
                result.processed_chapters += 1
            if outcome.error:
                result.errors.append(outcome.error)
            if outcome.warning:
                result.warnings.append(outcome.warning)

        final = SplitState.SUCCESS if result.success else SplitState.PARTIAL_FAILURE
        self._set_state(final, result)
        if result.success:
            log.info(f"Successfully split {result.processed_chapters} chapters")
        else:
            log.warning(
                f"Completed with errors: {result.processed_chapters}/"
                f"{result.total_chapters} chapters processed"
            )
        return result

    def _abort(self, result: SplitResult, error: Exception) -> SplitResult:
        if isinstance(error, ValidationError):
            result.errors.extend(error.errors)
        else:
            result.errors.append(str(error))
        log.error(f"Split aborted: {'; '.join(result.errors)}")
        self._set_state(SplitState.ABORTED, result)
        return result

    # -- Helpers --

    def _set_state(self, state: SplitState, result: SplitResult) -> None:
        log.debug(f"State {self.state} -> {state}")
        self.state = state
        result.state = state
        if state in TERMINAL_STATES:
            log.info(
                f"Job finished: {state} "
                f"({result.processed_chapters}/{result.total_chapters} chapters)"
            )

    def _emit(
        self, number: int, total: int, title: str, status: str, percent: float | None = None,
    ) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(ProgressEvent(number, total, title, status, percent))
        except Exception as e:
            log.warning(f"Progress callback failed: {e}")
