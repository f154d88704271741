"""Core enums, constants, and type definitions for the chapter splitter.

Enums:
    SplitState -- Orchestrator state machine (preflight through aggregate) plus
                  the terminal states SUCCESS, PARTIAL_FAILURE and ABORTED.

Dataclasses:
    ChapterRecord     -- One titled time interval (untrusted input).
    ValidationResult  -- Errors block a job, warnings are informational.
    ChapterGap        -- Silence between two consecutive chapters.
    GapReport         -- All gaps plus their accumulated duration.
    AudioInfo         -- ffprobe result for the input stream.
    BookMetadata      -- Book-level tag values supplied by the caller.
    ChapterMarker     -- One entry of an embedded chapter marker list.
    ChapterTags       -- Closed tag structure handed to the Tagger.
    SplitJob          -- Everything the orchestrator needs for one run.
    ChapterFileResult -- One written (or would-be) chapter file.
    SplitResult       -- Aggregated outcome of one job.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any


class SplitState(StrEnum):
    PREFLIGHT = "preflight"
    PREPARE = "prepare"
    EXECUTE = "execute"
    AGGREGATE = "aggregate"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    ABORTED = "aborted"


TERMINAL_STATES: frozenset[SplitState] = frozenset(
    {SplitState.SUCCESS, SplitState.PARTIAL_FAILURE, SplitState.ABORTED}
)

SUPPORTED_INPUT_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".mp3",
        ".m4a",
        ".m4b",
        ".aac",
        ".wav",
        ".flac",
    }
)

OUTPUT_FORMATS: frozenset[str] = frozenset(
    {"mp3", "m4a", "m4b", "aac", "wav", "flac"}
)

# Formats the Tagger knows how to stamp (ID3 or MP4 atoms)
TAG_CAPABLE_FORMATS: frozenset[str] = frozenset({"mp3", "m4a", "m4b"})


@dataclass(frozen=True)
class ChapterRecord:
    """A titled time interval within an audio stream, in milliseconds."""

    title: str
    start_offset_ms: int
    length_ms: int

    @property
    def end_ms(self) -> int:
        return self.start_offset_ms + self.length_ms

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChapterRecord":
        """Build from catalog JSON (camelCase) or snake_case keys."""
        start = data.get("startOffsetMs", data.get("start_offset_ms", 0))
        length = data.get("lengthMs", data.get("length_ms", 0))
        return cls(
            title=str(data.get("title") or ""),
            start_offset_ms=int(start),
            length_ms=int(length),
        )


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)


@dataclass(frozen=True)
class ChapterGap:
    """Silence between sorted chapter ``after_index`` and the next one."""

    after_index: int
    gap_start_ms: int
    gap_end_ms: int
    duration_ms: int
    description: str = ""


@dataclass
class GapReport:
    gaps: list[ChapterGap] = field(default_factory=list)
    total_gap_ms: int = 0

    @property
    def has_gaps(self) -> bool:
        return bool(self.gaps)


@dataclass(frozen=True)
class AudioInfo:
    """Probe result for an input file. Durations in milliseconds."""

    duration_ms: int
    size_bytes: int
    codec: str = ""
    format_name: str = ""
    bit_rate: int | None = None
    sample_rate: int | None = None
    channels: int | None = None


@dataclass
class BookMetadata:
    """Book-level tag values. Every field is optional except through defaults."""

    artist: str | None = None
    album_artist: str | None = None
    genre: str | None = None
    year: str | None = None
    narrator: str | None = None
    description: str | None = None
    cover_image: bytes | None = None
    cover_mime: str | None = None
    cover_url: str | None = None


@dataclass(frozen=True)
class ChapterMarker:
    element_id: str
    start_ms: int
    end_ms: int
    title: str


@dataclass
class ChapterTags:
    """Tags stamped onto one chapter file."""

    title: str
    album: str
    artist: str
    album_artist: str
    genre: str
    year: str
    track_number: int
    track_total: int
    comment: str = ""
    composer: str | None = None
    cover_image: bytes | None = None
    cover_mime: str | None = None
    chapter_markers: list[ChapterMarker] = field(default_factory=list)

    @property
    def track(self) -> str:
        return f"{self.track_number}/{self.track_total}"


@dataclass
class SplitJob:
    """One split request: a single input file cut into ``chapters``."""

    book_title: str
    chapters: list[ChapterRecord]
    input_path: Path
    output_dir: Path
    format: str = ""
    dry_run: bool = False
    overwrite: bool = False
    metadata: BookMetadata | None = None

    @property
    def output_format(self) -> str:
        """Requested format, falling back to the input file's extension."""
        fmt = (self.format or self.input_path.suffix).lower().lstrip(".")
        return fmt


@dataclass(frozen=True)
class ChapterFileResult:
    chapter_number: int
    title: str
    output_path: Path
    start_time_ms: int
    duration_ms: int
    skipped: bool = False


@dataclass
class SplitResult:
    """Outcome of one job. ``success`` is derived, never set directly."""

    total_chapters: int = 0
    processed_chapters: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    chapter_files: list[ChapterFileResult] = field(default_factory=list)
    state: SplitState = SplitState.PREFLIGHT

    @property
    def success(self) -> bool:
        return not self.errors and self.processed_chapters == self.total_chapters

    @property
    def output_files(self) -> list[Path]:
        return [cf.output_path for cf in self.chapter_files]
