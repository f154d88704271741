"""CLI entry point for the audiobook splitter."""

import json
import os
from pathlib import Path

import click
from loguru import logger

from .artifacts import write_index, write_playlist
from .concurrency import acquire_output_lock
from .config import SplitterConfig, load_config
from .errors import AudioIOError, ConfigError, LockError, ProcessedStoreError
from .ffprobe import probe, read_chapters
from .formatting import format_time
from .models import BookMetadata, ChapterRecord, SplitJob, SplitState
from .orchestrator import ProgressEvent, SplitOrchestrator
from .processed_store import ProcessedStore
from .sanitize import sanitize
from .validator import detect_gaps, validate_all

log = logger.bind(stage="cli")


def _find_config_file() -> Path | None:
    """Look for .env next to the package or in cwd."""
    pkg_dir = Path(__file__).resolve().parent
    for candidate in [
        pkg_dir.parent.parent / ".env",  # dev: src/../.env
        Path.cwd() / ".env",
    ]:
        if candidate.is_file():
            return candidate
    return None


def _load_env_file(env_file: Path) -> None:
    """Load a shell-style .env file into os.environ (without overriding)."""
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if (value.startswith('"') and value.endswith('"')) or (
            value.startswith("'") and value.endswith("'")
        ):
            value = value[1:-1]
        # Skip bash variable expansions like ${VAR:-default}
        if "${" in value:
            continue
        # Don't override existing env vars (CLI > env > file)
        if key not in os.environ:
            os.environ[key] = value


def _load_env(config_file: str | None) -> None:
    env_file = Path(config_file) if config_file else _find_config_file()
    if env_file and env_file.is_file():
        _load_env_file(env_file)
        log.debug(f"Loaded env from {env_file}")
    else:
        log.debug("No .env found")


def _build_config(**overrides) -> SplitterConfig:
    try:
        return load_config(**overrides)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def load_chapters_file(path: Path) -> tuple[list[ChapterRecord], BookMetadata | None]:
    """Read chapters from JSON: a bare list or ``{"chapters": [...], ...}``.

    The object form may carry book-level metadata (artist, genre, year,
    narrator, description, cover_url) alongside the chapter list.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise click.BadParameter(f"Cannot read chapters file {path}: {e}") from e

    metadata = None
    if isinstance(data, dict):
        fields = ("artist", "album_artist", "genre", "year", "narrator", "description", "cover_url")
        values = {k: str(data[k]) for k in fields if data.get(k) is not None}
        metadata = BookMetadata(**values) if values else None
        data = data.get("chapters", [])
    if not isinstance(data, list):
        raise click.BadParameter(f"Chapters file {path} must hold a list of chapters")

    try:
        chapters = [ChapterRecord.from_dict(item) for item in data]
    except (AttributeError, TypeError, ValueError) as e:
        raise click.BadParameter(f"Malformed chapter entry in {path}: {e}") from e
    return chapters, metadata


def _echo_progress(event: ProgressEvent) -> None:
    if event.status == "cutting":
        return
    click.echo(
        f"  [{event.chapter_number}/{event.total_chapters}] {event.status:<11} {event.title}"
    )


@click.group()
def main() -> None:
    """Validate chapter lists and split audiobooks into per-chapter files."""


@main.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--chapters",
    "chapters_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON chapter list. Defaults to the chapters embedded in INPUT.",
)
@click.option("--title", default=None, help="Book title. Defaults to the input file name.")
@click.option(
    "-o", "--output-dir", type=click.Path(file_okay=False), default=None,
    help="Parent directory for the per-book output folder.",
)
@click.option("-f", "--format", "fmt", default=None, help="Output format (mp3, m4a, m4b, ...).")
@click.option("--dry-run", is_flag=True, help="Show what would happen without doing it.")
@click.option("--overwrite", is_flag=True, help="Replace existing chapter files.")
@click.option("--no-playlist", is_flag=True, help="Do not write the M3U playlist and index.")
@click.option("--skip-processed", is_flag=True, help="Skip inputs already split successfully.")
@click.option("--no-lock", is_flag=True, help="Skip output directory locking.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    default=None,
    help="Path to .env file.",
)
def split(
    input_path: str,
    chapters_file: str | None,
    title: str | None,
    output_dir: str | None,
    fmt: str | None,
    dry_run: bool,
    overwrite: bool,
    no_playlist: bool,
    skip_processed: bool,
    no_lock: bool,
    verbose: bool,
    config_file: str | None,
) -> None:
    """Split INPUT into one audio file per chapter."""
    source = Path(input_path).resolve()
    _load_env(config_file)

    # Pass CLI flags as kwargs to avoid env pollution
    config_kwargs: dict[str, object] = {}
    for key, value in (
        ("dry_run", dry_run),
        ("overwrite", overwrite),
        ("skip_processed", skip_processed),
        ("verbose", verbose),
    ):
        if value:
            config_kwargs[key] = True
    if no_playlist:
        config_kwargs["write_playlist"] = False
    if verbose:
        config_kwargs["log_level"] = "DEBUG"
    if output_dir:
        config_kwargs["output_dir"] = Path(output_dir)
    if fmt:
        config_kwargs["output_format"] = fmt

    config = _build_config(**config_kwargs)
    config.setup_logging()
    config.ensure_dirs()

    store = ProcessedStore(config.processed_log_path)
    if config.skip_processed:
        try:
            already = store.is_processed(source.name)
        except ProcessedStoreError as e:
            raise click.ClickException(str(e)) from e
        if already:
            click.echo(f"Already processed: {source.name} (use without --skip-processed to redo)")
            return

    if chapters_file:
        chapters, metadata = load_chapters_file(Path(chapters_file))
    else:
        chapters = read_chapters(source, config.ffprobe_bin)
        metadata = None
        if not chapters:
            raise click.UsageError(f"{source.name} has no embedded chapters. Use --chapters.")

    book_title = title or source.stem
    book_dir = config.output_dir / sanitize(book_title)
    job = SplitJob(
        book_title=book_title,
        chapters=chapters,
        input_path=source,
        output_dir=book_dir,
        format=config.output_format,
        dry_run=config.dry_run,
        overwrite=config.overwrite,
        metadata=metadata,
    )

    try:
        lock = acquire_output_lock(config.lock_dir, book_dir, skip=no_lock)
    except LockError as e:
        raise click.ClickException(str(e)) from e

    try:
        log.info(f"Starting split: source={source} output={book_dir} dry_run={config.dry_run}")
        click.echo(f"Splitting {source.name} -> {book_dir} ({len(chapters)} chapters)")
        orchestrator = SplitOrchestrator(config=config, on_progress=_echo_progress)
        result = orchestrator.split(job)

        for warning in result.warnings:
            click.echo(f"warning: {warning}", err=True)
        for error in result.errors:
            click.echo(f"error: {error}", err=True)

        if result.state == SplitState.SUCCESS and not config.dry_run and config.write_playlist:
            write_playlist(result.chapter_files, book_dir, book_title)
            write_index(result.chapter_files, book_dir, book_title)

        if result.state != SplitState.ABORTED and not config.dry_run:
            try:
                store.mark_processed(
                    source.name,
                    book_title,
                    result.success,
                    chapter_count=result.processed_chapters,
                    output_dir=str(book_dir),
                )
            except (ProcessedStoreError, OSError) as e:
                log.warning(f"Could not update processed log: {e}")
    finally:
        if lock is not None:
            lock.close()

    click.echo(
        f"{result.state}: {result.processed_chapters}/{result.total_chapters} chapters"
    )
    if not result.success:
        raise SystemExit(1)


@main.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False), required=False)
@click.option(
    "--chapters",
    "chapters_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON chapter list to check.",
)
@click.option(
    "--duration-ms", type=int, default=None,
    help="Audio duration to check coverage against. Probed from INPUT if omitted.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    default=None,
    help="Path to .env file.",
)
def validate(
    input_path: str | None,
    chapters_file: str | None,
    duration_ms: int | None,
    verbose: bool,
    config_file: str | None,
) -> None:
    """Check a chapter list without cutting anything."""
    if not input_path and not chapters_file:
        raise click.UsageError("Give an INPUT file, --chapters, or both.")

    _load_env(config_file)
    config = _build_config(**({"log_level": "DEBUG"} if verbose else {}))
    config.setup_logging()

    source = Path(input_path).resolve() if input_path else None
    if chapters_file:
        chapters, _ = load_chapters_file(Path(chapters_file))
    else:
        chapters = read_chapters(source, config.ffprobe_bin)

    if duration_ms is None and source is not None:
        try:
            duration_ms = probe(source, config.ffprobe_bin).duration_ms
        except AudioIOError as e:
            raise click.ClickException(str(e)) from e

    result = validate_all(chapters, duration_ms)
    gaps = detect_gaps(chapters) if chapters else None

    click.echo(f"Chapters: {len(chapters)}")
    if duration_ms is not None:
        click.echo(f"Duration: {format_time(duration_ms)}")
    for error in result.errors:
        click.echo(f"error: {error}")
    for warning in result.warnings:
        click.echo(f"warning: {warning}")
    if gaps and gaps.has_gaps:
        click.echo(f"Gaps: {len(gaps.gaps)} totalling {format_time(gaps.total_gap_ms)}")
        for gap in gaps.gaps:
            click.echo(f"  {gap.description}")

    click.echo("VALID" if result.is_valid else "INVALID")
    if not result.is_valid:
        raise SystemExit(1)
