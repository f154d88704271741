"""FFprobe subprocess wrappers for audio file inspection."""

import json
import subprocess
from pathlib import Path

from loguru import logger

from .errors import AudioIOError
from .models import AudioInfo, ChapterRecord

log = logger.bind(stage="ffprobe")


def _run_ffprobe(args: list[str], binary: str = "ffprobe") -> subprocess.CompletedProcess:
    """Run ffprobe with common flags."""
    return subprocess.run(
        [binary, "-v", "error"] + args,
        capture_output=True,
        text=True,
        errors="replace",
    )


def probe(file: Path, binary: str = "ffprobe") -> AudioInfo:
    """Read duration, size and codec of the first audio stream.

    Raises AudioIOError if ffprobe fails, the output is unparsable, or the
    file has no audio stream.
    """
    try:
        result = _run_ffprobe(
            ["-print_format", "json", "-show_format", "-show_streams", str(file)],
            binary,
        )
    except OSError as e:
        raise AudioIOError(f"Failed to run {binary}: {e}") from e

    if result.returncode != 0:
        raise AudioIOError(
            f"{binary} failed with code {result.returncode} for {file}: "
            f"{result.stderr.strip()}"
        )

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise AudioIOError(f"Failed to parse ffprobe output for {file}: {e}") from e

    fmt = data.get("format", {})
    audio = next(
        (s for s in data.get("streams", []) if s.get("codec_type") == "audio"),
        None,
    )
    if audio is None:
        raise AudioIOError(f"No audio stream found in {file}")

    try:
        duration_ms = int(round(float(fmt["duration"]) * 1000))
    except (KeyError, TypeError, ValueError) as e:
        raise AudioIOError(f"ffprobe returned no duration for {file}") from e

    size = fmt.get("size")
    size_bytes = int(size) if size else file.stat().st_size

    info = AudioInfo(
        duration_ms=duration_ms,
        size_bytes=size_bytes,
        codec=audio.get("codec_name", ""),
        format_name=fmt.get("format_name", ""),
        bit_rate=_optional_int(fmt.get("bit_rate")),
        sample_rate=_optional_int(audio.get("sample_rate")),
        channels=_optional_int(audio.get("channels")),
    )
    log.debug(f"Probed {file.name}: {info}")
    return info


def _optional_int(value) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def read_chapters(file: Path, binary: str = "ffprobe") -> list[ChapterRecord]:
    """Read embedded chapter markers (M4B/MP4 chapters, ID3 CHAP frames).

    Returns an empty list when the file has no chapters or ffprobe fails.
    """
    try:
        result = _run_ffprobe(["-print_format", "json", "-show_chapters", str(file)], binary)
    except OSError as e:
        log.warning(f"Failed to run {binary}: {e}")
        return []
    if result.returncode != 0:
        log.warning(f"ffprobe could not read chapters from {file.name}")
        return []
    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError:
        return []

    chapters: list[ChapterRecord] = []
    for raw in data.get("chapters", []):
        try:
            start_ms = round(float(raw["start_time"]) * 1000)
            end_ms = round(float(raw["end_time"]) * 1000)
        except (KeyError, TypeError, ValueError):
            continue
        title = (raw.get("tags") or {}).get("title") or f"Chapter {raw.get('id', len(chapters))}"
        chapters.append(
            ChapterRecord(title=title, start_offset_ms=start_ms, length_ms=end_ms - start_ms)
        )

    log.debug(f"Read {len(chapters)} embedded chapters from {file.name}")
    return chapters


def tool_available(binary: str) -> bool:
    """True if ``binary -version`` runs and exits 0."""
    try:
        result = subprocess.run(
            [binary, "-version"], capture_output=True, text=True, timeout=30,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0
