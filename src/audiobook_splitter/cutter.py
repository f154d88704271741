"""AudioCutter -- stream-copy extraction of a time range via ffmpeg.

Nothing here decodes or re-encodes audio: ``cut`` repackages the existing
frames between two timestamps into a new container (``-c copy``) and carries
the source's global metadata across (``-map_metadata 0``). Book-level
chapter markers are dropped from each piece (``-map_chapters -1``).
"""

from __future__ import annotations

import re
import subprocess
import threading
from collections import deque
from collections.abc import Callable
from pathlib import Path

from loguru import logger

from . import ffprobe
from .errors import ToolError
from .formatting import ffmpeg_timestamp, parse_ffmpeg_time
from .models import AudioInfo

log = logger.bind(stage="cutter")

_TIME_RE = re.compile(r"time=\s*(\d+:\d{2}:\d{2}(?:\.\d+)?)")
_STDERR_TAIL_LINES = 40


def progress_percent(line: str, duration_ms: int) -> float | None:
    """Extract percent complete from an ffmpeg stats line, or None."""
    match = _TIME_RE.search(line)
    if not match or duration_ms <= 0:
        return None
    try:
        current = parse_ffmpeg_time(match.group(1))
    except ValueError:
        return None
    return min(current / duration_ms * 100, 100.0)


class AudioCutter:
    """Thin wrapper over the ffmpeg/ffprobe binaries.

    Args:
        ffmpeg_bin: ffmpeg executable name or path
        ffprobe_bin: ffprobe executable name or path
        timeout: Seconds before a single cut is killed; None or 0 waits forever
    """

    def __init__(
        self,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
        timeout: float | None = None,
    ) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self.timeout = timeout or None

    def check_available(self) -> dict[str, bool]:
        """Report which of the two binaries can be executed."""
        status = {
            self.ffmpeg_bin: ffprobe.tool_available(self.ffmpeg_bin),
            self.ffprobe_bin: ffprobe.tool_available(self.ffprobe_bin),
        }
        log.debug(f"Tool availability: {status}")
        return status

    def probe(self, path: Path) -> AudioInfo:
        return ffprobe.probe(path, binary=self.ffprobe_bin)

    def build_cut_command(
        self, input_path: Path, output_path: Path, start_ms: int, duration_ms: int,
    ) -> list[str]:
        return [
            self.ffmpeg_bin,
            "-hide_banner",
            "-loglevel",
            "error",
            "-stats",
            "-ss",
            ffmpeg_timestamp(start_ms),
            "-i",
            str(input_path),
            "-t",
            ffmpeg_timestamp(duration_ms),
            "-map",
            "0:a",
            "-c",
            "copy",
            "-map_metadata",
            "0",
            "-map_chapters",
            "-1",
            "-avoid_negative_ts",
            "make_zero",
            "-y",
            str(output_path),
        ]

    def cut(
        self,
        input_path: Path,
        output_path: Path,
        start_ms: int,
        duration_ms: int,
        on_progress: Callable[[float], None] | None = None,
    ) -> None:
        """Copy ``[start_ms, start_ms + duration_ms)`` of the input to output_path.

        Raises ToolError with the tail of ffmpeg's stderr on non-zero exit,
        failure to spawn, or timeout. A partial output file is removed.
        """
        cmd = self.build_cut_command(input_path, output_path, start_ms, duration_ms)
        log.debug(f"ffmpeg command: {' '.join(cmd)}")

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise ToolError(self.ffmpeg_bin, -1, f"failed to start: {e}") from e

        timed_out = threading.Event()
        timer = None
        if self.timeout:

            def _kill() -> None:
                timed_out.set()
                proc.kill()

            timer = threading.Timer(self.timeout, _kill)
            timer.daemon = True
            timer.start()

        tail: deque[str] = deque(maxlen=_STDERR_TAIL_LINES)
        try:
            # Universal newlines turn ffmpeg's \r progress updates into lines
            for line in proc.stderr:
                line = line.rstrip()
                if not line:
                    continue
                pct = progress_percent(line, duration_ms)
                if pct is None:
                    tail.append(line)
                elif on_progress is not None:
                    on_progress(pct)
            returncode = proc.wait()
        except BaseException:
            proc.kill()
            proc.wait()
            output_path.unlink(missing_ok=True)
            raise
        finally:
            if timer is not None:
                timer.cancel()

        if timed_out.is_set():
            output_path.unlink(missing_ok=True)
            raise ToolError(
                self.ffmpeg_bin, returncode, f"timed out after {self.timeout:g}s"
            )
        if returncode != 0:
            output_path.unlink(missing_ok=True)
            stderr = "\n".join(tail)[-500:]
            log.error(f"ffmpeg failed cutting {output_path.name}: {stderr}")
            raise ToolError(self.ffmpeg_bin, returncode, stderr)

        if on_progress is not None:
            on_progress(100.0)
