"""Time and size formatting helpers shared by the cutter, CLI and artifacts."""

import math

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_time(ms: int) -> str:
    """Human-readable duration: M:SS, or H:MM:SS once past an hour."""
    total = max(0, int(ms)) // 1000
    h = total // 3600
    m = (total % 3600) // 60
    s = total % 60
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def format_bytes(size: float) -> str:
    """Format a byte count, e.g. 1536 -> "1.5 KB"."""
    unit = 0
    while size >= 1024 and unit < len(_BYTE_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{size:.1f} {_BYTE_UNITS[unit]}"


def ffmpeg_timestamp(ms: int) -> str:
    """Convert milliseconds to ffmpeg's HH:MM:SS.mmm.

    Raises ValueError for negative input.
    """
    if ms < 0:
        raise ValueError(f"Time cannot be negative: {ms}ms")
    total, millis = divmod(int(ms), 1000)
    h = total // 3600
    m = (total % 3600) // 60
    s = total % 60
    return f"{h:02d}:{m:02d}:{s:02d}.{millis:03d}"


def parse_ffmpeg_time(value: str) -> int:
    """Parse HH:MM:SS.xx, MM:SS.xx or SS.xx into milliseconds."""
    parts = value.strip().split(":")
    if not 1 <= len(parts) <= 3:
        raise ValueError(f"Invalid time format: {value}")
    seconds = 0.0
    for part in parts:
        seconds = seconds * 60 + float(part)
    return int(seconds * 1000)


def whole_seconds(ms: int) -> int:
    """Round a millisecond duration to whole seconds (playlist EXTINF)."""
    return int(math.floor(ms / 1000 + 0.5))
