"""Filename sanitization and collision-free naming for chapter files."""

import re
from pathlib import Path

from loguru import logger

log = logger.bind(stage="sanitize")

MAX_FILENAME_LENGTH = 255
# Room kept free when truncating so " (99)" can still be appended
COLLISION_SUFFIX_RESERVE = 5
MAX_CHAPTER_TITLE_IN_NAME = 100

_FORBIDDEN = re.compile(r'[<>:"/\\|?*]')
_CONTROL = re.compile(r"[\x00-\x1f\x7f]")
_EXTENSION = re.compile(r"^\.[A-Za-z0-9]{1,5}$")
_RESERVED = frozenset(
    {"CON", "PRN", "AUX", "NUL"}
    | {f"COM{i}" for i in range(1, 10)}
    | {f"LPT{i}" for i in range(1, 10)}
)


def _split_extension(name: str) -> tuple[str, str]:
    """Split off a short alphanumeric extension ("Mr. Smith" has none)."""
    dot = name.rfind(".")
    if dot > 0 and _EXTENSION.match(name[dot:]):
        return name[:dot], name[dot:]
    return name, ""


def sanitize(text: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """Sanitize a filename component (not a full path).

    Removes characters forbidden on any major filesystem plus control
    characters, collapses whitespace, trims edge dots/spaces and renames
    reserved device basenames (CON, NUL, COM1...). When the result is longer
    than ``max_length`` only the base name is cut, keeping the extension and
    leaving room for a numeric collision suffix.
    """
    log.debug(f"sanitize(text='{text}', max_length={max_length})")

    cleaned = _FORBIDDEN.sub("", text)
    cleaned = _CONTROL.sub(" ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip(" .")

    stem, ext = _split_extension(cleaned)
    stem = stem.strip(" .")
    if not stem:
        stem = "untitled"

    if len(stem) + len(ext) > max_length:
        room = max_length - len(ext) - COLLISION_SUFFIX_RESERVE
        if room > 0:
            stem = stem[:room].rstrip(" .") or stem[:room]
        else:
            # Extension alone does not fit; drop it
            stem, ext = stem[:max_length], ""
        log.debug(f"Truncated '{cleaned}' to {len(stem) + len(ext)} chars")

    # Checked after truncation, which can shorten "CONsole" to "CON"
    if stem.split(".")[0].upper() in _RESERVED:
        stem = f"{stem}_" if len(stem) + len(ext) < max_length else f"{stem[:-1]}_"
    return stem + ext


def generate_chapter_filename(
    book_title: str,
    chapter_number: int,
    chapter_title: str,
    fmt: str,
    total_chapters: int | None = None,
) -> str:
    """Build the deterministic file name for one chapter.

    Examples:
        (book, 3, "The Storm", "mp3")          -> "03 The Storm.mp3"
        (book, 7, "Intro", "m4a", total=120)   -> "007 Intro.m4a"

    Falls back to the book title when the chapter title is blank.
    """
    width = max(2, len(str(total_chapters or 0)))
    number = str(chapter_number).zfill(width)
    extension = fmt if fmt.startswith(".") else f".{fmt}"

    title = sanitize(chapter_title.strip() or book_title, MAX_CHAPTER_TITLE_IN_NAME)
    return sanitize(f"{number} {title}{extension}")


def generate_unique_filename(directory: Path, name: str) -> str:
    """Return ``name`` or "name (n).ext" such that nothing in ``directory`` has it.

    Probes sequentially. Not atomic: another process may create the same name
    between this check and the caller's write.
    """
    if not (directory / name).exists():
        return name

    stem, ext = _split_extension(name)
    counter = 1
    while True:
        candidate = f"{stem} ({counter}){ext}"
        if not (directory / candidate).exists():
            log.debug(f"Collision on '{name}', using '{candidate}'")
            return candidate
        counter += 1
