"""Per-chapter metadata stamping via mutagen.

MP3 files get ID3v2.4 frames including a CHAP/CTOC chapter marker list.
M4A/M4B files get iTunes atoms; mutagen cannot write MP4 chapter tracks,
so markers are skipped there.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path

import httpx
from loguru import logger
from mutagen import MutagenError
from mutagen.id3 import (
    APIC,
    CHAP,
    COMM,
    CTOC,
    ID3,
    TALB,
    TCOM,
    TCON,
    TDRC,
    TIT2,
    TPE1,
    TPE2,
    TRCK,
    CTOCFlags,
    ID3NoHeaderError,
)
from mutagen.mp4 import MP4, MP4Cover

from .errors import TagError
from .models import (
    TAG_CAPABLE_FORMATS,
    BookMetadata,
    ChapterMarker,
    ChapterRecord,
    ChapterTags,
)

log = logger.bind(stage="tagger")

DEFAULT_ARTIST = "Unknown Artist"
DEFAULT_GENRE = "Audiobook"


def build_chapter_tags(
    book_title: str,
    chapter: ChapterRecord,
    chapter_number: int,
    total_chapters: int,
    metadata: BookMetadata | None = None,
) -> ChapterTags:
    """Chapter-scoped tags: book fields become album-level, chapter is the track.

    The marker list covers the whole chapter file, which starts at 0.
    """
    meta = metadata or BookMetadata()
    artist = meta.artist or DEFAULT_ARTIST
    return ChapterTags(
        title=chapter.title,
        album=book_title,
        artist=artist,
        album_artist=meta.album_artist or artist,
        genre=meta.genre or DEFAULT_GENRE,
        year=meta.year or str(date.today().year),
        track_number=chapter_number,
        track_total=total_chapters,
        comment=f"Chapter {chapter_number} of {book_title}",
        composer=meta.narrator,
        cover_image=meta.cover_image,
        cover_mime=meta.cover_mime,
        chapter_markers=[
            ChapterMarker(
                element_id=f"chp{chapter_number - 1}",
                start_ms=0,
                end_ms=chapter.length_ms,
                title=chapter.title,
            )
        ],
    )


def fetch_cover(url: str) -> tuple[bytes, str] | None:
    """Download cover art. Returns (data, mime) or None on failure."""
    log.debug(f"Downloading cover art: {url}")
    try:
        resp = httpx.get(url, timeout=30.0, follow_redirects=True)
        resp.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        log.warning(f"Cover art download failed: {e}")
        return None
    mime = resp.headers.get("content-type", "image/jpeg").split(";")[0].strip()
    log.info(f"Cover art downloaded: {len(resp.content)} bytes")
    return resp.content, mime


class Tagger:
    """Writes a ChapterTags structure into one audio file."""

    @staticmethod
    def supports(fmt: str) -> bool:
        return fmt.lower().lstrip(".") in TAG_CAPABLE_FORMATS

    def apply(self, tags: ChapterTags, file_path: Path) -> None:
        """Stamp ``tags`` onto ``file_path``. Raises TagError on any failure."""
        suffix = file_path.suffix.lower()
        try:
            if suffix == ".mp3":
                self._write_id3(tags, file_path)
            elif suffix in (".m4a", ".m4b"):
                self._write_mp4(tags, file_path)
            else:
                raise TagError(f"Tagging not supported for {suffix} files")
        except (MutagenError, OSError) as e:
            raise TagError(f"Failed to tag {file_path.name}: {e}") from e
        log.debug(f"Tagged {file_path.name} (track {tags.track})")

    def _write_id3(self, tags: ChapterTags, file_path: Path) -> None:
        try:
            id3 = ID3(file_path)
        except ID3NoHeaderError:
            id3 = ID3()

        id3.delall("CHAP")
        id3.delall("CTOC")
        id3.setall("TIT2", [TIT2(encoding=3, text=tags.title)])
        id3.setall("TALB", [TALB(encoding=3, text=tags.album)])
        id3.setall("TPE1", [TPE1(encoding=3, text=tags.artist)])
        id3.setall("TPE2", [TPE2(encoding=3, text=tags.album_artist)])
        id3.setall("TCON", [TCON(encoding=3, text=tags.genre)])
        id3.setall("TDRC", [TDRC(encoding=3, text=tags.year)])
        id3.setall("TRCK", [TRCK(encoding=3, text=tags.track)])
        id3.setall("COMM", [COMM(encoding=3, lang="eng", desc="", text=tags.comment)])
        if tags.composer:
            id3.setall("TCOM", [TCOM(encoding=3, text=tags.composer)])
        if tags.cover_image:
            id3.setall(
                "APIC",
                [
                    APIC(
                        encoding=3,
                        mime=tags.cover_mime or "image/jpeg",
                        type=3,  # front cover
                        desc="Cover",
                        data=tags.cover_image,
                    )
                ],
            )

        for marker in tags.chapter_markers:
            id3.add(
                CHAP(
                    element_id=marker.element_id,
                    start_time=marker.start_ms,
                    end_time=marker.end_ms,
                    sub_frames=[TIT2(encoding=3, text=marker.title)],
                )
            )
        if tags.chapter_markers:
            id3.add(
                CTOC(
                    element_id="toc",
                    flags=CTOCFlags.TOP_LEVEL | CTOCFlags.ORDERED,
                    child_element_ids=[m.element_id for m in tags.chapter_markers],
                    sub_frames=[TIT2(encoding=3, text=tags.album)],
                )
            )

        id3.save(file_path)

    def _write_mp4(self, tags: ChapterTags, file_path: Path) -> None:
        mp4 = MP4(file_path)
        if mp4.tags is None:
            mp4.add_tags()

        mp4.tags["\xa9nam"] = [tags.title]
        mp4.tags["\xa9alb"] = [tags.album]
        mp4.tags["\xa9ART"] = [tags.artist]
        mp4.tags["aART"] = [tags.album_artist]
        mp4.tags["\xa9gen"] = [tags.genre]
        mp4.tags["\xa9day"] = [tags.year]
        mp4.tags["trkn"] = [(tags.track_number, tags.track_total)]
        mp4.tags["\xa9cmt"] = [tags.comment]
        if tags.composer:
            mp4.tags["\xa9wrt"] = [tags.composer]
        if tags.cover_image:
            image_format = (
                MP4Cover.FORMAT_PNG
                if tags.cover_mime == "image/png"
                else MP4Cover.FORMAT_JPEG
            )
            mp4.tags["covr"] = [MP4Cover(tags.cover_image, imageformat=image_format)]

        mp4.save()
