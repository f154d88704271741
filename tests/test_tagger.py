"""Tests for tagger.py -- chapter tag defaults, ID3/MP4 writing, cover download."""

from datetime import date
from unittest.mock import MagicMock, patch

import httpx
import pytest
from mutagen.id3 import ID3

from audiobook_splitter.errors import TagError
from audiobook_splitter.models import BookMetadata, ChapterRecord, ChapterTags
from audiobook_splitter.tagger import Tagger, build_chapter_tags, fetch_cover


def _tags(**overrides) -> ChapterTags:
    base = build_chapter_tags(
        "The Book",
        ChapterRecord("The Storm", 60_000, 90_000),
        chapter_number=3,
        total_chapters=12,
        metadata=BookMetadata(artist="Jane Author", narrator="Sam Reader"),
    )
    for key, value in overrides.items():
        setattr(base, key, value)
    return base


class TestBuildChapterTags:
    def test_defaults_without_metadata(self):
        tags = build_chapter_tags("Book", ChapterRecord("Intro", 0, 5000), 1, 2)
        assert tags.title == "Intro"
        assert tags.album == "Book"
        assert tags.artist == "Unknown Artist"
        assert tags.album_artist == "Unknown Artist"
        assert tags.genre == "Audiobook"
        assert tags.year == str(date.today().year)
        assert tags.track == "1/2"
        assert tags.comment == "Chapter 1 of Book"
        assert tags.composer is None

    def test_metadata_overrides_defaults(self):
        meta = BookMetadata(artist="A", album_artist="AA", genre="Sci-Fi", year="1999", narrator="N")
        tags = build_chapter_tags("Book", ChapterRecord("X", 0, 1), 4, 9, meta)
        assert (tags.artist, tags.album_artist, tags.genre, tags.year) == ("A", "AA", "Sci-Fi", "1999")
        assert tags.composer == "N"

    def test_single_marker_spans_chapter_file(self):
        tags = build_chapter_tags("Book", ChapterRecord("X", 60_000, 90_000), 3, 9)
        assert len(tags.chapter_markers) == 1
        marker = tags.chapter_markers[0]
        assert marker.element_id == "chp2"
        assert (marker.start_ms, marker.end_ms) == (0, 90_000)
        assert marker.title == "X"


class TestTaggerSupports:
    @pytest.mark.parametrize("fmt", ["mp3", "m4a", ".m4b", "MP3"])
    def test_supported(self, fmt):
        assert Tagger.supports(fmt)

    @pytest.mark.parametrize("fmt", ["wav", "flac", "aac"])
    def test_unsupported(self, fmt):
        assert not Tagger.supports(fmt)


class TestWriteId3:
    def test_writes_frames_and_chapter_markers(self, tmp_path):
        path = tmp_path / "03 The Storm.mp3"
        path.write_bytes(b"\xff\xfb\x90\x00" + b"\x00" * 1024)
        Tagger().apply(_tags(cover_image=b"\x89PNG fake", cover_mime="image/png"), path)

        id3 = ID3(path)
        assert str(id3["TIT2"]) == "The Storm"
        assert str(id3["TALB"]) == "The Book"
        assert str(id3["TPE1"]) == "Jane Author"
        assert str(id3["TRCK"]) == "3/12"
        assert str(id3["TCOM"]) == "Sam Reader"
        assert id3.getall("COMM")[0].text == ["Chapter 3 of The Book"]
        apic = id3.getall("APIC")[0]
        assert apic.mime == "image/png"
        assert apic.data == b"\x89PNG fake"

        chap = id3.getall("CHAP")[0]
        assert chap.element_id == "chp2"
        assert (chap.start_time, chap.end_time) == (0, 90_000)
        toc = id3.getall("CTOC")[0]
        assert toc.child_element_ids == ["chp2"]

    def test_retagging_replaces_markers(self, tmp_path):
        path = tmp_path / "a.mp3"
        path.write_bytes(b"\x00" * 512)
        Tagger().apply(_tags(), path)
        Tagger().apply(_tags(), path)
        assert len(ID3(path).getall("CHAP")) == 1


class TestWriteMp4:
    @patch("audiobook_splitter.tagger.MP4")
    def test_writes_atoms(self, mock_mp4_cls, tmp_path):
        mp4 = MagicMock()
        mp4.tags = {}
        mock_mp4_cls.return_value = mp4
        path = tmp_path / "01 A.m4b"
        path.write_bytes(b"\x00")

        Tagger().apply(_tags(cover_image=b"jpegdata", cover_mime="image/jpeg"), path)

        assert mp4.tags["\xa9nam"] == ["The Storm"]
        assert mp4.tags["\xa9alb"] == ["The Book"]
        assert mp4.tags["trkn"] == [(3, 12)]
        assert mp4.tags["\xa9wrt"] == ["Sam Reader"]
        assert len(mp4.tags["covr"]) == 1
        mp4.save.assert_called_once()

    @patch("audiobook_splitter.tagger.MP4")
    def test_adds_missing_tag_block(self, mock_mp4_cls, tmp_path):
        mp4 = MagicMock()
        mp4.tags = None

        def _add_tags():
            mp4.tags = {}

        mp4.add_tags.side_effect = _add_tags
        mock_mp4_cls.return_value = mp4
        path = tmp_path / "a.m4a"
        path.write_bytes(b"\x00")
        Tagger().apply(_tags(), path)
        mp4.add_tags.assert_called_once()


class TestTaggerErrors:
    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "a.wav"
        path.write_bytes(b"\x00")
        with pytest.raises(TagError, match="not supported"):
            Tagger().apply(_tags(), path)

    def test_missing_file_wrapped(self, tmp_path):
        with pytest.raises(TagError, match="Failed to tag"):
            Tagger().apply(_tags(), tmp_path / "missing.m4a")


class TestFetchCover:
    @patch("audiobook_splitter.tagger.httpx.get")
    def test_returns_bytes_and_mime(self, mock_get):
        mock_get.return_value = httpx.Response(
            200,
            content=b"img",
            headers={"content-type": "image/png; charset=binary"},
            request=httpx.Request("GET", "https://example.com/c.png"),
        )
        assert fetch_cover("https://example.com/c.png") == (b"img", "image/png")

    @patch("audiobook_splitter.tagger.httpx.get")
    def test_http_error_returns_none(self, mock_get):
        mock_get.return_value = httpx.Response(
            404, request=httpx.Request("GET", "https://example.com/c.png"),
        )
        assert fetch_cover("https://example.com/c.png") is None

    @patch("audiobook_splitter.tagger.httpx.get", side_effect=httpx.ConnectError("down"))
    def test_network_error_returns_none(self, _mock_get):
        assert fetch_cover("https://example.com/c.png") is None

    def test_invalid_url_returns_none(self):
        assert fetch_cover("not a url") is None
