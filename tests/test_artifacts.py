"""Tests for artifacts.py -- playlist and chapter index."""

import json

from audiobook_splitter.artifacts import build_index, write_index, write_playlist
from audiobook_splitter.models import ChapterFileResult


def _files(tmp_path):
    return [
        ChapterFileResult(2, "Second", tmp_path / "02 Second.mp3", 61_000, 59_600),
        ChapterFileResult(1, "First", tmp_path / "01 First.mp3", 0, 61_000),
    ]


class TestWritePlaylist:
    def test_m3u_contents(self, tmp_path):
        path = write_playlist(_files(tmp_path), tmp_path, "My Book")
        assert path.name == "My Book.m3u"
        assert path.read_text(encoding="utf-8").splitlines() == [
            "#EXTM3U",
            "#PLAYLIST:My Book",
            "#EXTINF:61,First",
            "01 First.mp3",
            "#EXTINF:60,Second",
            "02 Second.mp3",
        ]

    def test_unsafe_title_sanitized_in_name(self, tmp_path):
        path = write_playlist([], tmp_path, "What: Now?")
        assert path.name == "What Now.m3u"


class TestIndex:
    def test_build_index(self, tmp_path):
        index = build_index(_files(tmp_path), "My Book")
        assert index["book_title"] == "My Book"
        assert index["chapter_count"] == 2
        assert index["total_duration_ms"] == 120_600
        assert [c["number"] for c in index["chapters"]] == [1, 2]
        assert index["chapters"][1] == {
            "number": 2,
            "title": "Second",
            "filename": "02 Second.mp3",
            "start_ms": 61_000,
            "duration_ms": 59_600,
        }

    def test_write_index(self, tmp_path):
        path = write_index(_files(tmp_path), tmp_path, "My Book")
        assert path.name == "My Book.chapters.json"
        assert json.loads(path.read_text(encoding="utf-8"))["chapter_count"] == 2
