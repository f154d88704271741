"""Tests for formatting.py -- time and size helpers."""

import pytest

from audiobook_splitter.formatting import (
    ffmpeg_timestamp,
    format_bytes,
    format_time,
    parse_ffmpeg_time,
    whole_seconds,
)


class TestFormatTime:
    def test_minutes_and_seconds(self):
        assert format_time(65_000) == "1:05"

    def test_hours(self):
        assert format_time(3_723_000) == "1:02:03"

    def test_zero_and_negative(self):
        assert format_time(0) == "0:00"
        assert format_time(-5) == "0:00"


class TestFormatBytes:
    def test_bytes(self):
        assert format_bytes(512) == "512.0 B"

    def test_kilobytes(self):
        assert format_bytes(1536) == "1.5 KB"

    def test_gigabytes(self):
        assert format_bytes(3 * 1024**3) == "3.0 GB"


class TestFfmpegTimestamp:
    def test_zero(self):
        assert ffmpeg_timestamp(0) == "00:00:00.000"

    def test_full(self):
        assert ffmpeg_timestamp(3_723_045) == "01:02:03.045"

    def test_negative_raises(self):
        with pytest.raises(ValueError, match="negative"):
            ffmpeg_timestamp(-1)


class TestParseFfmpegTime:
    def test_hours_minutes_seconds(self):
        assert parse_ffmpeg_time("01:02:03.50") == 3_723_500

    def test_minutes_seconds(self):
        assert parse_ffmpeg_time("02:30") == 150_000

    def test_seconds_only(self):
        assert parse_ffmpeg_time("42") == 42_000

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_ffmpeg_time("1:2:3:4")
        with pytest.raises(ValueError):
            parse_ffmpeg_time("abc")


class TestWholeSeconds:
    def test_rounds_half_up(self):
        assert whole_seconds(1500) == 2
        assert whole_seconds(1499) == 1
        assert whole_seconds(0) == 0
