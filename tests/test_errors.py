"""Tests for errors.py -- exception hierarchy and payloads."""

import pytest

from audiobook_splitter.errors import (
    AudioIOError,
    ConfigError,
    LockError,
    ProcessedStoreError,
    SplitCancelledError,
    SplitterError,
    TagError,
    ToolError,
    ValidationError,
)


class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "cls",
        [
            ConfigError,
            ValidationError,
            AudioIOError,
            ToolError,
            TagError,
            ProcessedStoreError,
            LockError,
            SplitCancelledError,
        ],
    )
    def test_all_inherit_from_splitter_error(self, cls):
        assert issubclass(cls, SplitterError)

    def test_splitter_error_is_exception(self):
        assert issubclass(SplitterError, Exception)


class TestValidationError:
    def test_errors_default_to_message(self):
        err = ValidationError("ffmpeg missing")
        assert err.errors == ["ffmpeg missing"]
        assert str(err) == "ffmpeg missing"

    def test_carries_error_list(self):
        err = ValidationError("Chapter validation failed", ["a", "b"])
        assert err.errors == ["a", "b"]
        assert "Chapter validation failed" in str(err)


class TestToolError:
    def test_attributes(self):
        err = ToolError("ffmpeg", 1, "Invalid data found")
        assert err.tool == "ffmpeg"
        assert err.exit_code == 1
        assert err.stderr == "Invalid data found"
        assert str(err) == "ffmpeg exited with code 1: Invalid data found"
