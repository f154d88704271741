"""Exception hierarchy for the chapter splitter.

ValidationError and AudioIOError abort a job before any output is written.
ToolError and TagError are scoped to a single chapter: the orchestrator
records them and keeps going.
"""


class SplitterError(Exception):
    """Base exception for all splitter errors."""


class ConfigError(SplitterError):
    """Invalid or missing configuration."""


class ValidationError(SplitterError):
    """Preflight check failed: bad chapter geometry, missing tool, no space."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors if errors is not None else [message]


class AudioIOError(SplitterError):
    """Input unreadable, not audio, or output directory cannot be created."""


class ToolError(SplitterError):
    """An external subprocess (ffmpeg, ffprobe) failed."""

    def __init__(self, tool: str, exit_code: int, stderr: str) -> None:
        super().__init__(f"{tool} exited with code {exit_code}: {stderr}")
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr


class TagError(SplitterError):
    """Writing metadata to a chapter file failed."""


class ProcessedStoreError(SplitterError):
    """Processed-file log could not be read or written."""


class LockError(SplitterError):
    """Another process holds the output directory lock."""


class SplitCancelledError(SplitterError):
    """The caller cancelled the job before preflight completed."""
