"""Splitter configuration via pydantic-settings (.env + env vars)."""

import sys
from pathlib import Path

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError


class SplitterConfig(BaseSettings):
    """All splitter configuration with layered resolution:
    .env file < environment variables < constructor kwargs.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -- Directories --
    output_dir: Path = Path("./output/split")
    log_dir: Path = Path.home() / ".local/state/audiobook-splitter/logs"
    state_dir: Path = Path.home() / ".local/state/audiobook-splitter"
    lock_dir: Path = Path.home() / ".local/state/audiobook-splitter/locks"

    # -- External tools --
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    cut_timeout_seconds: float = 3600.0  # 0 = wait forever

    # -- Parallel cutting --
    max_parallel_cuts: int = 0  # 0 = auto (CPU/memory based)
    concurrency_cap: int = 4
    memory_pressure_threshold: float = 0.8

    # -- Disk --
    disk_space_multiplier: float = 1.1

    # -- Output checks --
    verify_output_duration: bool = True
    duration_tolerance_ms: int = 2000

    # -- Behavior --
    output_format: str = ""  # empty = same as input
    dry_run: bool = False
    overwrite: bool = False
    write_playlist: bool = True
    skip_processed: bool = False
    verbose: bool = False
    log_level: str = "INFO"

    @property
    def processed_log_path(self) -> Path:
        """Path to the JSON log of already-split input files."""
        return self.state_dir / "processed_files.json"

    def ensure_dirs(self) -> None:
        """Create state and lock directories if they don't exist."""
        for d in (self.state_dir, self.lock_dir):
            d.mkdir(parents=True, exist_ok=True)

    def setup_logging(self) -> None:
        """Configure loguru for the splitter."""
        logger.remove()

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<12} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        logger.add(
            sys.stderr,
            format=log_format,
            level=self.log_level.upper(),
            filter=_default_extra,
        )

        self.log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self.log_dir / "split.log"),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )


def load_config(**overrides) -> SplitterConfig:
    """Build a SplitterConfig, turning bad values into ConfigError."""
    try:
        config = SplitterConfig(**overrides)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    if config.concurrency_cap < 1:
        raise ConfigError(f"concurrency_cap must be at least 1, got {config.concurrency_cap}")
    if config.max_parallel_cuts < 0:
        raise ConfigError(f"max_parallel_cuts cannot be negative, got {config.max_parallel_cuts}")
    if config.disk_space_multiplier < 1.0:
        raise ConfigError(
            f"disk_space_multiplier must be at least 1.0, got {config.disk_space_multiplier}"
        )
    if config.cut_timeout_seconds < 0:
        raise ConfigError(
            f"cut_timeout_seconds cannot be negative, got {config.cut_timeout_seconds}"
        )
    return config
