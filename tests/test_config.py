"""Tests for config.py -- defaults, env var overrides."""

from pathlib import Path

import pytest

from audiobook_splitter.config import SplitterConfig, load_config
from audiobook_splitter.errors import ConfigError

# Env vars that pydantic-settings reads -- must be cleaned for default tests
_CONFIG_ENV_VARS = [
    "OUTPUT_DIR", "LOG_DIR", "STATE_DIR", "LOCK_DIR", "FFMPEG_BIN", "FFPROBE_BIN",
    "CUT_TIMEOUT_SECONDS", "MAX_PARALLEL_CUTS", "CONCURRENCY_CAP",
    "MEMORY_PRESSURE_THRESHOLD", "DISK_SPACE_MULTIPLIER", "VERIFY_OUTPUT_DURATION",
    "DURATION_TOLERANCE_MS", "OUTPUT_FORMAT", "DRY_RUN", "OVERWRITE",
    "WRITE_PLAYLIST", "SKIP_PROCESSED", "VERBOSE", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Remove splitter env vars so defaults tests see actual defaults."""
    for var in _CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class TestDefaults:
    def test_default_values(self):
        config = SplitterConfig(_env_file=None)
        assert config.ffmpeg_bin == "ffmpeg"
        assert config.ffprobe_bin == "ffprobe"
        assert config.cut_timeout_seconds == 3600.0
        assert config.max_parallel_cuts == 0
        assert config.concurrency_cap == 4
        assert config.memory_pressure_threshold == 0.8
        assert config.disk_space_multiplier == 1.1
        assert config.verify_output_duration is True
        assert config.duration_tolerance_ms == 2000
        assert config.output_format == ""
        assert config.dry_run is False
        assert config.overwrite is False
        assert config.write_playlist is True
        assert config.skip_processed is False
        assert config.log_level == "INFO"

    def test_default_paths(self):
        config = SplitterConfig(_env_file=None)
        assert config.output_dir == Path("./output/split")
        assert config.state_dir == Path.home() / ".local/state/audiobook-splitter"
        assert config.processed_log_path == config.state_dir / "processed_files.json"


class TestEnvOverrides:
    def test_env_vars_override(self, monkeypatch):
        monkeypatch.setenv("MAX_PARALLEL_CUTS", "3")
        monkeypatch.setenv("DRY_RUN", "true")
        monkeypatch.setenv("FFMPEG_BIN", "/opt/bin/ffmpeg")
        config = SplitterConfig(_env_file=None)
        assert config.max_parallel_cuts == 3
        assert config.dry_run is True
        assert config.ffmpeg_bin == "/opt/bin/ffmpeg"

    def test_kwargs_beat_env(self, monkeypatch):
        monkeypatch.setenv("OVERWRITE", "false")
        config = SplitterConfig(_env_file=None, overwrite=True)
        assert config.overwrite is True

    def test_env_file(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("OUTPUT_FORMAT=mp3\nUNRELATED_VAR=1\n")
        config = SplitterConfig(_env_file=str(env))
        assert config.output_format == "mp3"


class TestEnsureDirs:
    def test_creates_state_and_lock_dirs(self, tmp_path):
        config = SplitterConfig(
            _env_file=None, state_dir=tmp_path / "state", lock_dir=tmp_path / "locks",
        )
        config.ensure_dirs()
        assert (tmp_path / "state").is_dir()
        assert (tmp_path / "locks").is_dir()


class TestLoadConfig:
    def test_valid_overrides(self, monkeypatch):
        config = load_config(_env_file=None, max_parallel_cuts=2)
        assert config.max_parallel_cuts == 2

    def test_unparseable_env_raises_config_error(self, monkeypatch):
        monkeypatch.setenv("CONCURRENCY_CAP", "lots")
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(_env_file=None)

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"concurrency_cap": 0}, "concurrency_cap"),
            ({"max_parallel_cuts": -1}, "max_parallel_cuts"),
            ({"disk_space_multiplier": 0.5}, "disk_space_multiplier"),
            ({"cut_timeout_seconds": -1}, "cut_timeout_seconds"),
        ],
    )
    def test_out_of_range(self, overrides, message):
        with pytest.raises(ConfigError, match=message):
            load_config(_env_file=None, **overrides)
