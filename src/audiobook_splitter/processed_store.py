"""JSON log of input files that have already been split.

Keyed by input file name. Single writer: the CLI holds the output lock
while it updates the store, and every write goes through an atomic replace.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from .errors import ProcessedStoreError

log = logger.bind(stage="store")


def _utcnow() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ProcessedStore:
    """Read/write ``{"processed_files": {name: entry}}`` at ``path``.

    A missing file is an empty store. A corrupt file raises
    ProcessedStoreError instead of silently starting over.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            log.error(f"Failed to read processed log {self.path}: {exc}")
            raise ProcessedStoreError(f"Failed to read {self.path}: {exc}") from exc
        return data.get("processed_files", {})

    def get(self, filename: str) -> dict[str, Any] | None:
        return self.read().get(filename)

    def is_processed(self, filename: str) -> bool:
        """True only if the last recorded run for ``filename`` succeeded."""
        entry = self.get(filename)
        return bool(entry and entry.get("success"))

    def mark_processed(
        self,
        filename: str,
        title: str,
        success: bool,
        chapter_count: int = 0,
        output_dir: str = "",
    ) -> None:
        """Record (or overwrite) the outcome for ``filename``. Idempotent."""
        entries = self.read()
        entries[filename] = {
            "timestamp": _utcnow(),
            "title": title,
            "success": success,
            "chapter_count": chapter_count,
            "output_dir": output_dir,
        }
        log.debug(f"mark_processed filename={filename} success={success}")
        self._atomic_write({"processed_files": entries})

    def _atomic_write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError as cleanup_err:
                log.warning(f"Failed to cleanup temp file {tmp_path}: {cleanup_err}")
            raise
