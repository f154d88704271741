"""Concurrency width, batched fan-out, output-directory locking and disk checks."""

from __future__ import annotations

import hashlib
import math
import os
import shutil
import sys
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TypeVar

import psutil
from loguru import logger

from .errors import LockError

log = logger.bind(stage="concurrency")

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY_CAP = 4
DEFAULT_MEMORY_PRESSURE = 0.8


def calculate_concurrency(
    cap: int = DEFAULT_CONCURRENCY_CAP,
    memory_threshold: float = DEFAULT_MEMORY_PRESSURE,
) -> int:
    """Number of cuts to run side by side.

    Half the CPU count, halved again when memory usage is above
    ``memory_threshold``, never below 1 and never above ``cap``. Every cut
    is a separate ffmpeg process, so the cap stays small.
    """
    cpu_count = os.cpu_count() or 1
    width = max(1, cpu_count // 2)

    memory = psutil.virtual_memory()
    used_ratio = (memory.total - memory.available) / memory.total if memory.total else 0.0
    if used_ratio > memory_threshold:
        width = max(1, width // 2)

    width = max(1, min(width, cap))
    log.debug(
        f"Concurrency: width={width} (cpu_count={cpu_count}, "
        f"memory_used={used_ratio:.0%}, cap={cap})"
    )
    return width


def batched(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size < 1:
        raise ValueError(f"Batch size must be at least 1, got {size}")
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], R],
    width: int,
    on_batch_done: Callable[[int, list[R]], None] | None = None,
) -> list[R]:
    """Run ``worker`` over ``items`` in sequential batches of ``width`` threads.

    Every item of batch N settles before any item of batch N+1 starts.
    Results come back in input order. ``worker`` must not raise; exceptions
    that escape it propagate and stop the remaining batches.
    """
    results: list[R] = []
    with ThreadPoolExecutor(max_workers=width) as executor:
        for batch_index, batch in enumerate(batched(items, width)):
            log.debug(f"Starting batch {batch_index + 1}: {len(batch)} items")
            batch_results = list(executor.map(worker, batch))
            # Join point: the only place shared results are extended
            results.extend(batch_results)
            if on_batch_done is not None:
                on_batch_done(batch_index, batch_results)
    return results


def acquire_output_lock(lock_dir: Path, output_dir: Path, skip: bool = False) -> object | None:
    """Lock ``output_dir`` so only one splitter writes into it at a time.

    Returns the lock file handle (keep reference to maintain lock),
    or None if locking was skipped.
    Raises LockError if another process holds the lock.
    """
    log.debug(f"acquire_output_lock(lock_dir={lock_dir}, output_dir={output_dir}, skip={skip})")

    if skip:
        log.debug("Skipping lock acquisition")
        return None

    lock_dir.mkdir(parents=True, exist_ok=True)
    key = hashlib.sha256(str(output_dir.resolve()).encode()).hexdigest()[:16]
    lock_file = lock_dir / f"split-{key}.lock"

    fh = open(lock_file, "w")
    try:
        if sys.platform == "win32":
            import msvcrt

            msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl

            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fh.close()
        log.warning(f"Failed to acquire lock at {lock_file}")
        raise LockError(f"Another splitter is writing to {output_dir}")
    log.info(f"Lock acquired at {lock_file}")
    return fh


def estimate_required_space(source_size: int, multiplier: float = 1.1) -> int:
    """Bytes needed for a stream-copy split: input size plus overhead."""
    return math.ceil(source_size * multiplier)


def available_space(target: Path) -> int | None:
    """Free bytes on the volume holding ``target`` (or its nearest existing parent).

    Returns None when no ancestor can be inspected.
    """
    probe = target
    while not probe.exists():
        if probe.parent == probe:
            return None
        probe = probe.parent
    try:
        return shutil.disk_usage(probe).free
    except OSError as e:
        log.warning(f"Cannot read disk usage for {probe}: {e}")
        return None

