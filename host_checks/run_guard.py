"""
Process-level mutual exclusion for monitoring invocations.

Uses a non-blocking exclusive fcntl.flock on a well-known lock file. A second
invocation gets False from acquire() immediately and must do nothing. The kernel
drops the lock when the holder exits, so a crashed run never leaves it stuck.

Usage:
    guard = RunGuard(path)
    if not guard.acquire():
        return  # another invocation is running
    try:
        ...
    finally:
        guard.release()
"""

from __future__ import annotations

import fcntl
import os
from pathlib import Path
from typing import IO

import structlog


logger = structlog.get_logger(__name__)

DEFAULT_LOCK_PATH = "/var/lock/host_monitor.lock"


def resolve_lock_path(lock_path: str | Path | None = None) -> Path:
    if lock_path is None:
        lock_path = os.getenv("HOST_MONITOR_LOCK") or DEFAULT_LOCK_PATH
    return Path(lock_path)


class RunGuard:
    def __init__(self, path: str | Path | None = None) -> None:
        self.path = resolve_lock_path(path)
        self._file: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._file is not None

    def acquire(self) -> bool:
        """Take the lock without waiting. Returns False if another process holds it."""
        if self._file is not None:
            return True

        self.path.parent.mkdir(parents=True, exist_ok=True)
        # "a" keeps the current holder's PID readable if we lose the race.
        f = open(self.path, "a+", encoding="utf-8")
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            f.seek(0)
            holder = f.read().strip() or "unknown"
            f.close()
            logger.info("Another monitor instance is running", lock=str(self.path), holder_pid=holder)
            return False
        except OSError:
            f.close()
            raise

        f.seek(0)
        f.truncate()
        f.write(str(os.getpid()))
        f.flush()
        self._file = f
        logger.debug("Acquired run lock", lock=str(self.path), pid=os.getpid())
        return True

    def release(self) -> None:
        """Release the lock. Safe to call repeatedly or without acquire()."""
        f = self._file
        if f is None:
            return
        self._file = None
        try:
            f.seek(0)
            f.truncate()
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        finally:
            f.close()
        logger.debug("Released run lock", lock=str(self.path))

    def __enter__(self) -> "RunGuard":
        if not self.acquire():
            raise BlockingIOError(f"Run lock is held by another process: {self.path}")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
