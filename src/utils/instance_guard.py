"""
Advisory single-host process lock with stale-lock reclaim.
"""

from __future__ import annotations

import logging
import os
import socket
import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

DEFAULT_LOCK_TTL = timedelta(minutes=30)

Clock = Callable[[], datetime]

logger = logging.getLogger("ready_sync.lock")


class InstanceLockError(RuntimeError):
    """Raised when the lock file cannot be created for a reason other than contention."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessLock:
    """Result of a lock attempt; ``release`` is safe to call any number of times."""

    def __init__(self, path: Path, acquired: bool) -> None:
        self.path = path
        self.acquired = acquired
        self._owned = acquired
        self._guard = threading.Lock()

    def release(self) -> None:
        """Remove the lock file if this instance created it."""
        with self._guard:
            if not self._owned:
                return
            self._owned = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove lock file %s: %s", self.path, exc)

    def __enter__(self) -> "ProcessLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def _create_exclusive(lock_path: Path) -> int:
    return os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)


def _write_lock_info(fd: int, now: datetime) -> None:
    info = [
        f"pid={os.getpid()}",
        f"host={socket.gethostname()}",
        f"time={now.isoformat()}",
        f"argv={' '.join(sys.argv)}",
    ]
    try:
        os.write(fd, ("\n".join(info) + "\n").encode("utf-8"))
    except OSError as exc:
        logger.warning("Failed to write lock diagnostics: %s", exc)
    finally:
        os.close(fd)


def _is_stale(lock_path: Path, ttl: timedelta, clock: Clock) -> bool:
    try:
        mtime = lock_path.stat().st_mtime
    except OSError:
        return False
    modified = datetime.fromtimestamp(mtime, tz=timezone.utc)
    return clock() - modified > ttl


def acquire_process_lock(
    lock_path: Path,
    ttl: timedelta = DEFAULT_LOCK_TTL,
    clock: Optional[Clock] = None,
) -> ProcessLock:
    """Try to create the lock file exclusively.

    An existing lock older than ``ttl`` is treated as abandoned: it is removed
    and creation is retried exactly once. Contention yields a lock with
    ``acquired=False``; only unexpected creation errors raise.
    """
    clock = clock or utcnow
    lock_path = Path(lock_path)
    try:
        fd = _create_exclusive(lock_path)
    except FileExistsError:
        if not _is_stale(lock_path, ttl, clock):
            return ProcessLock(lock_path, acquired=False)
        logger.warning("Reclaiming stale lock file %s", lock_path)
        try:
            lock_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove stale lock %s: %s", lock_path, exc)
        try:
            fd = _create_exclusive(lock_path)
        except OSError:
            return ProcessLock(lock_path, acquired=False)
    except OSError as exc:
        raise InstanceLockError(f"Cannot create lock file {lock_path}: {exc}") from exc

    _write_lock_info(fd, clock())
    return ProcessLock(lock_path, acquired=True)
