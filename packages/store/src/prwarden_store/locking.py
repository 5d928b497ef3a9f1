"""Exclusive file locks for the state and guideline files.

Uses flock on a sidecar ``<file>.lock`` so the data file itself can be replaced
atomically while the lock is held. Lock files are never deleted: removing one
while another process waits on it would let two processes hold "exclusive"
locks on different inodes.
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path

from prwarden_store.errors import StateLockedError

logger = logging.getLogger(__name__)


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


@contextmanager
def exclusive_lock(path: Path, timeout: float = 0, poll_interval: float = 0.2):
    """Hold an exclusive lock for ``path``.

    With ``timeout=0`` the lock is tried exactly once and StateLockedError is
    raised immediately if another process owns it.
    """
    lock_file = lock_path_for(path)
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, "a+")
    start = time.monotonic()
    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.monotonic() - start >= timeout:
                fd.close()
                raise StateLockedError(f"{path} is locked by another process (lock file: {lock_file})")
            time.sleep(poll_interval)

    try:
        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        logger.debug("Acquired lock %s", lock_file)
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()
        logger.debug("Released lock %s", lock_file)


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` so that readers see either the old or the new file, never a partial one."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
