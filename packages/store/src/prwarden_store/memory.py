"""In-memory state store: nothing touches disk.

Used by `prwarden daemon run --once --dry-run` and by tests. Each save keeps a
serialised snapshot so that load() hands back an independent copy, the same
isolation a file-backed store gives.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager

from prwarden_store.base import BaseStateStore
from prwarden_store.errors import StateLockedError
from prwarden_store.models import DaemonState


class MemoryStateStore(BaseStateStore):
    def __init__(self, initial: DaemonState | None = None):
        self._snapshot: dict | None = initial.to_dict() if initial is not None else None
        self._lock = threading.Lock()
        self.save_count = 0

    def load(self, quarantine: bool = True) -> DaemonState:
        if self._snapshot is None:
            return DaemonState()
        return DaemonState.from_dict(self._snapshot)

    def save(self, state: DaemonState) -> None:
        self._snapshot = state.to_dict()
        self.save_count += 1

    @contextmanager
    def lock(self, timeout: float = 0):
        acquired = self._lock.acquire(timeout=timeout) if timeout > 0 else self._lock.acquire(blocking=False)
        if not acquired:
            raise StateLockedError("in-memory state store is already locked")
        try:
            yield
        finally:
            self._lock.release()
