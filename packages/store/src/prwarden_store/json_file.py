"""JsonStateStore: the watcher's ledger and counters in one local JSON file.

Every checkpoint replaces the file atomically, so a concurrent
`prwarden daemon status` reads the last complete checkpoint, never a
half-written one. The file holds one entry per pull request ever seen.

A corrupted or unreadable file degrades to an empty state, which makes every
currently open PR look new on the next poll. The bad file is kept as
``<name>.corrupt`` and the recovery is logged as an error. Read-only callers
load with ``quarantine=False`` and leave the file where it is.
"""

from __future__ import annotations

import json
import logging
import os
from contextlib import contextmanager
from pathlib import Path

from prwarden_store.base import BaseStateStore
from prwarden_store.locking import atomic_write_text, exclusive_lock
from prwarden_store.models import DaemonState

logger = logging.getLogger(__name__)


class JsonStateStore(BaseStateStore):
    """Stores DaemonState as pretty-printed JSON at ``path``."""

    def __init__(self, path: str | Path):
        self._path = Path(path).expanduser()
        self.recovered_from_corruption = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def location(self) -> str:
        return str(self._path)

    def load(self, quarantine: bool = True) -> DaemonState:
        self.recovered_from_corruption = False
        if not self._path.exists():
            return DaemonState()
        try:
            raw = self._path.read_text(encoding="utf-8")
            return DaemonState.from_dict(json.loads(raw))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValueError, TypeError) as e:
            self.recovered_from_corruption = True
            if not quarantine:
                logger.warning("Watcher state at %s is unreadable (%s: %s)", self._path, type(e).__name__, e)
                return DaemonState()
            backup = self._quarantine()
            logger.error(
                "Watcher state at %s is unreadable (%s: %s). Starting from an empty ledger; "
                "every currently open pull request will be treated as new.%s",
                self._path,
                type(e).__name__,
                e,
                f" The unreadable file was kept as {backup}." if backup else "",
            )
            return DaemonState()

    def _quarantine(self) -> Path | None:
        backup = self._path.with_name(self._path.name + ".corrupt")
        try:
            os.replace(self._path, backup)
        except OSError as e:
            logger.error("Could not preserve unreadable state file %s: %s", self._path, e)
            return None
        return backup

    def save(self, state: DaemonState) -> None:
        atomic_write_text(self._path, json.dumps(state.to_dict(), indent=2) + "\n")

    @contextmanager
    def lock(self, timeout: float = 0):
        with exclusive_lock(self._path, timeout=timeout):
            yield
