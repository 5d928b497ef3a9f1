"""Abstract state store interface.

The watcher depends on BaseStateStore, not on a concrete backend, so the
on-disk JSON file can be swapped for an in-memory store in tests and dry runs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prwarden_store.models import DaemonState


class BaseStateStore(ABC):
    """Durable home of the DaemonState checkpoint.

    Exactly one process may own the store for writing at a time; ``lock()``
    enforces that. ``load()`` never raises on unreadable data: it returns an
    empty state and sets ``recovered_from_corruption`` so the caller can tell
    the operator.
    """

    recovered_from_corruption: bool = False

    @abstractmethod
    def load(self, quarantine: bool = True) -> DaemonState:
        """Return the last checkpointed state, or an empty one.

        With ``quarantine=False`` an unreadable checkpoint is reported but left
        untouched, for readers that must not disturb a running owner.
        """

    @abstractmethod
    def save(self, state: DaemonState) -> None:
        """Checkpoint ``state``. Readers see either the previous or the new checkpoint."""

    @contextmanager
    def lock(self, timeout: float = 0):
        """Hold exclusive ownership of the store. Default is a no-op."""
        yield

    @property
    def location(self) -> str:
        return "<memory>"

    def close(self) -> None:
        """Release any resources held by the store.

        Default is a no-op so callers can always call close() safely.
        """
