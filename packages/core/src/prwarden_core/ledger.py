"""Pull-request ledger: which pull requests have already triggered a review.

Triggering is decided purely by presence: a ref absent from the ledger is new
exactly once, on the ``observe`` call that first records it. Head-commit
changes, review outcomes and trigger failures never make a ref new again.

Every mutation is checkpointed to the store before the method returns. A crash
between mutation and checkpoint can cost at most one missed or one duplicate
trigger. Writers call ``reload()`` after taking the store lock, so state
loaded before the lock was acquired is never acted on.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import datetime, timezone

from prwarden_store.base import BaseStateStore
from prwarden_store.models import (
    TRIGGER_FAILED,
    TRIGGER_PENDING,
    TRIGGER_SEEDED,
    TRIGGER_SUCCESS,
    DaemonState,
    LedgerEntry,
)

from prwarden_core.models import PullRequestRef

logger = logging.getLogger(__name__)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Ledger:
    """In-memory view of the watcher state, checkpointed on every change.

    ``recovered_from_corruption`` stays True for the lifetime of the ledger
    once any load found an unreadable checkpoint, even after later loads see
    the fresh file written in its place.

    With ``load=False`` the ledger starts empty and reads the store on the
    first ``reload()``, which owners call once they hold the store lock.
    """

    def __init__(
        self,
        store: BaseStateStore,
        state: DaemonState | None = None,
        read_only: bool = False,
        load: bool = True,
    ):
        self._store = store
        self._lock = threading.RLock()
        self._read_only = read_only
        self.recovered_from_corruption = False
        self._state = state if state is not None else DaemonState()
        if state is None and load:
            self.reload()

    def reload(self) -> None:
        """Replace the in-memory state with the store's last checkpoint."""
        with self._lock:
            self._state = self._store.load(quarantine=not self._read_only)
            if self._store.recovered_from_corruption:
                self.recovered_from_corruption = True

    @property
    def state(self) -> DaemonState:
        return self._state

    def __contains__(self, ref: PullRequestRef) -> bool:
        return ref.key in self._state.entries

    def __len__(self) -> int:
        return len(self._state.entries)

    def entry(self, ref: PullRequestRef) -> LedgerEntry | None:
        return self._state.entries.get(ref.key)

    def is_scope_initialized(self, scope: str) -> bool:
        return scope in self._state.scopes

    @property
    def location(self) -> str:
        return self._store.location

    def lock(self, timeout: float = 0):
        """Exclusive ownership of the backing store; see BaseStateStore.lock."""
        return self._store.lock(timeout=timeout)

    def checkpoint(self) -> None:
        if self._read_only:
            raise RuntimeError(f"Ledger at {self.location} was opened read-only")
        with self._lock:
            self._store.save(self._state)

    def _new_entry(self, ref: PullRequestRef, now: str, status: str) -> LedgerEntry:
        return LedgerEntry(
            repo=ref.full_name,
            number=ref.number,
            first_seen_at=now,
            last_seen_at=now,
            last_commit_seen=ref.head_sha,
            trigger_status=status,
        )

    def seed(self, refs: Iterable[PullRequestRef], scopes: Iterable[str] = ()) -> int:
        """Record ``refs`` as already seen without triggering anything.

        Used the first time a scope (repository) is watched so that pull
        requests that were open before watching began do not flood the first
        poll. Returns the number of refs that were not yet present.
        """
        with self._lock:
            now = utc_now()
            seeded = 0
            for ref in refs:
                existing = self._state.entries.get(ref.key)
                if existing is not None:
                    existing.last_seen_at = now
                    continue
                self._state.entries[ref.key] = self._new_entry(ref, now, TRIGGER_SEEDED)
                seeded += 1
            self._state.scopes.update(scopes)
            self.checkpoint()
        if seeded:
            logger.info("Seeded %d already-open pull request(s) as seen", seeded)
        return seeded

    def add_scope(self, scope: str) -> None:
        with self._lock:
            if scope in self._state.scopes:
                return
            self._state.scopes.add(scope)
            self.checkpoint()

    def observe(self, refs: Iterable[PullRequestRef]) -> set[PullRequestRef]:
        """Return the refs not previously present, then mark every input ref present."""
        with self._lock:
            now = utc_now()
            new: set[PullRequestRef] = set()
            for ref in refs:
                existing = self._state.entries.get(ref.key)
                if existing is not None:
                    existing.last_seen_at = now
                    continue
                entry = self._new_entry(ref, now, TRIGGER_PENDING)
                self._state.entries[ref.key] = entry
                new.add(ref)
            self.checkpoint()
        return new

    def record_trigger(self, ref: PullRequestRef, error: str | None = None) -> None:
        """Record how the review action for a newly observed ref went.

        Only the outcome is stored; presence was already recorded by observe(),
        so a failed trigger is not retried on the next poll.
        """
        with self._lock:
            entry = self._state.entries.get(ref.key)
            if entry is None:
                logger.warning("Trigger outcome for %s ignored: not in ledger", ref)
                return
            entry.triggered_at = utc_now()
            entry.last_commit_seen = ref.head_sha or entry.last_commit_seen
            entry.trigger_status = TRIGGER_FAILED if error else TRIGGER_SUCCESS
            entry.last_error = error
            self.checkpoint()

    def mark_reviewed(self, ref: PullRequestRef) -> bool:
        """Note that a review of ``ref`` finished. Idempotent.

        Returns True only on the call that changed anything. Has no effect on
        triggering; a ref that was never observed stays unobserved.
        """
        with self._lock:
            entry = self._state.entries.get(ref.key)
            if entry is None:
                logger.debug("mark_reviewed(%s): not tracked by this ledger", ref)
                return False
            if entry.reviewed_at is not None:
                return False
            entry.reviewed_at = utc_now()
            self.checkpoint()
            return True

    def record_poll(self, error: str | None = None, failed: bool = False) -> None:
        """Update scheduler counters at the end of a poll cycle and checkpoint."""
        with self._lock:
            self._state.poll_count += 1
            self._state.last_poll_at = utc_now()
            self._state.last_error = error
            self._state.consecutive_failures = self._state.consecutive_failures + 1 if failed else 0
            self.checkpoint()

    def counts(self) -> dict[str, int]:
        counts = {TRIGGER_SEEDED: 0, TRIGGER_PENDING: 0, TRIGGER_SUCCESS: 0, TRIGGER_FAILED: 0}
        for entry in self._state.entries.values():
            counts[entry.trigger_status] = counts.get(entry.trigger_status, 0) + 1
        return counts
