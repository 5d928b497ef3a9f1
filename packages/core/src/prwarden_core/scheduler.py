"""Polling Scheduler.

Each cycle, per monitored repository:

    fetch open PRs -> drop own PRs -> apply sub-path filter -> Ledger.observe
    -> trigger the review action for every newly observed PR

A repository polled for the first time is seeded instead: its open PRs are
recorded as seen in one batch and nothing is triggered for it in that cycle.
The exception is a ledger recovered from a corrupt checkpoint: its scopes are
lost with the rest of the state, so every open PR is observed as new.

Failures are isolated per repository; a cycle in which every repository failed
counts towards exponential backoff of the next delay. The stop signal is
honoured between repositories and between cycles, never while triggers for a
repository are in flight. Only one cycle runs at a time per scheduler, and
``run``/``run_once`` hold the state store's exclusive lock so a second process
cannot poll the same ledger.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from github import GithubException
from prwarden_store.models import TRIGGER_FAILED, TRIGGER_PENDING, TRIGGER_SEEDED, TRIGGER_SUCCESS

from prwarden_core.errors import PrwardenError
from prwarden_core.gh.base import HostingClient
from prwarden_core.ledger import Ledger
from prwarden_core.models import PullRequestRef

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL_SEC = 10
FETCH_ERRORS = (GithubException, OSError)
TRIGGER_ERRORS = (PrwardenError, GithubException, OSError)


class SchedulerBusy(PrwardenError):
    """A poll cycle is already running for this scheduler."""


def normalize_repos(repos: Iterable[str]) -> list[str]:
    return sorted({r.strip() for r in repos if r and r.strip()})


def normalize_subpath(path: str) -> str | None:
    normalized = path.strip().strip("/").strip()
    return normalized or None


def normalize_subpath_filters(filters: dict[str, list[str]] | None) -> dict[str, list[str]]:
    normalized = {}
    for repo, subpaths in (filters or {}).items():
        repo = repo.strip()
        cleaned = sorted({p for p in (normalize_subpath(s) for s in subpaths or []) if p})
        if repo and cleaned:
            normalized[repo] = cleaned
    return normalized


def path_matches_subpath(path: str, subpath: str) -> bool:
    """True when ``path`` is ``subpath`` itself or lies below it (``src`` matches ``src/a.py``, not ``srcx``)."""
    path = path.lstrip("/")
    return path == subpath or (path.startswith(subpath) and path[len(subpath) :].startswith("/"))


def touches_any_subpath(changed_files: Iterable[str], subpaths: Iterable[str]) -> bool:
    subpaths = list(subpaths)
    return any(path_matches_subpath(f, s) for f in changed_files for s in subpaths)


@dataclass
class PollSummary:
    monitored_repos: int = 0
    open_prs: int = 0
    new_prs: int = 0
    triggered: int = 0
    failed: int = 0
    seeded: int = 0
    new_refs: list[PullRequestRef] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    stopped: bool = False

    def __str__(self) -> str:
        text = (
            f"{self.monitored_repos} repos, {self.open_prs} open PRs, {self.new_prs} new, "
            f"{self.triggered} triggered, {self.failed} failed"
        )
        if self.seeded:
            text += f", {self.seeded} seeded"
        if self.errors:
            text += f", {len(self.errors)} repo error(s)"
        return text


class PollingScheduler:
    def __init__(
        self,
        client: HostingClient,
        ledger: Ledger,
        trigger: Callable[[PullRequestRef], object],
        repos: Iterable[str],
        include_drafts: bool = False,
        exclude_repos: Iterable[str] = (),
        subpath_filters: dict[str, list[str]] | None = None,
        interval: float = 300,
        max_backoff: float = 3600,
        skip_author: str | None = None,
        seed_new_repos: bool = True,
    ):
        self._client = client
        self._ledger = ledger
        self._trigger = trigger
        self.excluded = set(normalize_repos(exclude_repos))
        self.repos = [r for r in normalize_repos(repos) if r not in self.excluded]
        self.include_drafts = include_drafts
        self.subpath_filters = normalize_subpath_filters(subpath_filters)
        self.interval = max(MIN_POLL_INTERVAL_SEC, interval)
        self.max_backoff = max(self.interval, max_backoff)
        self.skip_author = skip_author
        self.seed_new_repos = seed_new_repos
        self._cycle_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Fetching                                                             #
    # ------------------------------------------------------------------ #

    def _keep(self, repo: str, ref: PullRequestRef) -> bool:
        if self.skip_author and ref.author.lower() == self.skip_author.lower():
            return False
        subpaths = self.subpath_filters.get(repo)
        if not subpaths:
            return True
        try:
            changed = self._client.get_changed_files(ref)
        except FETCH_ERRORS as e:
            logger.warning("Could not list changed files of %s (%s); keeping it", ref, e)
            return True
        return touches_any_subpath(changed, subpaths)

    def fetch(self, repo: str) -> list[PullRequestRef]:
        """Open PRs of ``repo`` after the author and sub-path filters. Raises on API failure."""
        refs = self._client.list_open_pull_requests(repo, self.include_drafts)
        return [ref for ref in refs if self._keep(repo, ref)]

    # ------------------------------------------------------------------ #
    # Cycle                                                                #
    # ------------------------------------------------------------------ #

    def _fire(self, ref: PullRequestRef, summary: PollSummary) -> None:
        logger.info("New pull request %s: %s", ref, ref.title)
        try:
            self._trigger(ref)
        except TRIGGER_ERRORS as e:
            summary.failed += 1
            self._ledger.record_trigger(ref, error=str(e))
            logger.error("Failed to trigger review for %s: %s", ref, e)
        else:
            summary.triggered += 1
            self._ledger.record_trigger(ref)

    def _should_seed(self, repo: str) -> bool:
        # A discarded checkpoint took its scope set with it; every open PR counts as new.
        if not self.seed_new_repos or self._ledger.recovered_from_corruption:
            return False
        return not self._ledger.is_scope_initialized(repo)

    def _cycle(self, stop_event: threading.Event | None = None) -> PollSummary:
        if not self._cycle_lock.acquire(blocking=False):
            raise SchedulerBusy("A poll cycle is already running")
        try:
            summary = PollSummary(monitored_repos=len(self.repos))
            for repo in self.repos:
                if stop_event is not None and stop_event.is_set():
                    summary.stopped = True
                    break
                try:
                    refs = self.fetch(repo)
                except FETCH_ERRORS as e:
                    summary.errors[repo] = str(e)
                    logger.warning("Skipping %s this cycle: %s", repo, e)
                    continue

                summary.open_prs += len(refs)
                if self._should_seed(repo):
                    summary.seeded += self._ledger.seed(refs, scopes=[repo])
                    continue

                new = sorted(self._ledger.observe(refs), key=lambda r: r.number)
                self._ledger.add_scope(repo)
                summary.new_prs += len(new)
                summary.new_refs.extend(new)
                for ref in new:
                    self._fire(ref, summary)

            all_failed = bool(self.repos) and len(summary.errors) == len(self.repos)
            last_error = "; ".join(f"{repo}: {err}" for repo, err in summary.errors.items()) or None
            self._ledger.record_poll(error=last_error, failed=all_failed)
            return summary
        finally:
            self._cycle_lock.release()

    def run_once(self, lock_timeout: float = 0) -> PollSummary:
        """Run exactly one cycle and return its summary."""
        with self._ledger.lock(timeout=lock_timeout):
            self._ledger.reload()
            return self._cycle()

    def initialize(self, lock_timeout: float = 0) -> int:
        """Seed every monitored repository with its currently open PRs. Returns how many were seeded."""
        seeded = 0
        with self._ledger.lock(timeout=lock_timeout):
            self._ledger.reload()
            for repo in self.repos:
                try:
                    refs = self.fetch(repo)
                except FETCH_ERRORS as e:
                    logger.warning("Could not seed %s: %s", repo, e)
                    continue
                seeded += self._ledger.seed(refs, scopes=[repo])
        return seeded

    def next_delay(self) -> float:
        failures = self._ledger.state.consecutive_failures
        if failures == 0:
            return self.interval
        return min(self.interval * 2**failures, self.max_backoff)

    def run(
        self,
        stop_event: threading.Event,
        on_cycle: Callable[[PollSummary], None] | None = None,
        lock_timeout: float = 0,
    ) -> int:
        """Poll until ``stop_event`` is set. Returns the number of completed cycles."""
        cycles = 0
        with self._ledger.lock(timeout=lock_timeout):
            self._ledger.reload()
            logger.info(
                "Polling %d repo(s) every %gs (drafts: %s, sub-path filters: %d)",
                len(self.repos),
                self.interval,
                self.include_drafts,
                len(self.subpath_filters),
            )
            while not stop_event.is_set():
                summary = self._cycle(stop_event)
                cycles += 1
                if on_cycle is not None:
                    on_cycle(summary)
                delay = self.next_delay()
                if delay > self.interval:
                    logger.warning("Every repository failed; backing off for %gs", delay)
                if stop_event.wait(delay):
                    break
        logger.info("Polling stopped after %d cycle(s)", cycles)
        return cycles


@dataclass
class DaemonStatus:
    state_path: str
    initialized: bool
    poll_interval_sec: float
    include_drafts: bool
    monitored_repos: list[str]
    excluded_repos: list[str]
    subpath_filters: dict[str, list[str]]
    tracked: int
    seeded: int
    pending: int
    success: int
    failed: int
    poll_count: int
    last_poll_at: str | None
    last_error: str | None
    recovered_from_corruption: bool = False


def read_status(ledger: Ledger, scheduler: PollingScheduler) -> DaemonStatus:
    """Status from the ledger's last checkpoint; never takes the store lock."""
    counts = ledger.counts()
    state = ledger.state
    return DaemonStatus(
        state_path=ledger.location,
        initialized=bool(scheduler.repos) and all(ledger.is_scope_initialized(r) for r in scheduler.repos),
        poll_interval_sec=scheduler.interval,
        include_drafts=scheduler.include_drafts,
        monitored_repos=list(scheduler.repos),
        excluded_repos=sorted(scheduler.excluded),
        subpath_filters=scheduler.subpath_filters,
        tracked=len(ledger),
        seeded=counts[TRIGGER_SEEDED],
        pending=counts[TRIGGER_PENDING],
        success=counts[TRIGGER_SUCCESS],
        failed=counts[TRIGGER_FAILED],
        poll_count=state.poll_count,
        last_poll_at=state.last_poll_at,
        last_error=state.last_error,
        recovered_from_corruption=ledger.recovered_from_corruption,
    )
