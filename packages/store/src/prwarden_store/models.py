"""Persisted watcher state.

Decoupled from prwarden_core: entries are keyed by plain strings
(``owner/repo#number``) so the store layer never imports core types.
"""

from __future__ import annotations

from dataclasses import dataclass, field

TRIGGER_SEEDED = "seeded"
TRIGGER_PENDING = "pending"  # observed as new, trigger outcome not yet recorded
TRIGGER_SUCCESS = "success"
TRIGGER_FAILED = "failed"
TRIGGER_STATUSES = (TRIGGER_SEEDED, TRIGGER_PENDING, TRIGGER_SUCCESS, TRIGGER_FAILED)


@dataclass
class LedgerEntry:
    """One pull request ever seen by a watcher."""

    repo: str
    number: int
    first_seen_at: str  # ISO-8601 UTC timestamp
    last_seen_at: str
    seen: bool = True
    last_commit_seen: str = ""
    triggered_at: str | None = None
    trigger_status: str = TRIGGER_SEEDED
    last_error: str | None = None
    reviewed_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "repo": self.repo,
            "number": self.number,
            "first_seen_at": self.first_seen_at,
            "last_seen_at": self.last_seen_at,
            "seen": self.seen,
            "last_commit_seen": self.last_commit_seen,
            "triggered_at": self.triggered_at,
            "trigger_status": self.trigger_status,
            "last_error": self.last_error,
            "reviewed_at": self.reviewed_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> LedgerEntry:
        status = d.get("trigger_status", TRIGGER_SEEDED)
        if status not in TRIGGER_STATUSES:
            status = TRIGGER_SEEDED
        return cls(
            repo=d.get("repo", ""),
            number=int(d.get("number", 0)),
            first_seen_at=d.get("first_seen_at", ""),
            last_seen_at=d.get("last_seen_at", ""),
            seen=bool(d.get("seen", True)),
            last_commit_seen=d.get("last_commit_seen", ""),
            triggered_at=d.get("triggered_at"),
            trigger_status=status,
            last_error=d.get("last_error"),
            reviewed_at=d.get("reviewed_at"),
        )


@dataclass
class DaemonState:
    """The full ledger plus scheduler counters, checkpointed after each poll cycle."""

    entries: dict[str, LedgerEntry] = field(default_factory=dict)
    scopes: set[str] = field(default_factory=set)
    poll_count: int = 0
    last_poll_at: str | None = None
    last_error: str | None = None
    consecutive_failures: int = 0

    def to_dict(self) -> dict:
        return {
            "entries": {key: entry.to_dict() for key, entry in sorted(self.entries.items())},
            "scopes": sorted(self.scopes),
            "poll_count": self.poll_count,
            "last_poll_at": self.last_poll_at,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
        }

    @classmethod
    def from_dict(cls, d: dict) -> DaemonState:
        if not isinstance(d, dict):
            raise ValueError(f"Expected a JSON object, got {type(d).__name__}")
        entries = d.get("entries", {})
        if not isinstance(entries, dict):
            raise ValueError("'entries' must be a JSON object")
        scopes = d.get("scopes", [])
        if not isinstance(scopes, list):
            raise ValueError("'scopes' must be a JSON list")
        return cls(
            entries={key: LedgerEntry.from_dict(value) for key, value in entries.items()},
            scopes=set(scopes),
            poll_count=int(d.get("poll_count", 0)),
            last_poll_at=d.get("last_poll_at"),
            last_error=d.get("last_error"),
            consecutive_failures=int(d.get("consecutive_failures", 0)),
        )
