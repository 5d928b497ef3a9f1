"""Core data model: pull request identity and candidate review issues."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Severity(str, Enum):
    CRITICAL = "critical"
    SUGGESTION = "suggestion"
    NITPICK = "nitpick"

    @classmethod
    def parse(cls, value: str | None) -> Severity:
        """Map free-form severity labels onto the three supported levels.

        Unknown labels become SUGGESTION, mirroring how unrecognised severities
        were downgraded rather than rejected.
        """
        label = (value or "").strip().lower()
        if label in ("critical", "blocker", "major", "error"):
            return cls.CRITICAL
        if label in ("nitpick", "nit", "style", "trivial"):
            return cls.NITPICK
        return cls.SUGGESTION


class SubmissionState(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    SUBMITTED_FALLBACK = "submitted_fallback"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self is not SubmissionState.PENDING


@dataclass(frozen=True)
class PullRequestRef:
    """A pull request's identity plus what was observed about it.

    Equality and hashing use only ``(owner, repo, number)``; a new head commit
    does not make it a different pull request.
    """

    owner: str
    repo: str
    number: int
    head_sha: str = field(default="", compare=False)
    base_sha: str = field(default="", compare=False)
    draft: bool = field(default=False, compare=False)
    author: str = field(default="", compare=False)
    title: str = field(default="", compare=False)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"

    @classmethod
    def from_full_name(cls, full_name: str, number: int, **attrs) -> PullRequestRef:
        owner, sep, repo = full_name.partition("/")
        if not sep or not owner or not repo:
            raise ValueError(f"Repository must be in owner/name format, got {full_name!r}")
        return cls(owner=owner, repo=repo, number=number, **attrs)

    def __str__(self) -> str:
        return self.key


@dataclass
class Issue:
    """A candidate review comment.

    ``line_number`` is 1-based and refers to the new (right) side of the diff at
    the session's commit. ``submission_state`` never changes once terminal.
    """

    id: int
    severity: Severity
    file_path: str
    line_number: int
    body: str
    submission_state: SubmissionState = SubmissionState.PENDING
    selected: bool = False
    error: str | None = None

    def mark(self, state: SubmissionState, error: str | None = None) -> None:
        if self.submission_state.is_terminal:
            raise ValueError(
                f"Issue {self.id} is already {self.submission_state.value}; cannot move it to {state.value}"
            )
        self.submission_state = state
        self.error = error

    @property
    def location(self) -> str:
        return f"{self.file_path}:{self.line_number}"

    def comment_body(self) -> str:
        return f"**[{self.severity.value.upper()}]**\n\n{self.body}"
