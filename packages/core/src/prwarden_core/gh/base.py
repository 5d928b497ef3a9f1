"""Hosting-service client interface.

The orchestration core depends on HostingClient only, never on PyGithub
directly, so the scheduler and workflow engine can be exercised against an
in-memory fake. Every method raises on failure (GithubException for API
rejections, OSError for network errors); callers decide which failures are
isolated and which propagate.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prwarden_core.models import PullRequestRef

SIDE_RIGHT = "RIGHT"


class HostingClient(ABC):
    def current_user(self) -> str:
        """Login of the authenticated user, or an empty string when unknown."""
        return ""

    @abstractmethod
    def list_open_pull_requests(self, repo: str, include_drafts: bool) -> list[PullRequestRef]:
        """Return open pull requests for ``owner/name``, drafts only when asked."""

    @abstractmethod
    def get_head_sha(self, ref: PullRequestRef) -> str:
        """Return the pull request's current head commit id."""

    @abstractmethod
    def get_changed_files(self, ref: PullRequestRef) -> list[str]:
        """Return the paths touched by the pull request."""

    @abstractmethod
    def get_diff(self, ref: PullRequestRef) -> str:
        """Return the pull request diff as unified-diff text."""

    @abstractmethod
    def post_line_comment(
        self, ref: PullRequestRef, commit_id: str, path: str, line: int, side: str, body: str
    ) -> None:
        """Post a comment anchored to ``path:line`` on ``side`` of the diff at ``commit_id``."""

    @abstractmethod
    def post_general_comment(self, ref: PullRequestRef, body: str) -> None:
        """Post a conversation comment that is not anchored to any line."""

    @abstractmethod
    def approve(self, ref: PullRequestRef, body: str = "") -> None:
        """Submit an approving review."""

    @abstractmethod
    def close_with_comment(self, ref: PullRequestRef, body: str | None = None) -> None:
        """Comment (when a body is given) and close the pull request."""

    @abstractmethod
    def merge(self, ref: PullRequestRef, strategy: str = "squash") -> str:
        """Merge the pull request and return the strategy that succeeded."""

    @abstractmethod
    def search_my_open_pull_requests(self, include_drafts: bool) -> list[PullRequestRef]:
        """Open pull requests authored by the authenticated user, across all repositories."""

    @abstractmethod
    def approved_by(self, ref: PullRequestRef, login: str) -> bool:
        """True when ``login`` has submitted an approving review on the pull request."""
