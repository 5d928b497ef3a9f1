"""Exception hierarchy for prwarden_core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prwarden_core.launcher import LaunchOutcome


class PrwardenError(Exception):
    """Base class for every error raised by prwarden_core."""


class InvalidSelection(PrwardenError, ValueError):
    """A selection expression could not be parsed. The session does not change phase."""


class PhaseError(PrwardenError):
    """An operation was attempted in a review phase that does not allow it."""


class StaleSessionError(PrwardenError):
    """The pull request head moved after the session started; its line numbers no longer apply."""

    def __init__(self, expected_sha: str, actual_sha: str):
        super().__init__(
            f"Pull request head moved from {expected_sha[:7]} to {actual_sha[:7]} during the review session."
        )
        self.expected_sha = expected_sha
        self.actual_sha = actual_sha


class ApprovalNotAllowed(PrwardenError):
    """Approval was requested for a session that is not eligible for it."""


class LaunchError(PrwardenError):
    """Every launch mode failed to start the external process."""

    def __init__(self, message: str, outcome: LaunchOutcome | None = None):
        super().__init__(message)
        self.outcome = outcome
