"""Publishing selected issues as pull request comments.

The primary path is a line-anchored comment on the new (right) side of the
diff at the session's commit. When that call fails for any reason (bad line
mapping, API rejection, network error), exactly one fallback is attempted: a
general conversation comment that names the file and line in its text. There is
no further retry; an issue whose fallback also fails is reported as FAILED.
"""

from __future__ import annotations

import logging

from github import GithubException

from prwarden_core.gh.base import SIDE_RIGHT, HostingClient
from prwarden_core.models import Issue, PullRequestRef, SubmissionState

logger = logging.getLogger(__name__)

# Failures the hosting client surfaces for a single call.
SUBMIT_ERRORS = (GithubException, OSError)


def _describe(error: Exception) -> str:
    if isinstance(error, GithubException):
        message = error.data.get("message") if isinstance(error.data, dict) else error.data
        return f"HTTP {error.status}: {message or error}"
    return f"{type(error).__name__}: {error}"


def fallback_body(issue: Issue) -> str:
    return f"**{issue.file_path}:{issue.line_number}**\n\n{issue.comment_body()}"


class SubmissionClient:
    def __init__(self, client: HostingClient):
        self._client = client

    def submit(self, ref: PullRequestRef, commit_id: str, issue: Issue) -> SubmissionState:
        """Publish one issue and record the outcome on it.

        Never raises for hosting failures: the result is returned and stored in
        ``issue.submission_state`` (with ``issue.error`` on failure).
        """
        try:
            self._client.post_line_comment(
                ref, commit_id, issue.file_path, issue.line_number, SIDE_RIGHT, issue.comment_body()
            )
        except SUBMIT_ERRORS as primary_error:
            logger.warning(
                "Line comment for issue %d at %s on %s failed (%s); posting it as a general comment",
                issue.id,
                issue.location,
                ref,
                _describe(primary_error),
            )
        else:
            issue.mark(SubmissionState.SUBMITTED)
            return issue.submission_state

        try:
            self._client.post_general_comment(ref, fallback_body(issue))
        except SUBMIT_ERRORS as fallback_error:
            reason = _describe(fallback_error)
            logger.error("Issue %d at %s on %s could not be submitted: %s", issue.id, issue.location, ref, reason)
            issue.mark(SubmissionState.FAILED, error=reason)
        else:
            issue.mark(SubmissionState.SUBMITTED_FALLBACK)
        return issue.submission_state
