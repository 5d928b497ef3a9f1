from __future__ import annotations

import logging

from github import Github, GithubException

from prwarden_core.gh.base import HostingClient
from prwarden_core.models import PullRequestRef

logger = logging.getLogger(__name__)


def to_ref(repo_name: str, pr) -> PullRequestRef:
    """Build a PullRequestRef from a PyGithub PullRequest."""
    return PullRequestRef.from_full_name(
        repo_name,
        pr.number,
        head_sha=pr.head.sha,
        base_sha=pr.base.sha,
        draft=bool(pr.draft),
        author=pr.user.login if pr.user is not None else "",
        title=pr.title or "",
    )


def render_diff(files) -> str:
    """Join per-file patches into one unified diff.

    GitHub omits ``patch`` for binary and very large files; those appear as a
    header with no hunks so the file list stays complete.
    """
    parts = []
    for f in files:
        old_name = getattr(f, "previous_filename", None) or f.filename
        parts.append(f"diff --git a/{old_name} b/{f.filename}")
        parts.append(f"--- a/{old_name}" if f.status != "added" else "--- /dev/null")
        parts.append(f"+++ b/{f.filename}" if f.status != "removed" else "+++ /dev/null")
        if f.patch:
            parts.append(f.patch)
    return "\n".join(parts) + ("\n" if parts else "")


class GitHubClient(HostingClient):
    """HostingClient backed by the GitHub REST API through PyGithub."""

    def __init__(self, token: str, gh: Github | None = None):
        self._gh = gh if gh is not None else Github(token)
        self._repos: dict[str, object] = {}

    def current_user(self) -> str:
        return self._gh.get_user().login

    def _repo(self, repo_name: str):
        repo = self._repos.get(repo_name)
        if repo is None:
            repo = self._gh.get_repo(repo_name)
            self._repos[repo_name] = repo
        return repo

    def _pull(self, ref: PullRequestRef):
        return self._repo(ref.full_name).get_pull(ref.number)

    def get_pull_request(self, repo_name: str, number: int) -> PullRequestRef:
        try:
            pr = self._repo(repo_name).get_pull(number)
        except GithubException:
            raise ValueError(f"PR #{number} not found in {repo_name}.")
        return to_ref(repo_name, pr)

    def list_open_pull_requests(self, repo: str, include_drafts: bool) -> list[PullRequestRef]:
        refs = []
        for pr in self._repo(repo).get_pulls(state="open"):
            if pr.draft and not include_drafts:
                continue
            refs.append(to_ref(repo, pr))
        return refs

    def search_my_open_pull_requests(self, include_drafts: bool) -> list[PullRequestRef]:
        """Uses the search API, one query per draft state, so draft status is known without extra calls."""
        drafts = (False, True) if include_drafts else (False,)
        refs = []
        for draft in drafts:
            query = f"is:pr is:open author:@me draft:{str(draft).lower()}"
            for issue in self._gh.search_issues(query):
                refs.append(
                    PullRequestRef.from_full_name(
                        issue.repository.full_name,
                        issue.number,
                        draft=draft,
                        author=issue.user.login if issue.user is not None else "",
                        title=issue.title or "",
                    )
                )
        return refs

    def approved_by(self, ref: PullRequestRef, login: str) -> bool:
        return any(
            review.state == "APPROVED" and review.user is not None and review.user.login == login
            for review in self._pull(ref).get_reviews()
        )

    def get_head_sha(self, ref: PullRequestRef) -> str:
        return self._pull(ref).head.sha

    def get_changed_files(self, ref: PullRequestRef) -> list[str]:
        return [f.filename for f in self._pull(ref).get_files()]

    def get_diff(self, ref: PullRequestRef) -> str:
        files = sorted(self._pull(ref).get_files(), key=lambda f: f.filename)
        return render_diff(files)

    def post_line_comment(
        self, ref: PullRequestRef, commit_id: str, path: str, line: int, side: str, body: str
    ) -> None:
        repo = self._repo(ref.full_name)
        pr = repo.get_pull(ref.number)
        pr.create_review_comment(body, repo.get_commit(commit_id), path, line=line, side=side)

    def post_general_comment(self, ref: PullRequestRef, body: str) -> None:
        self._pull(ref).create_issue_comment(body)

    def approve(self, ref: PullRequestRef, body: str = "") -> None:
        self._pull(ref).create_review(body=body, event="APPROVE")

    def close_with_comment(self, ref: PullRequestRef, body: str | None = None) -> None:
        pr = self._pull(ref)
        if body:
            pr.create_issue_comment(body)
        pr.edit(state="closed")

    def merge(self, ref: PullRequestRef, strategy: str = "squash") -> str:
        """Merge with ``strategy``; a rejected squash falls back to a merge commit."""
        pr = self._pull(ref)
        try:
            status = pr.merge(merge_method=strategy)
            if status.merged:
                return strategy
            logger.warning("%s merge of %s was not applied: %s", strategy, ref, status.message)
        except GithubException as e:
            if strategy != "squash":
                raise
            logger.warning("Squash merge of %s rejected (%s); retrying as a merge commit", ref, e)
        if strategy != "squash":
            raise GithubException(405, {"message": f"{strategy} merge was not applied"}, None)
        status = pr.merge(merge_method="merge")
        if not status.merged:
            raise GithubException(405, {"message": status.message or "merge was not applied"}, None)
        return "merge"
