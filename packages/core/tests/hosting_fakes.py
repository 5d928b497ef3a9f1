"""In-memory hosting client.

Holds pull requests and records every write instead of calling GitHub.
Failures can be injected per method to exercise the fallback and isolation
paths. The CLI tests import it too, through the pytest ``pythonpath`` setting.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace

from github import GithubException

from prwarden_core.gh.base import HostingClient
from prwarden_core.models import PullRequestRef


@dataclass
class _Failure:
    error: Exception
    times: int | None  # None: every call
    when: Callable[..., bool] | None


class InMemoryHostingClient(HostingClient):
    def __init__(self, user: str = "me"):
        self.user = user
        self.pulls: dict[str, dict[int, PullRequestRef]] = {}
        self.files: dict[str, list[str]] = {}
        self.diffs: dict[str, str] = {}
        self.calls: list[tuple[str, PullRequestRef | str]] = []
        self.line_comments: list[dict] = []
        self.general_comments: list[tuple[PullRequestRef, str]] = []
        self.approvals: list[PullRequestRef] = []
        self.closed: list[PullRequestRef] = []
        self.merged: list[tuple[PullRequestRef, str]] = []
        self.approvers: dict[str, set[str]] = {}
        self._failures: dict[str, list[_Failure]] = {}

    # ------------------------------------------------------------------ #
    # Setup                                                                #
    # ------------------------------------------------------------------ #

    def add_pull(self, repo: str, number: int, head_sha: str = "a" * 40, files=(), **attrs) -> PullRequestRef:
        attrs.setdefault("title", f"PR {number}")
        ref = PullRequestRef.from_full_name(repo, number, head_sha=head_sha, **attrs)
        self.pulls.setdefault(repo, {})[number] = ref
        self.files[ref.key] = list(files)
        return ref

    def add_approval(self, ref: PullRequestRef, login: str) -> None:
        self.approvers.setdefault(ref.key, set()).add(login)

    def remove_pull(self, repo: str, number: int) -> None:
        self.pulls.get(repo, {}).pop(number, None)

    def set_head(self, ref: PullRequestRef, sha: str) -> PullRequestRef:
        current = self.pulls[ref.full_name][ref.number]
        updated = replace(current, head_sha=sha)
        self.pulls[ref.full_name][ref.number] = updated
        return updated

    def fail(
        self,
        method: str,
        error: Exception | None = None,
        times: int | None = None,
        when: Callable[..., bool] | None = None,
    ) -> None:
        """Make ``method`` raise ``error`` (an HTTP 422 by default).

        ``times`` limits how many calls fail; ``when`` receives the call's
        keyword arguments and selects which calls fail.
        """
        error = error or GithubException(422, {"message": f"injected {method} failure"}, None)
        self._failures.setdefault(method, []).append(_Failure(error, times, when))

    def _call(self, method: str, target, **call) -> None:
        self.calls.append((method, target))
        for failure in self._failures.get(method, []):
            if failure.times == 0:
                continue
            if failure.when is not None and not failure.when(**call):
                continue
            if failure.times is not None:
                failure.times -= 1
            raise failure.error

    def _current(self, ref: PullRequestRef) -> PullRequestRef:
        try:
            return self.pulls[ref.full_name][ref.number]
        except KeyError:
            raise GithubException(404, {"message": f"{ref} not found"}, None)

    # ------------------------------------------------------------------ #
    # HostingClient                                                        #
    # ------------------------------------------------------------------ #

    def current_user(self) -> str:
        return self.user

    def get_pull_request(self, repo_name: str, number: int) -> PullRequestRef:
        ref = self.pulls.get(repo_name, {}).get(number)
        if ref is None:
            raise ValueError(f"PR #{number} not found in {repo_name}.")
        return ref

    def list_open_pull_requests(self, repo, include_drafts):
        self._call("list_open_pull_requests", repo, repo=repo)
        refs = sorted(self.pulls.get(repo, {}).values(), key=lambda r: r.number)
        return [r for r in refs if include_drafts or not r.draft]

    def search_my_open_pull_requests(self, include_drafts):
        self._call("search_my_open_pull_requests", self.user, include_drafts=include_drafts)
        mine = [r for pulls in self.pulls.values() for r in pulls.values() if r.author == self.user]
        return [r for r in mine if include_drafts or not r.draft]

    def approved_by(self, ref, login):
        self._call("approved_by", ref, ref=ref, login=login)
        return login in self.approvers.get(ref.key, set())

    def get_head_sha(self, ref):
        self._call("get_head_sha", ref, ref=ref)
        return self._current(ref).head_sha

    def get_changed_files(self, ref):
        self._call("get_changed_files", ref, ref=ref)
        return list(self.files.get(ref.key, []))

    def get_diff(self, ref):
        self._call("get_diff", ref, ref=ref)
        return self.diffs.get(ref.key, "")

    def post_line_comment(self, ref, commit_id, path, line, side, body):
        self._call("post_line_comment", ref, ref=ref, commit_id=commit_id, path=path, line=line, side=side, body=body)
        self.line_comments.append(
            {"ref": ref, "commit_id": commit_id, "path": path, "line": line, "side": side, "body": body}
        )

    def post_general_comment(self, ref, body):
        self._call("post_general_comment", ref, ref=ref, body=body)
        self.general_comments.append((ref, body))

    def approve(self, ref, body=""):
        self._call("approve", ref, ref=ref, body=body)
        self.approvals.append(ref)
        self.add_approval(ref, self.user)

    def close_with_comment(self, ref, body=None):
        self._call("close_with_comment", ref, ref=ref, body=body)
        if body:
            self.general_comments.append((ref, body))
        self.closed.append(ref)
        self.remove_pull(ref.full_name, ref.number)

    def merge(self, ref, strategy="squash"):
        self._call("merge", ref, ref=ref, strategy=strategy)
        self.merged.append((ref, strategy))
        self.remove_pull(ref.full_name, ref.number)
        return strategy
