"""Which open pull requests are waiting on the operator.

Two views, both read-only:

- awaiting_review: open PRs in the watched repositories that the operator
  neither authored nor already approved. A repository that cannot be listed
  is reported in ``errors`` and the others are still listed.
- my_open_pulls: the operator's own open PRs across every repository.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from prwarden_core.gh.base import HostingClient
from prwarden_core.models import PullRequestRef
from prwarden_core.scheduler import FETCH_ERRORS, normalize_repos

logger = logging.getLogger(__name__)


def _order(refs: Iterable[PullRequestRef]) -> list[PullRequestRef]:
    return sorted(refs, key=lambda r: (r.full_name.lower(), r.number))


@dataclass
class AttentionReport:
    pulls: list[PullRequestRef] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    repos: int = 0


def awaiting_review(
    client: HostingClient,
    repos: Iterable[str],
    login: str | None,
    include_drafts: bool = False,
    exclude_repos: Iterable[str] = (),
) -> AttentionReport:
    excluded = set(normalize_repos(exclude_repos))
    watched = [r for r in normalize_repos(repos) if r not in excluded]
    report = AttentionReport(repos=len(watched))
    for repo in watched:
        try:
            refs = client.list_open_pull_requests(repo, include_drafts)
            if login:
                refs = [r for r in refs if r.author.lower() != login.lower()]
                refs = [r for r in refs if not client.approved_by(r, login)]
        except FETCH_ERRORS as e:
            report.errors[repo] = str(e)
            logger.warning("Could not list pull requests of %s: %s", repo, e)
            continue
        report.pulls.extend(refs)
    report.pulls = _order(report.pulls)
    return report


def my_open_pulls(client: HostingClient, include_drafts: bool = False) -> list[PullRequestRef]:
    return _order(client.search_my_open_pull_requests(include_drafts))
