"""Local repository discovery.

Scans a directory tree for git checkouts and maps each one to its GitHub
``owner/name`` slug via the ``origin`` remote. Several checkouts of the same
repository (clones, worktrees kept as plain directories) collapse to one
entry: the lexicographically first path wins, so repeated scans agree.

Hidden directories are never entered. Exclusions are paths relative to the
scan root and exclude everything below them.
"""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_SCAN_DEPTH = 3


def parse_github_slug(url: str) -> str | None:
    """``owner/name`` from an https or ssh GitHub remote URL, else None."""
    url = url.strip()
    # https://github.com/owner/repo.git and git@github.com:owner/repo.git both give owner/repo
    if "github.com" not in url:
        return None
    slug = url.split("github.com")[-1].lstrip("/:").removesuffix(".git").rstrip("/")
    return slug if slug.count("/") == 1 and all(slug.split("/")) else None


def remote_slug(path: str | Path | None = None) -> str | None:
    """GitHub slug of the ``origin`` remote of the checkout at ``path`` (default: cwd)."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            capture_output=True,
            text=True,
            timeout=5,
            cwd=path,
        )
    except (FileNotFoundError, NotADirectoryError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return parse_github_slug(result.stdout)


def is_git_repo(path: Path) -> bool:
    return (path / ".git").is_dir()


def find_repos(root: str | Path, max_depth: int = DEFAULT_SCAN_DEPTH, exclude: Iterable[str] = ()) -> list[Path]:
    """Git checkouts at most ``max_depth`` levels below ``root`` (root itself is depth 0), sorted."""
    root = Path(root).expanduser()
    excluded = [root / e.strip().strip("/") for e in exclude if e and e.strip().strip("/")]
    found = []
    for dirpath, dirnames, _ in os.walk(root):
        current = Path(dirpath)
        depth = len(current.relative_to(root).parts)
        if is_git_repo(current):
            found.append(current)
        if depth >= max_depth:
            dirnames[:] = []
            continue
        dirnames[:] = [
            d
            for d in dirnames
            if not d.startswith(".") and not any(_is_within(current / d, ex) for ex in excluded)
        ]
    return sorted(found)


def _is_within(path: Path, parent: Path) -> bool:
    return path == parent or parent in path.parents


@dataclass
class DiscoveredRepo:
    path: Path
    slug: str | None

    @property
    def key(self) -> str:
        return self.slug or f"path:{self.path}"


@dataclass
class ScanResult:
    discovered_count: int = 0
    repos: list[DiscoveredRepo] = field(default_factory=list)

    @property
    def duplicates_skipped(self) -> int:
        return max(0, self.discovered_count - len(self.repos))

    @property
    def slugs(self) -> list[str]:
        return [r.slug for r in self.repos if r.slug]

    @property
    def paths_by_slug(self) -> dict[str, str]:
        return {r.slug: str(r.path) for r in self.repos if r.slug}


def scan_unique_repos(
    root: str | Path,
    max_depth: int = DEFAULT_SCAN_DEPTH,
    exclude: Iterable[str] = (),
    slug_of: Callable[[Path], str | None] | None = None,
) -> ScanResult:
    slug_of = slug_of or remote_slug
    paths = find_repos(root, max_depth, exclude)
    unique: dict[str, DiscoveredRepo] = {}
    for path in paths:
        repo = DiscoveredRepo(path=path, slug=slug_of(path))
        if repo.key not in unique:
            unique[repo.key] = repo
    result = ScanResult(discovered_count=len(paths), repos=sorted(unique.values(), key=lambda r: r.key))
    no_remote = [r for r in result.repos if not r.slug]
    if no_remote:
        logger.info("%d checkout(s) under %s have no GitHub origin remote", len(no_remote), root)
    logger.debug(
        "Found %d checkout(s) under %s, %d unique, %d duplicate(s) skipped",
        result.discovered_count,
        root,
        len(result.repos),
        result.duplicates_skipped,
    )
    return result


def merge_discovered(config: dict, result: ScanResult) -> dict:
    """Add discovered repositories and their checkout paths to ``config`` in place.

    Explicit ``repos`` and ``repo_paths`` entries are kept; discovery only fills gaps.
    """
    repos = list(config.get("repos") or [])
    for slug in result.slugs:
        if slug not in repos:
            repos.append(slug)
    repo_paths = dict(result.paths_by_slug)
    repo_paths.update(config.get("repo_paths") or {})
    config["repos"] = repos
    config["repo_paths"] = repo_paths
    return config
