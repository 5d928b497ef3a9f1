"""Tests for local repository discovery."""

import subprocess

import pytest

from prwarden_core.discovery import (
    find_repos,
    merge_discovered,
    parse_github_slug,
    remote_slug,
    scan_unique_repos,
)


def _checkout(root, *parts):
    path = root.joinpath(*parts)
    (path / ".git").mkdir(parents=True)
    return path


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "dev"
    _checkout(root, "api")
    _checkout(root, "api-copy")
    _checkout(root, "group", "tools")
    _checkout(root, ".cache", "hidden")
    _checkout(root, "archived", "old")
    _checkout(root, "deep", "a", "b", "c")
    (root / "notes").mkdir()
    return root


# ---------------------------------------------------------------------------
# find_repos
# ---------------------------------------------------------------------------


class TestFindRepos:
    def test_finds_checkouts_within_depth(self, tree):
        found = find_repos(tree, max_depth=3)
        assert [p.relative_to(tree).as_posix() for p in found] == [
            "api",
            "api-copy",
            "archived/old",
            "group/tools",
        ]

    def test_excluded_paths_are_not_entered(self, tree):
        found = find_repos(tree, max_depth=3, exclude=["archived", "group/"])
        assert [p.name for p in found] == ["api", "api-copy"]

    def test_depth_limit(self, tree):
        assert [p.name for p in find_repos(tree, max_depth=1)] == ["api", "api-copy"]
        assert "c" in [p.name for p in find_repos(tree, max_depth=4)]

    def test_missing_root_finds_nothing(self, tmp_path):
        assert find_repos(tmp_path / "nope") == []


# ---------------------------------------------------------------------------
# scan_unique_repos / merge_discovered
# ---------------------------------------------------------------------------


class TestScan:
    def test_duplicates_collapse_to_first_path(self, tree):
        slugs = {"api": "acme/api", "api-copy": "acme/api", "tools": None, "old": "acme/old"}
        result = scan_unique_repos(tree, exclude=["archived"], slug_of=lambda path: slugs[path.name])

        assert result.discovered_count == 3
        assert result.duplicates_skipped == 1
        assert result.slugs == ["acme/api"]
        assert result.paths_by_slug == {"acme/api": str(tree / "api")}
        assert [r.key for r in result.repos] == ["acme/api", f"path:{tree / 'group' / 'tools'}"]

    def test_merge_keeps_explicit_entries(self, tree):
        result = scan_unique_repos(
            tree, max_depth=1, slug_of=lambda path: {"api": "acme/api", "api-copy": "acme/tools"}[path.name]
        )
        config = {"repos": ["acme/web"], "repo_paths": {"acme/api": "/explicit/api"}}

        merge_discovered(config, result)

        assert config["repos"] == ["acme/web", "acme/api", "acme/tools"]
        assert config["repo_paths"] == {"acme/api": "/explicit/api", "acme/tools": str(tree / "api-copy")}


# ---------------------------------------------------------------------------
# Remote slugs
# ---------------------------------------------------------------------------


class TestRemoteSlug:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://github.com/acme/api.git", "acme/api"),
            ("https://github.com/acme/api", "acme/api"),
            ("git@github.com:acme/api.git\n", "acme/api"),
            ("ssh://git@github.com/acme/api/", "acme/api"),
            ("https://gitlab.com/acme/api.git", None),
            ("https://github.com/acme", None),
        ],
    )
    def test_parse_github_slug(self, url, expected):
        assert parse_github_slug(url) == expected

    def test_reads_origin_remote(self, mocker, tmp_path):
        run = mocker.patch(
            "prwarden_core.discovery.subprocess.run",
            return_value=subprocess.CompletedProcess([], 0, stdout="git@github.com:acme/api.git\n", stderr=""),
        )
        assert remote_slug(tmp_path) == "acme/api"
        assert run.call_args.kwargs["cwd"] == tmp_path

    def test_no_remote(self, mocker, tmp_path):
        mocker.patch(
            "prwarden_core.discovery.subprocess.run",
            return_value=subprocess.CompletedProcess([], 2, stdout="", stderr="error: No such remote 'origin'"),
        )
        assert remote_slug(tmp_path) is None

    def test_git_missing(self, mocker, tmp_path):
        mocker.patch("prwarden_core.discovery.subprocess.run", side_effect=FileNotFoundError("git"))
        assert remote_slug(tmp_path) is None
