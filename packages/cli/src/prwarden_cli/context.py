"""Shared wiring for commands: hosting client, stores and launch controller.

Each factory first looks in ``ctx.obj`` so tests (and embedding code) can hand
in fakes; otherwise it builds the real object from the loaded config.
"""

from __future__ import annotations

from pathlib import Path

import click

from prwarden_core.launcher import LaunchController, build_controller
from prwarden_core.models import PullRequestRef
from prwarden_store.guidelines import GuidelineStore
from prwarden_store.json_file import JsonStateStore


def get_config(ctx: click.Context) -> dict:
    return ctx.obj["config"]


def get_client(ctx: click.Context):
    client = ctx.obj.get("client")
    if client is not None:
        return client

    from prwarden_core.gh.pull_request import GitHubClient

    token = get_config(ctx).get("github_token")
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    client = GitHubClient(token)
    ctx.obj["client"] = client
    return client


def get_state_store(ctx: click.Context):
    store = ctx.obj.get("state_store")
    if store is None:
        store = JsonStateStore(get_config(ctx)["state_path"])
        ctx.obj["state_store"] = store
        ctx.call_on_close(store.close)
    return store


def get_guideline_store(ctx: click.Context) -> GuidelineStore:
    store = ctx.obj.get("guideline_store")
    if store is None:
        store = GuidelineStore(get_config(ctx)["guidelines_path"])
        ctx.obj["guideline_store"] = store
    return store


def get_launch_controller(ctx: click.Context) -> LaunchController:
    controller = ctx.obj.get("launcher")
    if controller is None:
        try:
            controller = build_controller(get_config(ctx).get("launch"))
        except ValueError as e:
            raise click.UsageError(f"launch: {e}")
        ctx.obj["launcher"] = controller
    return controller


def resolve_pull_request(ctx: click.Context, repo: str, pr_number: int) -> PullRequestRef:
    try:
        return get_client(ctx).get_pull_request(repo, pr_number)
    except ValueError as e:
        raise click.UsageError(str(e))


def watched_repos(ctx: click.Context) -> list[str]:
    """Configured repositories plus those discovered under ``repos_root``.

    Discovery runs once per invocation and also fills ``repo_paths`` for the
    discovered checkouts, so the agent starts in the right directory.
    """
    config = get_config(ctx)
    root = config.get("repos_root")
    if root and not ctx.obj.get("repos_discovered"):
        from prwarden_core.discovery import merge_discovered, scan_unique_repos

        root_path = Path(root).expanduser()
        if not root_path.is_dir():
            raise click.UsageError(f"repos_root is not a directory: {root}")
        result = scan_unique_repos(
            root_path,
            max_depth=int(config.get("repos_root_depth") or 3),
            exclude=config.get("repos_root_exclude") or [],
        )
        merge_discovered(config, result)
        ctx.obj["repos_discovered"] = True
    return list(config.get("repos") or [])
