"""init command: setup wizard that writes .prwarden.yml.

Asks only for what differs per operator (which repositories to watch, where
their checkouts live, how the agent is launched) and creates an empty
guideline file so the learning loop has somewhere to write.
"""

from __future__ import annotations

from pathlib import Path

import click
from rich.console import Console

from prwarden_core.discovery import remote_slug
from prwarden_core.launcher import LaunchMode
from prwarden_store.guidelines import GuidelineStore

console = Console()


@click.command("init")
@click.option("--repo", default=None, help="GitHub repository (owner/name). Auto-detected from git remote.")
@click.pass_context
def init_cmd(ctx, repo: str | None):
    """Set up prwarden for this machine.

    Writes the configuration file and an empty review guideline file.
    """
    from prwarden_core.config import save_config

    config = dict(ctx.obj["config"])
    config_path = ctx.obj.get("config_path", ".prwarden.yml")
    console.print("\n[bold cyan]prwarden init[/bold cyan]: setup wizard\n")

    # --- Repositories ---
    if repo is None:
        repo = remote_slug()
        if repo:
            console.print(f"[dim]Detected repository: {repo}[/dim]")
    default_repos = ", ".join(config.get("repos") or ([repo] if repo else []))
    raw = click.prompt("Repositories to watch (comma-separated owner/name)", default=default_repos or None)
    repos = [r.strip() for r in raw.split(",") if r.strip()]
    bad = [r for r in repos if r.count("/") != 1]
    if bad:
        raise click.UsageError(f"Repositories must be in owner/name format: {', '.join(bad)}")
    config["repos"] = repos

    repo_paths = dict(config.get("repo_paths") or {})
    if repo and repo in repos and repo not in repo_paths:
        repo_paths[repo] = str(Path.cwd())
    for name in repos:
        path = click.prompt(f"Local checkout for {name} (blank to skip)", default=repo_paths.get(name, ""))
        if path:
            repo_paths[name] = path
    config["repo_paths"] = repo_paths

    repos_root = click.prompt(
        "Directory to scan for more checkouts (blank to skip)", default=config.get("repos_root") or ""
    )
    if repos_root and not Path(repos_root).expanduser().is_dir():
        raise click.UsageError(f"Not a directory: {repos_root}")
    config["repos_root"] = repos_root or None

    # --- Polling ---
    config["include_drafts"] = click.confirm("Review draft pull requests?", default=bool(config["include_drafts"]))
    config["poll_interval_sec"] = click.prompt(
        "Poll interval in seconds", type=click.IntRange(min=10), default=config["poll_interval_sec"]
    )

    # --- Agent launch ---
    agent = dict(config["agent"])
    agent["command"] = click.prompt("Agent command", default=agent["command"])
    config["agent"] = agent

    launch = dict(config["launch"])
    launch["mode"] = click.prompt(
        "Launch mode",
        type=click.Choice(["auto"] + [m.value for m in LaunchMode]),
        default=launch["mode"],
    )
    launch["terminal_app"] = click.prompt("Terminal app (macOS)", default=launch["terminal_app"])
    config["launch"] = launch

    save_config(config, config_path)
    console.print(f"[green]Created {config_path}[/green]")

    if GuidelineStore(config["guidelines_path"]).ensure_exists():
        console.print(f"[green]Created {config['guidelines_path']}[/green]")

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print("Seed the watcher with: [bold]prwarden daemon init[/bold]")
    console.print("Then start it with:    [bold]prwarden daemon run[/bold]")

