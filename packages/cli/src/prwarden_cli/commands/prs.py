"""prs command: list the open pull requests that need attention."""

from __future__ import annotations

import logging

import click
from github import GithubException
from rich.console import Console
from rich.table import Table

from prwarden_cli.context import get_client, get_config, watched_repos
from prwarden_core.attention import awaiting_review, my_open_pulls
from prwarden_core.models import PullRequestRef

console = Console()
logger = logging.getLogger(__name__)


def _pull_table(refs: list[PullRequestRef], title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Repository")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Draft", justify="center")
    for ref in refs:
        table.add_row(ref.full_name, str(ref.number), ref.title, ref.author, "yes" if ref.draft else "")
    return table


@click.command("prs")
@click.option("--mine", is_flag=True, help="List your own open pull requests across all repositories.")
@click.option(
    "--drafts/--no-drafts",
    "include_drafts",
    default=None,
    help="Include draft pull requests. Defaults to include_drafts from the config.",
)
@click.pass_context
def prs_cmd(ctx, mine: bool, include_drafts: bool | None):
    """List open pull requests waiting for your review.

    Covers every watched repository and leaves out your own pull requests and
    those you already approved. With --mine, lists your own instead.
    """
    config = get_config(ctx)
    if include_drafts is None:
        include_drafts = bool(config.get("include_drafts"))
    client = get_client(ctx)

    if mine:
        try:
            refs = my_open_pulls(client, include_drafts)
        except (GithubException, OSError) as e:
            raise click.ClickException(f"Could not search your pull requests: {e}")
        if not refs:
            console.print("[dim]You have no open pull requests.[/dim]")
            return
        console.print(_pull_table(refs, f"Your open pull requests ({len(refs)})"))
        return

    repos = watched_repos(ctx)
    if not repos:
        raise click.UsageError(
            "No repositories configured. Add `repos:` or `repos_root:` to .prwarden.yml or run `prwarden init`."
        )
    try:
        login = client.current_user()
    except (GithubException, OSError) as e:
        logger.warning("Could not look up the authenticated user (%s); showing every open PR", e)
        login = None

    report = awaiting_review(client, repos, login, include_drafts, exclude_repos=config.get("exclude_repos") or [])
    if report.pulls:
        console.print(_pull_table(report.pulls, f"Waiting for your review ({len(report.pulls)})"))
    else:
        console.print("[green]Nothing is waiting for your review.[/green]")
    for repo, error in report.errors.items():
        console.print(f"  [red]error[/red] {repo}: {error}")
    if report.repos and len(report.errors) == report.repos:
        raise click.ClickException("Every repository failed to list its pull requests.")
