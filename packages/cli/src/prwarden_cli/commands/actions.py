"""close and merge commands: act on a pull request after reviewing it."""

from __future__ import annotations

import click
from github import GithubException
from rich.console import Console

from prwarden_cli.context import get_client, resolve_pull_request

console = Console()


def _api_error(action: str, ref, e: GithubException) -> click.ClickException:
    message = e.data.get("message") if isinstance(e.data, dict) else e.data
    return click.ClickException(f"Could not {action} {ref}: {message or e}")


@click.command("close")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option("--comment", default=None, help="Comment to post before closing.")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def close_cmd(ctx, repo: str, pr_number: int, comment: str | None, yes: bool):
    """Close a pull request, optionally leaving a comment first."""
    ref = resolve_pull_request(ctx, repo, pr_number)
    if not yes and not click.confirm(f"Close {ref} ({ref.title})?", default=False):
        console.print("[yellow]Not closed.[/yellow]")
        return
    try:
        get_client(ctx).close_with_comment(ref, comment)
    except GithubException as e:
        raise _api_error("close", ref, e)
    console.print(f"[green]Closed {ref}.[/green]")


@click.command("merge")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option(
    "--strategy",
    type=click.Choice(["squash", "merge", "rebase"]),
    default="squash",
    show_default=True,
    help="Merge method. A rejected squash falls back to a merge commit.",
)
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def merge_cmd(ctx, repo: str, pr_number: int, strategy: str, yes: bool):
    """Merge a pull request."""
    ref = resolve_pull_request(ctx, repo, pr_number)
    if not yes and not click.confirm(f"Merge {ref} ({ref.title}) with {strategy}?", default=False):
        console.print("[yellow]Not merged.[/yellow]")
        return
    try:
        used = get_client(ctx).merge(ref, strategy=strategy)
    except GithubException as e:
        raise _api_error("merge", ref, e)
    note = "" if used == strategy else f" (fell back to {used})"
    console.print(f"[green]Merged {ref}{note}.[/green]")
