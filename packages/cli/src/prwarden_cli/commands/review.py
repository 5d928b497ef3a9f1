"""review command: one interactive review session for a pull request."""

from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager

import click
from rich.console import Console
from rich.table import Table

from prwarden_cli.context import (
    get_client,
    get_config,
    get_guideline_store,
    get_launch_controller,
    get_state_store,
    resolve_pull_request,
)
from prwarden_core.agent import AgentLauncher
from prwarden_core.errors import InvalidSelection, LaunchError, StaleSessionError
from prwarden_core.issues import load_issues, parse_issue_line
from prwarden_core.ledger import Ledger
from prwarden_core.models import Issue, Severity, SubmissionState
from prwarden_core.workflow import ApprovalResult, ReviewWorkflow
from prwarden_store.errors import StateLockedError

console = Console()
logger = logging.getLogger(__name__)

_SEVERITY_STYLE = {
    Severity.CRITICAL: "bold red",
    Severity.SUGGESTION: "yellow",
    Severity.NITPICK: "dim",
}

_STATE_STYLE = {
    SubmissionState.SUBMITTED: "green",
    SubmissionState.SUBMITTED_FALLBACK: "yellow",
    SubmissionState.FAILED: "red",
}


def _issue_table(issues: tuple[Issue, ...], title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", width=4)
    table.add_column("Severity", width=10)
    table.add_column("Location", max_width=40)
    table.add_column("Comment")
    for n, issue in enumerate(issues, start=1):
        style = _SEVERITY_STYLE[issue.severity]
        table.add_row(str(n), f"[{style}]{issue.severity.value}[/{style}]", issue.location, issue.body)
    return table


def _prompt_issues() -> list[Issue]:
    console.print("Enter issues as [bold]path:line severity text[/bold], one per line. Empty line to finish.")
    issues: list[Issue] = []
    while True:
        line = click.prompt("issue", default="", show_default=False)
        if not line.strip():
            return issues
        try:
            issues.append(parse_issue_line(line, len(issues) + 1))
        except ValueError as e:
            console.print(f"[red]{e}[/red]")


@contextmanager
def _deferred_interrupt(cancel_event: threading.Event):
    """Turn Ctrl-C into a request to stop after the in-flight submission."""

    def _handler(signum, frame):
        cancel_event.set()
        console.print("\n[yellow]Stopping after the current comment...[/yellow]")

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not the main thread: signals cannot be rerouted here.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _record_review(ctx, ref) -> None:
    """Note the finished review in the watcher ledger, unless a running daemon owns it."""
    store = get_state_store(ctx)
    try:
        with store.lock():
            Ledger(store).mark_reviewed(ref)
    except StateLockedError:
        logger.info("Watcher state is locked by a running daemon; %s not marked reviewed", ref)


@click.command("review")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--pr", "pr_number", type=int, required=True, help="Pull request number.")
@click.option(
    "--issues",
    "issues_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Load candidate issues from a JSON list or a 'path:line severity text' file.",
)
@click.option("--agent", "use_agent", is_flag=True, help="Launch the review agent to collect issues.")
@click.option("--selection", default=None, help="Selection expression; skips the interactive prompt.")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts.")
@click.pass_context
def review_cmd(
    ctx,
    repo: str,
    pr_number: int,
    issues_path: str | None,
    use_agent: bool,
    selection: str | None,
    yes: bool,
):
    """Review a pull request and publish the issues you select.

    Issues come from --issues, from the agent (--agent) or are typed in.
    Selected issues are posted as line comments; issues you skip can be
    added to the review guidelines so they are not raised again.
    """
    client = get_client(ctx)
    guidelines = get_guideline_store(ctx)
    workflow = ReviewWorkflow(client, guidelines)

    ref = resolve_pull_request(ctx, repo, pr_number)
    session = workflow.start_session(ref)
    console.print(f"\n[bold]Reviewing {ref}[/bold]  {ref.title}  [dim]@ {session.commit_id_under_review[:7]}[/dim]")

    # --- Collect ---
    if use_agent:
        agent = AgentLauncher.from_config(get_launch_controller(ctx), get_config(ctx))
        try:
            outcome = workflow.delegate_collection(session, agent)
        except LaunchError as e:
            raise click.ClickException(str(e))
        mode = outcome.used_mode.value + (" (fallback)" if outcome.degraded else "")
        console.print(f"[green]Review agent started[/green] [dim]({mode})[/dim]")
        if issues_path is None:
            console.print("The agent is driving this review; its comments will appear on the pull request.")
            return
        if not yes:
            click.pause(f"Press any key once the agent has written {issues_path}...")

    if issues_path is not None:
        try:
            issues = load_issues(issues_path)
        except (OSError, ValueError) as e:
            raise click.UsageError(f"Could not load issues from {issues_path}: {e}")
    else:
        issues = _prompt_issues()

    interactive = selection is None
    workflow.collect(session, issues, interactive=interactive)

    # --- Present and select ---
    if interactive:
        shown = workflow.present(session)
        if shown:
            console.print(_issue_table(shown, f"{len(shown)} candidate issue(s)"))
        else:
            console.print("[dim]No issues collected.[/dim]")

    while True:
        expr = selection
        if expr is None:
            try:
                expr = click.prompt("Select issues to submit (all, critical, none, 1,3,5-7, quit)", default="all")
            except click.Abort:
                # Ctrl-C or end of input at the prompt counts as quitting the review.
                workflow.cancel(session, "interrupted at the selection prompt")
                raise
        try:
            chosen = workflow.select(session, expr)
        except InvalidSelection as e:
            if selection is not None:
                raise click.UsageError(str(e))
            console.print(f"[red]{e}[/red]")
            continue
        break

    if chosen.cancelled:
        console.print("[yellow]Review cancelled. Nothing was posted.[/yellow]")
        return

    # --- Submit ---
    def _show(issue: Issue, state: SubmissionState) -> None:
        style = _STATE_STYLE.get(state, "white")
        suffix = f" ({issue.error})" if issue.error else ""
        console.print(f"  [{style}]{state.value}[/{style}]  #{issue.id} {issue.location}{suffix}")

    cancel_event = threading.Event()
    try:
        with _deferred_interrupt(cancel_event):
            report = workflow.submit(session, cancel_event=cancel_event, on_result=_show)
    except StaleSessionError as e:
        raise click.ClickException(f"{e} Start a new review to comment on the latest commit.")

    if report.interrupted:
        pending = sum(1 for i in session.issues if i.selected and not i.submission_state.is_terminal)
        console.print(f"[yellow]Interrupted: {pending} selected issue(s) were not submitted.[/yellow]")
        ctx.exit(130)

    # --- Learn ---
    proposed = workflow.proposed_categories(session)
    if proposed:
        console.print("\nSkipped issues suggest these categories to skip in future reviews:")
        for category in proposed:
            console.print(f"  - {category}")

    def _confirm(categories: list[str]) -> bool:
        return yes or click.confirm(f"Add {len(categories)} categor(y/ies) to {guidelines.path}?", default=True)

    added = workflow.learn(session, confirm=_confirm)
    if added:
        console.print(f"[green]Added {len(added)} skip categor{'y' if len(added) == 1 else 'ies'}.[/green]")

    summary = workflow.summary(session)
    console.print(
        f"\n[bold]Summary:[/bold] {summary.submitted} submitted"
        f" ({summary.fallback} as general comments), {summary.skipped} skipped,"
        f" {summary.failed} failed, {summary.critical} critical"
    )
    for issue in session.issues:
        if issue.submission_state is SubmissionState.FAILED:
            console.print(f"  [red]not posted:[/red] #{issue.id} {issue.location}: {issue.body}")
    _record_review(ctx, ref)

    # --- Approve ---
    if not workflow.approval_eligible(session):
        return
    if not (yes or click.confirm(f"No critical issues. Approve {ref}?", default=False)):
        return
    result = workflow.approve(session)
    if result is ApprovalResult.APPROVED:
        console.print(f"[green]Approved {ref}.[/green]")
    elif result is ApprovalResult.FAILED:
        console.print(f"[red]Approval failed: {session.approval_error}[/red]")
