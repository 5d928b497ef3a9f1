"""daemon commands: watch repositories and trigger reviews for new pull requests.

  daemon init     seed the ledger with every currently open PR, so only PRs
                  opened from now on trigger a review
  daemon run      poll until interrupted (or once with --once)
  daemon status   report the last checkpointed state; safe while a daemon runs
"""

from __future__ import annotations

import json
import logging
import signal
import threading
from dataclasses import asdict

import click
from github import GithubException
from rich.console import Console
from rich.table import Table

from prwarden_cli.context import get_client, get_config, get_launch_controller, get_state_store, watched_repos
from prwarden_core.agent import AgentLauncher
from prwarden_core.ledger import Ledger
from prwarden_core.scheduler import PollingScheduler, PollSummary, read_status
from prwarden_store.errors import StateLockedError
from prwarden_store.memory import MemoryStateStore

console = Console()
logger = logging.getLogger(__name__)


def _warn_if_recovered(ledger: Ledger) -> None:
    if ledger.recovered_from_corruption:
        console.print(
            f"[bold red]Watcher state at {ledger.location} was unreadable and has been reset.[/bold red]\n"
            "[red]Every currently open pull request is treated as new.[/red]"
        )


def _skip_author(client, config: dict) -> str | None:
    if not config.get("skip_own_prs"):
        return None
    try:
        return client.current_user() or None
    except (GithubException, OSError) as e:
        logger.warning("Could not look up the authenticated user (%s); own PRs will not be skipped", e)
        return None


def _build_scheduler(ctx, ledger: Ledger, trigger=None, interval: int | None = None) -> PollingScheduler:
    config = get_config(ctx)
    repos = watched_repos(ctx)
    if not repos:
        raise click.UsageError(
            "No repositories configured. Add `repos:` or `repos_root:` to .prwarden.yml or run `prwarden init`."
        )
    client = get_client(ctx)
    if trigger is None:
        trigger = AgentLauncher.from_config(get_launch_controller(ctx), config)
    return PollingScheduler(
        client,
        ledger,
        trigger,
        repos=repos,
        include_drafts=bool(config.get("include_drafts")),
        exclude_repos=config.get("exclude_repos") or [],
        subpath_filters=config.get("repo_subpath_filters") or {},
        interval=interval if interval is not None else config["poll_interval_sec"],
        max_backoff=config.get("max_backoff_sec", 3600),
        skip_author=_skip_author(client, config),
        seed_new_repos=config.get("seed_new_repos", True),
    )


def _print_summary(summary: PollSummary) -> None:
    console.print(f"Poll complete: {summary}.")
    for ref in summary.new_refs:
        console.print(f"  [green]new[/green] {ref}  {ref.title}")
    for repo, error in summary.errors.items():
        console.print(f"  [red]error[/red] {repo}: {error}")


@click.group("daemon")
def daemon_group():
    """Watch repositories and launch the review agent for new pull requests."""


@daemon_group.command("init")
@click.pass_context
def daemon_init_cmd(ctx):
    """Mark every currently open pull request as already seen."""
    ledger = Ledger(get_state_store(ctx), load=False)
    scheduler = _build_scheduler(ctx, ledger)
    try:
        seeded = scheduler.initialize()
    except StateLockedError as e:
        raise click.ClickException(f"A daemon is already running: {e}")
    if ledger.recovered_from_corruption:
        console.print(f"[yellow]Replaced the unreadable watcher state at {ledger.location}.[/yellow]")
    excluded = len(scheduler.excluded)
    console.print(
        f"Daemon initialized. Monitoring {len(scheduler.repos)} repos ({excluded} excluded). "
        f"Seeded {seeded} existing PRs as already seen."
    )


@daemon_group.command("run")
@click.option("--once", is_flag=True, help="Run a single poll cycle and exit.")
@click.option("--interval", type=int, default=None, help="Seconds between polls (minimum 10). Overrides config.")
@click.option("--dry-run", is_flag=True, help="Poll against a copy of the state and only print what would trigger.")
@click.pass_context
def daemon_run_cmd(ctx, once: bool, interval: int | None, dry_run: bool):
    """Poll the configured repositories until interrupted."""
    trigger = None
    store = get_state_store(ctx)
    if dry_run:
        # Nothing is written and no agent is launched.
        snapshot = MemoryStateStore(initial=store.load(quarantine=False))
        snapshot.recovered_from_corruption = store.recovered_from_corruption
        store = snapshot

        def trigger(ref):
            console.print(f"[dim]would launch review agent for {ref}[/dim]")

    # Loaded by the scheduler once it holds the store lock.
    ledger = Ledger(store, load=False)
    scheduler = _build_scheduler(ctx, ledger, trigger=trigger, interval=interval)

    try:
        if once:
            summary = scheduler.run_once()
            _warn_if_recovered(ledger)
            _print_summary(summary)
            return

        stop_event = threading.Event()

        def _stop(signum, frame):
            console.print("\n[yellow]Stopping after the current repository...[/yellow]")
            stop_event.set()

        first_cycle = True

        def _on_cycle(summary: PollSummary) -> None:
            nonlocal first_cycle
            if first_cycle:
                _warn_if_recovered(ledger)
                first_cycle = False
            _print_summary(summary)

        previous = {sig: signal.signal(sig, _stop) for sig in (signal.SIGINT, signal.SIGTERM)}
        console.print(
            f"Daemon running. Poll interval: {scheduler.interval:g}s. Include drafts: {scheduler.include_drafts}. "
            f"Repo subpath filters: {len(scheduler.subpath_filters)}."
        )
        try:
            scheduler.run(stop_event, on_cycle=_on_cycle)
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
    except StateLockedError as e:
        raise click.ClickException(f"A daemon is already running: {e}")


@daemon_group.command("status")
@click.option("--json", "as_json", is_flag=True, help="Print the status as JSON.")
@click.pass_context
def daemon_status_cmd(ctx, as_json: bool):
    """Show the watcher state as of its last checkpoint."""
    ledger = Ledger(get_state_store(ctx), read_only=True)
    config = get_config(ctx)
    scheduler = PollingScheduler(
        client=None,
        ledger=ledger,
        trigger=None,
        repos=watched_repos(ctx),
        include_drafts=bool(config.get("include_drafts")),
        exclude_repos=config.get("exclude_repos") or [],
        subpath_filters=config.get("repo_subpath_filters") or {},
        interval=config["poll_interval_sec"],
    )
    status = read_status(ledger, scheduler)

    if as_json:
        click.echo(json.dumps(asdict(status), indent=2))
        return

    if status.recovered_from_corruption:
        console.print(
            f"[bold red]Watcher state at {status.state_path} is unreadable.[/bold red]\n"
            "[red]The daemon resets it on its next poll and treats every open pull request as new.[/red]"
        )
    table = Table(title="prwarden daemon", show_header=False)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("State file", status.state_path)
    table.add_row("Initialized", "yes" if status.initialized else "[yellow]no, run `prwarden daemon init`[/yellow]")
    table.add_row("Poll interval", f"{status.poll_interval_sec:g}s")
    table.add_row("Include drafts", str(status.include_drafts))
    table.add_row("Monitored repos", ", ".join(status.monitored_repos) or "(none)")
    table.add_row("Excluded repos", ", ".join(status.excluded_repos) or "(none)")
    filters = "; ".join(f"{repo}: {', '.join(paths)}" for repo, paths in status.subpath_filters.items())
    table.add_row("Sub-path filters", filters or "(none)")
    table.add_row("Tracked PRs", str(status.tracked))
    table.add_row(
        "Seeded / pending / triggered / failed",
        f"{status.seeded} / {status.pending} / {status.success} / {status.failed}",
    )
    table.add_row("Polls", str(status.poll_count))
    table.add_row("Last poll", status.last_poll_at or "never")
    if status.last_error:
        table.add_row("Last error", f"[red]{status.last_error}[/red]")
    console.print(table)
