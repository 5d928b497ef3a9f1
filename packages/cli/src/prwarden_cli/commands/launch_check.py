"""launch-check command: verify that agent launches really start.

Launches a harmless marker command N times through the launch controller and
reports, per run, which mode was used, whether the launch was confirmed and
whether it had to fall back to a new instance. Useful after changing
``launch.mode`` or ``launch.terminal_app`` or after a terminal app update.
"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone

import click
from rich.console import Console
from rich.table import Table

from prwarden_cli.context import get_launch_controller
from prwarden_core.errors import LaunchError
from prwarden_core.launcher import LaunchMode

console = Console()


@click.command("launch-check")
@click.option(
    "--mode",
    type=click.Choice(["auto"] + [m.value for m in LaunchMode]),
    default=None,
    help="Launch mode to test. Defaults to the configured mode.",
)
@click.option("--runs", default=3, show_default=True, type=click.IntRange(min=1), help="Number of launches.")
@click.option("--hold", default=2, show_default=True, type=int, help="Seconds each launched command stays alive.")
@click.option("--gap", default=1.0, show_default=True, type=float, help="Seconds to wait between launches.")
@click.option("--output", "output_path", type=click.Path(dir_okay=False), default=None, help="Write the JSON report here.")
@click.pass_context
def launch_check_cmd(ctx, mode: str | None, runs: int, hold: int, gap: float, output_path: str | None):
    """Launch a marker command repeatedly and report whether each launch started."""
    controller = get_launch_controller(ctx)
    requested = LaunchMode.parse(mode) if mode else None
    effective = requested or controller.default_mode

    outcomes = []
    for run in range(1, runs + 1):
        command = f"echo 'prwarden launch-check run {run}'; sleep {hold}"
        try:
            outcome = controller.launch(command, mode=effective)
        except LaunchError as e:
            outcome = e.outcome
            if outcome is None:
                raise click.ClickException(str(e))
        outcomes.append(outcome)
        if run < runs:
            time.sleep(gap)

    started = sum(o.started for o in outcomes)
    report = {
        "checked_at": datetime.now(timezone.utc).isoformat(),
        "mode": effective.value,
        "runs": runs,
        "started": started,
        "degraded": sum(o.degraded for o in outcomes),
        "outcomes": [o.to_dict() for o in outcomes],
    }

    table = Table(title=f"launch-check: {effective.value}", show_header=True, header_style="bold cyan")
    table.add_column("Run", justify="right")
    table.add_column("Used mode")
    table.add_column("Started")
    table.add_column("Attempts", justify="right")
    table.add_column("Error")
    for n, o in enumerate(outcomes, start=1):
        ok = "[green]yes[/green]" if o.started else "[red]no[/red]"
        used = o.used_mode.value + (" (fallback)" if o.degraded else "")
        table.add_row(str(n), used, ok, str(o.attempts), o.error or "")
    console.print(table)

    if output_path:
        with open(output_path, "w") as f:
            json.dump(report, f, indent=2)
        console.print(f"[dim]Report written to {output_path}[/dim]")

    if started < runs:
        raise click.ClickException(f"{runs - started} of {runs} launch(es) did not start")
    console.print(f"[green]All {runs} launch(es) started.[/green]")
