"""guidelines command: show what reviews focus on and which categories they skip."""

from __future__ import annotations

import click
from rich.console import Console

from prwarden_cli.context import get_guideline_store

console = Console()


@click.command("guidelines")
@click.option("--path", "show_path", is_flag=True, help="Print only the guideline file path.")
@click.pass_context
def guidelines_cmd(ctx, show_path: bool):
    """Show the review guidelines, including categories learned from skipped issues."""
    store = get_guideline_store(ctx)
    if show_path:
        click.echo(str(store.path))
        return

    if not store.path.exists():
        console.print(f"[yellow]No guidelines yet at {store.path}.[/yellow]")
        console.print("Skipped issues from `prwarden review` are added here once you confirm them.")
        return

    guidelines = store.load()
    console.print(f"[dim]{store.path}[/dim]\n")
    console.print("[bold cyan]Focus[/bold cyan]")
    console.print(guidelines.focus or "[dim](none)[/dim]")
    console.print(f"\n[bold cyan]Skip[/bold cyan] ({len(guidelines.skip)})")
    if not guidelines.skip:
        console.print("[dim](none)[/dim]")
    for category in guidelines.skip:
        console.print(f"  - {category}")
