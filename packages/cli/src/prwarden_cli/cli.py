"""CLI entry point for prwarden.

Commands:
  init          write .prwarden.yml with a short setup wizard
  prs           list open pull requests waiting for review (or your own)
  review        review one pull request interactively (or hand it to the agent)
  close, merge  act on a pull request after review
  guidelines    show the learned review guidelines
  launch-check  verify that agent launches actually start
  daemon        watch repositories and trigger reviews for new pull requests
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler

from prwarden_cli.commands.actions import close_cmd, merge_cmd
from prwarden_cli.commands.daemon import daemon_group
from prwarden_cli.commands.guidelines import guidelines_cmd
from prwarden_cli.commands.init import init_cmd
from prwarden_cli.commands.launch_check import launch_check_cmd
from prwarden_cli.commands.prs import prs_cmd
from prwarden_cli.commands.review import review_cmd

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )


@click.group()
@click.version_option(
    version=importlib.metadata.version("prwarden"),
    prog_name="prwarden",
)
@click.option(
    "--config",
    "config_path",
    default=".prwarden.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="PRWARDEN_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Watch GitHub pull requests and review them from the terminal."""
    from prwarden_core.config import load_config
    from prwarden_cli.auth import resolve_github_token

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    try:
        config = load_config(config_path)
    except (yaml.YAMLError, ValueError) as e:
        raise click.UsageError(f"Invalid configuration in {config_path}: {e}")

    # Resolve token early so all subcommands share the same resolution.
    token = resolve_github_token()
    if token:
        config["github_token"] = token

    ctx.obj["config"] = config
    ctx.obj["config_path"] = config_path


main.add_command(init_cmd)
main.add_command(prs_cmd)
main.add_command(review_cmd)
main.add_command(close_cmd)
main.add_command(merge_cmd)
main.add_command(guidelines_cmd)
main.add_command(launch_check_cmd)
main.add_command(daemon_group)
