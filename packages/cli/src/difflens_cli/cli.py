"""CLI entry point for difflens.

Commands:
  review : review the pending changes of the current repository (default use)
  init   : interactive setup wizard that writes .difflens.yml
  models : list the models available on the configured Ollama endpoint
"""

from __future__ import annotations

import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from difflens_cli.commands.init import init_cmd
from difflens_cli.commands.models import models_cmd
from difflens_cli.commands.review import review_cmd
from difflens_core.config import debug_enabled

console = Console()


def _configure_logging(verbose: bool) -> None:
    """Send log records to stderr through rich so they never mix with the report on stdout.

    DEBUG=TRUE in the environment has the same effect as --verbose.
    """
    debug = verbose or debug_enabled()
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=debug)],
        force=True,
    )
    # httpx logs every request at INFO; only useful when debugging.
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)


@click.group()
@click.version_option(package_name="difflens", prog_name="difflens")
@click.option(
    "--config",
    "config_path",
    default=None,
    help="Path to the configuration file. Defaults to .difflens.yml, then config.toml.",
    envvar="DIFFLENS_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging on stderr.")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """Local AI code review for your pending git changes, powered by Ollama."""
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


main.add_command(review_cmd)
main.add_command(init_cmd)
main.add_command(models_cmd)
