"""review command: review the pending changes of a repository."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from difflens_core.config import CONTEXT_SCOPES, load_config, validate_config
from difflens_core.errors import ConfigError, ReviewFailed
from difflens_core.models import ReviewReport
from difflens_core.reviewer import run_review

console = Console()
err_console = Console(stderr=True)


def print_warnings(warnings: list[str]) -> None:
    if not warnings:
        return
    err_console.print(f"\n[yellow]{len(warnings)} warning(s):[/yellow]")
    for warning in warnings:
        err_console.print(f"  [yellow]•[/yellow] {warning}", markup=False, highlight=False)


def print_report(report: ReviewReport) -> None:
    """Render a ReviewReport to the terminal."""
    if report.nothing_to_review:
        console.print(f"[green]{report.text}[/green]")
        print_warnings(report.warnings)
        return

    console.print("\n[bold]Code Review Results[/bold]\n")
    console.print(Markdown(report.text))

    files = ", ".join(report.changed_files)
    console.print(
        Panel(
            f"[bold]{len(report.changed_files)}[/bold] changed file(s): {files}\n"
            f"[bold]{len(report.context_files)}[/bold] context file(s) · "
            f"model [cyan]{report.model}[/cyan] · {report.duration_seconds:.1f}s",
            title="difflens",
            expand=False,
        )
    )
    print_warnings(report.warnings)


@click.command("review")
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False))
@click.option("--staged/--unstaged", default=None, help="Review staged changes instead of the working tree.")
@click.option("--model", default=None, help="Ollama model name. Overrides config file.")
@click.option("--ollama-url", default=None, help="Base URL of the Ollama server. Overrides config file.")
@click.option(
    "--scope",
    "context_scope",
    type=click.Choice(CONTEXT_SCOPES),
    default=None,
    help="Which repository files to send as context. Overrides config file.",
)
@click.option("--max-context-chars", type=int, default=None, help="Total character budget for context files.")
@click.option("--timeout", "run_timeout", type=float, default=None, help="Overall run timeout in seconds.")
@click.option(
    "--guidelines",
    "guidelines_path",
    default=None,
    help="Path to a Markdown guidelines file. Overrides config file.",
)
@click.option(
    "--only",
    "only_paths",
    multiple=True,
    help="Limit the diff to this path, relative to the repository root. Repeatable.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON.")
@click.option(
    "--output",
    "-o",
    "output_path",
    type=click.Path(dir_okay=False, writable=True),
    default=None,
    help="Also write the review text to this file.",
)
@click.pass_context
def review_cmd(
    ctx,
    path: str,
    staged: bool | None,
    model: str | None,
    ollama_url: str | None,
    context_scope: str | None,
    max_context_chars: int | None,
    run_timeout: float | None,
    guidelines_path: str | None,
    only_paths: tuple[str, ...],
    as_json: bool,
    output_path: str | None,
):
    """Review pending changes in the git repository at PATH.

    Collects the diff, gathers related files from the repository (honouring
    .gitignore), and asks a local Ollama model for a code review.

    \b
    Environment variables:
      OLLAMA_URL / OLLAMA_HOST   Ollama base URL (default http://localhost:11434)
      DIFFLENS_MODEL             Model name (default codellama)
      DEBUG=TRUE                 Log requests and raw responses
    """
    config_path = ctx.obj.get("config_path") if ctx.obj else None
    try:
        config = load_config(
            config_path,
            cli_overrides={
                "model": model,
                "ollama_url": ollama_url,
                "staged": staged,
                "context_scope": context_scope,
                "max_context_chars": max_context_chars,
                "run_timeout": run_timeout,
                "guidelines": guidelines_path,
            },
        )
        validate_config(config)
    except ConfigError as e:
        raise click.UsageError(str(e))

    target = "staged changes" if config["staged"] else "working tree changes"
    err_console.print(f"[dim]Reviewing {target} in {Path(path).resolve()} with {config['model']}...[/dim]")

    try:
        report = run_review(path, config, paths=only_paths)
    except ReviewFailed as e:
        print_warnings(e.warnings)
        raise click.ClickException(f"Review failed ({e.failed_in.value}): {e.cause}")

    if output_path:
        Path(output_path).write_text(report.text + "\n", encoding="utf-8")

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        print_report(report)
