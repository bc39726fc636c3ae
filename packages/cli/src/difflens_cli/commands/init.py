"""init command: interactive setup wizard.

Writes .difflens.yml in the current directory so later runs need no flags.
If the Ollama server is reachable, its installed models are offered as
choices and a missing model is flagged before the first review.
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
import yaml
from rich.console import Console

from difflens_core.config import CONTEXT_SCOPES, DEFAULT_CONFIG
from difflens_core.errors import ConfigError, ReviewClientError
from difflens_core.providers.ollama import OllamaReviewer

console = Console()
logger = logging.getLogger(__name__)

CONFIG_FILE = ".difflens.yml"


@click.command("init")
@click.option("--force", is_flag=True, help="Overwrite keys in an existing .difflens.yml without asking.")
def init_cmd(force: bool):
    """Set up difflens for this repository.

    Creates .difflens.yml with the Ollama endpoint, model and context scope.
    """
    console.print("\n[bold cyan]difflens init[/bold cyan]: setup wizard\n")

    path = Path(CONFIG_FILE)
    if path.exists() and not force:
        if not click.confirm(f"{CONFIG_FILE} already exists. Update it?", default=True):
            return

    # --- Endpoint ---
    ollama_url = click.prompt("Ollama base URL", default=DEFAULT_CONFIG["ollama_url"]).rstrip("/")

    # --- Model ---
    installed = _detect_models(ollama_url)
    if installed:
        console.print("\nInstalled models:")
        for name in installed:
            console.print(f"  [bold]{name}[/bold]")
        default_model = installed[0] if DEFAULT_CONFIG["model"] not in installed else DEFAULT_CONFIG["model"]
    else:
        console.print(f"[yellow]Could not list models on {ollama_url}. Is `ollama serve` running?[/yellow]")
        default_model = DEFAULT_CONFIG["model"]
    model = click.prompt("Model", default=default_model)
    if installed and model not in installed and f"{model}:latest" not in installed:
        console.print(f"[yellow]{model} is not installed yet. Run: ollama pull {model}[/yellow]")

    # --- Context ---
    console.print("\nContext scope:")
    console.print("  [bold]changed[/bold]   : only the changed files")
    console.print("  [bold]neighbors[/bold] : changed files plus files in the same directories (default)")
    console.print("  [bold]tree[/bold]      : the whole repository, most relevant first, within the budget")
    scope = click.prompt("Context scope", type=click.Choice(CONTEXT_SCOPES), default=DEFAULT_CONFIG["context_scope"])

    _write_config({"ollama_url": ollama_url, "model": model, "context_scope": scope})
    console.print(f"[green]Wrote {CONFIG_FILE}[/green]")

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print("Review your pending changes with: [bold]difflens review[/bold]")


def _detect_models(ollama_url: str) -> list[str]:
    """Return installed model names, or [] if the server cannot be queried."""
    try:
        with OllamaReviewer(ollama_url, request_timeout=5.0) as client:
            return client.list_models()
    except (ReviewClientError, ConfigError) as e:
        logger.debug("Model listing failed: %s", e)
        return []


def _write_config(config: dict) -> None:
    """Write or update .difflens.yml, preserving any existing keys."""
    path = Path(CONFIG_FILE)
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))
