"""models command: list models available on the Ollama endpoint."""

from __future__ import annotations

import click
from rich.console import Console

from difflens_core.config import load_config
from difflens_core.errors import ConfigError, ReviewClientError
from difflens_core.providers.ollama import OllamaReviewer

console = Console()


@click.command("models")
@click.option("--ollama-url", default=None, help="Base URL of the Ollama server. Overrides config file.")
@click.pass_context
def models_cmd(ctx, ollama_url: str | None):
    """List the models installed on the Ollama server.

    The configured model is marked with an asterisk; a warning is shown when
    it has not been pulled yet.
    """
    config_path = ctx.obj.get("config_path") if ctx.obj else None
    try:
        config = load_config(config_path, cli_overrides={"ollama_url": ollama_url})
        with OllamaReviewer(config["ollama_url"], request_timeout=10.0) as client:
            models = client.list_models()
    except (ReviewClientError, ConfigError) as e:
        raise click.ClickException(str(e))

    if not models:
        console.print(f"[yellow]No models installed on {config['ollama_url']}.[/yellow]")
        console.print(f"Pull one with: [bold]ollama pull {config['model']}[/bold]")
        return

    configured = config["model"]
    for name in models:
        marker = "*" if _same_model(name, configured) else " "
        console.print(f" {marker} {name}")

    if not any(_same_model(name, configured) for name in models):
        console.print(
            f"\n[yellow]Configured model {configured!r} is not installed. "
            f"Run: ollama pull {configured}[/yellow]"
        )


def _same_model(installed: str, configured: str) -> bool:
    """Ollama names default to the :latest tag when none is given."""
    if ":" not in configured:
        configured = f"{configured}:latest"
    if ":" not in installed:
        installed = f"{installed}:latest"
    return installed == configured
