"""CLI commands for configuration."""

from __future__ import annotations

from typing import Callable

import typer
from rich.console import Console

from axiomtrade.config import Config, get_config_path, get_config_value, save_config

console = Console()


def register(config_app: typer.Typer, get_config: Callable[[], Config]) -> None:

    @config_app.command("show")
    def config_show():
        """Show current configuration (mailbox password masked)."""
        cfg = get_config()
        data = cfg.model_dump()
        if data["mailbox"]["password"]:
            data["mailbox"]["password"] = "***"
        console.print_json(data=data)

    @config_app.command("get")
    def config_get(key: str = typer.Argument(..., help="Dot path, e.g. auth.token_path")):
        """Get a config value."""
        if key == "mailbox.password":
            console.print("[red]Refusing to print the mailbox password.[/red]")
            raise typer.Exit(1)
        console.print(f"{key} = {get_config_value(get_config(), key)}")

    @config_app.command("init")
    def config_init(force: bool = typer.Option(False, "--force", help="Overwrite an existing file")):
        """Write the current configuration to ~/.axiomtrade/config.yaml."""
        path = get_config_path()
        if path.exists() and not force:
            console.print(f"[yellow]{path} already exists (use --force).[/yellow]")
            raise typer.Exit(1)
        save_config(get_config(), path)
        console.print(f"[green]Wrote[/green] {path}")
