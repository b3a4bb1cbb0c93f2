"""CLI commands for reading OTP codes from the mailbox."""

from __future__ import annotations

from typing import Callable

import typer
from rich.console import Console

from axiomtrade.config import Config
from axiomtrade.errors import EmailError
from axiomtrade.otp.fetcher import OtpFetcher

console = Console()


def register(otp_app: typer.Typer, get_config: Callable[[], Config]) -> None:

    @otp_app.command("fetch")
    def fetch(
        wait: int = typer.Option(0, "--wait", "-w", help="Seconds to keep polling (0 = check once)"),
    ):
        """Print the newest unread security code."""
        cfg = get_config()
        fetcher = OtpFetcher.from_config(cfg.mailbox) or OtpFetcher.from_env()
        if fetcher is None:
            console.print("[red]No mailbox configured (mailbox.address / INBOX_LV_EMAIL).[/red]")
            raise typer.Exit(1)
        try:
            if wait > 0:
                code = fetcher.wait_for_otp(timeout=wait, interval=cfg.auth.otp_poll_interval)
            else:
                code = fetcher.fetch_otp_recent()
        except EmailError as exc:
            console.print(f"[red]Mailbox error:[/red] {exc.message}")
            raise typer.Exit(1)
        if code is None:
            console.print("[yellow]No unread security code found.[/yellow]")
            raise typer.Exit(1)
        console.print(code)
