"""CLI commands for the login lifecycle: login, status, logout."""

from __future__ import annotations

from typing import Any, Callable, Optional

import typer
from rich.console import Console
from rich.table import Table

from axiomtrade.auth.session_manager import SessionManager
from axiomtrade.auth.token_store import TokenStore
from axiomtrade.client import EnhancedClient
from axiomtrade.config import Config
from axiomtrade.errors import AxiomError, ErrorResponse
from axiomtrade.logging_setup import redact

console = Console()


def register(app: typer.Typer, get_config: Callable[[], Config], run: Callable[[Any], Any]) -> None:
    """Register login/status/logout on the root app."""

    @app.command()
    def login(
        email: str = typer.Option(..., "--email", "-e", help="Axiom account email"),
        password: str = typer.Option(..., prompt=True, hide_input=True, help="Account password"),
        otp: Optional[str] = typer.Option(None, "--otp", help="Security code; omit to read it from the mailbox"),
        as_json: bool = typer.Option(False, "--json", help="Print errors as JSON"),
    ):
        """Log in and store tokens and session on disk."""
        cfg = get_config()

        async def _login() -> tuple[Any, str]:
            async with EnhancedClient(cfg) as client:
                result = await client.login(email, password, otp)
                return result, await client.session_manager.session_summary()

        try:
            result, summary = run(_login())
        except AxiomError as exc:
            if as_json:
                console.print_json(ErrorResponse.from_axiom_error(exc).model_dump_json())
            else:
                console.print(f"[red]Login failed ({exc.code.value}):[/red] {exc.message}")
            raise typer.Exit(1)

        console.print("[green]Logged in.[/green]")
        if result.user_info and result.user_info.username:
            console.print(f"  User:    {result.user_info.username}")
        console.print(f"  Turnkey: {'yes' if result.turnkey_credentials else 'no'}")
        console.print(f"  {summary}")

    @app.command()
    def status():
        """Show stored token and session state."""
        cfg = get_config()

        async def _status() -> tuple[Any, str]:
            tokens = await TokenStore(cfg.auth.token_path).get()
            summary = await SessionManager(cfg.auth.session_path, auto_save=False).session_summary()
            return tokens, summary

        tokens, summary = run(_status())
        if tokens is None:
            console.print("[dim]No stored tokens. Run 'axiomtrade login'.[/dim]")
            raise typer.Exit(1)

        table = Table(title="Tokens", show_lines=True)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("Access token", redact(tokens.access_token))
        table.add_row("Refresh token", redact(tokens.refresh_token))
        table.add_row("Expires at", tokens.expires_at.isoformat() if tokens.expires_at else "never")
        table.add_row("Expired", "[red]yes[/red]" if tokens.is_expired() else "no")
        table.add_row("Needs refresh", "yes" if tokens.needs_refresh() else "no")
        console.print(table)
        console.print(summary)

    @app.command()
    def logout():
        """Delete stored tokens and session."""
        cfg = get_config()

        async def _logout() -> None:
            await TokenStore(cfg.auth.token_path).clear()
            await SessionManager(cfg.auth.session_path, auto_save=True).clear_session()

        run(_logout())
        console.print("[green]Logged out.[/green]")
