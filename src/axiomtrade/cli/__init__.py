"""axiomtrade CLI - log in to Axiom Trade and inspect the stored session."""

from __future__ import annotations

import asyncio
from typing import Any

import typer

from axiomtrade.cli import auth_cmd, config_cmd, otp_cmd
from axiomtrade.config import Config, load_config
from axiomtrade.logging_setup import setup_logging

# Bootstrap logging from config (respects AXIOM_LOG_FORMAT / AXIOM_LOG_LEVEL)
setup_logging(load_config())

app = typer.Typer(name="axiomtrade", help="Axiom Trade session manager")
config_app = typer.Typer(help="Manage configuration")
otp_app = typer.Typer(help="Read security codes from the configured mailbox")

app.add_typer(config_app, name="config")
app.add_typer(otp_app, name="otp")

_config: Config | None = None


def _get_config() -> Config:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def _run(coro: Any) -> Any:
    """Run async coroutine from sync context."""
    return asyncio.run(coro)


auth_cmd.register(app, _get_config, _run)
otp_cmd.register(otp_app, _get_config)
config_cmd.register(config_app, _get_config)
