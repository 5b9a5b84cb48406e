"""Helpers shared by the CLI commands."""

import logging
from pathlib import Path

import typer

from ai_failover.core.config.manager import ConfigurationManager
from ai_failover.core.runtime import ResilienceRuntime, build_runtime
from ai_failover.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def get_manager(ctx: typer.Context) -> ConfigurationManager:
    config_path: Path | None = (ctx.obj or {}).get("config_path")
    return ConfigurationManager(config_path=config_path)


def load_runtime(ctx: typer.Context, strict: bool = False) -> ResilienceRuntime:
    """Build a runtime or exit with code 1 on configuration errors."""
    manager = get_manager(ctx)
    try:
        return build_runtime(manager, strict=strict)
    except ConfigurationError as e:
        typer.echo(f"❌ {e.message}", err=True)
        for issue in e.issues:
            typer.echo(f"   {issue}", err=True)
        raise typer.Exit(code=1)


def format_ms(value: float | None) -> str:
    return "-" if value is None else f"{value:.0f}ms"
