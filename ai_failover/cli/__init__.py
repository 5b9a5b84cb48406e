"""ai-failover CLI entrypoint.

Operator commands for validating configuration, probing providers,
watching health, tuning thresholds and resetting circuits.
"""

from pathlib import Path
from typing import Annotated

import typer

from ai_failover.cli.api import serve
from ai_failover.cli.config import optimize, template, validate
from ai_failover.cli.providers import monitor, reset, test
from ai_failover.utils.security import configure_logging
from ai_failover.utils.settings import settings

app = typer.Typer(help="AI provider failover CLI", add_completion=False)


@app.callback()
def main(
    ctx: typer.Context,
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to the failover config file")
    ] = None,
    log_level: Annotated[str, typer.Option("--log-level", help="Logging level")] = settings.log_level,
):
    """Manage AI provider failover."""
    configure_logging(log_level)
    ctx.obj = {"config_path": config}


# Register commands
app.command("validate")(validate)
app.command("test")(test)
app.command("monitor")(monitor)
app.command("optimize")(optimize)
app.command("reset")(reset)
app.command("template")(template)
app.command("serve")(serve)

__all__ = ["app"]
