"""Status API launcher."""

import logging
from typing import Annotated

import typer
import uvicorn

from ai_failover.cli.common import load_runtime
from ai_failover.utils.settings import settings

logger = logging.getLogger(__name__)


def serve(
    ctx: typer.Context,
    host: Annotated[str, typer.Option("--host", help="Host to bind the status API to")] = settings.host,
    port: Annotated[int, typer.Option("--port", "-p", help="Port for the status API")] = settings.port,
    log_level: Annotated[str, typer.Option("--log-level", "-l", help="Server logging level")] = settings.log_level.lower(),
):
    """Serve provider health, circuit state and metrics over HTTP."""
    from ai_failover.api.app import create_app

    runtime = load_runtime(ctx, strict=True)
    app = create_app(runtime)

    typer.echo(f"Starting status API on http://{host}:{port}")
    try:
        uvicorn.run(app, host=host, port=port, log_level=log_level.lower())
    except KeyboardInterrupt:
        typer.echo("Status API stopped by user")
