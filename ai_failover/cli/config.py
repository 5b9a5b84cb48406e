"""Configuration commands: validate, optimize, template."""

import asyncio
import logging
from typing import Annotated

import typer

from ai_failover.cli.common import get_manager, load_runtime
from ai_failover.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def validate(ctx: typer.Context):
    """Validate the failover configuration and provider credentials."""
    manager = get_manager(ctx)
    try:
        config = manager.load()
    except ConfigurationError as e:
        typer.echo(f"❌ {e.message}", err=True)
        raise typer.Exit(code=1)

    issues = manager.validate(config)
    typer.echo(f"Primary provider:   {config.primary_provider}")
    typer.echo(f"Fallback providers: {', '.join(config.fallback_providers) or '-'}")
    typer.echo(f"Auto fallback:      {'enabled' if config.auto_fallback_enabled else 'disabled'}")

    errors = [issue for issue in issues if issue.is_error]
    warnings = [issue for issue in issues if not issue.is_error]
    for issue in errors:
        typer.echo(f"❌ {issue}")
    for issue in warnings:
        typer.echo(f"⚠️  {issue}")

    if errors:
        typer.echo(f"Configuration is invalid ({len(errors)} errors, {len(warnings)} warnings)")
        raise typer.Exit(code=1)
    typer.echo(f"✅ Configuration is valid ({len(warnings)} warnings)")


def optimize(
    ctx: typer.Context,
    rounds: Annotated[int, typer.Option("--rounds", "-n", min=1, help="Probe rounds used to gather metrics")] = 3,
    apply: Annotated[bool, typer.Option("--apply", help="Save the proposed configuration")] = False,
):
    """Propose thresholds tuned to observed provider performance."""
    runtime = load_runtime(ctx)

    async def gather_metrics():
        try:
            for _ in range(rounds):
                await runtime.monitor.check_all(force=True)
            return runtime.monitor.metrics_summary()
        finally:
            await runtime.close()

    metrics = asyncio.run(gather_metrics())
    for summary in metrics:
        typer.echo(
            f"{summary.provider_id:<14} samples={summary.samples:<3} "
            f"success={summary.success_rate:.0%} p95={summary.p95_latency_ms:.0f}ms "
            f"score={summary.health_score:.2f}"
        )

    manager = runtime.config_manager
    proposed = manager.optimize(metrics, runtime.config)
    changes = manager.describe_changes(runtime.config, proposed)
    if not changes:
        typer.echo("✅ Current configuration already matches observed performance")
        return

    typer.echo("Proposed changes:")
    for change in changes:
        typer.echo(f"  {change}")

    if apply:
        path = manager.save(proposed)
        typer.echo(f"✅ Saved to {path}")
    else:
        typer.echo("Run with --apply to save these changes")


def template(ctx: typer.Context):
    """Print a .env template for the configured providers."""
    manager = get_manager(ctx)
    try:
        typer.echo(manager.generate_env_template(manager.load()), nl=False)
    except ConfigurationError as e:
        typer.echo(f"❌ {e.message}", err=True)
        raise typer.Exit(code=1)
