"""Provider commands: test, monitor, reset."""

import asyncio
import logging
from typing import Annotated

import httpx
import typer

from ai_failover.cli.common import format_ms, load_runtime
from ai_failover.core.resilience.models import HealthStatus
from ai_failover.observability.events import Event, EventType
from ai_failover.utils.settings import settings

logger = logging.getLogger(__name__)

_STATUS_ICONS = {
    HealthStatus.HEALTHY: "✅",
    HealthStatus.DEGRADED: "⚠️ ",
    HealthStatus.UNHEALTHY: "❌",
}


def test(
    ctx: typer.Context,
    provider: Annotated[str | None, typer.Option("--provider", "-p", help="Only test this provider")] = None,
):
    """Probe providers and report pass/fail."""
    runtime = load_runtime(ctx)
    if provider is not None and provider not in runtime.registry:
        typer.echo(f"❌ Provider '{provider}' is not configured (known: {', '.join(runtime.registry.ids())})", err=True)
        raise typer.Exit(code=1)

    targets = [provider] if provider else runtime.registry.ids()

    async def probe():
        try:
            return [await runtime.monitor.check_now(provider_id, force=True) for provider_id in targets]
        finally:
            await runtime.close()

    records = asyncio.run(probe())
    failed = 0
    for record in records:
        passed = record.total > 0 and record.window[-1].success
        failed += not passed
        detail = format_ms(record.last_response_time_ms) if passed else (record.last_error or "not probed")
        typer.echo(f"{'✅' if passed else '❌'} {record.provider_id:<14} {detail}")

    typer.echo(f"{len(records) - failed}/{len(records)} providers passed")
    if failed:
        raise typer.Exit(code=1)


def monitor(
    ctx: typer.Context,
    duration: Annotated[float, typer.Option("--duration", "-d", min=0.1, help="Seconds to monitor")] = 60.0,
    interval: Annotated[float | None, typer.Option("--interval", "-i", help="Probe interval in seconds")] = None,
):
    """Stream health updates and circuit transitions."""
    runtime = load_runtime(ctx)

    async def watch():
        queue = runtime.event_bus.subscribe()
        runtime.start(interval)
        loop = asyncio.get_running_loop()
        end = loop.time() + duration
        try:
            while (remaining := end - loop.time()) > 0:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    break
                typer.echo(_format_event(event))
        finally:
            runtime.event_bus.unsubscribe(queue)
            await runtime.close()

    typer.echo(f"Monitoring {', '.join(runtime.registry.ids())} for {duration:.0f}s (Ctrl+C to stop)")
    try:
        asyncio.run(watch())
    except KeyboardInterrupt:
        typer.echo("Monitoring stopped by user")

    for record in runtime.monitor.get_records().values():
        icon = _STATUS_ICONS[record.status]
        typer.echo(
            f"{icon} {record.provider_id:<14} score={record.score:.2f} "
            f"success={record.success_rate:.0%} circuit={record.circuit_state.value}"
        )


def reset(
    provider: Annotated[str | None, typer.Option("--provider", "-p", help="Only reset this provider")] = None,
    server: Annotated[
        str | None,
        typer.Option("--server", help="Status API to reset, default http://FAILOVER_API_HOST:FAILOVER_API_PORT"),
    ] = None,
):
    """Force-close circuit breakers on a running status API."""
    server = server or f"http://{settings.host}:{settings.port}"
    params = {"provider": provider} if provider else None
    try:
        response = httpx.post(f"{server.rstrip('/')}/circuits/reset", params=params, timeout=10.0)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        typer.echo(f"❌ Reset failed: HTTP {e.response.status_code} {e.response.text}", err=True)
        raise typer.Exit(code=1)
    except httpx.HTTPError as e:
        typer.echo(f"❌ Reset failed: no status API reachable at {server} ({e})", err=True)
        raise typer.Exit(code=1)

    reset_ids = response.json().get("reset", [])
    typer.echo(f"✅ Reset circuits: {', '.join(reset_ids) or 'none'}")


def _format_event(event: Event) -> str:
    payload = event.payload
    if event.type == EventType.HEALTH_UPDATED:
        return (
            f"[health]  {event.provider_id:<14} {payload['status']:<9} score={payload['score']:.2f} "
            f"latency={format_ms(payload['last_response_time_ms'])}"
        )
    if event.type == EventType.CIRCUIT_TRANSITION:
        return f"[circuit] {event.provider_id:<14} {payload['old_state']} -> {payload['new_state']}"
    if event.type == EventType.FALLBACK:
        return f"[fallback] {payload['from_provider']} -> {payload['to_provider']} ({payload['reason']})"
    return f"[{event.type.value}] {payload.get('message', '')}"
