"""Failover status API.

A small FastAPI service exposing provider health, circuit state, the
fallback audit log and Prometheus metrics for a running runtime. The
lifespan starts the background health loop and closes adapters on shutdown.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from ai_failover import __version__
from ai_failover.api.handlers import HealthHandler
from ai_failover.core.runtime import ResilienceRuntime, build_runtime
from ai_failover.utils.exceptions import ConfigurationError, FailoverError
from ai_failover.utils.security import setup_log_sanitization

logger = logging.getLogger(__name__)


def get_health_handler(request: Request) -> HealthHandler:
    return request.app.state.health_handler


def get_runtime(request: Request) -> ResilienceRuntime:
    return request.app.state.runtime


def create_app(runtime: ResilienceRuntime | None = None, start_monitor: bool = True) -> FastAPI:
    """Build the status app.

    Args:
        runtime: Runtime to expose; built from the environment when omitted
        start_monitor: Run the background health loop for the app's lifetime
    """
    setup_log_sanitization()
    runtime = runtime or build_runtime()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if start_monitor:
            runtime.start()
        logger.info("Status API started for %s", ", ".join(runtime.registry.ids()))
        try:
            yield
        finally:
            await runtime.close()
            logger.info("Status API stopped")

    app = FastAPI(
        title="AI Provider Failover",
        description="Provider health, circuit state and failover history",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.state.health_handler = HealthHandler(runtime)

    @app.exception_handler(FailoverError)
    async def failover_error_handler(request: Request, exc: FailoverError) -> JSONResponse:
        status_code = 400 if isinstance(exc, ConfigurationError) else 503
        logger.error("Request to %s failed: %s", request.url.path, exc.message)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.get("/health")
    async def health(handler: Annotated[HealthHandler, Depends(get_health_handler)]):
        return await handler.basic_health_check()

    @app.get("/providers")
    async def providers(handler: Annotated[HealthHandler, Depends(get_health_handler)]):
        return await handler.provider_status()

    @app.get("/fallback-events")
    async def fallback_events(
        handler: Annotated[HealthHandler, Depends(get_health_handler)],
        limit: Annotated[int | None, Query(ge=1, le=10000)] = None,
    ):
        return await handler.fallback_events(limit)

    @app.get("/metrics")
    async def metrics(runtime: Annotated[ResilienceRuntime, Depends(get_runtime)]):
        return Response(content=runtime.metrics.render(), media_type=runtime.metrics.content_type)

    @app.post("/circuits/reset")
    async def reset_circuits(
        runtime: Annotated[ResilienceRuntime, Depends(get_runtime)],
        handler: Annotated[HealthHandler, Depends(get_health_handler)],
        provider: str | None = None,
    ):
        try:
            reset = await runtime.orchestrator.reset_circuits(provider)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=e.args[0]) from e
        handler.invalidate()
        return {"reset": reset}

    @app.post("/config/reload")
    async def reload_config(
        runtime: Annotated[ResilienceRuntime, Depends(get_runtime)],
        handler: Annotated[HealthHandler, Depends(get_health_handler)],
    ):
        config = runtime.reload()
        handler.invalidate()
        return {
            "primary_provider": config.primary_provider,
            "warnings": [str(issue) for issue in runtime.warnings],
        }

    return app
