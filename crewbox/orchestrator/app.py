"""FastAPI application for the crewbox orchestrator.

The lifespan builds the service graph, reloads persisted state and runs the
idle-workspace sweeper.  Domain exceptions raised by the services are
translated to HTTP responses here, once, by exception handlers.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from loguru import logger

from crewbox.orchestrator.errors import (
    DuplicateRequestError,
    NotFoundError,
    PlanParseError,
    ShuttingDownError,
    StateConflictError,
)
from crewbox.orchestrator.log import setup_logging
from crewbox.orchestrator.sandbox.driver import ContainerError
from crewbox.orchestrator.services import Services, create_services
from crewbox.orchestrator.settings import get_settings

SWEEP_INTERVAL = 60.0
"""Seconds between idle-workspace sweeps."""


async def _sweep_idle(services: Services) -> None:
    while True:
        await asyncio.sleep(SWEEP_INTERVAL)
        try:
            stopped = await services.workspaces.sweep_idle()
        except Exception:
            logger.exception("Idle sweep failed")
            continue
        if stopped:
            logger.info("Idle sweep stopped {} workspace(s)", stopped)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level, json_logs=settings.log_json)

    logger.info("Crewbox orchestrator starting (host={}, port={})", settings.host, settings.port)
    prefix_info = f", prefix={settings.data_prefix}" if settings.data_prefix else ""
    logger.info("Data root: {} (persist={}{})", settings.data_root, settings.persist, prefix_info)

    # Tests (and embedders) may install a prebuilt service graph before startup.
    services: Services | None = getattr(_app.state, "services", None)
    if services is None:
        services = create_services(settings)
        _app.state.services = services
    await services.load()
    logger.info("Model: {} (max {} rounds per task)", settings.model, settings.task_max_iterations)

    sweeper = asyncio.create_task(_sweep_idle(services))

    yield

    # -- Shutdown --------------------------------------------------------------
    runs = services.runs
    logger.info("Crewbox orchestrator shutting down (active_runs={})", runs.active_count)

    # 1. Stop accepting new task runs.
    runs.begin_shutdown()

    # 2. Let in-flight task runs finish.
    if runs.active_count > 0:
        timeout = settings.graceful_shutdown_timeout
        logger.info("Waiting for {} task runs to finish (timeout={}s)...", runs.active_count, timeout)
        if not await runs.wait_until_drained(timeout=timeout):
            logger.warning("Abandoning {} task runs", runs.active_count)

    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


def _error(status_code: int, detail: str, **extra: object) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, **extra})


async def _not_found(_: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, str(exc))


async def _conflict(_: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_409_CONFLICT, str(exc))


async def _plan_parse(_: Request, exc: Exception) -> JSONResponse:
    raw = exc.raw_response if isinstance(exc, PlanParseError) else None
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc), raw_response=raw)


async def _bad_request(_: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_400_BAD_REQUEST, str(exc))


async def _shutting_down(_: Request, exc: Exception) -> JSONResponse:
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Service is shutting down.")


async def _engine_failure(_: Request, exc: Exception) -> JSONResponse:
    logger.warning("Container engine error: {}", exc)
    return _error(status.HTTP_502_BAD_GATEWAY, str(exc))


def create_app(services: Services | None = None) -> FastAPI:
    """Build the ASGI app.  *services* pre-seeds ``app.state`` (used by tests)."""
    app = FastAPI(title="Crewbox Orchestrator", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(StateConflictError, _conflict)
    app.add_exception_handler(DuplicateRequestError, _conflict)
    app.add_exception_handler(PlanParseError, _plan_parse)
    app.add_exception_handler(ValueError, _bad_request)
    app.add_exception_handler(ShuttingDownError, _shutting_down)
    app.add_exception_handler(ContainerError, _engine_failure)

    # -- API router -- all endpoints live under /api -------------------------
    api = APIRouter(prefix="/api")

    @api.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    from crewbox.orchestrator.routers.controller import router as controller_router
    from crewbox.orchestrator.routers.projects import router as projects_router
    from crewbox.orchestrator.routers.templates import router as templates_router
    from crewbox.orchestrator.routers.tools import router as tools_router
    from crewbox.orchestrator.routers.workspaces import router as workspaces_router

    api.include_router(workspaces_router)
    api.include_router(templates_router)
    api.include_router(tools_router)
    api.include_router(projects_router)
    api.include_router(controller_router)

    app.include_router(api)
    return app


app = create_app()
