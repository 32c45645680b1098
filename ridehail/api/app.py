"""
FastAPI application factory.

* Builds the dispatch core (registry, fan-out, presence, dispatch, lifecycle,
  realtime gateway) once per app and keeps it on ``app.state``.
* Registers REST routes for rides, drivers and admin plus the ``/ws`` socket.
* Starts / stops the background re-dispatch worker via lifespan events and
  closes the connection registry on shutdown.
* Applies rate limiting and renders domain errors as ``{"detail", "code"}``.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridehail.api.middleware import limiter
from ridehail.api.routes import admin, drivers, realtime, rides
from ridehail.config import settings
from ridehail.domain.errors import RideHailError
from ridehail.infrastructure.database import SessionFactory, async_session_factory
from ridehail.infrastructure.redis_client import close_redis
from ridehail.realtime.auth import Authenticator
from ridehail.realtime.fanout import Notifier
from ridehail.realtime.gateway import RealtimeGateway
from ridehail.realtime.registry import ConnectionRegistry
from ridehail.services.dispatch import DispatchEngine
from ridehail.services.lifecycle import RideLifecycle
from ridehail.services.presence import PresenceStore
from ridehail.workers.redispatcher import Redispatcher

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the re-dispatch worker on startup; drain sessions on shutdown."""
    worker = app.state.redispatcher
    if settings.redispatch_enabled:
        await worker.start()
    yield
    if settings.redispatch_enabled:
        await worker.stop()
    await app.state.registry.close()
    await close_redis()


async def _ridehail_error_handler(request: Request, exc: RideHailError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "code": exc.code},
    )


def create_app(session_factory: SessionFactory | None = None) -> FastAPI:
    app = FastAPI(
        title="Ride-Hailing Dispatch API",
        description=(
            "Offers ride and delivery requests to nearby drivers in tiers, "
            "guarantees a single winning accept, and drives each ride from "
            "request to OTP-verified completion with realtime notifications."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    factory = session_factory or async_session_factory
    registry = ConnectionRegistry()
    notifier = Notifier(registry)
    presence = PresenceStore(factory)
    dispatch = DispatchEngine(registry, notifier, presence)
    lifecycle = RideLifecycle(factory, dispatch, notifier)
    authenticator = Authenticator(factory)

    app.state.session_factory = factory
    app.state.registry = registry
    app.state.notifier = notifier
    app.state.presence = presence
    app.state.dispatch = dispatch
    app.state.lifecycle = lifecycle
    app.state.authenticator = authenticator
    app.state.gateway = RealtimeGateway(
        registry, notifier, presence, lifecycle, authenticator
    )
    app.state.redispatcher = Redispatcher(
        factory,
        dispatch,
        interval_seconds=settings.redispatch_interval_seconds,
        after_seconds=settings.redispatch_after_seconds,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(RideHailError, _ridehail_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(realtime.router)

    return app
