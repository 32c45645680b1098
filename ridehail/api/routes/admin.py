"""
Admin / observability endpoints
===============================

GET /api/v1/admin/open-rides  -- rides still waiting for a driver
GET /api/v1/admin/connections -- live sessions per room on this instance
GET /api/v1/admin/health      -- simple health check
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.api.dependencies import get_db, get_registry, require_admin
from ridehail.api.middleware import limiter
from ridehail.api.schemas import ConnectionsResponse, HealthResponse, RideResponse
from ridehail.config import settings
from ridehail.infrastructure.repositories import RideRepository
from ridehail.realtime.registry import ConnectionRegistry, Identity

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/open-rides",
    response_model=list[RideResponse],
    summary="List rides that have not been accepted yet",
)
@limiter.limit(settings.rate_limit)
async def get_open_rides(
    request: Request,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await RideRepository(db).get_open_rides()


@router.get(
    "/connections",
    response_model=ConnectionsResponse,
    summary="Live realtime sessions on this instance",
)
@limiter.limit(settings.rate_limit)
async def get_connections(
    request: Request,
    admin: Identity = Depends(require_admin),
    registry: ConnectionRegistry = Depends(get_registry),
):
    return ConnectionsResponse(total=len(registry), rooms=registry.room_sizes())


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(registry: ConnectionRegistry = Depends(get_registry)):
    return HealthResponse(connections=len(registry))
