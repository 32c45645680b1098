"""
Driver presence endpoints
=========================

PATCH /api/v1/drivers/me/availability -- go available / unavailable
POST  /api/v1/drivers/me/location     -- report the current position
GET   /api/v1/drivers/nearby          -- available drivers around a point
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ridehail.api.dependencies import get_gateway, get_identity, get_presence
from ridehail.api.middleware import limiter
from ridehail.api.schemas import (
    AvailabilityRequest,
    LocationRequest,
    NearbyDriverResponse,
    PresenceResponse,
)
from ridehail.config import settings
from ridehail.domain.enums import ServiceType, VehicleClass
from ridehail.realtime.gateway import RealtimeGateway
from ridehail.realtime.registry import Identity
from ridehail.services.presence import PresenceStore

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.patch(
    "/me/availability",
    response_model=PresenceResponse,
    summary="Set the calling driver's availability",
)
@limiter.limit(settings.rate_limit)
async def set_availability(
    request: Request,
    body: AvailabilityRequest,
    identity: Identity = Depends(get_identity),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    await gateway.share_availability(identity, body.is_available)
    return PresenceResponse(driver_id=identity.user_id, is_available=body.is_available)


@router.post(
    "/me/location",
    response_model=PresenceResponse,
    summary="Report the calling driver's position",
)
@limiter.limit(settings.rate_limit)
async def update_location(
    request: Request,
    body: LocationRequest,
    identity: Identity = Depends(get_identity),
    gateway: RealtimeGateway = Depends(get_gateway),
):
    await gateway.share_location(
        identity, body.latitude, body.longitude, ride_id=body.ride_id
    )
    return PresenceResponse(
        driver_id=identity.user_id, latitude=body.latitude, longitude=body.longitude
    )


@router.get(
    "/nearby",
    response_model=list[NearbyDriverResponse],
    summary="Available drivers near a point, closest first",
)
@limiter.limit(settings.rate_limit)
async def nearby_drivers(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    vehicle_class: VehicleClass = Query(...),
    service_type: ServiceType = Query(ServiceType.RIDE),
    radius_km: Optional[float] = Query(None, gt=0, le=50),
    identity: Identity = Depends(get_identity),
    presence: PresenceStore = Depends(get_presence),
):
    return await presence.nearby_candidates(
        lat, lng, vehicle_class, service_type, radius_km
    )
