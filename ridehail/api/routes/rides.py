"""
Ride endpoints
==============

POST  /api/v1/rides                     -- create a ride and offer it to drivers
GET   /api/v1/rides/current/active      -- the caller's ride in progress, if any
GET   /api/v1/rides/{ride_id}           -- poll ride state (recovery path)
POST  /api/v1/rides/{ride_id}/accept    -- driver accepts (first accept wins)
POST  /api/v1/rides/{ride_id}/decline   -- driver declines; ride is re-offered
PATCH /api/v1/rides/{ride_id}/status    -- driver marks arrived / started
POST  /api/v1/rides/{ride_id}/otp       -- customer issues the pickup OTP
POST  /api/v1/rides/{ride_id}/otp/verify -- driver verifies the pickup OTP
POST  /api/v1/rides/{ride_id}/complete  -- driver completes (OTP required)
POST  /api/v1/rides/{ride_id}/cancel    -- customer / driver / admin cancels
POST  /api/v1/rides/{ride_id}/emergency -- raise an emergency alert
POST  /api/v1/rides/{ride_id}/rate      -- customer rates a completed ride
"""

from fastapi import APIRouter, Depends, Request

from ridehail.api.dependencies import get_identity, get_lifecycle
from ridehail.api.middleware import limiter
from ridehail.api.schemas import (
    AcceptRequest,
    CancelRequest,
    CompletionResponse,
    DeclineResponse,
    DispatchResponse,
    EarningsResponse,
    EmergencyRequest,
    ErrorResponse,
    OtpIssuedResponse,
    OtpIssueRequest,
    OtpVerifyRequest,
    RateRequest,
    RideCreatedResponse,
    RideCreateRequest,
    RideResponse,
    StatusUpdateRequest,
)
from ridehail.config import settings
from ridehail.domain.events import GeoPoint
from ridehail.realtime.registry import Identity
from ridehail.services.lifecycle import NewRide, RideLifecycle

router = APIRouter(prefix="/rides", tags=["rides"])

_CONFLICT = {409: {"model": ErrorResponse}}


@router.post(
    "",
    status_code=201,
    response_model=RideCreatedResponse,
    summary="Create a ride request",
    responses={201: {"description": "Ride stored; offered to drivers in tiers."}},
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    created = await lifecycle.create_ride(identity, NewRide(**body.model_dump()))
    return RideCreatedResponse(
        ride=RideResponse.model_validate(created.ride),
        duplicate=created.duplicate,
        dispatch=(
            DispatchResponse.model_validate(created.dispatch)
            if created.dispatch is not None
            else None
        ),
    )


@router.get(
    "/current/active",
    response_model=RideResponse,
    summary="Get the caller's active ride",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def get_active_ride(
    request: Request,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.active_ride(identity)


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get ride status",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: int,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.fetch(ride_id, identity)


@router.post(
    "/{ride_id}/accept",
    response_model=RideResponse,
    summary="Accept a ride offer",
    description=(
        "Exactly one driver wins a ride.  Every later accept returns 409 "
        "with code ``already_accepted``."
    ),
    responses=_CONFLICT,
)
@limiter.limit(settings.rate_limit)
async def accept_ride(
    request: Request,
    ride_id: int,
    body: AcceptRequest | None = None,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    sub_driver_id = body.sub_driver_id if body else None
    return await lifecycle.accept(ride_id, identity, sub_driver_id)


@router.post(
    "/{ride_id}/decline",
    response_model=DeclineResponse,
    summary="Decline a ride offer",
    responses=_CONFLICT,
)
@limiter.limit(settings.rate_limit)
async def decline_ride(
    request: Request,
    ride_id: int,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    result = await lifecycle.decline(ride_id, identity)
    return DeclineResponse(
        ride_id=ride_id, reoffered=result.ok, delivered=result.delivered
    )


@router.patch(
    "/{ride_id}/status",
    response_model=RideResponse,
    summary="Mark the driver as arrived or the trip as started",
    responses=_CONFLICT,
)
@limiter.limit(settings.rate_limit)
async def update_status(
    request: Request,
    ride_id: int,
    body: StatusUpdateRequest,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.advance_status(ride_id, identity, body.status)


@router.post(
    "/{ride_id}/otp",
    response_model=OtpIssuedResponse,
    summary="Issue the pickup OTP",
)
@limiter.limit(settings.rate_limit)
async def issue_otp(
    request: Request,
    ride_id: int,
    body: OtpIssueRequest | None = None,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    ride = await lifecycle.issue_otp(
        ride_id,
        identity,
        code=body.otp if body else None,
        message=body.message if body else None,
    )
    return OtpIssuedResponse(
        ride_id=ride.id, otp=ride.otp_code, otp_generated_at=ride.otp_generated_at
    )


@router.post(
    "/{ride_id}/otp/verify",
    response_model=RideResponse,
    summary="Verify the pickup OTP",
    responses={400: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def verify_otp(
    request: Request,
    ride_id: int,
    body: OtpVerifyRequest,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.verify_otp(ride_id, identity, body.otp)


@router.post(
    "/{ride_id}/complete",
    response_model=CompletionResponse,
    summary="Complete a ride",
    description="Requires a verified pickup OTP and a started trip.",
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def complete_ride(
    request: Request,
    ride_id: int,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    completion = await lifecycle.complete(ride_id, identity)
    return CompletionResponse(
        ride=RideResponse.model_validate(completion.ride),
        earnings=EarningsResponse.model_validate(completion.earnings),
    )


@router.post(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride",
    description=(
        "Free before a driver accepts; afterwards a fee of 10% of the fare, "
        "capped at Rs 50, is withheld from the refund."
    ),
    responses=_CONFLICT,
)
@limiter.limit(settings.rate_limit)
async def cancel_ride(
    request: Request,
    ride_id: int,
    body: CancelRequest | None = None,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.cancel(ride_id, identity, body.reason if body else None)


@router.post(
    "/{ride_id}/emergency",
    response_model=RideResponse,
    summary="Raise an emergency alert for a ride",
)
@limiter.limit(settings.rate_limit)
async def report_emergency(
    request: Request,
    ride_id: int,
    body: EmergencyRequest | None = None,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    location = None
    if body and body.latitude is not None and body.longitude is not None:
        location = GeoPoint(latitude=body.latitude, longitude=body.longitude)
    return await lifecycle.report_emergency(
        identity,
        ride_id=ride_id,
        location=location,
        message=body.message if body else None,
    )


@router.post(
    "/{ride_id}/rate",
    response_model=RideResponse,
    summary="Rate a completed ride",
    description="One rating per ride; updates the driver's average rating.",
    responses=_CONFLICT,
)
@limiter.limit(settings.rate_limit)
async def rate_ride(
    request: Request,
    ride_id: int,
    body: RateRequest,
    identity: Identity = Depends(get_identity),
    lifecycle: RideLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.rate(ride_id, identity, body.rating, body.feedback)
