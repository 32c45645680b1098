"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field

from ridehail.domain.enums import (
    CancelActor,
    PaymentMethod,
    RideStatus,
    Role,
    ServiceType,
    VehicleClass,
)


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    pickup_address: str = Field(..., min_length=1, max_length=255)
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    destination_address: str = Field(..., min_length=1, max_length=255)
    destination_lat: float = Field(..., ge=-90, le=90)
    destination_lng: float = Field(..., ge=-180, le=180)
    vehicle_class: VehicleClass
    service_type: ServiceType = ServiceType.RIDE
    distance_km: Optional[float] = Field(
        None, ge=0, description="Routed distance from the maps provider, if known."
    )
    duration_min: Optional[float] = Field(None, ge=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    discount: int = Field(0, ge=0, description="Promotional discount in paise.")
    special_requests: Optional[str] = Field(None, max_length=500)
    item_description: Optional[str] = Field(None, max_length=255)
    recipient_name: Optional[str] = Field(None, max_length=120)
    recipient_phone: Optional[str] = Field(None, max_length=20)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class AcceptRequest(BaseModel):
    sub_driver_id: Optional[int] = Field(
        None, description="Sub-driver who will operate the ride for this driver."
    )


class StatusUpdateRequest(BaseModel):
    status: RideStatus


class OtpIssueRequest(BaseModel):
    otp: Optional[str] = Field(
        None, max_length=12, description="Customer-chosen code; generated if omitted."
    )
    message: Optional[str] = Field(None, max_length=255)


class OtpVerifyRequest(BaseModel):
    otp: Union[str, int]


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class RateRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(None, max_length=500)


class EmergencyRequest(BaseModel):
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    message: Optional[str] = Field(None, max_length=500)


class AvailabilityRequest(BaseModel):
    is_available: bool


class LocationRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    ride_id: Optional[int] = None


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    customer_id: int
    driver_id: Optional[int] = None
    sub_driver_id: Optional[int] = None
    vehicle_class: VehicleClass
    service_type: ServiceType
    status: RideStatus
    pickup_address: str
    pickup_lat: float
    pickup_lng: float
    destination_address: str
    destination_lat: float
    destination_lng: float
    distance_km: float
    duration_min: float
    base_fare: Optional[int] = None
    distance_fare: Optional[int] = None
    time_fare: Optional[int] = None
    surge_multiplier: float = 1.0
    discount: int = 0
    total_fare: Optional[int] = None
    final_amount: Optional[int] = None
    payment_method: PaymentMethod
    special_requests: Optional[str] = None
    item_description: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    otp_verified: bool = False
    cancelled_by: Optional[CancelActor] = None
    cancellation_reason: Optional[str] = None
    cancellation_fee: int = 0
    refund_amount: int = 0
    is_emergency: bool = False
    customer_rating: Optional[int] = None
    customer_feedback: Optional[str] = None
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DispatchResponse(BaseModel):
    ok: bool
    tier: Optional[int] = None
    delivered: int = 0

    model_config = {"from_attributes": True}


class RideCreatedResponse(BaseModel):
    ride: RideResponse
    duplicate: bool = False
    dispatch: Optional[DispatchResponse] = None


class OtpIssuedResponse(BaseModel):
    ride_id: int
    otp: str
    otp_generated_at: Optional[datetime] = None


class EarningsResponse(BaseModel):
    ride_amount: int
    total_earnings: int
    total_rides: int

    model_config = {"from_attributes": True}


class CompletionResponse(BaseModel):
    ride: RideResponse
    earnings: EarningsResponse


class DeclineResponse(BaseModel):
    ride_id: int
    reoffered: bool
    delivered: int


class NearbyDriverResponse(BaseModel):
    driver_id: int
    full_name: str
    role: Role
    vehicle_class: Optional[VehicleClass] = None
    latitude: float
    longitude: float
    distance_km: float

    model_config = {"from_attributes": True}


class PresenceResponse(BaseModel):
    driver_id: int
    is_available: Optional[bool] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ConnectionsResponse(BaseModel):
    total: int
    rooms: dict[str, int]


class HealthResponse(BaseModel):
    status: str = "ok"
    connections: int = 0


class ErrorResponse(BaseModel):
    detail: str
    code: str
