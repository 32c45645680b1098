"""
Realtime event schemas.

Every message on the socket is ``{"event": <name>, "data": {...}}``.  Inbound
messages are validated into one member of the ``ClientEvent`` union,
discriminated by the event name; outbound events are pydantic models rendered
with ``to_message``.  Payload keys are camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from .enums import CancelActor, RideStatus, ServiceType, VehicleClass


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EventModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_message(self) -> dict[str, Any]:
        return {
            "event": self.event,  # type: ignore[attr-defined]
            "data": self.model_dump(mode="json", by_alias=True, exclude={"event"}),
        }


class GeoPoint(EventModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class Place(GeoPoint):
    address: str


# ── Client → server ───────────────────────────────────────────────────


class AcceptRide(EventModel):
    event: Literal["accept-ride"]
    ride_id: int
    sub_driver_id: Optional[int] = None


class DeclineRide(EventModel):
    event: Literal["decline-ride"]
    ride_id: int


class JoinRide(EventModel):
    event: Literal["join-ride"]
    ride_id: int


class LeaveRide(EventModel):
    event: Literal["leave-ride"]
    ride_id: int


class LeaveAllRooms(EventModel):
    event: Literal["leave-all-rooms"]


class UpdateLocation(EventModel):
    event: Literal["update-location"]
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    ride_id: Optional[int] = None


class UpdateAvailability(EventModel):
    event: Literal["update-availability"]
    is_available: bool


class ReportEmergency(EventModel):
    event: Literal["emergency-alert"]
    ride_id: Optional[int] = None
    location: Optional[GeoPoint] = None
    message: Optional[str] = None


class OtpGenerated(EventModel):
    event: Literal["otp_generated"]
    ride_id: int
    otp: Optional[str] = None
    customer_message: Optional[str] = None


class SendMessage(EventModel):
    event: Literal["send-message"]
    ride_id: int
    message: str = Field(..., min_length=1, max_length=1000)


class Typing(EventModel):
    event: Literal["typing"]
    ride_id: int
    is_typing: bool = True


class Ping(EventModel):
    event: Literal["ping"]
    payload: Optional[dict[str, Any]] = None


ClientEvent = Annotated[
    Union[
        AcceptRide,
        DeclineRide,
        JoinRide,
        LeaveRide,
        LeaveAllRooms,
        UpdateLocation,
        UpdateAvailability,
        ReportEmergency,
        OtpGenerated,
        SendMessage,
        Typing,
        Ping,
    ],
    Field(discriminator="event"),
]

_client_event_adapter: TypeAdapter[ClientEvent] = TypeAdapter(ClientEvent)


def parse_client_event(message: Any) -> ClientEvent:
    """Validate a raw socket message; raises ``pydantic.ValidationError``."""
    if not isinstance(message, dict):
        message = {}
    data = message.get("data")
    body = dict(data) if isinstance(data, dict) else {}
    body["event"] = message.get("event")
    return _client_event_adapter.validate_python(body)


# ── Server → client ───────────────────────────────────────────────────


class NewRideRequest(EventModel):
    event: Literal["new-ride-request"] = "new-ride-request"
    ride_id: int
    vehicle_class: VehicleClass
    service_type: ServiceType
    pickup: Place
    destination: Place
    fare: Optional[int] = None
    distance_km: Optional[float] = None
    duration_min: Optional[float] = None
    special_requests: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class RideAccepted(EventModel):
    event: Literal["ride-accepted"] = "ride-accepted"
    ride_id: int
    status: RideStatus = RideStatus.ACCEPTED
    driver_id: Optional[int] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    vehicle_class: Optional[VehicleClass] = None
    message: Optional[str] = None


class RideTaken(EventModel):
    event: Literal["ride-taken"] = "ride-taken"
    ride_id: int
    taken_by: int


class RideStatusUpdate(EventModel):
    event: Literal["ride-status-update"] = "ride-status-update"
    ride_id: int
    status: RideStatus
    timestamp: datetime = Field(default_factory=_now)


class DriverLocationUpdate(EventModel):
    event: Literal["driver-location-update"] = "driver-location-update"
    driver_id: str
    location: GeoPoint
    ride_id: Optional[int] = None
    timestamp: datetime = Field(default_factory=_now)


class DriverAvailabilityUpdate(EventModel):
    event: Literal["driver-availability-update"] = "driver-availability-update"
    driver_id: str
    is_available: bool
    timestamp: datetime = Field(default_factory=_now)


class CustomerOtpGenerated(EventModel):
    event: Literal["customer_otp_generated"] = "customer_otp_generated"
    ride_id: int
    otp: str
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class OtpVerifiedSuccess(EventModel):
    event: Literal["otp-verified-success"] = "otp-verified-success"
    ride_id: int
    message: str = "OTP verified successfully by driver"
    timestamp: datetime = Field(default_factory=_now)


class EarningsSnapshot(EventModel):
    ride_amount: int
    total_earnings: int
    total_rides: int


class _Completion(EventModel):
    ride_id: int
    status: RideStatus = RideStatus.COMPLETED
    amount: int
    earnings: EarningsSnapshot
    timestamp: datetime = Field(default_factory=_now)


class RideCompleted(_Completion):
    event: Literal["ride-completed"] = "ride-completed"


class DeliveryCompleted(_Completion):
    event: Literal["delivery-completed"] = "delivery-completed"


class RideCancelled(EventModel):
    event: Literal["ride-cancelled"] = "ride-cancelled"
    ride_id: int
    cancelled_by: CancelActor
    reason: Optional[str] = None
    cancellation_fee: int
    refund_amount: int
    timestamp: datetime = Field(default_factory=_now)


class EmergencyAlert(EventModel):
    event: Literal["emergency-alert"] = "emergency-alert"
    ride_id: Optional[int] = None
    user_id: str
    user_name: Optional[str] = None
    location: Optional[GeoPoint] = None
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)


class NewMessage(EventModel):
    event: Literal["new-message"] = "new-message"
    ride_id: int
    user_id: str
    user_name: Optional[str] = None
    message: str
    timestamp: datetime = Field(default_factory=_now)


class UserTyping(EventModel):
    event: Literal["user-typing"] = "user-typing"
    ride_id: int
    user_id: str
    user_name: Optional[str] = None
    is_typing: bool


class Pong(EventModel):
    event: Literal["pong"] = "pong"
    message: str = "Server received your ping"
    your_data: Optional[dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_now)


class ErrorEvent(EventModel):
    event: Literal["error"] = "error"
    message: str
    code: str = "error"
