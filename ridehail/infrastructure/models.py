"""
SQLAlchemy ORM models.

Tables
------
* ``users``         -- customers, drivers, sub-drivers and admins; drivers
  carry their presence flags and last known position
* ``rides``         -- ride / delivery requests and their lifecycle
* ``ride_declines`` -- drivers who passed on an open ride

Indexes
-------
* **B-Tree** on ``users.location_cell`` (H3 index) for proximity look-ups and
  on the presence flags used by dispatch.
* **B-Tree** on ``rides.status``, ``customer_id``, ``driver_id`` and
  ``idempotency_key``.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base
from ridehail.domain.enums import (
    CancelActor,
    PaymentMethod,
    RideStatus,
    Role,
    ServiceType,
    VehicleClass,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
    )


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(20), unique=True, nullable=True)
    role = Column(_enum(Role, "user_role"), default=Role.CUSTOMER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Sub-drivers operate under a main driver's account
    parent_driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Presence
    is_online = Column(Boolean, default=False, nullable=False)
    is_available = Column(Boolean, default=False, nullable=False)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)
    vehicle_class = Column(_enum(VehicleClass, "vehicle_class"), nullable=True)
    vehicle_number = Column(String(20), nullable=True)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    location_cell = Column(String(20), nullable=True)
    location_updated_at = Column(DateTime(timezone=True), nullable=True)

    # Earnings
    total_rides = Column(Integer, default=0, nullable=False)
    total_earnings = Column(Integer, default=0, nullable=False)  # paise
    rating = Column(Float, nullable=True)  # average of customer ratings, 1 decimal

    created_at = Column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_users_role", "role"),
        Index("idx_users_presence", "is_online", "is_available"),
        Index("idx_users_location_cell", "location_cell"),
        Index("idx_users_parent", "parent_driver_id"),
    )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    sub_driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    vehicle_class = Column(_enum(VehicleClass, "vehicle_class"), nullable=False)
    service_type = Column(
        _enum(ServiceType, "service_type"), default=ServiceType.RIDE, nullable=False
    )
    status = Column(
        _enum(RideStatus, "ride_status"), default=RideStatus.PENDING, nullable=False
    )

    pickup_address = Column(String(255), nullable=False)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    destination_address = Column(String(255), nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)

    distance_km = Column(Float, default=0.0, nullable=False)
    duration_min = Column(Float, default=0.0, nullable=False)

    # Fare snapshot, paise
    base_fare = Column(Integer, nullable=True)
    distance_fare = Column(Integer, nullable=True)
    time_fare = Column(Integer, nullable=True)
    surge_multiplier = Column(Float, default=1.0, nullable=False)
    discount = Column(Integer, default=0, nullable=False)
    total_fare = Column(Integer, nullable=True)
    final_amount = Column(Integer, nullable=True)

    payment_method = Column(
        _enum(PaymentMethod, "payment_method"),
        default=PaymentMethod.CASH,
        nullable=False,
    )
    special_requests = Column(Text, nullable=True)

    # Delivery details
    item_description = Column(String(255), nullable=True)
    recipient_name = Column(String(120), nullable=True)
    recipient_phone = Column(String(20), nullable=True)

    # Pickup verification
    otp_code = Column(String(12), nullable=True)
    otp_generated_at = Column(DateTime(timezone=True), nullable=True)
    otp_verified = Column(Boolean, default=False, nullable=False)
    otp_verified_at = Column(DateTime(timezone=True), nullable=True)

    # Cancellation
    cancelled_by = Column(_enum(CancelActor, "cancel_actor"), nullable=True)
    cancellation_reason = Column(String(255), nullable=True)
    cancellation_fee = Column(Integer, default=0, nullable=False)
    refund_amount = Column(Integer, default=0, nullable=False)

    # Emergency
    is_emergency = Column(Boolean, default=False, nullable=False)
    emergency_reported_at = Column(DateTime(timezone=True), nullable=True)

    # Customer feedback after completion
    customer_rating = Column(Integer, nullable=True)
    customer_feedback = Column(Text, nullable=True)
    rated_at = Column(DateTime(timezone=True), nullable=True)

    idempotency_key = Column(String(64), unique=True, nullable=True)

    created_at = Column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    arrived_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_customer", "customer_id"),
        Index("idx_rides_driver", "driver_id"),
        Index("idx_rides_sub_driver", "sub_driver_id"),
        Index("idx_rides_idempotency", "idempotency_key"),
    )


class RideDeclineModel(Base):
    __tablename__ = "ride_declines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    declined_at = Column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("ride_id", "driver_id", name="uq_ride_declines_ride_driver"),
        Index("idx_ride_declines_ride", "ride_id"),
    )
