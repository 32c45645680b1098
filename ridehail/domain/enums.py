"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    PENDING = "pending"
    SEARCHING = "searching"
    ACCEPTED = "accepted"
    ARRIVED = "arrived"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.PENDING: {
        RideStatus.SEARCHING,
        RideStatus.ACCEPTED,
        RideStatus.CANCELLED,
    },
    RideStatus.SEARCHING: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.ARRIVED, RideStatus.CANCELLED},
    RideStatus.ARRIVED: {RideStatus.STARTED, RideStatus.CANCELLED},
    RideStatus.STARTED: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

OPEN_STATUSES = frozenset({RideStatus.PENDING, RideStatus.SEARCHING})
TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})


class VehicleClass(str, enum.Enum):
    BIKE = "bike"
    AUTO = "auto"
    CAR = "car"
    TRUCK = "truck"


class ServiceType(str, enum.Enum):
    RIDE = "ride"
    DELIVERY = "delivery"
    INTERCITY = "intercity"
    RENTAL = "rental"


# Deliveries can go out on any light vehicle; passenger rides need an exact match.
DELIVERY_VEHICLES = frozenset({VehicleClass.BIKE, VehicleClass.AUTO, VehicleClass.CAR})


class Role(str, enum.Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    SUB_DRIVER = "sub_driver"
    ADMIN = "admin"


DRIVER_ROLES = frozenset({Role.DRIVER, Role.SUB_DRIVER})


class CancelActor(str, enum.Enum):
    CUSTOMER = "customer"
    DRIVER = "driver"
    SYSTEM = "system"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    WALLET = "wallet"
    CREDITS = "credits"
