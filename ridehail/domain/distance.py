"""
Distance and travel-time estimates.

Assumption
----------
Great-circle (Haversine) distance stands in for road distance; ride creation
takes a routed distance from the client when the maps provider supplied one and
falls back to this estimate otherwise.

Complexity: O(1) per call.
"""

import math

from .enums import VehicleClass

EARTH_RADIUS_KM = 6_371.0

# Average city speeds in km/h, used when no routed duration is available.
AVERAGE_SPEED_KMH: dict[VehicleClass, float] = {
    VehicleClass.BIKE: 25.0,
    VehicleClass.AUTO: 20.0,
    VehicleClass.CAR: 30.0,
    VehicleClass.TRUCK: 25.0,
}


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def estimate_duration_min(distance_km: float, vehicle_class: VehicleClass) -> int:
    """Rough travel time in whole minutes for *distance_km*."""
    speed = AVERAGE_SPEED_KMH.get(vehicle_class, AVERAGE_SPEED_KMH[VehicleClass.BIKE])
    return round(distance_km / speed * 60)
