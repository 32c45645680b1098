"""
Driver eligibility and spatial binning
======================================

1. **Vehicle match** -- passenger services need the driver's vehicle class to
   equal the requested one; deliveries accept any light vehicle
   (bike / auto / car).
2. **Spatial binning** -- driver positions are indexed by H3 hexagon
   (resolution 7, ~5.16 km²).  A proximity query expands the pickup cell into
   a k-ring wide enough to cover the radius, fetches drivers in those cells,
   and filters by exact Haversine distance.

Complexity
----------
* ``location_cell``: O(1)
* ``search_cells``:  O(k²) cells for a ring of radius k
"""

from __future__ import annotations

import math

import h3

from .enums import DELIVERY_VEHICLES, ServiceType, VehicleClass


def vehicle_matches(
    driver_vehicle: VehicleClass | None,
    requested: VehicleClass,
    service_type: ServiceType,
) -> bool:
    if driver_vehicle is None:
        return False
    if service_type == ServiceType.DELIVERY:
        return driver_vehicle in DELIVERY_VEHICLES
    return driver_vehicle == requested


def eligible_vehicles(
    requested: VehicleClass, service_type: ServiceType
) -> frozenset[VehicleClass]:
    if service_type == ServiceType.DELIVERY:
        return DELIVERY_VEHICLES
    return frozenset({requested})


def location_cell(lat: float, lng: float, resolution: int = 7) -> str:
    """Map a geo-point to an H3 hexagonal cell index.  O(1)."""
    return h3.latlng_to_cell(lat, lng, resolution)


def search_cells(
    lat: float, lng: float, radius_km: float, resolution: int = 7
) -> set[str]:
    """
    All H3 cells that may contain a point within *radius_km* of the origin.

    Neighbouring hexagon centres are ``sqrt(3) x edge`` apart, so a disk of
    ``ceil(radius / spacing) + 1`` rings always covers the circle.
    """
    edge_km = h3.average_hexagon_edge_length(resolution, unit="km")
    spacing = math.sqrt(3) * edge_km
    k = math.ceil(radius_km / spacing) + 1
    return set(h3.grid_disk(location_cell(lat, lng, resolution), k))

