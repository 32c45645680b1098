"""
Fare Engine  (Strategy Pattern)
===============================

Formula (all amounts in **paise**)
----------------------------------
Fare = (Base_Fare[class] + Distance x Rate_Per_KM + Duration x Rate_Per_Min[class])
       x Surge_Multiplier - Discount

* **Surge_Multiplier** = clamp(open_requests / available_drivers, 1.0, 3.0) when
  surge pricing is enabled, otherwise 1.0.
* The fare is computed once at ride creation and stored as an immutable
  snapshot on the ride.

Complexity: O(1) per quote.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from .enums import VehicleClass

BASE_FARE: dict[VehicleClass, int] = {
    VehicleClass.BIKE: 2_000,
    VehicleClass.AUTO: 3_000,
    VehicleClass.CAR: 5_000,
    VehicleClass.TRUCK: 8_000,
}

RATE_PER_KM: dict[VehicleClass, int] = {
    VehicleClass.BIKE: 400,
    VehicleClass.AUTO: 400,
    VehicleClass.CAR: 400,
    VehicleClass.TRUCK: 400,
}

RATE_PER_MIN: dict[VehicleClass, int] = {
    VehicleClass.BIKE: 50,
    VehicleClass.AUTO: 100,
    VehicleClass.CAR: 150,
    VehicleClass.TRUCK: 200,
}


@dataclass(frozen=True)
class FareBreakdown:
    base_fare: int
    distance_fare: int
    time_fare: int
    surge_multiplier: float
    discount: int
    total_fare: int
    final_amount: int


# ── Strategy hierarchy ────────────────────────────────────────────────


class PricingStrategy(ABC):
    @abstractmethod
    def calculate(self, base_fare: int, distance_fare: int, time_fare: int) -> int: ...


class StandardPricing(PricingStrategy):
    def calculate(self, base_fare: int, distance_fare: int, time_fare: int) -> int:
        return base_fare + distance_fare + time_fare


class SurgePricing(PricingStrategy):
    def __init__(self, surge_multiplier: float = 1.0):
        self.surge_multiplier = surge_multiplier

    def calculate(self, base_fare: int, distance_fare: int, time_fare: int) -> int:
        return round((base_fare + distance_fare + time_fare) * self.surge_multiplier)


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """Pure fare function called once per ride creation."""

    @staticmethod
    def compute_surge(open_requests: int, available_drivers: int) -> float:
        if available_drivers <= 0:
            return 3.0
        return min(3.0, max(1.0, open_requests / available_drivers))

    def quote(
        self,
        distance_km: float,
        duration_min: float,
        vehicle_class: VehicleClass,
        surge_multiplier: float = 1.0,
        discount: int = 0,
    ) -> FareBreakdown:
        base = BASE_FARE[vehicle_class]
        distance_fare = round(distance_km * RATE_PER_KM[vehicle_class])
        time_fare = round(duration_min * RATE_PER_MIN[vehicle_class])

        strategy: PricingStrategy
        if surge_multiplier == 1.0:
            strategy = StandardPricing()
        else:
            strategy = SurgePricing(surge_multiplier)
        total = strategy.calculate(base, distance_fare, time_fare)

        return FareBreakdown(
            base_fare=base,
            distance_fare=distance_fare,
            time_fare=time_fare,
            surge_multiplier=surge_multiplier,
            discount=discount,
            total_fare=total,
            final_amount=max(0, total - discount),
        )


def default_fare(final_amount: int) -> FareBreakdown:
    """Deterministic stand-in for a ride that reached completion without a fare."""
    return FareBreakdown(
        base_fare=5_000,
        distance_fare=2_000,
        time_fare=1_000,
        surge_multiplier=1.0,
        discount=0,
        total_fare=final_amount,
        final_amount=final_amount,
    )
