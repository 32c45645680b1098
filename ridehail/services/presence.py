"""
Presence Store
==============

Durable driver availability and location, kept on the ``users`` row so the
dispatcher, the REST surface and every API instance share one view.

Rules
-----
* A driver is a dispatch candidate iff the account is active, online,
  available, its role matches the tier being offered, and its vehicle
  matches the request.
* Writes are retried a bounded number of times; a final failure surfaces as
  ``PresenceUnavailable`` and is never swallowed.
* Location updates also store the H3 cell of the new position so proximity
  look-ups are a cell-set query followed by an exact Haversine filter.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from ridehail.config import settings
from ridehail.domain.distance import haversine_km
from ridehail.domain.enums import DRIVER_ROLES, Role, ServiceType, VehicleClass
from ridehail.domain.errors import PresenceUnavailable, UserNotFound
from ridehail.domain.matching import (
    eligible_vehicles,
    location_cell,
    search_cells,
    vehicle_matches,
)
from ridehail.infrastructure.database import SessionFactory
from ridehail.infrastructure.repositories import UserRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class NearbyDriver:
    driver_id: int
    full_name: str
    role: Role
    vehicle_class: Optional[VehicleClass]
    latitude: float
    longitude: float
    distance_km: float


class PresenceStore:
    def __init__(
        self,
        session_factory: SessionFactory,
        retry_attempts: int | None = None,
        h3_resolution: int | None = None,
        retry_backoff: float = 0.2,
    ):
        self.session_factory = session_factory
        self.retry_attempts = max(1, retry_attempts or settings.presence_retry_attempts)
        self.h3_resolution = h3_resolution or settings.h3_resolution
        self.retry_backoff = retry_backoff

    # ── writes ────────────────────────────────────────────────────────

    async def set_online(self, driver_id: int, online: bool) -> None:
        await self._write(driver_id, is_online=online, last_seen_at=_utcnow())

    async def set_available(self, driver_id: int, available: bool) -> None:
        await self._write(driver_id, is_available=available, last_seen_at=_utcnow())

    async def update_location(self, driver_id: int, lat: float, lng: float) -> None:
        now = _utcnow()
        await self._write(
            driver_id,
            current_lat=lat,
            current_lng=lng,
            location_cell=location_cell(lat, lng, self.h3_resolution),
            location_updated_at=now,
            last_seen_at=now,
        )

    async def go_offline(self, driver_id: int) -> bool:
        """Mark a disconnected driver offline and unavailable; False on failure."""
        ok = True
        for values in ({"is_online": False}, {"is_available": False}):
            try:
                await self._write(driver_id, last_seen_at=_utcnow(), **values)
            except (PresenceUnavailable, UserNotFound):
                logger.error(
                    "Could not persist %s for driver %s on disconnect",
                    values,
                    driver_id,
                )
                ok = False
        return ok

    async def _write(self, driver_id: int, **values: Any) -> None:
        last_error: Exception | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                async with self.session_factory() as session:
                    matched = await UserRepository(session).update_presence(
                        driver_id, **values
                    )
                    await session.commit()
            except SQLAlchemyError as exc:
                last_error = exc
                logger.warning(
                    "Presence write for %s failed (attempt %d/%d): %s",
                    driver_id,
                    attempt,
                    self.retry_attempts,
                    exc,
                )
                if attempt < self.retry_attempts:
                    await asyncio.sleep(self.retry_backoff * attempt)
                continue
            if not matched:
                raise UserNotFound(f"User {driver_id} not found")
            return
        raise PresenceUnavailable() from last_error

    # ── reads ─────────────────────────────────────────────────────────

    async def is_candidate(
        self,
        driver_id: int,
        vehicle_class: VehicleClass,
        service_type: ServiceType,
        role: Role | None = None,
    ) -> bool:
        """Fresh read of the candidate predicate for one driver."""
        try:
            async with self.session_factory() as session:
                user = await UserRepository(session).get_by_id(driver_id)
        except SQLAlchemyError as exc:
            raise PresenceUnavailable() from exc

        if user is None or not user.is_active:
            return False
        if user.role not in DRIVER_ROLES:
            return False
        if role is not None and user.role != role:
            return False
        return (
            user.is_online
            and user.is_available
            and vehicle_matches(user.vehicle_class, vehicle_class, service_type)
        )

    async def nearby_candidates(
        self,
        lat: float,
        lng: float,
        vehicle_class: VehicleClass,
        service_type: ServiceType = ServiceType.RIDE,
        radius_km: float | None = None,
    ) -> list[NearbyDriver]:
        """Available drivers within *radius_km* of a point, closest first."""
        radius = radius_km if radius_km is not None else settings.nearby_radius_km
        cells = search_cells(lat, lng, radius, self.h3_resolution)
        try:
            async with self.session_factory() as session:
                drivers = await UserRepository(session).find_available_in_cells(
                    cells, eligible_vehicles(vehicle_class, service_type)
                )
        except SQLAlchemyError as exc:
            raise PresenceUnavailable() from exc

        nearby = []
        for driver in drivers:
            if driver.current_lat is None or driver.current_lng is None:
                continue
            distance = haversine_km(lat, lng, driver.current_lat, driver.current_lng)
            if distance > radius:
                continue
            nearby.append(
                NearbyDriver(
                    driver_id=driver.id,
                    full_name=driver.full_name,
                    role=driver.role,
                    vehicle_class=driver.vehicle_class,
                    latitude=driver.current_lat,
                    longitude=driver.current_lng,
                    distance_km=round(distance, 3),
                )
            )
        nearby.sort(key=lambda d: d.distance_km)
        return nearby
