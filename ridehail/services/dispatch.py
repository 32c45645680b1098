"""
Dispatch Engine  (tiered broadcast)
===================================

A new or re-offered ride is pushed to drivers in tiers, evaluated at push
time against live sessions and fresh presence reads:

1. **Main drivers** -- sessions in ``main-drivers`` whose driver passes the
   candidate predicate.
2. **Sub-drivers** -- only if tier 1 delivered nothing; same check against
   ``sub-drivers``.
3. **Fallback** -- only if tiers 1-2 delivered nothing; every session in
   ``drivers``, unconditionally.

Drivers in the ride's declined-by set are excluded from every tier.  A failed
broadcast never undoes the ride it was offering.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ridehail.domain.enums import Role
from ridehail.domain.errors import NotificationError, PresenceUnavailable
from ridehail.domain.events import NewRideRequest, Place, RideAccepted, RideTaken
from ridehail.infrastructure.models import RideModel
from ridehail.realtime.fanout import Notifier
from ridehail.realtime.registry import (
    DRIVERS_ROOM,
    MAIN_DRIVERS_ROOM,
    SUB_DRIVERS_ROOM,
    ConnectionRegistry,
    Session,
    user_room,
)
from ridehail.services.presence import PresenceStore

logger = logging.getLogger(__name__)


class DispatchTier(enum.IntEnum):
    MAIN_DRIVERS = 1
    SUB_DRIVERS = 2
    FALLBACK = 3


def tier_for_role(role: Role) -> Optional[DispatchTier]:
    """The candidate tier a role is offered rides in; ``None`` if never."""
    if role is Role.DRIVER:
        return DispatchTier.MAIN_DRIVERS
    if role is Role.SUB_DRIVER:
        return DispatchTier.SUB_DRIVERS
    if role is Role.CUSTOMER or role is Role.ADMIN:
        return None
    raise ValueError(f"Unknown role {role!r}")


_TIER_ROOMS = {
    DispatchTier.MAIN_DRIVERS: (MAIN_DRIVERS_ROOM, Role.DRIVER),
    DispatchTier.SUB_DRIVERS: (SUB_DRIVERS_ROOM, Role.SUB_DRIVER),
}


@dataclass(frozen=True)
class BroadcastResult:
    ride_id: int
    ok: bool
    tier: Optional[DispatchTier] = None
    delivered: int = 0
    error: Optional[str] = None


def offer_from_ride(ride: RideModel) -> NewRideRequest:
    return NewRideRequest(
        ride_id=ride.id,
        vehicle_class=ride.vehicle_class,
        service_type=ride.service_type,
        pickup=Place(
            address=ride.pickup_address,
            latitude=ride.pickup_lat,
            longitude=ride.pickup_lng,
        ),
        destination=Place(
            address=ride.destination_address,
            latitude=ride.destination_lat,
            longitude=ride.destination_lng,
        ),
        fare=ride.final_amount,
        distance_km=ride.distance_km,
        duration_min=ride.duration_min,
        special_requests=ride.special_requests,
    )


class DispatchEngine:
    def __init__(
        self,
        registry: ConnectionRegistry,
        notifier: Notifier,
        presence: PresenceStore,
    ):
        self.registry = registry
        self.notifier = notifier
        self.presence = presence

    async def broadcast(
        self, offer: NewRideRequest, excluded_driver_ids: Iterable[int] = ()
    ) -> BroadcastResult:
        excluded = set(excluded_driver_ids)
        try:
            for tier in (DispatchTier.MAIN_DRIVERS, DispatchTier.SUB_DRIVERS):
                targets = await self._candidate_sessions(tier, offer, excluded)
                if not targets:
                    continue
                delivered = await self.notifier.emit(offer, sessions=targets)
                if delivered:
                    logger.info(
                        "Ride %s offered to %d %s sessions",
                        offer.ride_id,
                        delivered,
                        tier.name.lower(),
                    )
                    return BroadcastResult(offer.ride_id, True, tier, delivered)

            fallback = [
                s
                for s in self.registry.sessions_in_room(DRIVERS_ROOM)
                if s.identity.user_id not in excluded
            ]
            delivered = await self.notifier.emit(offer, sessions=fallback)
        except NotificationError as exc:
            logger.error("Broadcast of ride %s failed: %s", offer.ride_id, exc)
            return BroadcastResult(offer.ride_id, False, error=exc.code)

        if delivered:
            logger.info(
                "Ride %s offered to %d drivers (fallback)", offer.ride_id, delivered
            )
        else:
            logger.warning("Ride %s: no connected driver to offer to", offer.ride_id)
        return BroadcastResult(offer.ride_id, True, DispatchTier.FALLBACK, delivered)

    async def rebroadcast(
        self, ride: RideModel, declined_by: Iterable[int]
    ) -> BroadcastResult:
        return await self.broadcast(offer_from_ride(ride), excluded_driver_ids=declined_by)

    async def withdraw_offer(
        self,
        ride_id: int,
        winner_id: int,
        accepted: RideAccepted | None = None,
    ) -> None:
        """Tell every other driver the ride is gone.  Fire-and-forget."""
        winner_sids = [s.sid for s in self.registry.sessions_in_room(user_room(winner_id))]
        notice = accepted or RideAccepted(ride_id=ride_id, driver_id=winner_id)
        try:
            await self.notifier.emit(
                notice, rooms=[DRIVERS_ROOM], exclude_sids=winner_sids
            )
            await self.notifier.emit(
                RideTaken(ride_id=ride_id, taken_by=winner_id), rooms=[DRIVERS_ROOM]
            )
        except NotificationError as exc:
            logger.warning("Could not withdraw offer for ride %s: %s", ride_id, exc)

    async def _candidate_sessions(
        self,
        tier: DispatchTier,
        offer: NewRideRequest,
        excluded: set[int],
    ) -> list[Session]:
        room, role = _TIER_ROOMS[tier]
        verdicts: dict[int, bool] = {}
        targets = []
        for session in self.registry.sessions_in_room(room):
            driver_id = session.identity.user_id
            if driver_id is None or driver_id in excluded:
                continue
            if tier_for_role(session.identity.role) is not tier:
                continue
            if driver_id not in verdicts:
                try:
                    verdicts[driver_id] = await self.presence.is_candidate(
                        driver_id, offer.vehicle_class, offer.service_type, role
                    )
                except PresenceUnavailable:
                    logger.warning(
                        "Presence unavailable for driver %s; skipping", driver_id
                    )
                    verdicts[driver_id] = False
            if verdicts[driver_id]:
                targets.append(session)
        return targets
