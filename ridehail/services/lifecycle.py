"""
Ride Lifecycle State Machine
============================

    pending -> searching -> accepted -> arrived -> started -> completed
        \\__________\\___________\\__________\\__________\\-> cancelled

Every operation is one storage transaction whose write is conditional on the
state it read (``UPDATE ... WHERE status = <read>``), so a concurrent change
turns into a typed failure instead of a lost update.  Notifications are sent
only after commit; a fan-out failure is logged and never rolls a transition
back.

Accept
------
First accept wins: a single ``UPDATE rides SET driver_id = ? WHERE id = ? AND
driver_id IS NULL AND status IN ('pending', 'searching')``.  Exactly one
caller sees one affected row; everyone else re-reads and gets
``AlreadyAccepted``.  The winner's availability is cleared in the same
transaction.

Completion
----------
Requires the pickup OTP to have been verified by the assigned driver and the
trip to have started.  Completion credits the driver's earnings and makes the
driver available again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ridehail.config import Settings, settings as default_settings
from ridehail.domain.distance import estimate_duration_min, haversine_km
from ridehail.domain.entities import (
    RideParties,
    check_transition,
    generate_otp,
    normalise_otp,
    otp_matches,
    quote_cancellation,
)
from ridehail.domain.enums import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    CancelActor,
    PaymentMethod,
    RideStatus,
    Role,
    ServiceType,
    VehicleClass,
)
from ridehail.domain.errors import (
    AlreadyAccepted,
    InvalidOtp,
    InvalidTransition,
    NotAuthorized,
    NotificationError,
    OtpNotVerified,
    RideNotFound,
)
from ridehail.domain.events import (
    CustomerOtpGenerated,
    DeliveryCompleted,
    EarningsSnapshot,
    EmergencyAlert,
    EventModel,
    GeoPoint,
    OtpVerifiedSuccess,
    RideAccepted,
    RideCancelled,
    RideCompleted,
    RideStatusUpdate,
)
from ridehail.domain.pricing import PricingEngine, default_fare
from ridehail.infrastructure.database import SessionFactory
from ridehail.infrastructure.models import RideModel
from ridehail.infrastructure.repositories import RideRepository, UserRepository
from ridehail.realtime.fanout import Notifier, RideAudience
from ridehail.realtime.registry import ADMINS_ROOM, DRIVERS_ROOM, Identity
from ridehail.services.dispatch import BroadcastResult, DispatchEngine, offer_from_ride

logger = logging.getLogger(__name__)

_STATUS_STAMPS = {
    RideStatus.ARRIVED: "arrived_at",
    RideStatus.STARTED: "started_at",
}

_OTP_STATUSES = frozenset({RideStatus.ACCEPTED, RideStatus.ARRIVED, RideStatus.STARTED})

_CANCEL_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class NewRide:
    pickup_address: str
    pickup_lat: float
    pickup_lng: float
    destination_address: str
    destination_lat: float
    destination_lng: float
    vehicle_class: VehicleClass
    service_type: ServiceType = ServiceType.RIDE
    distance_km: Optional[float] = None
    duration_min: Optional[float] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    discount: int = 0
    special_requests: Optional[str] = None
    item_description: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass
class CreatedRide:
    ride: RideModel
    dispatch: Optional[BroadcastResult]
    duplicate: bool = False


@dataclass
class Completion:
    ride: RideModel
    earnings: EarningsSnapshot


def _parties(ride: RideModel) -> RideParties:
    return RideParties(
        customer_id=ride.customer_id,
        driver_id=ride.driver_id,
        sub_driver_id=ride.sub_driver_id,
    )


class RideLifecycle:
    def __init__(
        self,
        session_factory: SessionFactory,
        dispatch: DispatchEngine,
        notifier: Notifier,
        pricing: PricingEngine | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.dispatch = dispatch
        self.notifier = notifier
        self.pricing = pricing or PricingEngine()
        self.settings = settings or default_settings

    # ── create ────────────────────────────────────────────────────────

    async def create_ride(self, actor: Identity, new: NewRide) -> CreatedRide:
        if actor.role is not Role.CUSTOMER or actor.user_id is None:
            raise NotAuthorized("Only signed-in customers can request rides")

        async with self.session_factory() as session:
            rides = RideRepository(session)
            if new.idempotency_key:
                existing = await rides.get_by_idempotency_key(new.idempotency_key)
                if existing is not None:
                    logger.info(
                        "Idempotent replay for key %s -> ride %s",
                        new.idempotency_key,
                        existing.id,
                    )
                    return CreatedRide(ride=existing, dispatch=None, duplicate=True)

            distance = new.distance_km
            if distance is None:
                distance = haversine_km(
                    new.pickup_lat,
                    new.pickup_lng,
                    new.destination_lat,
                    new.destination_lng,
                )
            duration = new.duration_min
            if duration is None:
                duration = estimate_duration_min(distance, new.vehicle_class)

            surge = 1.0
            if self.settings.surge_pricing_enabled:
                surge = self.pricing.compute_surge(
                    await rides.count_open() + 1,
                    await UserRepository(session).count_available_drivers(),
                )
            fare = self.pricing.quote(
                distance, duration, new.vehicle_class, surge, new.discount
            )

            ride = await rides.create(
                RideModel(
                    customer_id=actor.user_id,
                    vehicle_class=new.vehicle_class,
                    service_type=new.service_type,
                    status=RideStatus.PENDING,
                    pickup_address=new.pickup_address,
                    pickup_lat=new.pickup_lat,
                    pickup_lng=new.pickup_lng,
                    destination_address=new.destination_address,
                    destination_lat=new.destination_lat,
                    destination_lng=new.destination_lng,
                    distance_km=round(distance, 3),
                    duration_min=duration,
                    base_fare=fare.base_fare,
                    distance_fare=fare.distance_fare,
                    time_fare=fare.time_fare,
                    surge_multiplier=fare.surge_multiplier,
                    discount=fare.discount,
                    total_fare=fare.total_fare,
                    final_amount=fare.final_amount,
                    payment_method=new.payment_method,
                    special_requests=new.special_requests,
                    item_description=new.item_description,
                    recipient_name=new.recipient_name,
                    recipient_phone=new.recipient_phone,
                    idempotency_key=new.idempotency_key,
                )
            )
            await session.commit()

        logger.info(
            "Ride %s created by customer %s (%s, %s paise)",
            ride.id,
            actor.user_id,
            ride.vehicle_class.value,
            ride.final_amount,
        )

        result = await self.dispatch.broadcast(offer_from_ride(ride))
        if result.delivered:
            async with self.session_factory() as session:
                moved = await RideRepository(session).update_if(
                    ride.id,
                    RideModel.status == RideStatus.PENDING,
                    status=RideStatus.SEARCHING,
                )
                await session.commit()
            if moved:
                ride.status = RideStatus.SEARCHING
        return CreatedRide(ride=ride, dispatch=result)

    # ── accept / decline ──────────────────────────────────────────────

    async def accept(
        self, ride_id: int, actor: Identity, sub_driver_id: int | None = None
    ) -> RideModel:
        if not actor.is_driver or actor.user_id is None:
            raise NotAuthorized("Only drivers can accept rides")

        if actor.role is Role.SUB_DRIVER:
            if actor.parent_driver_id is None:
                raise NotAuthorized("Sub-driver is not linked to a driver")
            driver_id, sub_id = actor.parent_driver_id, actor.user_id
        else:
            driver_id, sub_id = actor.user_id, sub_driver_id

        async with self.session_factory() as session:
            rides = RideRepository(session)
            users = UserRepository(session)

            if actor.role is Role.DRIVER and sub_id is not None:
                if await users.get_sub_driver(sub_id, driver_id) is None:
                    raise NotAuthorized("Sub-driver does not belong to this driver")

            won = await rides.try_assign_driver(ride_id, driver_id, sub_id, _utcnow())
            if not won:
                await session.rollback()
                current = await rides.refresh(ride_id)
                if current is None:
                    raise RideNotFound()
                if current.driver_id is not None:
                    raise AlreadyAccepted()
                raise InvalidTransition(f"Ride is {current.status.value}")

            await users.set_availability([driver_id, sub_id], False)
            ride = await rides.refresh(ride_id)
            driver = await users.get_by_id(driver_id)
            audience = await self._audience(session, ride)
            await session.commit()

        logger.info("Ride %s accepted by driver %s (sub %s)", ride_id, driver_id, sub_id)

        accepted = RideAccepted(
            ride_id=ride_id,
            driver_id=driver_id,
            driver_name=driver.full_name if driver else None,
            driver_phone=driver.phone if driver else None,
            vehicle_class=driver.vehicle_class if driver else None,
            message="Driver accepted your ride",
        )
        await self._fan_out(accepted, rooms=audience.rooms())
        await self.dispatch.withdraw_offer(ride_id, driver_id, accepted)
        return ride

    async def decline(self, ride_id: int, actor: Identity) -> BroadcastResult:
        if not actor.is_driver or actor.user_id is None:
            raise NotAuthorized("Only drivers can decline rides")

        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await rides.get_by_id(ride_id)
            if ride is None:
                raise RideNotFound()
            if ride.driver_id is not None:
                raise AlreadyAccepted()
            if ride.status not in OPEN_STATUSES:
                raise InvalidTransition(f"Ride is {ride.status.value}")

            await rides.record_decline(ride_id, actor.user_id)
            declined = await rides.declined_driver_ids(ride_id)
            await session.commit()

        logger.info(
            "Ride %s declined by %s; re-offering without %d drivers",
            ride_id,
            actor.user_id,
            len(declined),
        )
        return await self.dispatch.rebroadcast(ride, declined)

    # ── trip progress ─────────────────────────────────────────────────

    async def advance_status(
        self, ride_id: int, actor: Identity, status: RideStatus
    ) -> RideModel:
        stamp = _STATUS_STAMPS.get(status)
        if stamp is None:
            raise InvalidTransition(
                f"Status {status.value} cannot be set directly"
            )

        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await self._load_for_operator(rides, ride_id, actor)
            current = ride.status
            check_transition(current, status)

            moved = await rides.update_if(
                ride_id,
                RideModel.status == current,
                status=status,
                **{stamp: _utcnow()},
            )
            if not moved:
                await session.rollback()
                raise InvalidTransition("Ride changed while updating; retry")
            ride = await rides.refresh(ride_id)
            audience = await self._audience(session, ride)
            await session.commit()

        logger.info("Ride %s: %s -> %s", ride_id, current.value, status.value)
        await self._fan_out(
            RideStatusUpdate(ride_id=ride_id, status=status), rooms=audience.rooms()
        )
        return ride

    async def issue_otp(
        self,
        ride_id: int,
        actor: Identity,
        code: str | None = None,
        message: str | None = None,
    ) -> RideModel:
        if code is None:
            code = generate_otp(self.settings.otp_length)
        else:
            code = normalise_otp(code)
            if not code or not code.isdigit():
                raise InvalidOtp("OTP must be a non-empty numeric code")

        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await rides.get_by_id(ride_id)
            if ride is None:
                raise RideNotFound()
            if actor.role is not Role.ADMIN and not _parties(ride).is_customer(
                actor.user_id
            ):
                raise NotAuthorized("Only the customer can issue the pickup OTP")
            if ride.status in TERMINAL_STATUSES:
                raise InvalidTransition(f"Ride is {ride.status.value}")
            if ride.otp_verified:
                raise InvalidTransition("OTP already verified for this ride")

            written = await rides.update_if(
                ride_id,
                RideModel.status == ride.status,
                RideModel.otp_verified.is_(False),
                otp_code=code,
                otp_generated_at=_utcnow(),
            )
            if not written:
                await session.rollback()
                raise InvalidTransition("Ride changed while issuing OTP; retry")
            ride = await rides.refresh(ride_id)
            audience = await self._audience(session, ride)
            await session.commit()

        logger.info("OTP issued for ride %s", ride_id)
        await self._fan_out(
            CustomerOtpGenerated(
                ride_id=ride_id,
                otp=code,
                message=message or "Share this code with your driver at pickup",
            ),
            rooms=audience.rooms() + [DRIVERS_ROOM],
        )
        return ride

    async def verify_otp(self, ride_id: int, actor: Identity, entered: object) -> RideModel:
        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await self._load_for_operator(rides, ride_id, actor)
            if ride.status not in _OTP_STATUSES:
                raise InvalidTransition(f"Cannot verify OTP while ride is {ride.status.value}")
            if ride.otp_verified:
                return ride
            if not otp_matches(ride.otp_code, entered):
                raise InvalidOtp()

            written = await rides.update_if(
                ride_id,
                RideModel.status == ride.status,
                RideModel.otp_verified.is_(False),
                otp_verified=True,
                otp_verified_at=_utcnow(),
            )
            if not written:
                await session.rollback()
                current = await rides.refresh(ride_id)
                if current is not None and current.otp_verified:
                    return current
                raise InvalidTransition("Ride changed while verifying OTP; retry")
            ride = await rides.refresh(ride_id)
            audience = await self._audience(session, ride)
            await session.commit()

        logger.info("OTP verified for ride %s by %s", ride_id, actor.user_id)
        await self._fan_out(OtpVerifiedSuccess(ride_id=ride_id), rooms=audience.rooms())
        return ride

    async def complete(self, ride_id: int, actor: Identity) -> Completion:
        async with self.session_factory() as session:
            rides = RideRepository(session)
            users = UserRepository(session)
            ride = await self._load_for_operator(rides, ride_id, actor)
            if ride.status in TERMINAL_STATUSES:
                raise InvalidTransition(f"Ride is already {ride.status.value}")
            if not ride.otp_verified:
                raise OtpNotVerified()
            if ride.status is not RideStatus.STARTED:
                raise InvalidTransition("Ride must be started before completion")

            values = {}
            if ride.final_amount is None:
                fare = default_fare(self.settings.default_final_amount)
                values = {
                    "base_fare": fare.base_fare,
                    "distance_fare": fare.distance_fare,
                    "time_fare": fare.time_fare,
                    "total_fare": fare.total_fare,
                    "final_amount": fare.final_amount,
                }
            amount = values.get("final_amount", ride.final_amount)

            written = await rides.update_if(
                ride_id,
                RideModel.status == RideStatus.STARTED,
                RideModel.otp_verified.is_(True),
                status=RideStatus.COMPLETED,
                completed_at=_utcnow(),
                **values,
            )
            if not written:
                await session.rollback()
                raise InvalidTransition("Ride changed while completing; retry")

            total_earnings, total_rides = await users.credit_earnings(
                ride.driver_id, amount
            )
            await users.release_after_ride([ride.driver_id, ride.sub_driver_id])
            ride = await rides.refresh(ride_id)
            audience = await self._audience(session, ride)
            await session.commit()

        earnings = EarningsSnapshot(
            ride_amount=amount,
            total_earnings=total_earnings,
            total_rides=total_rides,
        )
        logger.info("Ride %s completed, %s paise to driver %s", ride_id, amount, ride.driver_id)

        completed_cls = (
            DeliveryCompleted if ride.service_type is ServiceType.DELIVERY else RideCompleted
        )
        await self._fan_out(
            completed_cls(ride_id=ride_id, amount=amount, earnings=earnings),
            rooms=audience.rooms() + [DRIVERS_ROOM],
        )
        return Completion(ride=ride, earnings=earnings)

    # ── cancel ────────────────────────────────────────────────────────

    async def cancel(
        self, ride_id: int, actor: Identity, reason: str | None = None
    ) -> RideModel:
        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await rides.get_by_id(ride_id)
            if ride is None:
                raise RideNotFound()
            cancelled_by = self._cancel_actor(ride, actor)

            was_open = False
            for _ in range(_CANCEL_ATTEMPTS):
                if ride.status in TERMINAL_STATUSES:
                    raise InvalidTransition(f"Ride is already {ride.status.value}")
                was_open = ride.status in OPEN_STATUSES
                quote = quote_cancellation(
                    ride.status,
                    ride.final_amount or 0,
                    self.settings.cancellation_fee_rate,
                    self.settings.cancellation_fee_cap,
                )
                written = await rides.update_if(
                    ride_id,
                    RideModel.status == ride.status,
                    status=RideStatus.CANCELLED,
                    cancelled_at=_utcnow(),
                    cancelled_by=cancelled_by,
                    cancellation_reason=reason,
                    cancellation_fee=quote.fee,
                    refund_amount=quote.refund,
                )
                if written:
                    break
                ride = await rides.refresh(ride_id)
                if ride is None:
                    raise RideNotFound()
            else:
                raise InvalidTransition("Ride kept changing while cancelling; retry")

            await UserRepository(session).release_after_ride(
                [ride.driver_id, ride.sub_driver_id]
            )
            ride = await rides.refresh(ride_id)
            audience = await self._audience(session, ride)
            await session.commit()

        logger.info(
            "Ride %s cancelled by %s (fee %s, refund %s)",
            ride_id,
            cancelled_by.value,
            quote.fee,
            quote.refund,
        )
        rooms = audience.rooms()
        if was_open:
            rooms.append(DRIVERS_ROOM)
        await self._fan_out(
            RideCancelled(
                ride_id=ride_id,
                cancelled_by=cancelled_by,
                reason=reason,
                cancellation_fee=quote.fee,
                refund_amount=quote.refund,
            ),
            rooms=rooms,
        )
        return ride

    @staticmethod
    def _cancel_actor(ride: RideModel, actor: Identity) -> CancelActor:
        parties = _parties(ride)
        if actor.role is Role.ADMIN:
            return CancelActor.SYSTEM
        if parties.is_customer(actor.user_id):
            return CancelActor.CUSTOMER
        if parties.is_operator(actor.user_id):
            return CancelActor.DRIVER
        raise NotAuthorized("Only the ride's customer or driver can cancel it")

    # ── emergency ─────────────────────────────────────────────────────

    async def report_emergency(
        self,
        actor: Identity,
        ride_id: int | None = None,
        location: GeoPoint | None = None,
        message: str | None = None,
        exclude_sids: Iterable[str] = (),
    ) -> Optional[RideModel]:
        ride = None
        if ride_id is not None:
            async with self.session_factory() as session:
                rides = RideRepository(session)
                ride = await rides.get_by_id(ride_id)
                if ride is None:
                    raise RideNotFound()
                parties = _parties(ride)
                if actor.role is not Role.ADMIN and not (
                    parties.is_customer(actor.user_id)
                    or parties.is_operator(actor.user_id)
                ):
                    raise NotAuthorized("Only parties to the ride can raise an alert")
                await rides.update_if(
                    ride_id, is_emergency=True, emergency_reported_at=_utcnow()
                )
                ride = await rides.refresh(ride_id)
                await session.commit()

        logger.warning(
            "Emergency alert from %s %s (ride %s)",
            actor.role.value,
            actor.subject,
            ride_id,
        )
        await self._fan_out(
            EmergencyAlert(
                ride_id=ride_id,
                user_id=actor.subject,
                user_name=actor.name,
                location=location,
                message=message,
            ),
            rooms=[ADMINS_ROOM, DRIVERS_ROOM],
            exclude_sids=exclude_sids,
        )
        return ride

    # ── reads ─────────────────────────────────────────────────────────

    async def fetch(self, ride_id: int, actor: Identity) -> RideModel:
        """Status poll; the recovery path for missed notifications."""
        async with self.session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride_id)
        if ride is None:
            raise RideNotFound()
        parties = _parties(ride)
        if actor.role is Role.ADMIN:
            return ride
        if parties.is_customer(actor.user_id) or parties.is_operator(actor.user_id):
            return ride
        if actor.is_driver and ride.driver_id is None and ride.status in OPEN_STATUSES:
            return ride
        raise NotAuthorized("Not allowed to view this ride")

    async def active_ride(self, actor: Identity) -> RideModel:
        """The caller's ride that is not yet completed or cancelled."""
        if actor.user_id is None:
            raise RideNotFound("No active ride found")
        async with self.session_factory() as session:
            rides = RideRepository(session)
            if actor.is_driver:
                ride = await rides.get_active_for_operator(actor.user_id)
            else:
                ride = await rides.get_active_for_customer(actor.user_id)
        if ride is None:
            raise RideNotFound("No active ride found")
        return ride

    async def operated_ride(self, ride_id: int, actor: Identity) -> RideModel:
        """Load a ride the caller is driving; used to scope location shares."""
        async with self.session_factory() as session:
            return await self._load_for_operator(RideRepository(session), ride_id, actor)

    # ── rating ────────────────────────────────────────────────────────

    async def rate(
        self,
        ride_id: int,
        actor: Identity,
        rating: int,
        feedback: str | None = None,
    ) -> RideModel:
        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await rides.get_by_id(ride_id)
            if ride is None:
                raise RideNotFound()
            if not _parties(ride).is_customer(actor.user_id):
                raise NotAuthorized("Only the customer can rate this ride")
            if ride.status is not RideStatus.COMPLETED:
                raise InvalidTransition("Only completed rides can be rated")

            written = await rides.update_if(
                ride_id,
                RideModel.status == RideStatus.COMPLETED,
                RideModel.customer_rating.is_(None),
                customer_rating=rating,
                customer_feedback=feedback,
                rated_at=_utcnow(),
            )
            if not written:
                await session.rollback()
                raise InvalidTransition("Ride already rated")

            if ride.driver_id is not None:
                average = await rides.average_rating(ride.driver_id)
                if average is not None:
                    await UserRepository(session).update_presence(
                        ride.driver_id, rating=round(average, 1)
                    )
            ride = await rides.refresh(ride_id)
            await session.commit()

        logger.info("Ride %s rated %s by customer %s", ride_id, rating, actor.user_id)
        return ride

    # ── helpers ───────────────────────────────────────────────────────

    @staticmethod
    async def _load_for_operator(
        rides: RideRepository, ride_id: int, actor: Identity
    ) -> RideModel:
        ride = await rides.get_by_id(ride_id)
        if ride is None:
            raise RideNotFound()
        if not _parties(ride).is_operator(actor.user_id):
            raise NotAuthorized("Only the assigned driver can do this")
        return ride

    @staticmethod
    async def _audience(session: AsyncSession, ride: RideModel) -> RideAudience:
        customer = await UserRepository(session).get_by_id(ride.customer_id)
        return RideAudience(
            ride_id=ride.id,
            customer_id=ride.customer_id,
            customer_email=customer.email if customer else None,
            driver_id=ride.driver_id,
            sub_driver_id=ride.sub_driver_id,
        )

    async def _fan_out(self, event: EventModel, **targets) -> int:
        try:
            return await self.notifier.emit(event, **targets)
        except NotificationError as exc:
            logger.warning(
                "Notification %s not sent: %s", event.to_message()["event"], exc
            )
            return 0
