"""
Realtime gateway: turns inbound socket events into lifecycle and presence
calls.

Each inbound message is validated into a ``ClientEvent`` and routed by its
event name.  Failures never reach other sessions: validation and domain errors
become an ``error`` event on the originating session only.  The REST routes
reuse ``share_location`` / ``share_availability`` so both surfaces behave the
same.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ridehail.domain.errors import NotAuthorized, NotificationError, RideHailError
from ridehail.domain.events import (
    AcceptRide,
    DeclineRide,
    DriverAvailabilityUpdate,
    DriverLocationUpdate,
    EventModel,
    GeoPoint,
    JoinRide,
    LeaveAllRooms,
    LeaveRide,
    NewMessage,
    OtpGenerated,
    Ping,
    Pong,
    ReportEmergency,
    SendMessage,
    Typing,
    UpdateAvailability,
    UpdateLocation,
    UserTyping,
    parse_client_event,
)
from ridehail.realtime.auth import Authenticator
from ridehail.realtime.fanout import Notifier
from ridehail.realtime.registry import (
    ADMINS_ROOM,
    CUSTOMERS_ROOM,
    Connection,
    ConnectionRegistry,
    Identity,
    Session,
    ride_room,
)
from ridehail.services.lifecycle import RideLifecycle
from ridehail.services.presence import PresenceStore

logger = logging.getLogger(__name__)

Handler = Callable[[Session, Any], Awaitable[None]]


class RealtimeGateway:
    def __init__(
        self,
        registry: ConnectionRegistry,
        notifier: Notifier,
        presence: PresenceStore,
        lifecycle: RideLifecycle,
        authenticator: Authenticator,
    ):
        self.registry = registry
        self.notifier = notifier
        self.presence = presence
        self.lifecycle = lifecycle
        self.authenticator = authenticator
        self._handlers: dict[type, Handler] = {
            AcceptRide: self._on_accept,
            DeclineRide: self._on_decline,
            JoinRide: self._on_join_ride,
            LeaveRide: self._on_leave_ride,
            LeaveAllRooms: self._on_leave_all,
            UpdateLocation: self._on_update_location,
            UpdateAvailability: self._on_update_availability,
            ReportEmergency: self._on_emergency,
            OtpGenerated: self._on_otp_generated,
            SendMessage: self._on_send_message,
            Typing: self._on_typing,
            Ping: self._on_ping,
        }

    # ── session lifecycle ─────────────────────────────────────────────

    async def authenticate(
        self, token: Optional[str], user_type: Optional[str] = None
    ) -> Identity:
        return await self.authenticator.authenticate(token, user_type)

    async def attach(self, connection: Connection, identity: Identity) -> Session:
        session = self.registry.on_connect(connection, identity)
        if identity.is_driver and identity.user_id is not None:
            try:
                await self.presence.set_online(identity.user_id, True)
            except RideHailError as exc:
                logger.error(
                    "Could not mark driver %s online: %s", identity.user_id, exc
                )
        return session

    async def disconnect(self, session: Session) -> None:
        self.registry.on_disconnect(session.sid)
        identity = session.identity
        if identity.is_driver and identity.user_id is not None:
            await self.presence.go_offline(identity.user_id)

    # ── inbound events ────────────────────────────────────────────────

    async def handle(self, session: Session, message: Any) -> None:
        try:
            event = parse_client_event(message)
        except ValidationError as exc:
            logger.info("Rejected message on session %s: %s", session.sid, exc)
            await self.notifier.send_error(
                session, "Invalid message", code="invalid_message"
            )
            return

        handler = self._handlers[type(event)]
        try:
            await handler(session, event)
        except RideHailError as exc:
            await self.notifier.send_error(session, exc.message, code=exc.code)
        except SQLAlchemyError:
            logger.exception("Storage failure handling %s", event.event)
            await self.notifier.send_error(
                session, "Service temporarily unavailable", code="unavailable"
            )

    async def _on_accept(self, session: Session, event: AcceptRide) -> None:
        await self.lifecycle.accept(event.ride_id, session.identity, event.sub_driver_id)
        self.registry.join_room(session.sid, ride_room(event.ride_id))

    async def _on_decline(self, session: Session, event: DeclineRide) -> None:
        await self.lifecycle.decline(event.ride_id, session.identity)

    async def _on_join_ride(self, session: Session, event: JoinRide) -> None:
        self.registry.join_room(session.sid, ride_room(event.ride_id))

    async def _on_leave_ride(self, session: Session, event: LeaveRide) -> None:
        self.registry.leave_room(session.sid, ride_room(event.ride_id))

    async def _on_leave_all(self, session: Session, event: LeaveAllRooms) -> None:
        self.registry.leave_all(session.sid)

    async def _on_update_location(self, session: Session, event: UpdateLocation) -> None:
        await self.share_location(
            session.identity,
            event.latitude,
            event.longitude,
            ride_id=event.ride_id,
            exclude_sids=[session.sid],
        )

    async def _on_update_availability(
        self, session: Session, event: UpdateAvailability
    ) -> None:
        await self.share_availability(
            session.identity, event.is_available, exclude_sids=[session.sid]
        )

    async def _on_emergency(self, session: Session, event: ReportEmergency) -> None:
        await self.lifecycle.report_emergency(
            session.identity,
            ride_id=event.ride_id,
            location=event.location,
            message=event.message,
            exclude_sids=[session.sid],
        )

    async def _on_otp_generated(self, session: Session, event: OtpGenerated) -> None:
        await self.lifecycle.issue_otp(
            event.ride_id,
            session.identity,
            code=event.otp,
            message=event.customer_message,
        )

    async def _on_send_message(self, session: Session, event: SendMessage) -> None:
        room = self._chat_room(session, event.ride_id)
        identity = session.identity
        await self.notifier.emit(
            NewMessage(
                ride_id=event.ride_id,
                user_id=identity.subject,
                user_name=identity.name,
                message=event.message,
            ),
            rooms=[room],
        )

    async def _on_typing(self, session: Session, event: Typing) -> None:
        room = self._chat_room(session, event.ride_id)
        identity = session.identity
        await self.notifier.emit(
            UserTyping(
                ride_id=event.ride_id,
                user_id=identity.subject,
                user_name=identity.name,
                is_typing=event.is_typing,
            ),
            rooms=[room],
            exclude_sids=[session.sid],
        )

    @staticmethod
    def _chat_room(session: Session, ride_id: int) -> str:
        room = ride_room(ride_id)
        if room not in session.rooms:
            raise NotAuthorized("Join the ride before chatting")
        return room

    async def _on_ping(self, session: Session, event: Ping) -> None:
        await self.notifier.send(session, Pong(your_data=event.payload))

    # ── shared with REST ──────────────────────────────────────────────

    async def share_location(
        self,
        identity: Identity,
        latitude: float,
        longitude: float,
        ride_id: int | None = None,
        exclude_sids: Iterable[str] = (),
    ) -> None:
        if not identity.is_driver or identity.user_id is None:
            raise NotAuthorized("Only drivers and sub-drivers can update location")
        if ride_id is not None:
            await self.lifecycle.operated_ride(ride_id, identity)
        await self.presence.update_location(identity.user_id, latitude, longitude)

        update = DriverLocationUpdate(
            driver_id=identity.subject,
            location=GeoPoint(latitude=latitude, longitude=longitude),
            ride_id=ride_id,
        )
        rooms = [ride_room(ride_id)] if ride_id is not None else []
        await self._broadcast(
            update, rooms, exclude_sids, sessions=self.registry.sessions()
        )

    async def share_availability(
        self,
        identity: Identity,
        is_available: bool,
        exclude_sids: Iterable[str] = (),
    ) -> None:
        if not identity.is_driver or identity.user_id is None:
            raise NotAuthorized("Only drivers and sub-drivers can update availability")
        await self.presence.set_available(identity.user_id, is_available)
        logger.info("Driver %s availability -> %s", identity.user_id, is_available)

        update = DriverAvailabilityUpdate(
            driver_id=identity.subject, is_available=is_available
        )
        await self._broadcast(update, [CUSTOMERS_ROOM, ADMINS_ROOM], exclude_sids)

    async def _broadcast(
        self,
        event: EventModel,
        rooms: list[str],
        exclude_sids: Iterable[str],
        sessions: Iterable[Session] = (),
    ) -> None:
        try:
            await self.notifier.emit(
                event, rooms=rooms, sessions=sessions, exclude_sids=exclude_sids
            )
        except NotificationError as exc:
            logger.warning("Presence update not broadcast: %s", exc)
