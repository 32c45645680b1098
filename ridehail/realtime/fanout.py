"""
Notification Fan-out
====================

Delivers server events to live sessions.  Targets are given as rooms and/or
explicit sessions; the union is computed per call so a session reachable
through several rooms receives the event once.  Delivery is best-effort and
at-least-once across calls: a session that is offline simply misses the push
and recovers by polling ``GET /rides/{id}``.

The fan-out never touches ride or presence state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from ridehail.domain.errors import NotificationError
from ridehail.domain.events import ErrorEvent, EventModel
from ridehail.realtime.registry import (
    ConnectionRegistry,
    Session,
    email_room,
    ride_room,
    user_room,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RideAudience:
    """Every room through which the parties of one ride may be listening."""

    ride_id: int
    customer_id: int
    customer_email: Optional[str] = None
    driver_id: Optional[int] = None
    sub_driver_id: Optional[int] = None

    def rooms(self, include_driver: bool = True) -> list[str]:
        rooms = [ride_room(self.ride_id), user_room(self.customer_id)]
        if self.customer_email:
            rooms.append(email_room(self.customer_email))
        if include_driver:
            for operator in (self.driver_id, self.sub_driver_id):
                if operator is not None:
                    rooms.append(user_room(operator))
        return rooms


class Notifier:
    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def emit(
        self,
        event: EventModel,
        *,
        rooms: Iterable[str] = (),
        sessions: Iterable[Session] = (),
        exclude_sids: Iterable[str] = (),
    ) -> int:
        """Send *event* to the union of targets; returns sessions reached."""
        if self.registry.closed:
            raise NotificationError()

        targets: dict[str, Session] = {}
        for room in rooms:
            for session in self.registry.sessions_in_room(room):
                targets[session.sid] = session
        for session in sessions:
            targets[session.sid] = session
        for sid in exclude_sids:
            targets.pop(sid, None)
        if not targets:
            return 0

        message = event.to_message()
        results = await asyncio.gather(
            *(self._deliver(session, message) for session in targets.values())
        )
        delivered = sum(results)
        logger.debug(
            "Emitted %s to %d/%d sessions", message["event"], delivered, len(targets)
        )
        return delivered

    async def send(self, session: Session, event: EventModel) -> bool:
        if self.registry.closed:
            raise NotificationError()
        return await self._deliver(session, event.to_message())

    async def send_error(self, session: Session, message: str, code: str = "error") -> bool:
        """Scoped ``error`` event: only the originating session hears it."""
        return await self._deliver(
            session, ErrorEvent(message=message, code=code).to_message()
        )

    async def _deliver(self, session: Session, message: dict[str, Any]) -> bool:
        try:
            await session.connection.send_json(message)
        except Exception:
            logger.warning(
                "Dropped %s for session %s", message.get("event"), session.sid, exc_info=True
            )
            return False
        return True
