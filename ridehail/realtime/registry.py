"""
Connection Registry
===================

Process-local map of live realtime sessions to identities and rooms.  This is
transport-level routing only: business state lives in the database.  One
registry is created per application instance, stored on ``app.state`` and
closed at shutdown; nothing here survives a restart.

Rooms
-----
* ``user:<subject>``      -- every session of one identity
* ``email:<address>``     -- cross-device targeting by account email
* ``drivers`` / ``main-drivers`` / ``sub-drivers`` / ``customers`` /
  ``admins``              -- role rooms joined on connect
* ``customer:<subject>``  -- customer-scoped room
* ``ride:<ride_id>``      -- parties following one ride (explicit join/leave)
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from ridehail.domain.enums import DRIVER_ROLES, Role

logger = logging.getLogger(__name__)

DRIVERS_ROOM = "drivers"
MAIN_DRIVERS_ROOM = "main-drivers"
SUB_DRIVERS_ROOM = "sub-drivers"
CUSTOMERS_ROOM = "customers"
ADMINS_ROOM = "admins"


def user_room(subject: str | int) -> str:
    return f"user:{subject}"


def email_room(email: str) -> str:
    return f"email:{email.strip().lower()}"


def customer_room(subject: str | int) -> str:
    return f"customer:{subject}"


def ride_room(ride_id: int) -> str:
    return f"ride:{ride_id}"


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


@dataclass(frozen=True)
class Identity:
    """Who is on the other end of a session."""

    subject: str
    role: Role
    user_id: Optional[int] = None
    email: Optional[str] = None
    name: Optional[str] = None
    parent_driver_id: Optional[int] = None
    anonymous: bool = False

    @property
    def is_driver(self) -> bool:
        return self.role in DRIVER_ROLES


@dataclass(eq=False)
class Session:
    sid: str
    identity: Identity
    connection: Connection
    rooms: set[str] = field(default_factory=set)


def role_rooms(identity: Identity) -> list[str]:
    """Rooms joined automatically for *identity*'s role."""
    role = identity.role
    if role is Role.DRIVER:
        return [DRIVERS_ROOM, MAIN_DRIVERS_ROOM]
    if role is Role.SUB_DRIVER:
        return [DRIVERS_ROOM, SUB_DRIVERS_ROOM]
    if role is Role.CUSTOMER:
        return [CUSTOMERS_ROOM, customer_room(identity.subject)]
    if role is Role.ADMIN:
        return [ADMINS_ROOM]
    raise ValueError(f"No rooms defined for role {role!r}")


class ConnectionRegistry:
    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._rooms: dict[str, set[str]] = defaultdict(set)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._sessions)

    # ── lifecycle ─────────────────────────────────────────────────────

    def on_connect(
        self, connection: Connection, identity: Identity, sid: str | None = None
    ) -> Session:
        if self._closed:
            raise RuntimeError("Connection registry is closed")
        session = Session(sid=sid or uuid.uuid4().hex, identity=identity, connection=connection)
        self._sessions[session.sid] = session

        self.join_room(session.sid, user_room(identity.subject))
        if identity.email:
            self.join_room(session.sid, email_room(identity.email))
        for room in role_rooms(identity):
            self.join_room(session.sid, room)

        logger.info(
            "%s %s connected (session %s)",
            identity.role.value,
            identity.subject,
            session.sid,
        )
        return session

    def on_disconnect(self, sid: str) -> Optional[Session]:
        session = self._sessions.pop(sid, None)
        if session is None:
            return None
        for room in list(session.rooms):
            self._discard(room, sid)
        session.rooms.clear()
        logger.info(
            "%s %s disconnected (session %s)",
            session.identity.role.value,
            session.identity.subject,
            sid,
        )
        return session

    async def close(self) -> None:
        """Drop every session; called once at shutdown."""
        self._closed = True
        sessions = list(self._sessions.values())
        for session in sessions:
            try:
                await session.connection.close(code=1001)
            except Exception:
                logger.warning("Failed to close session %s", session.sid, exc_info=True)
            self.on_disconnect(session.sid)

    # ── rooms ─────────────────────────────────────────────────────────

    def join_room(self, sid: str, room: str) -> None:
        session = self._sessions.get(sid)
        if session is None:
            return
        session.rooms.add(room)
        self._rooms[room].add(sid)

    def leave_room(self, sid: str, room: str) -> None:
        session = self._sessions.get(sid)
        if session is None:
            return
        session.rooms.discard(room)
        self._discard(room, sid)

    def leave_all(self, sid: str) -> None:
        session = self._sessions.get(sid)
        if session is None:
            return
        for room in list(session.rooms):
            self._discard(room, sid)
        session.rooms.clear()

    def _discard(self, room: str, sid: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(sid)
        if not members:
            del self._rooms[room]

    # ── lookups ───────────────────────────────────────────────────────

    def get(self, sid: str) -> Optional[Session]:
        return self._sessions.get(sid)

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def sessions_in_room(self, room: str) -> list[Session]:
        return [
            self._sessions[sid]
            for sid in list(self._rooms.get(room, ()))
            if sid in self._sessions
        ]

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    def room_sizes(self) -> dict[str, int]:
        return {room: len(members) for room, members in self._rooms.items()}
