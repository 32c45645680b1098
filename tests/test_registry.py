"""Connection registry and notification fan-out tests."""

import pytest

from ridehail.domain.enums import RideStatus, Role
from ridehail.domain.errors import NotificationError
from ridehail.domain.events import ErrorEvent, RideStatusUpdate
from ridehail.realtime.auth import anonymous_customer
from ridehail.realtime.fanout import RideAudience
from ridehail.realtime.registry import (
    ADMINS_ROOM,
    CUSTOMERS_ROOM,
    DRIVERS_ROOM,
    MAIN_DRIVERS_ROOM,
    SUB_DRIVERS_ROOM,
    customer_room,
    email_room,
    ride_room,
    user_room,
)
from tests.conftest import FakeConnection, connect


class TestRooms:
    @pytest.mark.asyncio
    async def test_role_rooms_joined_on_connect(self, registry, make_user):
        driver = await make_user(Role.DRIVER)
        sub = await make_user(Role.SUB_DRIVER)
        customer = await make_user(Role.CUSTOMER)
        admin = await make_user(Role.ADMIN)

        d_session, _ = connect(registry, driver)
        s_session, _ = connect(registry, sub)
        c_session, _ = connect(registry, customer)
        a_session, _ = connect(registry, admin)

        assert {DRIVERS_ROOM, MAIN_DRIVERS_ROOM, user_room(driver.id)} <= d_session.rooms
        assert {DRIVERS_ROOM, SUB_DRIVERS_ROOM} <= s_session.rooms
        assert MAIN_DRIVERS_ROOM not in s_session.rooms
        assert {
            CUSTOMERS_ROOM,
            customer_room(customer.id),
            email_room(customer.email),
        } <= c_session.rooms
        assert ADMINS_ROOM in a_session.rooms
        assert registry.room_size(DRIVERS_ROOM) == 2

    def test_anonymous_customer_has_no_email_room(self, registry):
        session = registry.on_connect(FakeConnection(), anonymous_customer())
        assert session.identity.anonymous
        assert not any(room.startswith("email:") for room in session.rooms)
        assert user_room(session.identity.subject) in session.rooms

    @pytest.mark.asyncio
    async def test_join_leave_and_leave_all(self, registry, make_user):
        driver = await make_user(Role.DRIVER)
        session, _ = connect(registry, driver)

        registry.join_room(session.sid, ride_room(7))
        assert registry.room_size(ride_room(7)) == 1

        registry.leave_room(session.sid, ride_room(7))
        assert registry.room_size(ride_room(7)) == 0

        registry.leave_all(session.sid)
        assert session.rooms == set()
        assert registry.room_size(DRIVERS_ROOM) == 0
        assert registry.get(session.sid) is session

    @pytest.mark.asyncio
    async def test_disconnect_removes_session_everywhere(self, registry, make_user):
        customer = await make_user(Role.CUSTOMER)
        session, _ = connect(registry, customer)

        assert registry.on_disconnect(session.sid) is session
        assert len(registry) == 0
        assert registry.room_sizes() == {}
        assert registry.on_disconnect(session.sid) is None

    @pytest.mark.asyncio
    async def test_close_drops_all_sessions(self, registry, make_user):
        driver = await make_user(Role.DRIVER)
        _, conn = connect(registry, driver)

        await registry.close()

        assert registry.closed
        assert len(registry) == 0
        assert conn.closed_with == 1001
        with pytest.raises(RuntimeError):
            connect(registry, driver)


class TestNotifier:
    @pytest.mark.asyncio
    async def test_union_of_rooms_delivers_once(self, registry, notifier, make_user):
        customer = await make_user(Role.CUSTOMER)
        session, conn = connect(registry, customer)
        registry.join_room(session.sid, ride_room(3))

        delivered = await notifier.emit(
            RideStatusUpdate(ride_id=3, status=RideStatus.ARRIVED),
            rooms=[ride_room(3), user_room(customer.id), CUSTOMERS_ROOM],
            sessions=[session],
        )

        assert delivered == 1
        assert conn.names() == ["ride-status-update"]
        assert conn.sent[0]["data"]["rideId"] == 3
        assert conn.sent[0]["data"]["status"] == "arrived"

    @pytest.mark.asyncio
    async def test_excluded_sessions_are_skipped(self, registry, notifier, make_user):
        a = await make_user(Role.DRIVER)
        b = await make_user(Role.DRIVER)
        a_session, a_conn = connect(registry, a)
        _, b_conn = connect(registry, b)

        delivered = await notifier.emit(
            RideStatusUpdate(ride_id=1, status=RideStatus.STARTED),
            rooms=[DRIVERS_ROOM],
            exclude_sids=[a_session.sid],
        )

        assert delivered == 1
        assert a_conn.sent == []
        assert b_conn.names() == ["ride-status-update"]

    @pytest.mark.asyncio
    async def test_broken_connection_does_not_stop_others(
        self, registry, notifier, make_user
    ):
        a = await make_user(Role.DRIVER)
        b = await make_user(Role.DRIVER)
        connect(registry, a, fail=True)
        _, healthy = connect(registry, b)

        delivered = await notifier.emit(
            RideStatusUpdate(ride_id=1, status=RideStatus.STARTED), rooms=[DRIVERS_ROOM]
        )

        assert delivered == 1
        assert healthy.names() == ["ride-status-update"]

    @pytest.mark.asyncio
    async def test_empty_room_reaches_nobody(self, notifier):
        assert await notifier.emit(
            RideStatusUpdate(ride_id=1, status=RideStatus.STARTED), rooms=["nobody"]
        ) == 0

    @pytest.mark.asyncio
    async def test_closed_registry_raises(self, registry, notifier):
        await registry.close()
        with pytest.raises(NotificationError):
            await notifier.emit(ErrorEvent(message="x"), rooms=[DRIVERS_ROOM])

    @pytest.mark.asyncio
    async def test_send_error_is_scoped(self, registry, notifier, make_user):
        a = await make_user(Role.CUSTOMER)
        b = await make_user(Role.CUSTOMER)
        a_session, a_conn = connect(registry, a)
        _, b_conn = connect(registry, b)

        await notifier.send_error(a_session, "nope", code="not_authorized")

        assert a_conn.sent == [
            {"event": "error", "data": {"message": "nope", "code": "not_authorized"}}
        ]
        assert b_conn.sent == []


class TestRideAudience:
    def test_rooms_with_and_without_driver(self):
        audience = RideAudience(
            ride_id=9,
            customer_id=2,
            customer_email="Rider@Example.com",
            driver_id=5,
            sub_driver_id=6,
        )

        assert audience.rooms() == [
            "ride:9",
            "user:2",
            "email:rider@example.com",
            "user:5",
            "user:6",
        ]
        assert audience.rooms(include_driver=False) == [
            "ride:9",
            "user:2",
            "email:rider@example.com",
        ]

    def test_unassigned_ride(self):
        assert RideAudience(ride_id=1, customer_id=2).rooms() == ["ride:1", "user:2"]
