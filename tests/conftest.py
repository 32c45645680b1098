"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) per test so tests run
without Docker / PostgreSQL / Redis.  Every transaction starts with
``BEGIN IMMEDIATE`` so concurrent writers serialize on the database lock the
way conflicting row updates serialize in PostgreSQL.
"""

import itertools
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from ridehail.config import Settings
from ridehail.domain.enums import RideStatus, Role, ServiceType, VehicleClass
from ridehail.infrastructure.database import Base
from ridehail.infrastructure.models import RideModel, UserModel
from ridehail.realtime.auth import identity_for
from ridehail.realtime.fanout import Notifier
from ridehail.realtime.registry import ConnectionRegistry, Session
from ridehail.services.dispatch import DispatchEngine
from ridehail.services.lifecycle import NewRide, RideLifecycle
from ridehail.services.presence import PresenceStore

# MG Road, Bengaluru
PICKUP = (12.9756, 77.6050)
DESTINATION = (12.9352, 77.6245)


# ── Fake transport ────────────────────────────────────────────────────


class FakeConnection:
    """Stands in for a websocket; records everything sent to it."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict[str, Any]] = []
        self.closed_with: Optional[int] = None
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise ConnectionError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def events(self, name: Optional[str] = None) -> list[dict[str, Any]]:
        return [m for m in self.sent if name is None or m["event"] == name]

    def names(self) -> list[str]:
        return [m["event"] for m in self.sent]


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ridehail.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(eng.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Dispatch core ─────────────────────────────────────────────────────


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        surge_pricing_enabled=False,
        redispatch_enabled=False,
        presence_retry_attempts=2,
    )


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def notifier(registry) -> Notifier:
    return Notifier(registry)


@pytest.fixture
def presence(session_factory) -> PresenceStore:
    return PresenceStore(
        session_factory, retry_attempts=2, h3_resolution=7, retry_backoff=0
    )


@pytest.fixture
def dispatch(registry, notifier, presence) -> DispatchEngine:
    return DispatchEngine(registry, notifier, presence)


@pytest.fixture
def lifecycle(session_factory, dispatch, notifier, test_settings) -> RideLifecycle:
    return RideLifecycle(session_factory, dispatch, notifier, settings=test_settings)


# ── Data helpers ──────────────────────────────────────────────────────


_emails = itertools.count(1)


@pytest.fixture
def make_user(session_factory):
    async def _make(role: Role = Role.CUSTOMER, **fields) -> UserModel:
        n = next(_emails)
        defaults: dict[str, Any] = {
            "full_name": f"{role.value.title()} {n}",
            "email": f"{role.value}{n}@example.com",
            "phone": f"90000{n:05d}",
            "role": role,
        }
        if role in (Role.DRIVER, Role.SUB_DRIVER):
            defaults.update(
                vehicle_class=VehicleClass.CAR,
                is_online=True,
                is_available=True,
                current_lat=PICKUP[0],
                current_lng=PICKUP[1],
            )
        defaults.update(fields)
        async with session_factory() as session:
            user = UserModel(**defaults)
            session.add(user)
            await session.commit()
        return user

    return _make


@pytest.fixture
def make_ride(session_factory):
    async def _make(customer: UserModel, **fields) -> RideModel:
        defaults: dict[str, Any] = {
            "customer_id": customer.id,
            "vehicle_class": VehicleClass.CAR,
            "service_type": ServiceType.RIDE,
            "status": RideStatus.PENDING,
            "pickup_address": "MG Road Metro",
            "pickup_lat": PICKUP[0],
            "pickup_lng": PICKUP[1],
            "destination_address": "Koramangala 5th Block",
            "destination_lat": DESTINATION[0],
            "destination_lng": DESTINATION[1],
            "distance_km": 5.0,
            "duration_min": 18,
            "final_amount": 8_500,
            "total_fare": 8_500,
        }
        defaults.update(fields)
        async with session_factory() as session:
            ride = RideModel(**defaults)
            session.add(ride)
            await session.commit()
        return ride

    return _make


@pytest.fixture
def load(session_factory):
    """Fresh read of any row by primary key."""

    async def _load(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _load


def new_ride(**overrides) -> NewRide:
    fields: dict[str, Any] = {
        "pickup_address": "MG Road Metro",
        "pickup_lat": PICKUP[0],
        "pickup_lng": PICKUP[1],
        "destination_address": "Koramangala 5th Block",
        "destination_lat": DESTINATION[0],
        "destination_lng": DESTINATION[1],
        "vehicle_class": VehicleClass.CAR,
    }
    fields.update(overrides)
    return NewRide(**fields)


def connect(registry: ConnectionRegistry, user: UserModel, **kw) -> tuple[Session, FakeConnection]:
    conn = FakeConnection(**kw)
    return registry.on_connect(conn, identity_for(user)), conn
