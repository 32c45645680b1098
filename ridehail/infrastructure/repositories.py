"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Writes that depend on current state are
expressed as conditional ``UPDATE ... WHERE`` statements and report whether a
row matched, so callers never act on a stale copy.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import ColumnElement, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import RideDeclineModel, RideModel, UserModel
from ridehail.domain.enums import (
    DRIVER_ROLES,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    RideStatus,
    VehicleClass,
)


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: int) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def refresh(self, ride_id: int) -> Optional[RideModel]:
        """Re-read a ride, bypassing the identity map."""
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, key: str) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel).where(RideModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def get_open_rides(
        self, created_before: datetime | None = None
    ) -> list[RideModel]:
        query = (
            select(RideModel)
            .where(RideModel.status.in_(list(OPEN_STATUSES)))
            .where(RideModel.driver_id.is_(None))
            .order_by(RideModel.created_at)
        )
        if created_before is not None:
            query = query.where(RideModel.created_at <= created_before)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_open(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RideModel)
            .where(RideModel.status.in_(list(OPEN_STATUSES)))
        )
        return result.scalar() or 0

    async def try_assign_driver(
        self,
        ride_id: int,
        driver_id: int,
        sub_driver_id: int | None,
        accepted_at: datetime,
    ) -> bool:
        """
        First-accept-wins compare-and-swap.

        Sets the driver only if none is set and the ride is still open.
        Returns True for the single caller whose UPDATE matched the row.
        """
        return await self.update_if(
            ride_id,
            RideModel.driver_id.is_(None),
            RideModel.status.in_(list(OPEN_STATUSES)),
            driver_id=driver_id,
            sub_driver_id=sub_driver_id,
            status=RideStatus.ACCEPTED,
            accepted_at=accepted_at,
        )

    async def update_if(
        self, ride_id: int, *conditions: ColumnElement[bool], **values: Any
    ) -> bool:
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def record_decline(self, ride_id: int, driver_id: int) -> bool:
        """Add *driver_id* to the declined-by set; False if already there."""
        try:
            async with self.session.begin_nested():
                self.session.add(RideDeclineModel(ride_id=ride_id, driver_id=driver_id))
        except IntegrityError:
            return False
        return True

    async def declined_driver_ids(self, ride_id: int) -> set[int]:
        result = await self.session.execute(
            select(RideDeclineModel.driver_id).where(
                RideDeclineModel.ride_id == ride_id
            )
        )
        return set(result.scalars().all())

    async def get_active_for_customer(self, customer_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.customer_id == customer_id,
                RideModel.status.not_in(list(TERMINAL_STATUSES)),
            )
            .order_by(RideModel.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active_for_operator(self, operator_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                or_(
                    RideModel.driver_id == operator_id,
                    RideModel.sub_driver_id == operator_id,
                ),
                RideModel.status.not_in(list(TERMINAL_STATUSES)),
            )
            .order_by(RideModel.accepted_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def average_rating(self, driver_id: int) -> Optional[float]:
        """Mean customer rating over the driver's completed, rated rides."""
        result = await self.session.execute(
            select(func.avg(RideModel.customer_rating)).where(
                RideModel.driver_id == driver_id,
                RideModel.status == RideStatus.COMPLETED,
                RideModel.customer_rating.is_not(None),
            )
        )
        average = result.scalar()
        return float(average) if average is not None else None


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, user: UserModel) -> UserModel:
        self.session.add(user)
        await self.session.flush()
        return user

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)

    async def refresh(self, user_id: int) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel)
            .where(UserModel.id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_presence(self, user_id: int, **values: Any) -> bool:
        result = await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_availability(self, user_ids: Iterable[int], available: bool) -> None:
        ids = [uid for uid in user_ids if uid is not None]
        if not ids:
            return
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id.in_(ids))
            .values(is_available=available)
            .execution_options(synchronize_session=False)
        )

    async def release_after_ride(self, user_ids: Iterable[int]) -> None:
        """Make operators free for new offers again, if still connected."""
        ids = [uid for uid in user_ids if uid is not None]
        if not ids:
            return
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id.in_(ids), UserModel.is_online.is_(True))
            .values(is_available=True)
            .execution_options(synchronize_session=False)
        )

    async def credit_earnings(self, driver_id: int, amount: int) -> tuple[int, int]:
        """Add a completed ride to the driver's totals; returns (earnings, rides)."""
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == driver_id)
            .values(
                total_earnings=UserModel.total_earnings + amount,
                total_rides=UserModel.total_rides + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            select(UserModel.total_earnings, UserModel.total_rides).where(
                UserModel.id == driver_id
            )
        )
        row = result.one_or_none()
        if row is None:
            return amount, 1
        return int(row.total_earnings), int(row.total_rides)

    async def count_available_drivers(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(UserModel)
            .where(
                UserModel.role.in_(list(DRIVER_ROLES)),
                UserModel.is_online.is_(True),
                UserModel.is_available.is_(True),
            )
        )
        return result.scalar() or 0

    async def find_available_in_cells(
        self, cells: Iterable[str], vehicle_classes: Iterable[VehicleClass]
    ) -> list[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(
                UserModel.role.in_(list(DRIVER_ROLES)),
                UserModel.is_active.is_(True),
                UserModel.is_online.is_(True),
                UserModel.is_available.is_(True),
                UserModel.location_cell.in_(list(cells)),
                UserModel.vehicle_class.in_(list(vehicle_classes)),
            )
        )
        return list(result.scalars().all())

    async def get_sub_driver(
        self, sub_driver_id: int, parent_driver_id: int
    ) -> Optional[UserModel]:
        result = await self.session.execute(
            select(UserModel).where(
                UserModel.id == sub_driver_id,
                UserModel.parent_driver_id == parent_driver_id,
            )
        )
        return result.scalar_one_or_none()
