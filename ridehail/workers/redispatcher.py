"""
Background Re-dispatch Worker
=============================

Runs every ``redispatch_interval_seconds`` (default 30 s).

Rides nobody accepted stay open indefinitely; drivers who connect after the
original broadcast would never hear about them.  Each cycle re-offers every
open, unassigned ride older than ``redispatch_after_seconds`` through the
normal tiered broadcast, excluding drivers who already declined it.  Rides are
never cancelled here.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs a cycle at a time
  across multiple API processes.
* The worker only reads rides and sends offers; assignment still goes through
  the conditional accept, so a re-offer racing an accept is harmless.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

import redis.asyncio as aioredis

from ridehail.infrastructure.database import SessionFactory
from ridehail.infrastructure.locks import DistributedLock
from ridehail.infrastructure.redis_client import get_redis
from ridehail.infrastructure.repositories import RideRepository
from ridehail.services.dispatch import DispatchEngine, offer_from_ride

logger = logging.getLogger(__name__)

LOCK_NAME = "redispatch"


class Redispatcher:
    def __init__(
        self,
        session_factory: SessionFactory,
        dispatch: DispatchEngine,
        interval_seconds: int,
        after_seconds: int,
        redis_factory: Callable[[], Awaitable[aioredis.Redis]] = get_redis,
    ):
        self.session_factory = session_factory
        self.dispatch = dispatch
        self.interval_seconds = interval_seconds
        self.after_seconds = after_seconds
        self.redis_factory = redis_factory
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None

    # ── Public API ────────────────────────────────────────────────────

    async def start(self) -> None:
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("Re-dispatch worker started (interval=%ds)", self.interval_seconds)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Re-dispatch worker stopped")

    # ── Internals ─────────────────────────────────────────────────────

    async def _loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Unhandled error in re-dispatch cycle")
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.interval_seconds
                )
                break
            except asyncio.TimeoutError:
                pass  # next cycle

    async def run_cycle(self) -> int:
        """Execute one cycle.  Returns the number of rides re-offered."""
        redis = await self.redis_factory()
        lock = DistributedLock(redis, LOCK_NAME, ttl_seconds=max(self.interval_seconds, 30))

        if not await lock.acquire():
            logger.debug("Lock held by another worker - skipping cycle")
            return 0

        offered = 0
        try:
            cutoff = None
            if self.after_seconds > 0:
                cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.after_seconds)

            async with self.session_factory() as session:
                repo = RideRepository(session)
                stale = [
                    (ride, await repo.declined_driver_ids(ride.id))
                    for ride in await repo.get_open_rides(created_before=cutoff)
                ]

            for ride, declined in stale:
                result = await self.dispatch.broadcast(
                    offer_from_ride(ride), excluded_driver_ids=declined
                )
                if result.ok and result.delivered:
                    offered += 1
            if offered:
                logger.info("Re-dispatch cycle: %d rides re-offered", offered)
        except Exception:
            logger.exception("Error in re-dispatch cycle")
        finally:
            await lock.release()

        return offered
