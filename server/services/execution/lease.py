"""Cluster-wide lease for scheduled tasks, backed by the scheduler_leases table.

One row per task name. A process holds the lease while ``lock_until`` is in
the future; acquiring takes over an expired row or inserts a missing one.
Releasing keeps the row locked until at least ``locked_at + lock_at_least``
so a fast task is not re-run immediately by another process.
"""

import os
import socket
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from core.database import Database
from core.logging import get_logger
from models.database import SchedulerLease, utcnow

logger = get_logger(__name__)


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class LeaseManager:
    """ShedLock-style lease manager."""

    def __init__(self, database: Database, owner: Optional[str] = None):
        self.database = database
        self.owner = owner or default_owner()
        self._held: Dict[str, datetime] = {}

    async def acquire(self, name: str, lock_at_most: timedelta) -> bool:
        """Try to take the lease. Returns False when another holder's lease is live."""
        now = utcnow()
        lock_until = now + lock_at_most

        async with self.database.get_session() as session:
            result = await session.execute(
                update(SchedulerLease)
                .where(SchedulerLease.name == name, SchedulerLease.lock_until <= now)
                .values(lock_until=lock_until, locked_at=now, locked_by=self.owner)
            )
            if result.rowcount == 1:
                await session.commit()
                self._held[name] = now
                logger.debug("Lease taken over", lease=name, owner=self.owner)
                return True

            if await session.get(SchedulerLease, name) is not None:
                await session.rollback()
                return False

            session.add(SchedulerLease(name=name, lock_until=lock_until, locked_at=now, locked_by=self.owner))
            try:
                await session.commit()
            except IntegrityError:
                # Another process inserted the row first
                await session.rollback()
                return False

        self._held[name] = now
        logger.debug("Lease created", lease=name, owner=self.owner)
        return True

    async def release(self, name: str, lock_at_least: timedelta) -> None:
        """Release a held lease, keeping it until locked_at + lock_at_least."""
        locked_at = self._held.pop(name, None)
        if locked_at is None:
            return

        unlock_at = max(utcnow(), locked_at + lock_at_least)
        async with self.database.get_session() as session:
            await session.execute(
                update(SchedulerLease)
                .where(SchedulerLease.name == name, SchedulerLease.locked_by == self.owner)
                .values(lock_until=unlock_at)
            )
            await session.commit()

    def is_held(self, name: str) -> bool:
        return name in self._held

    @asynccontextmanager
    async def hold(self, name: str, lock_at_most: timedelta,
                   lock_at_least: timedelta) -> AsyncIterator[bool]:
        """Yield whether the lease was acquired; release on exit if it was."""
        acquired = await self.acquire(name, lock_at_most)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(name, lock_at_least)
