"""
In-memory, read-optimized view of every flow and its keys.

The database is the source of truth. The snapshot is rebuilt in full after
each mutation and swapped in under an exclusive lock; readers share the lock.
"""
import asyncio
import itertools
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from khm.models.base import Database
from khm.models.keys import FlowAssociation, KeyRecord
from khm.schemas import FlowStatistics, SshKeyEntry

logger = logging.getLogger(__name__)

FlowMap = Dict[str, Tuple[SshKeyEntry, ...]]


class ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


async def load_flows(db: AsyncSession) -> FlowMap:
    """Read every (host, key, deprecated, flow) tuple, grouped by flow."""
    stmt = (
        select(KeyRecord.host, KeyRecord.key, KeyRecord.deprecated, FlowAssociation.name)
        .join(FlowAssociation, FlowAssociation.key_id == KeyRecord.key_id)
        .order_by(FlowAssociation.name, KeyRecord.host, KeyRecord.key_id)
    )
    result = await db.execute(stmt)

    grouped: Dict[str, List[SshKeyEntry]] = {}
    for host, key, deprecated, flow in result.all():
        grouped.setdefault(flow, []).append(
            SshKeyEntry(server=host, public_key=key, deprecated=deprecated)
        )

    logger.info(f"Retrieved {len(grouped)} flows from database")
    return {name: tuple(entries) for name, entries in grouped.items()}


class FlowSnapshot:
    """
    Current keys of every flow.

    Allowed flows are always present, empty until they receive keys. Rebuilds
    query the database without holding the lock; each rebuild takes a ticket
    and a result is only installed if no later rebuild got there first.
    """

    def __init__(self, allowed_flows: Iterable[str]):
        self.allowed_flows = list(allowed_flows)
        self._flows: FlowMap = {name: () for name in self.allowed_flows}
        self._lock = ReadWriteLock()
        self._tickets = itertools.count(1)
        self._installed = 0

    async def refresh(self, database: Database) -> None:
        """Reload all flows from the database and replace the snapshot."""
        ticket = next(self._tickets)
        async with database.session() as db:
            flows = await load_flows(db)
        for name in self.allowed_flows:
            flows.setdefault(name, ())

        async with self._lock.write():
            if ticket < self._installed:
                logger.debug(f"Discarding snapshot {ticket}, {self._installed} is newer")
                return
            self._flows = flows
            self._installed = ticket

    async def get(self, flow: str) -> Optional[Tuple[SshKeyEntry, ...]]:
        """Keys of ``flow`` including deprecated ones, or None if the flow is unknown."""
        async with self._lock.read():
            return self._flows.get(flow)

    async def statistics(self, flow: str) -> Optional[FlowStatistics]:
        keys = await self.get(flow)
        if keys is None:
            return None
        deprecated = sum(1 for key in keys if key.deprecated)
        return FlowStatistics(
            total=len(keys),
            active=len(keys) - deprecated,
            deprecated=deprecated,
            unique_servers=len({key.server for key in keys}),
        )
