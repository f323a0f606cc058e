"""
Deprecate, restore and permanently delete host keys within a flow.

State per (host, flow): active, deprecated, or absent (no association).
Deletion removes the flow's associations and then garbage-collects key records
that no flow references anymore; a key shared with another flow survives.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from khm.models.keys import FlowAssociation, KeyRecord
from khm.services.reconciliation import chunked

logger = logging.getLogger(__name__)


@dataclass
class DeleteResult:
    """Counts from a permanent deletion."""
    associations_removed: int = 0
    records_removed: int = 0

    @property
    def affected_count(self) -> int:
        return max(self.associations_removed, self.records_removed)


class LifecycleService:
    """
    Lifecycle transitions for the keys of a host within one flow.

    Bulk variants are atomic: they run as statements inside the caller's
    transaction, so a failure for one host rolls back every host.
    """

    def __init__(self, db: AsyncSession, chunk_size: int = 500):
        self.db = db
        self.chunk_size = chunk_size

    def _flow_key_ids(self, flow: str):
        return select(FlowAssociation.key_id).where(FlowAssociation.name == flow)

    async def _set_deprecated(self, hosts: Sequence[str], flow: str, deprecated: bool) -> int:
        """Flip ``deprecated`` on keys of ``hosts`` in ``flow`` that are in the opposite state."""
        now = datetime.now(timezone.utc)
        affected = 0
        for chunk in chunked(list(dict.fromkeys(hosts)), self.chunk_size):
            stmt = (
                update(KeyRecord)
                .where(
                    KeyRecord.host.in_(list(chunk)),
                    KeyRecord.deprecated == (not deprecated),
                    KeyRecord.key_id.in_(self._flow_key_ids(flow))
                )
                .values(deprecated=deprecated, updated=now)
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            affected += result.rowcount
        return affected

    async def deprecate(self, host: str, flow: str) -> int:
        """Mark the active keys of ``host`` in ``flow`` as deprecated."""
        count = await self._set_deprecated([host], flow, True)
        logger.info(f"Deprecated {count} key(s) for server '{host}' in flow '{flow}'")
        return count

    async def restore(self, host: str, flow: str) -> int:
        """Reactivate the deprecated keys of ``host`` in ``flow``. Active keys are not touched."""
        count = await self._set_deprecated([host], flow, False)
        logger.info(f"Restored {count} key(s) for server '{host}' in flow '{flow}'")
        return count

    async def bulk_deprecate(self, hosts: Sequence[str], flow: str) -> int:
        count = await self._set_deprecated(hosts, flow, True)
        logger.info(f"Bulk deprecated {count} key(s) for {len(hosts)} servers in flow '{flow}'")
        return count

    async def bulk_restore(self, hosts: Sequence[str], flow: str) -> int:
        count = await self._set_deprecated(hosts, flow, False)
        logger.info(f"Bulk restored {count} key(s) for {len(hosts)} servers in flow '{flow}'")
        return count

    async def permanently_delete(self, host: str, flow: str) -> DeleteResult:
        """
        Remove ``host`` from ``flow`` and delete key records left without any flow.

        Returns:
            DeleteResult with the association and record counts kept apart
        """
        stmt = (
            select(FlowAssociation.key_id)
            .join(KeyRecord, KeyRecord.key_id == FlowAssociation.key_id)
            .where(FlowAssociation.name == flow, KeyRecord.host == host)
        )
        result = await self.db.execute(stmt)
        key_ids: List[int] = list(result.scalars().all())

        if not key_ids:
            logger.info(f"No keys found for server '{host}' in flow '{flow}'")
            return DeleteResult()

        outcome = DeleteResult()
        result = await self.db.execute(
            delete(FlowAssociation)
            .where(FlowAssociation.name == flow, FlowAssociation.key_id.in_(key_ids))
            .execution_options(synchronize_session=False)
        )
        outcome.associations_removed = result.rowcount

        # Keys still referenced by any other flow must survive
        result = await self.db.execute(
            select(FlowAssociation.key_id).where(FlowAssociation.key_id.in_(key_ids)).distinct()
        )
        still_referenced = set(result.scalars().all())
        orphans = [key_id for key_id in key_ids if key_id not in still_referenced]

        if orphans:
            result = await self.db.execute(
                delete(KeyRecord)
                .where(KeyRecord.key_id.in_(orphans))
                .execution_options(synchronize_session=False)
            )
            outcome.records_removed = result.rowcount

        logger.info(
            f"Permanently deleted server '{host}' from flow '{flow}': "
            f"{outcome.associations_removed} association(s), {outcome.records_removed} orphaned key(s)"
        )
        return outcome
