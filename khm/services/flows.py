"""
Flow-level operations used by the HTTP API.

Each operation checks the flow allow-list, runs the store mutation in its own
transaction, and rebuilds the snapshot before returning so the caller reads
its own writes.
"""
import logging
from typing import List, Sequence, Tuple

from khm.core.config import Settings
from khm.core.exceptions import FlowNotAllowedError, FlowNotFoundError
from khm.models.base import Database
from khm.schemas import DnsScanResponse, FlowStatistics, SshKeyEntry
from khm.services.dns_scan import scan_dns_resolution
from khm.services.lifecycle import DeleteResult, LifecycleService
from khm.services.reconciliation import ReconciliationService, SubmissionStats, validate_entries
from khm.services.snapshot import FlowSnapshot

logger = logging.getLogger(__name__)


class FlowService:
    """Entry point for reads and mutations of flows."""

    def __init__(self, database: Database, snapshot: FlowSnapshot, settings: Settings):
        self.database = database
        self.snapshot = snapshot
        self.settings = settings
        self.allowed_flows = list(settings.FLOWS)

    def ensure_allowed(self, flow: str) -> None:
        if flow not in self.allowed_flows:
            raise FlowNotAllowedError(flow)

    async def get_keys(self, flow: str, include_deprecated: bool = False) -> List[SshKeyEntry]:
        """
        Keys of a flow from the snapshot.

        Allowed flows are always seeded into the snapshot, so an allowed flow
        with no keys returns an empty list; the not-found path only guards a
        snapshot that is missing a flow.

        Raises:
            FlowNotAllowedError: flow is not on the allow-list
            FlowNotFoundError: flow is missing from the snapshot
        """
        self.ensure_allowed(flow)
        keys = await self.snapshot.get(flow)
        if keys is None:
            raise FlowNotFoundError(flow)
        if include_deprecated:
            return list(keys)
        return [key for key in keys if not key.deprecated]

    async def submit(
        self,
        flow: str,
        entries: Sequence[SshKeyEntry]
    ) -> Tuple[SubmissionStats, List[SshKeyEntry]]:
        """Reconcile ``entries`` into ``flow`` and return the stats and the flow's new state."""
        self.ensure_allowed(flow)
        # Reject malformed batches before opening a transaction
        validate_entries(entries)

        async with self.database.session() as db:
            stats = await ReconciliationService(db, self.settings.DB_QUERY_CHUNK_SIZE).submit(flow, entries)
            await db.commit()

        await self.snapshot.refresh(self.database)
        keys = await self.get_keys(flow, include_deprecated=True)
        logger.info(
            f"Flow '{flow}' now holds {len(keys)} key(s) after submission "
            f"(received={stats.received}, new={stats.inserted}, unchanged={stats.unchanged})"
        )
        return stats, keys

    async def deprecate(self, host: str, flow: str) -> int:
        self.ensure_allowed(flow)
        async with self.database.session() as db:
            count = await LifecycleService(db, self.settings.DB_QUERY_CHUNK_SIZE).deprecate(host, flow)
            await db.commit()
        await self.snapshot.refresh(self.database)
        return count

    async def restore(self, host: str, flow: str) -> int:
        self.ensure_allowed(flow)
        async with self.database.session() as db:
            count = await LifecycleService(db, self.settings.DB_QUERY_CHUNK_SIZE).restore(host, flow)
            await db.commit()
        await self.snapshot.refresh(self.database)
        return count

    async def permanently_delete(self, host: str, flow: str) -> DeleteResult:
        self.ensure_allowed(flow)
        async with self.database.session() as db:
            result = await LifecycleService(db, self.settings.DB_QUERY_CHUNK_SIZE).permanently_delete(host, flow)
            await db.commit()
        await self.snapshot.refresh(self.database)
        return result

    async def bulk_deprecate(self, hosts: Sequence[str], flow: str) -> int:
        self.ensure_allowed(flow)
        async with self.database.session() as db:
            count = await LifecycleService(db, self.settings.DB_QUERY_CHUNK_SIZE).bulk_deprecate(hosts, flow)
            await db.commit()
        await self.snapshot.refresh(self.database)
        return count

    async def bulk_restore(self, hosts: Sequence[str], flow: str) -> int:
        self.ensure_allowed(flow)
        async with self.database.session() as db:
            count = await LifecycleService(db, self.settings.DB_QUERY_CHUNK_SIZE).bulk_restore(hosts, flow)
            await db.commit()
        await self.snapshot.refresh(self.database)
        return count

    async def statistics(self, flow: str) -> FlowStatistics:
        self.ensure_allowed(flow)
        stats = await self.snapshot.statistics(flow)
        if stats is None:
            raise FlowNotFoundError(flow)
        return stats

    async def scan_dns(self, flow: str) -> DnsScanResponse:
        keys = await self.get_keys(flow, include_deprecated=True)
        return await scan_dns_resolution(
            (key.server for key in keys),
            concurrency=self.settings.DNS_SCAN_CONCURRENCY,
            timeout=self.settings.DNS_SCAN_TIMEOUT,
        )
