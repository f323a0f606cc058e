"""
Reconciliation of submitted known_hosts entries into the key store.

A submission is content-addressed by (host, public key): resubmitting an
unchanged file never creates rows, and a deprecated key stays deprecated no
matter how many clients keep sending it. Restoring a key is the lifecycle
service's job, not this one.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from sqlalchemy import insert, select, tuple_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from khm.core.exceptions import InvalidKeyFormatError
from khm.core.ssh import is_valid_ssh_key
from khm.models.keys import FlowAssociation, KeyRecord
from khm.schemas import SshKeyEntry

logger = logging.getLogger(__name__)

HostKey = Tuple[str, str]


@dataclass
class SubmissionStats:
    """Outcome of one submission."""
    received: int = 0
    inserted: int = 0
    unchanged: int = 0
    ignored_deprecated: int = 0
    associated: int = 0

    @property
    def total(self) -> int:
        """Keys accepted into the flow: new plus unchanged. Ignored keys are not counted."""
        return self.inserted + self.unchanged


def chunked(items: Sequence, size: int) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def validate_entries(entries: Iterable[SshKeyEntry]) -> None:
    """Reject the whole batch on the first malformed key."""
    for entry in entries:
        if not is_valid_ssh_key(entry.public_key):
            raise InvalidKeyFormatError(entry.server)


class ReconciliationService:
    """
    Applies a batch of entries to one flow.

    The caller owns the transaction: nothing here commits, so a failure at any
    step leaves the store untouched once the session is rolled back.
    """

    def __init__(self, db: AsyncSession, chunk_size: int = 500):
        self.db = db
        self.chunk_size = chunk_size

    async def submit(self, flow: str, entries: Sequence[SshKeyEntry]) -> SubmissionStats:
        """
        Deduplicate, insert and associate ``entries`` with ``flow``.

        Raises:
            InvalidKeyFormatError: if any entry has a malformed key
        """
        validate_entries(entries)

        stats = SubmissionStats(received=len(entries))
        # First occurrence wins; duplicates inside one batch are a single key.
        pairs: List[HostKey] = list(dict.fromkeys((e.server, e.public_key) for e in entries))
        if not pairs:
            logger.info(f"Empty submission for flow '{flow}'")
            return stats

        existing = await self._lookup(pairs)

        new_pairs: List[HostKey] = []
        active_ids: List[int] = []
        for pair in pairs:
            record = existing.get(pair)
            if record is None:
                new_pairs.append(pair)
            elif record[1]:
                stats.ignored_deprecated += 1
            else:
                active_ids.append(record[0])

        now = datetime.now(timezone.utc)
        inserted_ids = await self._insert(new_pairs, now)
        await self._touch(active_ids, now)

        stats.inserted = len(inserted_ids)
        stats.unchanged = len(active_ids)
        stats.associated = await self._associate(flow, active_ids + inserted_ids)

        logger.info(
            f"Keys stats for flow '{flow}': received={stats.received}, new={stats.inserted}, "
            f"unchanged={stats.unchanged}, ignored_deprecated={stats.ignored_deprecated}, "
            f"new_associations={stats.associated}"
        )
        return stats

    async def _lookup(self, pairs: Sequence[HostKey]) -> Dict[HostKey, Tuple[int, bool]]:
        """Map each stored (host, key) pair to (key_id, deprecated)."""
        found: Dict[HostKey, Tuple[int, bool]] = {}
        for chunk in chunked(pairs, self.chunk_size):
            stmt = select(
                KeyRecord.host, KeyRecord.key, KeyRecord.key_id, KeyRecord.deprecated
            ).where(tuple_(KeyRecord.host, KeyRecord.key).in_(list(chunk)))
            result = await self.db.execute(stmt)
            for host, key, key_id, deprecated in result.all():
                found[(host, key)] = (key_id, deprecated)
        return found

    async def _insert(self, pairs: Sequence[HostKey], now: datetime) -> List[int]:
        if not pairs:
            return []

        key_ids: List[int] = []
        for chunk in chunked(pairs, self.chunk_size):
            stmt = insert(KeyRecord).returning(KeyRecord.key_id)
            result = await self.db.execute(
                stmt,
                [
                    {"host": host, "key": key, "updated": now, "deprecated": False}
                    for host, key in chunk
                ]
            )
            key_ids.extend(result.scalars().all())
        return key_ids

    async def _touch(self, key_ids: Sequence[int], now: datetime) -> None:
        """Refresh ``updated`` on active keys that were seen again."""
        for chunk in chunked(key_ids, self.chunk_size):
            stmt = (
                update(KeyRecord)
                .where(KeyRecord.key_id.in_(list(chunk)))
                .values(updated=now)
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(stmt)

    async def _associated_ids(self, flow: str, key_ids: Sequence[int]) -> set:
        """Key ids among ``key_ids`` already associated with ``flow``."""
        already: set = set()
        for chunk in chunked(key_ids, self.chunk_size):
            stmt = select(FlowAssociation.key_id).where(
                FlowAssociation.name == flow,
                FlowAssociation.key_id.in_(list(chunk))
            )
            result = await self.db.execute(stmt)
            already.update(result.scalars().all())
        return already

    def _association_insert(self, rows: List[dict]):
        """
        INSERT into ``flows`` that skips (name, key_id) pairs already present.

        A concurrent submission may add the same pair after our read; the
        conflict clause turns that into a no-op instead of a unique violation.
        """
        dialect = self.db.bind.dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(FlowAssociation).values(rows)
        elif dialect == "sqlite":
            stmt = sqlite.insert(FlowAssociation).values(rows)
        else:
            return insert(FlowAssociation).values(rows).returning(FlowAssociation.flow_id)
        return stmt.on_conflict_do_nothing(index_elements=["name", "key_id"]).returning(
            FlowAssociation.flow_id
        )

    async def _associate(self, flow: str, key_ids: Sequence[int]) -> int:
        """Add (flow, key_id) rows that do not exist yet. Returns how many were added."""
        if not key_ids:
            logger.info(f"No keys to associate with flow '{flow}'")
            return 0

        already = await self._associated_ids(flow, key_ids)
        missing = [key_id for key_id in dict.fromkeys(key_ids) if key_id not in already]
        if not missing:
            logger.info(f"All {len(key_ids)} keys are already associated with flow '{flow}'")
            return 0

        added = 0
        for chunk in chunked(missing, self.chunk_size):
            result = await self.db.execute(
                self._association_insert([{"name": flow, "key_id": key_id} for key_id in chunk])
            )
            added += len(result.scalars().all())

        if added < len(missing):
            logger.info(
                f"{len(missing) - added} association(s) for flow '{flow}' were added concurrently"
            )
        logger.info(
            f"Added {added} new key-flow associations for flow '{flow}' "
            f"(skipped {len(already)} existing)"
        )
        return added
