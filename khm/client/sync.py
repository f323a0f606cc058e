"""
known_hosts synchronisation: send local keys, receive the merged flow.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from khm.client.api import ApiClientError, KhmApiClient
from khm.client.known_hosts import read_known_hosts, write_known_hosts
from khm.core.exceptions import KHMError

logger = logging.getLogger(__name__)


class SyncError(KHMError):
    """Synchronisation failed. The local file was left untouched."""
    pass


@dataclass
class SyncStats:
    """Outcome of one synchronisation run."""
    sent: int = 0
    total: int = 0
    inserted: int = 0
    unchanged: int = 0
    ignored_deprecated: int = 0
    fetched: int = 0
    written: int = 0
    deprecated_skipped: int = 0


def sync_known_hosts(
    known_hosts: Union[str, Path],
    flow: str,
    api: KhmApiClient,
    in_place: bool = False
) -> SyncStats:
    """
    Synchronise a local known_hosts file with one flow.

    The local entries are submitted first. With ``in_place`` the file is then
    replaced by the flow's active entries; deprecated entries are never
    written. Any failure raises ``SyncError`` before the file is modified.
    """
    stats = SyncStats()

    try:
        local = read_known_hosts(known_hosts)
    except OSError as e:
        raise SyncError(f"Failed to read known_hosts file {known_hosts}: {e}") from e
    stats.sent = len(local)

    try:
        submitted = api.submit_keys(flow, local)
    except ApiClientError as e:
        raise SyncError(f"Failed to send keys to flow '{flow}': {e}") from e

    stats.total = submitted.total or 0
    stats.inserted = submitted.inserted or 0
    stats.unchanged = submitted.unchanged or 0
    stats.ignored_deprecated = submitted.ignored_deprecated or 0

    if not in_place:
        return stats

    try:
        remote = api.get_keys(flow, include_deprecated=True)
    except ApiClientError as e:
        raise SyncError(f"Failed to fetch keys for flow '{flow}': {e}") from e

    active = [entry for entry in remote if not entry.deprecated]
    stats.fetched = len(remote)
    stats.deprecated_skipped = len(remote) - len(active)

    try:
        stats.written = write_known_hosts(known_hosts, active)
    except OSError as e:
        raise SyncError(f"Failed to write known_hosts file {known_hosts}: {e}") from e

    if stats.deprecated_skipped:
        logger.info(f"Skipped {stats.deprecated_skipped} deprecated keys when writing {known_hosts}")
    return stats
