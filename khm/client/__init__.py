"""
Client side of KHM: HTTP API wrapper and known_hosts synchronisation.
"""
from khm.client.api import ApiClientError, KhmApiClient
from khm.client.sync import SyncError, SyncStats, sync_known_hosts

__all__ = ["ApiClientError", "KhmApiClient", "SyncError", "SyncStats", "sync_known_hosts"]
