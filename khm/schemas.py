"""
Wire models shared by the HTTP API and the sync client.
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class SshKeyEntry(BaseModel):
    """One known_hosts entry as exchanged between client and server."""
    model_config = ConfigDict(frozen=True)

    server: str
    public_key: str
    deprecated: bool = False


class BulkServersRequest(BaseModel):
    """Body of the bulk deprecate/restore endpoints."""
    servers: List[str]


class LifecycleResponse(BaseModel):
    """Result of a single-server lifecycle operation."""
    message: str
    affected_count: int


class DeleteResponse(LifecycleResponse):
    """Permanent deletion result. ``affected_count`` is the larger of the two counts."""
    associations_removed: int
    records_removed: int


class BulkResponse(BaseModel):
    """Result of a bulk lifecycle operation."""
    message: str
    affected_count: int
    servers_processed: int


class FlowStatistics(BaseModel):
    """Counts derived from the current flow snapshot."""
    total: int
    active: int
    deprecated: int
    unique_servers: int


class DnsResolutionResult(BaseModel):
    """Outcome of resolving one server name."""
    server: str
    resolved: bool
    error: Optional[str] = None


class DnsScanResponse(BaseModel):
    """Result of a DNS scan over a flow."""
    results: List[DnsResolutionResult]
    total: int
    unresolved: int
