"""
Flow key endpoints: read, submit, and lifecycle administration.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status

from khm.schemas import (
    BulkResponse,
    BulkServersRequest,
    DeleteResponse,
    DnsScanResponse,
    FlowStatistics,
    LifecycleResponse,
    SshKeyEntry,
)
from khm.services.flows import FlowService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_flow_service(request: Request) -> FlowService:
    """Dependency returning the application's flow service."""
    return request.app.state.flow_service


def client_name(x_client_hostname: Optional[str] = Header(None)) -> str:
    """Hostname the client reports about itself, for logging only."""
    return x_client_hostname or "unknown-client"


@router.get("/{flow}/keys", response_model=List[SshKeyEntry])
async def get_keys(
    flow: str,
    include_deprecated: bool = False,
    client: str = Depends(client_name),
    service: FlowService = Depends(get_flow_service)
):
    """Keys of a flow. Deprecated keys are omitted unless ``include_deprecated=true``."""
    logger.info(f"Received keys request from client '{client}' for flow '{flow}'")
    keys = await service.get_keys(flow, include_deprecated=include_deprecated)
    logger.info(
        f"Returning {len(keys)} keys (deprecated included: {include_deprecated}) "
        f"for flow '{flow}' to client '{client}'"
    )
    return keys


@router.post("/{flow}/keys", response_model=List[SshKeyEntry])
async def add_keys(
    flow: str,
    entries: List[SshKeyEntry],
    response: Response,
    client: str = Depends(client_name),
    service: FlowService = Depends(get_flow_service)
):
    """
    Submit a client's full key set to a flow.

    Returns the flow's state after the submission, deprecated keys included.
    Submission statistics are reported in ``X-Keys-*`` headers.
    """
    logger.info(f"Received {len(entries)} keys from client '{client}' for flow '{flow}'")
    stats, keys = await service.submit(flow, entries)

    response.headers["X-Keys-Total"] = str(stats.total)
    response.headers["X-Keys-New"] = str(stats.inserted)
    response.headers["X-Keys-Unchanged"] = str(stats.unchanged)
    response.headers["X-Keys-Ignored-Deprecated"] = str(stats.ignored_deprecated)
    return keys


@router.delete("/{flow}/keys/{server}", response_model=LifecycleResponse)
async def deprecate_key(
    flow: str,
    server: str,
    service: FlowService = Depends(get_flow_service)
):
    """Deprecate the active keys of a server."""
    logger.info(f"API request to deprecate key for server '{server}' in flow '{flow}'")
    count = await service.deprecate(server, flow)
    if count == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No keys found for server '{server}'"
        )
    return LifecycleResponse(
        message=f"Successfully deprecated {count} key(s) for server '{server}'",
        affected_count=count
    )


@router.post("/{flow}/keys/{server}/restore", response_model=LifecycleResponse)
async def restore_key(
    flow: str,
    server: str,
    service: FlowService = Depends(get_flow_service)
):
    """Restore the deprecated keys of a server."""
    logger.info(f"API request to restore key for server '{server}' in flow '{flow}'")
    count = await service.restore(server, flow)
    if count == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No deprecated keys found for server '{server}'"
        )
    return LifecycleResponse(
        message=f"Successfully restored {count} key(s) for server '{server}'",
        affected_count=count
    )


@router.delete("/{flow}/keys/{server}/delete", response_model=DeleteResponse)
async def permanently_delete_key(
    flow: str,
    server: str,
    service: FlowService = Depends(get_flow_service)
):
    """Remove a server from the flow and drop keys no other flow references."""
    logger.info(f"API request to permanently delete key for server '{server}' in flow '{flow}'")
    result = await service.permanently_delete(server, flow)
    if result.associations_removed == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No keys found for server '{server}'"
        )
    return DeleteResponse(
        message=(
            f"Successfully deleted {result.associations_removed} key(s) for server '{server}' "
            f"({result.records_removed} removed from storage)"
        ),
        affected_count=result.affected_count,
        associations_removed=result.associations_removed,
        records_removed=result.records_removed
    )


@router.post("/{flow}/bulk-deprecate", response_model=BulkResponse)
async def bulk_deprecate(
    flow: str,
    body: BulkServersRequest,
    service: FlowService = Depends(get_flow_service)
):
    """Deprecate several servers at once. All or nothing."""
    logger.info(f"API request to bulk deprecate {len(body.servers)} servers in flow '{flow}'")
    count = await service.bulk_deprecate(body.servers, flow)
    return BulkResponse(
        message=f"Successfully deprecated {count} key(s) for {len(body.servers)} server(s)",
        affected_count=count,
        servers_processed=len(body.servers)
    )


@router.post("/{flow}/bulk-restore", response_model=BulkResponse)
async def bulk_restore(
    flow: str,
    body: BulkServersRequest,
    service: FlowService = Depends(get_flow_service)
):
    """Restore several servers at once. All or nothing."""
    logger.info(f"API request to bulk restore {len(body.servers)} servers in flow '{flow}'")
    count = await service.bulk_restore(body.servers, flow)
    return BulkResponse(
        message=f"Successfully restored {count} key(s) for {len(body.servers)} server(s)",
        affected_count=count,
        servers_processed=len(body.servers)
    )


@router.get("/{flow}/statistics", response_model=FlowStatistics)
async def flow_statistics(
    flow: str,
    service: FlowService = Depends(get_flow_service)
):
    """Key counts of a flow."""
    return await service.statistics(flow)


@router.get("/{flow}/scan-dns", response_model=DnsScanResponse)
async def scan_dns(
    flow: str,
    service: FlowService = Depends(get_flow_service)
):
    """Check which servers of a flow still resolve."""
    logger.info(f"API request to scan DNS resolution for flow '{flow}'")
    return await service.scan_dns(flow)
